"""HTTP transport: bind endpoints to the ASGI request/response cycle.

Example:
    >>> from endpointkit.transport.http import Server, decode_json_request, encode_json_response
    >>> server = Server(get_user, decode_json_request(GetUser), encode_json_response)
    >>> serve(server, port=8080)
"""

from .codec import (
    JSON_CONTENT_TYPE,
    DecodeRequestFunc,
    EncodeResponseFunc,
    Headerer,
    StatusCoder,
    decode_json_request,
    encode_json_response,
    headers_of,
    json_dumps,
    nop_request_decoder,
    status_code_of,
)
from .funcs import (
    CONTEXT_KEY_REQUEST_ACCEPT,
    CONTEXT_KEY_REQUEST_AUTHORIZATION,
    CONTEXT_KEY_REQUEST_HOST,
    CONTEXT_KEY_REQUEST_METHOD,
    CONTEXT_KEY_REQUEST_PATH,
    CONTEXT_KEY_REQUEST_PROTO,
    CONTEXT_KEY_REQUEST_REFERER,
    CONTEXT_KEY_REQUEST_REMOTE_ADDR,
    CONTEXT_KEY_REQUEST_URI,
    CONTEXT_KEY_REQUEST_USER_AGENT,
    CONTEXT_KEY_REQUEST_X_FORWARDED_FOR,
    CONTEXT_KEY_REQUEST_X_FORWARDED_PROTO,
    CONTEXT_KEY_REQUEST_X_REQUEST_ID,
    CONTEXT_KEY_RESPONSE_HEADERS,
    CONTEXT_KEY_RESPONSE_SIZE,
    RequestFunc,
    ServerResponseFunc,
    populate_request_context,
    set_content_type,
    set_request_header,
    set_response_header,
)
from .interceptor import InterceptingWriter
from .server import (
    TEXT_CONTENT_TYPE,
    ErrorEncoder,
    Server,
    ServerConfig,
    ServerFinalizerFunc,
    ServerOption,
    default_error_encoder,
    serve,
    server_after,
    server_before,
    server_error_encoder,
    server_error_handler,
    server_finalizer,
    server_logger,
)
from .writer import ASGIResponseWriter, ResponseWriter

__all__ = [
    # Server
    "Server", "ServerConfig", "ServerOption", "serve",
    "server_before", "server_after", "server_error_encoder", "server_error_handler",
    "server_finalizer", "server_logger",
    "ErrorEncoder", "ServerFinalizerFunc", "default_error_encoder", "TEXT_CONTENT_TYPE",
    # Codec
    "DecodeRequestFunc", "EncodeResponseFunc", "Headerer", "StatusCoder",
    "decode_json_request", "encode_json_response", "nop_request_decoder",
    "headers_of", "status_code_of", "json_dumps", "JSON_CONTENT_TYPE",
    # Hooks
    "RequestFunc", "ServerResponseFunc",
    "populate_request_context", "set_content_type", "set_request_header", "set_response_header",
    # Context keys
    "CONTEXT_KEY_REQUEST_METHOD", "CONTEXT_KEY_REQUEST_URI", "CONTEXT_KEY_REQUEST_PATH",
    "CONTEXT_KEY_REQUEST_PROTO", "CONTEXT_KEY_REQUEST_HOST", "CONTEXT_KEY_REQUEST_REMOTE_ADDR",
    "CONTEXT_KEY_REQUEST_X_FORWARDED_FOR", "CONTEXT_KEY_REQUEST_X_FORWARDED_PROTO",
    "CONTEXT_KEY_REQUEST_AUTHORIZATION", "CONTEXT_KEY_REQUEST_REFERER", "CONTEXT_KEY_REQUEST_USER_AGENT",
    "CONTEXT_KEY_REQUEST_X_REQUEST_ID", "CONTEXT_KEY_REQUEST_ACCEPT",
    "CONTEXT_KEY_RESPONSE_HEADERS", "CONTEXT_KEY_RESPONSE_SIZE",
    # Writers
    "ResponseWriter", "ASGIResponseWriter", "InterceptingWriter",
]
