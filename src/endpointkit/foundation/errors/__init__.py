"""Error handling for endpointkit.

- ErrorCode/Stage: classification of pipeline failures
- PipelineError: structured diagnostic description
- HTTPError/DecodeError: exceptions carrying their own status and headers
"""

from .errors import DecodeError, ErrorCode, HTTPError, PipelineError, Stage, classify_exception

__all__ = ["DecodeError", "ErrorCode", "HTTPError", "PipelineError", "Stage", "classify_exception"]
