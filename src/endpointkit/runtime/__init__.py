"""Runtime - execution monitoring (structured logging)."""
