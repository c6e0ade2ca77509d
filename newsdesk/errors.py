"""Errors raised by the newsdesk service layers."""

from typing import Optional


class NewsdeskError(Exception):
    """Base error carrying the HTTP status and the message shown to callers."""

    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)
        if message:
            self.public_message = message


class ValidationFailed(NewsdeskError):
    """Raised when request input is missing or malformed."""

    status_code = 400
    public_message = "Invalid request"


class MissingApiKeyError(NewsdeskError):
    """Raised when the caller has no provider API key on file."""

    status_code = 400
    public_message = "No Perplexity API key configured. Add your API key in settings."


class AuthenticationError(NewsdeskError):
    status_code = 401
    public_message = "Unauthorized"


class TabNotFoundError(NewsdeskError):
    status_code = 404
    public_message = "Tab not found"


class ConfigurationError(NewsdeskError):
    """Raised when a required server-side setting is absent."""

    status_code = 500
    public_message = "API configuration error"


class CredentialDecryptionError(NewsdeskError):
    status_code = 500
    public_message = "Failed to read stored API key"


class StoreError(NewsdeskError):
    """Opaque persistence failure; the cause is logged, not returned."""

    status_code = 500
    public_message = "Database operation failed"


class UpstreamError(NewsdeskError):
    status_code = 500
    public_message = "Failed to fetch news"
