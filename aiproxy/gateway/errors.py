"""
Gateway Error Taxonomy.

Every failure the gateway reports to a caller is a GatewayError subclass.
The application exception handler renders them as a flat JSON body:

    {"error": "<message>", ...details}
"""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base exception for errors surfaced to gateway callers."""

    status_code: int = 500
    error_type: str = "gateway_error"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_type is not None:
            self.error_type = error_type
        self.details = details or {}

    def to_response_body(self) -> Dict[str, Any]:
        """Convert to the gateway's JSON error body."""
        body: Dict[str, Any] = {"error": self.message}
        body.update(self.details)
        return body

    def response_headers(self) -> Dict[str, str]:
        """Extra headers for the error response."""
        return {}


class AuthError(GatewayError):
    """Missing or invalid caller credentials."""

    status_code = 401
    error_type = "authentication_error"


class RateLimitError(GatewayError):
    """Admission denied by the rate limiter."""

    status_code = 429
    error_type = "rate_limit_error"

    def __init__(self, reset_in: int, message: str = "rate limit exceeded"):
        super().__init__(message, details={"reset_in": reset_in})
        self.reset_in = reset_in

    def response_headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.reset_in)}


class ValidationError(GatewayError):
    """Malformed request body, content type or size."""

    status_code = 400
    error_type = "invalid_request_error"


class UnsupportedContentError(GatewayError):
    """Canonical content the selected backend/model cannot represent."""

    status_code = 400
    error_type = "unsupported_content"


class NotFoundError(GatewayError):
    """Unmatched route."""

    status_code = 404
    error_type = "not_found_error"

    def __init__(self, message: str = "not found"):
        super().__init__(message)


class UpstreamError(GatewayError):
    """
    Non-2xx response or transport failure from an upstream provider.

    The upstream status code is passed through to the caller unchanged;
    transport failures (no status) are reported as 502.
    """

    error_type = "upstream_error"

    def __init__(
        self,
        message: str,
        status_code: int = 502,
        provider: Optional[str] = None,
        body: Optional[str] = None
    ):
        details = {"provider": provider} if provider else {}
        super().__init__(message, status_code=status_code, details=details)
        self.provider = provider
        self.body = body
