"""
Exception classes for the diagnostic probe engine.

All exceptions inherit from ProbeError and provide structured error
information with codes, messages, and optional details. The HTTP layer maps
each class to a status code via ``http_status``.
"""

from typing import Optional


class ProbeError(Exception):
    """Base exception for all probe engine errors."""

    http_status = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(ProbeError):
    """Raised when request input fails validation before any network call."""

    http_status = 400


class ProtocolError(ProbeError):
    """Raised when a peer speaks something other than the expected protocol."""

    pass


class NoServiceError(ProbeError):
    """Raised when no RDAP bootstrap entry covers the queried object."""

    http_status = 404


class UpstreamError(ProbeError):
    """Raised when an RDAP bootstrap or service fetch fails."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
        upstream_status: Optional[int] = None,
    ) -> None:
        super().__init__(code, message, details)
        self.upstream_status = upstream_status
