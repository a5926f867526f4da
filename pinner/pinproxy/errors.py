from __future__ import annotations

from typing import Optional


class PinProxyError(Exception):
    """Base class for pin proxy errors."""


class UpstreamAddError(PinProxyError):
    """The node rejected the forwarded add request."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PinRegistrationError(PinProxyError):
    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
