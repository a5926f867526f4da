from __future__ import annotations

import asyncio
from typing import Optional


class UploadError(Exception):
    """Base class for uploader errors."""

    kind = "INTERNAL"


class InvalidInput(UploadError):
    """Input rejected before any network call (empty directory, bad URL, non-JSON value)."""

    kind = "VALIDATION"


class PathNotFound(UploadError):
    """A file or directory path does not exist."""

    kind = "NOT_FOUND"


class BackendTransportError(UploadError):
    """Connection failure or non-2xx response from a backend."""

    kind = "TRANSPORT"

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BackendUnsupported(UploadError):
    """The backend cannot perform this operation at all; retrying will not help."""

    kind = "UNSUPPORTED"


class CidNotFound(UploadError):
    """The backend accepted the upload but no CID could be recovered."""

    kind = "UPSTREAM"


# ---- Misuse: programming mistakes, always raised ----

class MisuseError(UploadError):
    """Raised synchronously; never converted into a failed UploadResult."""

    kind = "MISUSE"


class NoUploadersConfigured(MisuseError):
    pass


class DuplicateUploaderId(MisuseError):
    pass


class UnsupportedRuntime(MisuseError):
    """Operation needs a capability (filesystem access) this uploader was built without."""


class AggregateCancelled(asyncio.CancelledError):
    """Cancellation of a fan-out operation; `result` holds what each backend reached."""

    def __init__(self, result) -> None:
        super().__init__("aggregate upload cancelled")
        self.result = result
