from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from .contracts import DirectoryInput, FileInput, UploadResult


@runtime_checkable
class UploaderPort(Protocol):
    """
    The capability set every backend satisfies.
    Ordinary backend failures come back as UploadResult(success=False); only
    MisuseError subclasses are raised.
    """

    @property
    def id(self) -> str: ...

    async def file(self, input: FileInput) -> UploadResult: ...

    async def text(self, content: str) -> UploadResult: ...

    async def json(self, value: Any) -> UploadResult: ...

    async def directory(self, input: DirectoryInput) -> UploadResult: ...

    async def url(self, url: str) -> UploadResult: ...

    async def buffer(self, content: bytes) -> UploadResult: ...
