from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, constr

# ---------- Inputs ----------
# Every input is frozen: adapters running concurrently share the same instance.


class _Input(BaseModel):
    model_config = ConfigDict(frozen=True)


class NamedFile(_Input):
    """An in-memory file. `name` may carry `/` separators when used inside a directory."""

    kind: Literal["file"] = "file"
    name: constr(strip_whitespace=True, min_length=1)
    content: bytes
    content_type: str = "application/octet-stream"


class FilePath(_Input):
    kind: Literal["file_path"] = "file_path"
    path: constr(min_length=1)


class BytesInput(_Input):
    kind: Literal["bytes"] = "bytes"
    content: bytes


class TextInput(_Input):
    kind: Literal["text"] = "text"
    content: str


class JsonInput(_Input):
    kind: Literal["json"] = "json"
    value: Any = Field(...)


class UrlInput(_Input):
    kind: Literal["url"] = "url"
    url: str


class DirectoryFiles(_Input):
    kind: Literal["directory_files"] = "directory_files"
    files: List[NamedFile] = Field(default_factory=list)
    # Used as the object key (object store) and the folder name (pinning service).
    dir_name: Optional[str] = None


class DirectoryPath(_Input):
    kind: Literal["directory_path"] = "directory_path"
    dir_path: constr(min_length=1)
    pattern: str = "**/*"
    hidden: bool = False


FileInput = Union[NamedFile, FilePath, str]
DirectoryInput = Union[DirectoryFiles, DirectoryPath]

UploadInput = Annotated[
    Union[NamedFile, FilePath, BytesInput, TextInput, JsonInput, UrlInput, DirectoryFiles, DirectoryPath],
    Field(discriminator="kind"),
]


# ---------- Results ----------

class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    TRANSPORT = "TRANSPORT"
    UNSUPPORTED = "UNSUPPORTED"
    UPSTREAM = "UPSTREAM"
    CANCELLED = "CANCELLED"
    INTERNAL = "INTERNAL"


class FileEntry(BaseModel):
    name: str
    cid: str


class UploadResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    cid: str = ""
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    files: List[FileEntry] = Field(default_factory=list)

    @classmethod
    def ok(cls, cid: str, files: Optional[List[FileEntry]] = None) -> "UploadResult":
        return cls(success=True, cid=cid, files=files or [])

    @classmethod
    def failed(cls, error: str, kind: ErrorKind = ErrorKind.INTERNAL) -> "UploadResult":
        return cls(success=False, cid="", error=error, error_kind=kind)

    @property
    def retryable(self) -> bool:
        return not self.success and self.error_kind in (ErrorKind.TRANSPORT, ErrorKind.UPSTREAM, ErrorKind.CANCELLED)

    def to_wire(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success, "cid": self.cid}
        if self.error is not None:
            out["error"] = self.error
        return out


class AggregateUploadResult(UploadResult):
    """
    Reduction of N per-backend results.
    `results` keeps registration order, never completion order.
    """

    all_succeeded: bool
    results: Dict[str, UploadResult] = Field(default_factory=dict)
    success_count: int = 0
    error_count: int = 0
    total_nodes: int = 0

    @classmethod
    def reduce(cls, results: Dict[str, UploadResult]) -> "AggregateUploadResult":
        succeeded = [r for r in results.values() if r.success]
        total = len(results)
        failures = [f"{uid}: {r.error}" for uid, r in results.items() if not r.success]
        return cls(
            success=bool(succeeded),
            cid=succeeded[0].cid if succeeded else "",
            error=None if succeeded else "; ".join(failures) or None,
            all_succeeded=len(succeeded) == total,
            results=results,
            success_count=len(succeeded),
            error_count=total - len(succeeded),
            total_nodes=total,
        )

    def to_wire(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "cid": self.cid,
            "allNodesSucceeded": self.all_succeeded,
            "results": [[uid, r.to_wire()] for uid, r in self.results.items()],
        }
