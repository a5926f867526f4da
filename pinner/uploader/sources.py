"""
Input normalisation shared by every adapter, so a directory is enumerated the
same way whether it arrives as in-memory files or as a filesystem glob.
"""
from __future__ import annotations

import io
import json
import math
import os
import time
from pathlib import Path, PurePosixPath
from typing import Any, Iterator, List, Optional, Tuple
from urllib.parse import urlsplit

from .car import DirectoryEntry
from .contracts import DirectoryFiles, DirectoryInput, DirectoryPath, FileInput, FilePath, NamedFile
from .errors import InvalidInput, PathNotFound, UnsupportedRuntime


def endpoint_host(url: str) -> str:
    """Default backend identity: the host[:port] of its endpoint."""
    parts = urlsplit(url if "//" in url else f"//{url}")
    return parts.netloc or url


def validate_url(url: str) -> str:
    if not isinstance(url, str):
        raise InvalidInput("Invalid URL provided")
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        raise InvalidInput("Invalid URL provided")
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise InvalidInput("Invalid URL provided")
    return url.strip()


def url_filename(url: str) -> str:
    name = PurePosixPath(urlsplit(url).path).name
    return name or "download"


def encode_json(value: Any) -> bytes:
    """
    Canonical JSON bytes: UTF-8, sorted keys, no insignificant whitespace.
    Values without a JSON representation (functions, sets, bytes, NaN,
    non-string keys, arbitrary objects) are rejected rather than coerced.
    """
    _check_json(value, "$")
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False).encode("utf-8")


def _check_json(value: Any, where: str) -> None:
    if value is None or isinstance(value, (bool, str)):
        return
    if isinstance(value, int):
        return
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidInput(f"JSON value at {where} is not finite")
        return
    if isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            _check_json(item, f"{where}[{i}]")
        return
    if isinstance(value, dict):
        for k, v in value.items():
            if not isinstance(k, str):
                raise InvalidInput(f"JSON object key at {where} must be a string, got {type(k).__name__}")
            _check_json(v, f"{where}.{k}")
        return
    if callable(value):
        raise InvalidInput(f"JSON value at {where} is a function")
    raise InvalidInput(f"JSON value at {where} has unsupported type {type(value).__name__}")


def require_filesystem(allowed: bool, what: str) -> None:
    if not allowed:
        raise UnsupportedRuntime(f"{what} uploads need filesystem access, which this uploader was built without")


def read_file(input: FileInput, *, filesystem: bool) -> NamedFile:
    """Loads a file input fully into memory."""
    if isinstance(input, NamedFile):
        return input
    path = input.path if isinstance(input, FilePath) else os.fspath(input)
    require_filesystem(filesystem, "File path")
    p = Path(path)
    if not p.is_file():
        raise PathNotFound(f"File not found: {path}")
    return NamedFile(name=p.name, content=p.read_bytes())


def text_file(content: str) -> NamedFile:
    return NamedFile(name=f"text-{int(time.time() * 1000)}.txt", content=content.encode("utf-8"), content_type="text/plain")


def json_file(value: Any) -> NamedFile:
    return NamedFile(name=f"json-{int(time.time() * 1000)}.json", content=encode_json(value), content_type="application/json")


def buffer_file(content: bytes) -> NamedFile:
    return NamedFile(name=f"buffer-{int(time.time() * 1000)}", content=bytes(content))


def directory_name(input: DirectoryInput) -> Optional[str]:
    if isinstance(input, DirectoryPath):
        return Path(input.dir_path).name or None
    return input.dir_name


def _is_hidden(rel: PurePosixPath) -> bool:
    return any(part.startswith(".") for part in rel.parts)


def iter_entries(input: DirectoryInput, *, filesystem: bool) -> Iterator[DirectoryEntry]:
    """
    Yields entries lazily with relative `/`-separated paths.
    Filesystem globs are sorted so repeated uploads enumerate identically.
    """
    if isinstance(input, DirectoryFiles):
        for f in input.files:
            yield DirectoryEntry(path=f.name, open=lambda c=f.content: io.BytesIO(c))
        return

    require_filesystem(filesystem, "Directory path")
    base = Path(input.dir_path)
    if not base.is_dir():
        raise PathNotFound(f"Directory not found: {input.dir_path}")
    for p in sorted(base.glob(input.pattern)):
        if not p.is_file():
            continue
        rel = PurePosixPath(p.relative_to(base).as_posix())
        if not input.hidden and _is_hidden(rel):
            continue
        yield DirectoryEntry(path=str(rel), open=lambda p=p: open(p, "rb"))


def collect_entries(input: DirectoryInput, *, filesystem: bool) -> List[DirectoryEntry]:
    """Materialises entries and fails before any network I/O when there are none."""
    entries = list(iter_entries(input, filesystem=filesystem))
    if not entries:
        if isinstance(input, DirectoryPath):
            raise InvalidInput(f"No files found in directory: {input.dir_path}")
        raise InvalidInput("No files were processed")
    return entries


def multipart_files(entries: List[DirectoryEntry], prefix: str = "") -> List[Tuple[str, Tuple[str, bytes, str]]]:
    """(field, (filename, content, content_type)) tuples for httpx multipart bodies."""
    parts = []
    for entry in entries:
        with entry.open() as stream:
            content = stream.read()
        name = f"{prefix}/{entry.path}" if prefix else entry.path
        parts.append(("file", (name, content, "application/octet-stream")))
    return parts
