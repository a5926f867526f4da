from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import quote

import httpx

from ..car import DirectoryEntry, build_tree
from ..contracts import DirectoryInput, FileEntry, FileInput, NamedFile, UploadResult
from ..errors import BackendTransportError, CidNotFound
from ..sources import collect_entries, encode_json, endpoint_host, read_file
from .base import check_response, download, upload_operation

log = logging.getLogger("uploader.node_rpc")

DIRECTORY_CONTENT_TYPE = "application/x-directory"

Part = Tuple[str, Tuple[str, bytes, str]]


def _directory_parts(entries: List[DirectoryEntry]) -> List[Part]:
    """
    One multipart part per directory (parents first) followed by one per file.
    The whole relative-path tree is built first, so shared parents are declared once.
    """
    tree = build_tree(entries)
    parts: List[Part] = []
    files: List[Part] = []

    def walk(node: Dict[str, Any], prefix: str) -> None:
        for name in sorted(node):
            child = node[name]
            path = f"{prefix}/{name}" if prefix else name
            if isinstance(child, dict):
                parts.append(("file", (quote(path, safe=""), b"", DIRECTORY_CONTENT_TYPE)))
                walk(child, path)
            else:
                with child.open() as stream:
                    files.append(("file", (quote(path, safe=""), stream.read(), "application/octet-stream")))

    walk(tree, "")
    return parts + files


def parse_add_response(body: str) -> List[Dict[str, Any]]:
    """Entries of an NDJSON add response that carry a Hash (progress lines do not)."""
    entries = []
    for line in body.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except ValueError:
            raise CidNotFound(f"malformed add response line: {line[:80]!r}")
        if isinstance(obj, dict) and obj.get("Hash"):
            entries.append(obj)
    return entries


class NodeUploader:
    """
    Adds content through a node's RPC `/api/v0/add` endpoint.
    Always requests CIDv1; directories go up as a single wrapped batch.
    """

    def __init__(
        self,
        url: str,
        *,
        id: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        auth: Optional[Tuple[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
        filesystem: bool = True,
        pin: bool = True,
        timeout: Optional[float] = None,
    ) -> None:
        self.api_url = url.rstrip("/")
        self._id = id
        self.filesystem = filesystem
        self.pin = pin
        # One client handle, shared by concurrent independent requests.
        self.client = client or httpx.AsyncClient(headers=dict(headers or {}), auth=auth, timeout=timeout)

    @property
    def id(self) -> str:
        return self._id or endpoint_host(self.api_url)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _add(self, parts: List[Part], *, wrap: bool) -> List[Dict[str, Any]]:
        params = {
            "cid-version": "1",
            "wrap-with-directory": "true" if wrap else "false",
            "pin": "true" if self.pin else "false",
            "progress": "false",
        }
        resp = await self.client.post(f"{self.api_url}/api/v0/add", params=params, files=parts)
        check_response(resp, f"Failed to add to node {self.id}")
        stream_error = resp.headers.get("X-Stream-Error")
        if stream_error:
            raise BackendTransportError(f"Node {self.id} aborted the add: {stream_error}", status_code=resp.status_code)
        return parse_add_response(resp.text)

    async def _add_one(self, f: NamedFile) -> UploadResult:
        entries = await self._add([("file", (quote(f.name, safe=""), f.content, f.content_type))], wrap=False)
        if not entries:
            raise CidNotFound(f"Node {self.id} returned no CID")
        return UploadResult.ok(entries[-1]["Hash"])

    @upload_operation("file")
    async def file(self, input: FileInput) -> UploadResult:
        return await self._add_one(read_file(input, filesystem=self.filesystem))

    @upload_operation("text")
    async def text(self, content: str) -> UploadResult:
        return await self._add_one(NamedFile(name="text.txt", content=content.encode("utf-8"), content_type="text/plain"))

    @upload_operation("json")
    async def json(self, value: Any) -> UploadResult:
        return await self._add_one(NamedFile(name="data.json", content=encode_json(value), content_type="application/json"))

    @upload_operation("buffer")
    async def buffer(self, content: bytes) -> UploadResult:
        return await self._add_one(NamedFile(name="buffer", content=bytes(content)))

    @upload_operation("url")
    async def url(self, url: str) -> UploadResult:
        return await self._add_one(await download(self.client, url))

    @upload_operation("directory")
    async def directory(self, input: DirectoryInput) -> UploadResult:
        entries = collect_entries(input, filesystem=self.filesystem)
        returned = await self._add(_directory_parts(entries), wrap=True)
        if not returned:
            raise CidNotFound(f"No files processed: node {self.id} returned no entries")

        # The synthetic wrapping directory is the unnamed entry, emitted last.
        root = next((e for e in reversed(returned) if not e.get("Name")), returned[-1])
        files = [FileEntry(name=e["Name"], cid=e["Hash"]) for e in returned if e.get("Name")]
        log.debug("node.directory backend=%s entries=%s root=%s", self.id, len(returned), root["Hash"])
        return UploadResult.ok(root["Hash"], files=files)
