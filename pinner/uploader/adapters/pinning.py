from __future__ import annotations

import json
from typing import Any, List, Optional, Tuple

import httpx

from ..car import build_tree
from ..contracts import DirectoryInput, FileInput, NamedFile, UploadResult
from ..errors import CidNotFound
from ..sources import (
    buffer_file,
    collect_entries,
    directory_name,
    endpoint_host,
    json_file,
    multipart_files,
    read_file,
    text_file,
)
from .base import check_response, download, upload_operation

DEFAULT_API_URL = "https://api.pinata.cloud"
DEFAULT_GATEWAY = "https://gateway.pinata.cloud"
PIN_FILE_PATH = "/pinning/pinFileToIPFS"


class PinataUploader:
    """
    Pinning-service adapter. The service only pins multipart file uploads, so
    text, JSON, buffers and URLs are turned into files first, and a directory is
    one request whose parts all sit under a synthetic folder name.
    """

    def __init__(
        self,
        jwt: str,
        *,
        gateway: Optional[str] = None,
        api_url: str = DEFAULT_API_URL,
        id: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        filesystem: bool = True,
        timeout: Optional[float] = None,
    ) -> None:
        self.jwt = jwt
        self.gateway = gateway or DEFAULT_GATEWAY
        self.api_url = api_url.rstrip("/")
        self._id = id
        self.filesystem = filesystem
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def id(self) -> str:
        return self._id or endpoint_host(self.gateway)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _pin(self, parts: List[Tuple[str, Tuple[str, bytes, str]]], name: str) -> UploadResult:
        data = {
            "pinataOptions": json.dumps({"cidVersion": 1}),
            "pinataMetadata": json.dumps({"name": name}),
        }
        resp = await self.client.post(
            self.api_url + PIN_FILE_PATH,
            headers={"Authorization": f"Bearer {self.jwt}"},
            data=data,
            files=parts,
        )
        check_response(resp, "Failed to upload to pinning service")
        cid = resp.json().get("IpfsHash")
        if not cid:
            raise CidNotFound("Pinning service response has no IpfsHash")
        return UploadResult.ok(cid)

    async def _pin_file(self, f: NamedFile) -> UploadResult:
        return await self._pin([("file", (f.name, f.content, f.content_type))], f.name)

    @upload_operation("file")
    async def file(self, input: FileInput) -> UploadResult:
        return await self._pin_file(read_file(input, filesystem=self.filesystem))

    @upload_operation("text")
    async def text(self, content: str) -> UploadResult:
        return await self._pin_file(text_file(content))

    @upload_operation("json")
    async def json(self, value: Any) -> UploadResult:
        # Pinned as a file so the stored bytes are the canonical encoding.
        return await self._pin_file(json_file(value))

    @upload_operation("buffer")
    async def buffer(self, content: bytes) -> UploadResult:
        return await self._pin_file(buffer_file(content))

    @upload_operation("url")
    async def url(self, url: str) -> UploadResult:
        return await self._pin_file(await download(self.client, url))

    @upload_operation("directory")
    async def directory(self, input: DirectoryInput) -> UploadResult:
        entries = collect_entries(input, filesystem=self.filesystem)
        build_tree(entries)  # rejects conflicting or duplicate paths before the request
        dir_name = directory_name(input) or "directory"
        return await self._pin(multipart_files(entries, prefix=dir_name), dir_name)
