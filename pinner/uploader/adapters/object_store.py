from __future__ import annotations

import asyncio
import io
import logging
import tempfile
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

import boto3
import httpx
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..car import CAR_MEDIA_TYPE, CHUNK_SIZE, CID, ArchiveEncoder
from ..contracts import DirectoryInput, FileInput, NamedFile, UploadResult
from ..errors import BackendTransportError, BackendUnsupported, CidNotFound
from ..sources import (
    buffer_file,
    collect_entries,
    directory_name,
    endpoint_host,
    json_file,
    read_file,
    text_file,
)
from .base import download, upload_operation

log = logging.getLogger("uploader.object_store")

# Where vendors report the CID, in lookup order: user metadata (prefix stripped by boto3)...
CID_METADATA_KEYS = ("cid", "ipfs-hash")
# ...then raw response headers.
CID_HEADER_KEYS = ("x-amz-meta-cid", "x-amz-meta-ipfs-hash", "cid")

# Archives above this size spill from memory to a temporary file.
SPOOL_MAX_BYTES = 64 * 1024 * 1024


@dataclass(frozen=True)
class VendorProfile:
    name: str
    supports_car_import: bool
    cid_metadata_key: str = "cid"
    import_metadata: Dict[str, str] = field(default_factory=dict)


VENDOR_PROFILES: Dict[str, VendorProfile] = {
    "filebase": VendorProfile("filebase", True, "cid", {"import": "car"}),
    "4everland": VendorProfile("4everland", False, "ipfs-hash"),
    "generic": VendorProfile("generic", True, "cid", {"import": "car"}),
}


def cid_from_head(resp: Mapping[str, Any]) -> Optional[str]:
    metadata = {k.lower(): v for k, v in (resp.get("Metadata") or {}).items()}
    for key in CID_METADATA_KEYS:
        if metadata.get(key):
            return metadata[key]
    headers = {k.lower(): v for k, v in (resp.get("ResponseMetadata", {}).get("HTTPHeaders") or {}).items()}
    for key in CID_HEADER_KEYS:
        if headers.get(key):
            return headers[key]
    return None


class S3Uploader:
    """
    Object-store adapter. The store has no notion of content addressing, so the
    CID is computed locally by encoding the upload into a CAR archive, stamped on
    the object as metadata and read back after the write.
    """

    def __init__(
        self,
        endpoint_url: str,
        bucket: str,
        *,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        region: Optional[str] = None,
        vendor: str = "filebase",
        id: Optional[str] = None,
        force_path_style: bool = False,
        client: Any = None,
        http: Optional[httpx.AsyncClient] = None,
        filesystem: bool = True,
        chunk_size: int = CHUNK_SIZE,
        timeout: Optional[float] = None,
    ) -> None:
        if vendor not in VENDOR_PROFILES:
            raise ValueError(f"Unknown object store vendor: {vendor} (known: {', '.join(VENDOR_PROFILES)})")
        self.endpoint_url = endpoint_url
        self.bucket = bucket
        self.profile = VENDOR_PROFILES[vendor]
        self._id = id
        self.filesystem = filesystem
        self.chunk_size = chunk_size
        self.s3 = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=region or "us-east-1",
            config=BotoConfig(
                signature_version="s3v4",
                s3={"addressing_style": "path" if force_path_style else "auto"},
            ),
        )
        self.http = http or httpx.AsyncClient(timeout=timeout)

    @property
    def id(self) -> str:
        return self._id or endpoint_host(self.endpoint_url)

    async def aclose(self) -> None:
        await self.http.aclose()

    # ---- store calls ----

    async def _call(self, method: str, **kwargs) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(getattr(self.s3, method), **kwargs)
        except ClientError as e:
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            code = e.response.get("Error", {}).get("Code", "")
            raise BackendTransportError(f"{self.id} {method} failed: {code or status} {e}".strip(), status_code=status)
        except BotoCoreError as e:
            raise BackendTransportError(f"{self.id} {method} failed: {e}")

    async def _verify(self, key: str, computed: CID) -> UploadResult:
        head = await self._call("head_object", Bucket=self.bucket, Key=key)
        cid = cid_from_head(head)
        if not cid:
            raise CidNotFound(f"CID not found in metadata of {self.bucket}/{key}")
        if cid != str(computed):
            log.warning("object_store.verify mismatch backend=%s key=%s computed=%s stored=%s", self.id, key, computed, cid)
        return UploadResult.ok(cid)

    async def _encode(self, out, run: Callable[[ArchiveEncoder], CID]) -> CID:
        encoder = ArchiveEncoder(out, chunk_size=self.chunk_size)
        await asyncio.to_thread(run, encoder)
        return await asyncio.wrap_future(encoder.root)

    async def _store_archive(self, key: Optional[str], run: Callable[[ArchiveEncoder], CID]) -> UploadResult:
        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_BYTES) as spool:
            root = await self._encode(spool, run)
            size = spool.tell()
            spool.seek(0)
            obj_key = key or str(root)
            await self._call(
                "put_object",
                Bucket=self.bucket,
                Key=obj_key,
                Body=spool,
                ContentType=CAR_MEDIA_TYPE,
                Metadata={**self.profile.import_metadata, self.profile.cid_metadata_key: str(root)},
            )
        log.info("object_store.put car backend=%s key=%s root=%s bytes=%s", self.id, obj_key, root, size)
        return await self._verify(obj_key, root)

    async def _store_file(self, f: NamedFile, key: Optional[str] = None) -> UploadResult:
        if self.profile.supports_car_import:
            return await self._store_archive(key, lambda enc: enc.encode_file(io.BytesIO(f.content)))

        root = await self._encode(None, lambda enc: enc.encode_file(io.BytesIO(f.content)))
        obj_key = key or str(root)
        await self._call(
            "put_object",
            Bucket=self.bucket,
            Key=obj_key,
            Body=f.content,
            ContentType=f.content_type,
            Metadata={self.profile.cid_metadata_key: str(root)},
        )
        return await self._verify(obj_key, root)

    # ---- operations ----

    @upload_operation("file")
    async def file(self, input: FileInput) -> UploadResult:
        f = read_file(input, filesystem=self.filesystem)
        return await self._store_file(f, key=f.name)

    @upload_operation("text")
    async def text(self, content: str) -> UploadResult:
        return await self._store_file(text_file(content))

    @upload_operation("json")
    async def json(self, value: Any) -> UploadResult:
        return await self._store_file(json_file(value))

    @upload_operation("buffer")
    async def buffer(self, content: bytes) -> UploadResult:
        return await self._store_file(buffer_file(content))

    @upload_operation("url")
    async def url(self, url: str) -> UploadResult:
        return await self._store_file(await download(self.http, url))

    @upload_operation("directory")
    async def directory(self, input: DirectoryInput) -> UploadResult:
        entries = collect_entries(input, filesystem=self.filesystem)
        if not self.profile.supports_car_import:
            raise BackendUnsupported(
                f"{self.profile.name} does not accept CAR imports; directory uploads are not supported on {self.id}"
            )
        return await self._store_archive(directory_name(input), lambda enc: enc.encode_directory(entries))
