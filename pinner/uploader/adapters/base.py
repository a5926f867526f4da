from __future__ import annotations

import functools
import logging
import time
from typing import Awaitable, Callable, TypeVar

import httpx

from ..contracts import ErrorKind, NamedFile, UploadResult
from ..errors import BackendTransportError, MisuseError, UploadError
from ..sources import url_filename, validate_url

log = logging.getLogger("uploader.adapters")

F = TypeVar("F", bound=Callable[..., Awaitable[UploadResult]])


def upload_operation(name: str) -> Callable[[F], F]:
    """
    Wraps an adapter operation so ordinary failures become UploadResult(success=False).
    MisuseError subclasses and cancellation still propagate.
    """

    def deco(fn):
        @functools.wraps(fn)
        async def wrapper(self, *args, **kwargs) -> UploadResult:
            t0 = time.perf_counter()
            try:
                result = await fn(self, *args, **kwargs)
            except MisuseError:
                raise
            except UploadError as e:
                result = UploadResult.failed(str(e), ErrorKind(e.kind))
            except httpx.HTTPError as e:
                result = UploadResult.failed(f"{self.id} request failed: {type(e).__name__}: {e}", ErrorKind.TRANSPORT)
            except Exception as e:
                log.exception("upload.%s crashed backend=%s", name, self.id)
                result = UploadResult.failed(str(e) or type(e).__name__, ErrorKind.INTERNAL)

            dur_ms = int((time.perf_counter() - t0) * 1000)
            if result.success:
                log.info("upload.%s ok backend=%s cid=%s dur_ms=%s", name, self.id, result.cid, dur_ms)
            else:
                log.warning(
                    "upload.%s err backend=%s kind=%s error=%s dur_ms=%s",
                    name, self.id, result.error_kind.value if result.error_kind else None, result.error, dur_ms,
                )
            return result

        return wrapper  # type: ignore[return-value]

    return deco


def check_response(resp: httpx.Response, what: str) -> None:
    if resp.is_success:
        return
    raise BackendTransportError(
        f"{what}: HTTP {resp.status_code} {resp.reason_phrase}".rstrip(),
        status_code=resp.status_code,
    )


async def download(client: httpx.AsyncClient, url: str) -> NamedFile:
    """Fetches `url` into memory. The URL is validated before any request is made."""
    url = validate_url(url)
    resp = await client.get(url, follow_redirects=True)
    check_response(resp, "Failed to download from URL")
    return NamedFile(
        name=f"url-{int(time.time() * 1000)}-{url_filename(url)}",
        content=resp.content,
        content_type=resp.headers.get("content-type", "application/octet-stream"),
    )
