from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List

from opentelemetry import trace

from .contracts import (
    AggregateUploadResult,
    BytesInput,
    DirectoryFiles,
    DirectoryInput,
    DirectoryPath,
    ErrorKind,
    FileInput,
    FilePath,
    JsonInput,
    NamedFile,
    TextInput,
    UploadInput,
    UploadResult,
    UrlInput,
)
from .errors import AggregateCancelled, DuplicateUploaderId, MisuseError, NoUploadersConfigured
from .ports import UploaderPort

log = logging.getLogger("uploader")
tracer = trace.get_tracer("pinner.uploader")


@contextmanager
def _span(name: str, **attrs):
    with tracer.start_as_current_span(name) as span:
        for k, v in attrs.items():
            if v is not None:
                span.set_attribute(f"upload.{k}", v)
        yield span


async def _invoke(uploader: UploaderPort, op: str, args: tuple) -> UploadResult:
    # Called inside the task so a synchronous raise stays with its backend.
    return await getattr(uploader, op)(*args)


def _collect(tasks: Dict[str, "asyncio.Task[UploadResult]"], *, raise_misuse: bool) -> Dict[str, UploadResult]:
    results: Dict[str, UploadResult] = {}
    misuse = None
    for uid, task in tasks.items():
        if task.cancelled():
            results[uid] = UploadResult.failed(f"{uid}: upload cancelled", ErrorKind.CANCELLED)
            continue
        exc = task.exception()
        if exc is None:
            results[uid] = task.result()
        elif isinstance(exc, MisuseError):
            misuse = misuse or exc
            results[uid] = UploadResult.failed(str(exc), ErrorKind.INTERNAL)
        else:
            # Adapters return failures; an escaped exception is still only this backend's problem.
            log.error("upload backend=%s raised %s: %s", uid, type(exc).__name__, exc)
            results[uid] = UploadResult.failed(str(exc) or type(exc).__name__, ErrorKind.INTERNAL)
    if misuse is not None and raise_misuse:
        raise misuse
    return results


class MultiUploader:
    """
    Fans each operation out to every registered uploader concurrently and
    reduces the outcomes into one AggregateUploadResult.

    One backend failing never cancels or delays the others, and nothing is
    retried here. The per-backend map follows registration order.
    """

    def __init__(self, uploaders: Iterable[UploaderPort]):
        self.uploaders: List[UploaderPort] = list(uploaders)
        if not self.uploaders:
            raise NoUploadersConfigured("MultiUploader needs at least one uploader")
        seen = set()
        for u in self.uploaders:
            if u.id in seen:
                raise DuplicateUploaderId(f"Duplicate uploader id: {u.id}")
            seen.add(u.id)

    @property
    def id(self) -> str:
        return "multi(" + ",".join(u.id for u in self.uploaders) + ")"

    async def aclose(self) -> None:
        for u in self.uploaders:
            close = getattr(u, "aclose", None)
            if close is not None:
                await close()

    async def _fan_out(self, op: str, *args: Any) -> AggregateUploadResult:
        t0 = time.perf_counter()
        with _span(f"upload.{op}", op=op, backends=len(self.uploaders)) as span:
            tasks: Dict[str, "asyncio.Task[UploadResult]"] = {}
            for u in self.uploaders:
                tasks[u.id] = asyncio.create_task(_invoke(u, op, args), name=f"upload.{op}:{u.id}")
            try:
                await asyncio.wait(tasks.values())
            except asyncio.CancelledError:
                for task in tasks.values():
                    task.cancel()
                await asyncio.gather(*tasks.values(), return_exceptions=True)
                partial = AggregateUploadResult.reduce(_collect(tasks, raise_misuse=False))
                log.warning(
                    "upload.%s cancelled backends=%s completed=%s",
                    op, partial.total_nodes, partial.success_count,
                )
                raise AggregateCancelled(partial)

            result = AggregateUploadResult.reduce(_collect(tasks, raise_misuse=True))
            dur_ms = int((time.perf_counter() - t0) * 1000)
            span.set_attribute("upload.success_count", result.success_count)
            span.set_attribute("upload.error_count", result.error_count)
            if result.success:
                log.info(
                    "upload.%s aggregate ok=%s/%s cid=%s dur_ms=%s",
                    op, result.success_count, result.total_nodes, result.cid, dur_ms,
                )
            else:
                log.warning("upload.%s aggregate failed backends=%s error=%s dur_ms=%s", op, result.total_nodes, result.error, dur_ms)
            return result

    async def file(self, input: FileInput) -> AggregateUploadResult:
        return await self._fan_out("file", input)

    async def text(self, content: str) -> AggregateUploadResult:
        return await self._fan_out("text", content)

    async def json(self, value: Any) -> AggregateUploadResult:
        return await self._fan_out("json", value)

    async def directory(self, input: DirectoryInput) -> AggregateUploadResult:
        return await self._fan_out("directory", input)

    async def url(self, url: str) -> AggregateUploadResult:
        return await self._fan_out("url", url)

    async def buffer(self, content: bytes) -> AggregateUploadResult:
        return await self._fan_out("buffer", content)


async def upload(uploader: UploaderPort, item: UploadInput) -> UploadResult:
    """Routes a tagged input to the matching operation."""
    if isinstance(item, (NamedFile, FilePath)):
        return await uploader.file(item)
    if isinstance(item, BytesInput):
        return await uploader.buffer(item.content)
    if isinstance(item, TextInput):
        return await uploader.text(item.content)
    if isinstance(item, JsonInput):
        return await uploader.json(item.value)
    if isinstance(item, UrlInput):
        return await uploader.url(item.url)
    if isinstance(item, (DirectoryFiles, DirectoryPath)):
        return await uploader.directory(item)
    raise TypeError(f"Unsupported upload input: {type(item).__name__}")
