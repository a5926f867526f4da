from pathlib import Path
import asyncio
import sys

import httpx
import pytest

# Ensure project root is on sys.path before tests import modules
ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pinner.uploader.contracts import ErrorKind, UploadResult  # noqa: E402


class Recorder:
    """httpx.MockTransport handler that records requests and replies via `respond`."""

    def __init__(self, respond=None):
        self.requests = []
        self.respond = respond or (lambda request: httpx.Response(200, json={}))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    def client(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self), **kwargs)


class FakeUploader:
    """In-memory UploaderPort: succeeds with `cid`, fails with `error`, or raises `exc`."""

    def __init__(self, id, cid=None, error=None, delay=0.0, exc=None):
        self.id = id
        self.cid = cid
        self.error = error
        self.delay = delay
        self.exc = exc
        self.calls = []
        self.finished = []

    async def _run(self, op, arg):
        self.calls.append((op, arg))
        await asyncio.sleep(self.delay)
        self.finished.append(op)
        if self.exc is not None:
            raise self.exc
        if self.error is not None:
            return UploadResult.failed(self.error, ErrorKind.TRANSPORT)
        return UploadResult.ok(self.cid)

    async def file(self, input):
        return await self._run("file", input)

    async def text(self, content):
        return await self._run("text", content)

    async def json(self, value):
        return await self._run("json", value)

    async def directory(self, input):
        return await self._run("directory", input)

    async def url(self, url):
        return await self._run("url", url)

    async def buffer(self, content):
        return await self._run("buffer", content)


@pytest.fixture
def recorder():
    return Recorder


@pytest.fixture
def fake_uploader():
    return FakeUploader
