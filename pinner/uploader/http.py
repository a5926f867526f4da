from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .contracts import DirectoryFiles, NamedFile, UploadResult
from .errors import MisuseError
from .ports import UploaderPort

logger = logging.getLogger("uploader.http")


class TextBody(BaseModel):
    content: str


class JsonBody(BaseModel):
    data: Any = Field(...)


class UrlBody(BaseModel):
    url: str


def _respond(result: UploadResult) -> JSONResponse:
    # All backends failing is an upstream problem, not a client error.
    return JSONResponse(status_code=200 if result.success else 502, content=result.to_wire())


async def _named(upload: UploadFile) -> NamedFile:
    if not upload.filename:
        raise HTTPException(status_code=400, detail="Uploaded file has no filename")
    return NamedFile(
        name=upload.filename,
        content=await upload.read(),
        content_type=upload.content_type or "application/octet-stream",
    )


def get_router(uploader_factory: Callable[[], UploaderPort]) -> APIRouter:
    """
    Upload routes over any UploaderPort (one backend or a MultiUploader).
    `uploader_factory` is used as a FastAPI dependency, so tests can override it.
    """
    router = APIRouter(prefix="/upload", tags=["upload"])

    async def run(op, *args) -> JSONResponse:
        try:
            result = await op(*args)
        except MisuseError as e:
            logger.error("upload route misuse: %s", e)
            raise HTTPException(status_code=500, detail=str(e))
        return _respond(result)

    @router.post("/text")
    async def upload_text(body: TextBody, uploader: UploaderPort = Depends(uploader_factory)):
        return await run(uploader.text, body.content)

    @router.post("/json")
    async def upload_json(body: JsonBody, uploader: UploaderPort = Depends(uploader_factory)):
        return await run(uploader.json, body.data)

    @router.post("/url")
    async def upload_url(body: UrlBody, uploader: UploaderPort = Depends(uploader_factory)):
        return await run(uploader.url, body.url)

    @router.post("/file")
    async def upload_file(file: UploadFile = File(...), uploader: UploaderPort = Depends(uploader_factory)):
        return await run(uploader.file, await _named(file))

    @router.post("/files")
    async def upload_files(
        files: List[UploadFile] = File(...),
        dir_name: Optional[str] = Form(default=None),
        uploader: UploaderPort = Depends(uploader_factory),
    ):
        named = [await _named(f) for f in files]
        logger.info("upload.files count=%s dir_name=%s", len(named), dir_name)
        return await run(uploader.directory, DirectoryFiles(files=named, dir_name=dir_name))

    return router
