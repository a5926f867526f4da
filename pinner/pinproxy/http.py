from __future__ import annotations

import logging
from typing import Callable, Optional

import httpx
from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from .errors import UpstreamAddError
from .extractor import wrap_requested
from .service import AddProxy, relay_headers

logger = logging.getLogger("pinproxy.http")


def _api_key(request: Request) -> Optional[str]:
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return request.headers.get("x-api-key") or None


def get_router(proxy_factory: Callable[[], AddProxy]) -> APIRouter:
    router = APIRouter(tags=["pinproxy"])

    @router.post("/api/v0/add")
    async def add(request: Request, proxy: AddProxy = Depends(proxy_factory)):
        try:
            resp = await proxy.open(
                query=request.query_params.multi_items(),
                headers=request.headers,
                body=request.stream(),
            )
        except (UpstreamAddError, httpx.HTTPError) as e:
            logger.error("pinproxy.add err type=%s error=%s", type(e).__name__, e)
            return JSONResponse(status_code=500, content={"error": "Failed to add content to IPFS"})

        cleanup = BackgroundTasks()
        cleanup.add_task(resp.aclose)
        return StreamingResponse(
            proxy.relay(resp, api_key=_api_key(request), wrap_with_directory=wrap_requested(request.query_params)),
            status_code=resp.status_code,
            headers=relay_headers(resp.headers),
            background=cleanup,
        )

    return router
