from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Set

import httpx

from .contracts import PinCandidate, PinRequest
from .errors import PinRegistrationError

log = logging.getLogger("pinproxy.registrar")

WORKER_AUTH_HEADER = "x-worker-auth"


class PinRegistrar:
    """
    Reports pin candidates to the bookkeeping API.
    `schedule()` is fire-and-forget: failures are logged, never raised to the caller.
    """

    def __init__(
        self,
        api_url: str,
        *,
        worker_token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.api_url = api_url
        self.worker_token = worker_token
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._tasks: Set["asyncio.Task[None]"] = set()

    async def register(self, api_key: str, pins: List[PinCandidate]) -> None:
        body = PinRequest(apiKey=api_key, pins=pins).to_wire()
        headers = {WORKER_AUTH_HEADER: self.worker_token} if self.worker_token else {}
        resp = await self.client.post(self.api_url, json=body, headers=headers)
        if not resp.is_success:
            raise PinRegistrationError(
                f"Pin registration failed: HTTP {resp.status_code} {resp.reason_phrase}".rstrip(),
                status_code=resp.status_code,
            )
        log.info("pinproxy.register ok pins=%s cids=%s", len(pins), [p.cid for p in pins])

    def schedule(self, api_key: str, pins: List[PinCandidate]) -> "asyncio.Task[None]":
        task = asyncio.get_running_loop().create_task(self.register(api_key, pins))
        # Held until done so the task is not garbage collected mid-flight.
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: "asyncio.Task[None]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            log.warning("pinproxy.register cancelled")
            return
        exc = task.exception()
        if exc is not None:
            log.error("pinproxy.register err type=%s error=%s", type(exc).__name__, exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Waits for in-flight registrations (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self.client.aclose()
