from __future__ import annotations

import logging
from typing import AsyncIterable, AsyncIterator, Dict, Iterable, List, Mapping, Optional, Tuple

import httpx

from .contracts import PinCandidate
from .errors import UpstreamAddError
from .extractor import pin_stream
from .registrar import PinRegistrar

log = logging.getLogger("pinproxy")

# Never forwarded to the node: hop-by-hop, or replaced by our own credentials.
REQUEST_HEADERS_DROPPED = frozenset({"host", "transfer-encoding", "content-length", "authorization", "x-api-key"})
# The body is re-chunked and decoded on the way back.
RESPONSE_HEADERS_DROPPED = frozenset({"content-length", "content-encoding", "transfer-encoding", "connection"})


def relay_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    return {k: v for k, v in headers.items() if k.lower() not in RESPONSE_HEADERS_DROPPED}


class AddProxy:
    """
    Forwards add requests to a node and relays the NDJSON response back while
    the extractor picks out the root CIDs to register as pins.
    """

    def __init__(
        self,
        node_url: str,
        *,
        registrar: Optional[PinRegistrar] = None,
        auth: Optional[Tuple[str, str]] = None,
        default_api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.node_url = node_url.rstrip("/")
        self.registrar = registrar
        self.default_api_key = default_api_key
        self.client = client or httpx.AsyncClient(auth=auth, timeout=timeout)

    async def aclose(self) -> None:
        if self.registrar is not None:
            await self.registrar.aclose()
        await self.client.aclose()

    async def open(
        self,
        *,
        query: Iterable[Tuple[str, str]],
        headers: Mapping[str, str],
        body: AsyncIterable[bytes],
    ) -> httpx.Response:
        """Starts the upstream add; the returned response is still streaming and must be closed."""
        forwarded = {k: v for k, v in headers.items() if k.lower() not in REQUEST_HEADERS_DROPPED}
        req = self.client.build_request(
            "POST", f"{self.node_url}/api/v0/add", params=list(query), headers=forwarded, content=body
        )
        resp = await self.client.send(req, stream=True)
        if resp.status_code != 200:
            detail = (await resp.aread()).decode("utf-8", "replace")[:200]
            await resp.aclose()
            raise UpstreamAddError(f"Node add failed: {resp.status_code} - {detail}", status_code=resp.status_code)
        return resp

    def relay(self, resp: httpx.Response, *, api_key: Optional[str], wrap_with_directory: bool) -> AsyncIterator[bytes]:
        key = api_key or self.default_api_key

        def on_pins(pins: List[PinCandidate]) -> None:
            if self.registrar is None or not key:
                log.info("pinproxy.relay unregistered roots=%s", [p.cid for p in pins])
                return
            self.registrar.schedule(key, pins)

        return pin_stream(resp.aiter_bytes(), wrap_with_directory=wrap_with_directory, on_pins=on_pins)
