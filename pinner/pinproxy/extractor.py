"""
Streaming Pin Extractor.

Watches a node's NDJSON add response as it flows back to the caller and works
out which CIDs should be pinned once the response is complete. Bytes are never
held back: every chunk is passed on before it is parsed.
"""
from __future__ import annotations

import codecs
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Callable, List, Mapping, Sequence

from pydantic import ValidationError

from .contracts import AddEntry, PinCandidate

log = logging.getLogger("pinproxy.extractor")

_TRUE = ("1", "t", "true", "yes")


class PinExtractor:
    """Incremental NDJSON parser; one instance per response stream."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.entries: List[AddEntry] = []
        self.skipped = 0

    def feed(self, chunk: bytes) -> None:
        self._buffer += self._decoder.decode(chunk)
        if "\n" not in self._buffer:
            return
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            self._parse(line)

    def close(self) -> List[AddEntry]:
        rest = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        self._parse(rest)
        return self.entries

    def _parse(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        try:
            obj = json.loads(line)
        except ValueError:
            self.skipped += 1
            log.warning("pinproxy.parse skipped malformed line=%r", line[:120])
            return
        if not isinstance(obj, dict) or not obj.get("Hash"):
            return
        try:
            self.entries.append(AddEntry.model_validate(obj))
        except ValidationError as e:
            self.skipped += 1
            log.warning("pinproxy.parse skipped invalid entry=%r error=%s", line[:120], e.errors()[0].get("msg"))


def select_roots(entries: Sequence[AddEntry], wrap_with_directory: bool) -> List[AddEntry]:
    if len(entries) == 1:
        return list(entries)
    if wrap_with_directory and entries:
        # The node emits the synthetic wrapping directory last.
        return [entries[-1]]
    return [e for e in entries if not e.name or "/" not in e.name]


def wrap_requested(query: Mapping[str, Any]) -> bool:
    value = query.get("wrap-with-directory")
    return value is not None and str(value).strip().lower() in _TRUE


async def pin_stream(
    source: AsyncIterable[bytes],
    *,
    wrap_with_directory: bool,
    on_pins: Callable[[List[PinCandidate]], Any],
) -> AsyncIterator[bytes]:
    """
    Re-yields `source` unchanged. After the last chunk the root entries are
    handed to `on_pins`, which is expected to schedule work and return quickly.
    """
    extractor = PinExtractor()
    async for chunk in source:
        yield chunk
        extractor.feed(chunk)

    entries = extractor.close()
    roots = select_roots(entries, wrap_with_directory)
    log.info(
        "pinproxy.stream done entries=%s roots=%s skipped=%s wrap=%s",
        len(entries), len(roots), extractor.skipped, wrap_with_directory,
    )
    if not roots:
        return
    try:
        on_pins([PinCandidate.from_entry(e) for e in roots])
    except Exception:
        # The response is already delivered; pin bookkeeping must not fail it.
        log.exception("pinproxy.stream pin scheduling failed roots=%s", [e.hash for e in roots])
