import json
import logging

import pytest

from pinner.pinproxy.contracts import AddEntry, PinCandidate
from pinner.pinproxy.extractor import PinExtractor, pin_stream, select_roots, wrap_requested

RESPONSE = (
    json.dumps({"Name": "café/ünïcode.txt", "Hash": "bafyNested", "Size": "18"}, ensure_ascii=False)
    + "\n"
    + '{"Name": "日本語.txt", "Bytes": 1024}\n'
    + "this line is not json\n"
    + json.dumps({"Name": "日本語.txt", "Hash": "bafyTop", "Size": "1035"}, ensure_ascii=False)
    + "\n"
    + json.dumps({"Name": "café", "Hash": "bafyDir", "Size": "80"}, ensure_ascii=False)
    + "\n"
    + json.dumps({"Name": "", "Hash": "bafyWrap", "Size": "1200"})
).encode("utf-8")  # no trailing newline: the last line only arrives on close


def hashes(entries):
    return [e.hash for e in entries]


def run(chunks, wrap=False):
    ex = PinExtractor()
    for chunk in chunks:
        ex.feed(chunk)
    return hashes(select_roots(ex.close(), wrap))


def e(hash, name=None):
    return AddEntry.model_validate({"Hash": hash, **({"Name": name} if name is not None else {})})


def test_whole_response_parses_entries_with_hash_only():
    ex = PinExtractor()
    ex.feed(RESPONSE)
    entries = ex.close()
    assert hashes(entries) == ["bafyNested", "bafyTop", "bafyDir", "bafyWrap"]
    assert entries[0].name == "café/ünïcode.txt"
    assert ex.skipped == 1


@pytest.mark.parametrize("wrap", [False, True])
def test_any_two_way_split_matches_single_chunk(wrap):
    expected = run([RESPONSE], wrap)
    for i in range(1, len(RESPONSE)):
        assert run([RESPONSE[:i], RESPONSE[i:]], wrap) == expected, f"split at byte {i}"


def test_byte_at_a_time_matches_single_chunk():
    assert run([RESPONSE[i : i + 1] for i in range(len(RESPONSE))]) == run([RESPONSE])


def test_root_selection_policy():
    assert hashes(select_roots([e("A")], False)) == ["A"]
    assert hashes(select_roots([e("A")], True)) == ["A"]
    assert hashes(select_roots([e("A", "a.txt"), e("B", "")], True)) == ["B"]
    assert hashes(select_roots([e("A", "a.txt"), e("B", "dir/b.txt")], False)) == ["A"]
    assert hashes(select_roots([e("A"), e("B", "x/y"), e("C", "z")], False)) == ["A", "C"]
    assert select_roots([], True) == []


def test_malformed_lines_are_logged_not_raised(caplog):
    caplog.set_level(logging.WARNING, logger="pinproxy.extractor")
    ex = PinExtractor()
    ex.feed(b'{"Hash": \n[1, 2]\n{"Hash": 7}\n{"Hash": "bafyOK"}\n')
    assert hashes(ex.close()) == ["bafyOK"]
    assert ex.skipped == 2
    assert "malformed" in caplog.text


def test_wrap_requested_reads_query_flag():
    assert wrap_requested({"wrap-with-directory": "true"})
    assert wrap_requested({"wrap-with-directory": "1"})
    assert not wrap_requested({"wrap-with-directory": "false"})
    assert not wrap_requested({})


def test_pin_candidate_from_entry():
    candidate = PinCandidate.from_entry(AddEntry.model_validate({"Hash": "bafy", "Name": "", "Size": "42"}))
    assert candidate == PinCandidate(cid="bafy", size=42, name=None)
    assert PinCandidate.from_entry(e("bafy", "n")).size == 0


async def _source(chunks, events):
    for chunk in chunks:
        events.append(("read", chunk))
        yield chunk


@pytest.mark.asyncio
async def test_pin_stream_passes_chunks_through_then_reports_roots():
    events = []
    chunks = [RESPONSE[:7], RESPONSE[7:50], RESPONSE[50:]]

    out = []
    async for chunk in pin_stream(_source(chunks, events), wrap_with_directory=True, on_pins=lambda pins: events.append(("pins", pins))):
        out.append(chunk)
        events.append(("sent", chunk))

    assert out == chunks
    # Each chunk reaches the consumer before the next one is read.
    assert [k for k, _ in events] == ["read", "sent", "read", "sent", "read", "sent", "pins"]
    assert events[-1][1] == [PinCandidate(cid="bafyWrap", size=1200)]


@pytest.mark.asyncio
async def test_pin_stream_survives_failing_callback(caplog):
    def explode(pins):
        raise RuntimeError("scheduler down")

    out = [c async for c in pin_stream(_source([b'{"Hash": "bafyA"}\n'], []), wrap_with_directory=False, on_pins=explode)]
    assert out == [b'{"Hash": "bafyA"}\n']
    assert "pin scheduling failed" in caplog.text


@pytest.mark.asyncio
async def test_pin_stream_without_entries_reports_nothing():
    calls = []
    out = [c async for c in pin_stream(_source([b"\n", b"garbage"], []), wrap_with_directory=True, on_pins=calls.append)]
    assert out == [b"\n", b"garbage"]
    assert calls == []
