import io

import pytest

from pinner.uploader.car import (
    CID,
    DAG_PB,
    RAW,
    ArchiveEncoder,
    DirectoryEntry,
    Link,
    decode_varint,
    directory_node,
    encode_varint,
    read_car,
)
from pinner.uploader.errors import InvalidInput

HELLO_CID = "bafkreifzjut3te2nhyekklss27nh3k72ysco7y32koao5eei66wof36n5e"
EMPTY_FILE_CID = "bafkreihdwdcefgh4dqkjv67uzcmw7ojee6xedzdetojuzjevtenxquvyku"
EMPTY_DIR_CID = "bafybeiczsscdsbs7ffqz55asqdf3smv6klcw3gofszvwlyarci47bgf354"


def entry(path, content):
    return DirectoryEntry(path=path, open=lambda: io.BytesIO(content))


def test_varint_roundtrip_known_values():
    assert encode_varint(0) == b"\x00"
    assert encode_varint(127) == b"\x7f"
    assert encode_varint(300) == b"\xac\x02"
    assert decode_varint(b"\xac\x02\xff", 0) == (300, 2)
    with pytest.raises(ValueError):
        decode_varint(b"\x80")


def test_single_chunk_files_match_node_cids():
    assert str(ArchiveEncoder().encode_file(io.BytesIO(b"hello world"))) == HELLO_CID
    assert str(ArchiveEncoder().encode_file(io.BytesIO(b""))) == EMPTY_FILE_CID


def test_empty_directory_node_cid():
    assert str(CID.of(DAG_PB, directory_node())) == EMPTY_DIR_CID


def test_cid_decode_parses_base32_text():
    cid = CID.decode(HELLO_CID)
    assert cid.codec == RAW
    assert str(cid) == HELLO_CID
    with pytest.raises(ValueError):
        CID.decode("QmNotBase32")


def test_root_future_resolves_once_on_close():
    enc = ArchiveEncoder()
    assert not enc.root.done()
    cid = enc.encode_file(io.BytesIO(b"hello world"))
    assert enc.root.result() == cid
    with pytest.raises(RuntimeError):
        enc.encode_file(io.BytesIO(b"again"))


def test_root_future_carries_encoding_error():
    enc = ArchiveEncoder()
    with pytest.raises(InvalidInput):
        enc.encode_directory([])
    assert isinstance(enc.root.exception(), InvalidInput)


def test_multi_chunk_file_is_balanced_and_archived_leaves_first():
    data = b"0123456789"
    out = io.BytesIO()
    enc = ArchiveEncoder(out, chunk_size=4, max_links=2)
    root = enc.encode_file(io.BytesIO(data))

    assert root.codec == DAG_PB
    roots, blocks = read_car(out.getvalue())
    assert roots == [root]
    assert len(blocks) == enc.block_count == 6  # 3 leaves, 2 inner nodes, 1 root
    leaves = [block for cid, block in blocks.items() if CID.decode(cid).codec == RAW]
    assert b"".join(leaves) == data


def test_repeated_chunks_are_stored_once():
    enc = ArchiveEncoder(io.BytesIO(), chunk_size=4)
    enc.encode_file(io.BytesIO(b"abcd" * 3))
    assert enc.block_count == 2


def test_nested_directory_with_shared_parents():
    files = {
        "a/b/c.txt": b"c",
        "a/b/d.txt": b"dd",
        "a/e.txt": b"eee",
        "f.txt": b"ffff",
    }
    root = ArchiveEncoder().encode_directory([entry(p, c) for p, c in files.items()])

    def leaf(name, content):
        return Link(name, CID.of(RAW, content), len(content))

    def folder(name, links):
        block = directory_node(links)
        return Link(name, CID.of(DAG_PB, block), len(block) + sum(l.tsize for l in links))

    b = folder("b", [leaf("c.txt", b"c"), leaf("d.txt", b"dd")])
    a = folder("a", [b, leaf("e.txt", b"eee")])
    expected = folder("", [a, leaf("f.txt", b"ffff")])
    assert root == expected.cid


def test_directory_cid_does_not_depend_on_entry_order():
    files = [("x/1.txt", b"1"), ("x/2.txt", b"2"), ("y.txt", b"y")]
    first = ArchiveEncoder().encode_directory([entry(p, c) for p, c in files])
    second = ArchiveEncoder().encode_directory([entry(p, c) for p, c in reversed(files)])
    assert first == second


@pytest.mark.parametrize(
    "paths",
    [
        ["a", "a/b"],
        ["a/b", "a"],
        ["x.txt", "x.txt"],
        ["../escape.txt"],
        ["/"],
    ],
)
def test_invalid_trees_are_rejected(paths):
    with pytest.raises(InvalidInput):
        ArchiveEncoder().encode_directory([entry(p, b"z") for p in paths])


def test_archive_header_is_patched_with_root():
    out = io.BytesIO()
    enc = ArchiveEncoder(out)
    root = enc.encode_directory([entry("hello.txt", b"hello world")])
    roots, blocks = read_car(out.getvalue())
    assert roots == [root]
    assert blocks[HELLO_CID] == b"hello world"
    assert str(root) in blocks
