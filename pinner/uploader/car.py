"""
CID Encoder: UnixFS trees, CIDv1 and CARv1 archives.

Produces the same identifiers a node computes for `add --cid-version=1`:
- files are cut into fixed 256 KiB chunks stored as `raw` leaves,
- a file of more than one chunk gets a balanced dag-pb tree (174 links per node),
- directories are dag-pb nodes with links sorted by name,
- every CID is v1, sha2-256, rendered as base32 multibase ("b...").

The archive is written leaves first. A CARv1 header names the root up front but
the root only exists once the whole tree is walked, so the header is written
with a placeholder of the same length and patched when the archive closes.
"""
from __future__ import annotations

import base64
import hashlib
import logging
from concurrent.futures import Future
from dataclasses import dataclass
from typing import BinaryIO, Callable, Dict, Iterable, List, Optional, Set, Union

from .errors import InvalidInput

log = logging.getLogger("uploader.car")

RAW = 0x55
DAG_PB = 0x70
SHA2_256 = 0x12

CHUNK_SIZE = 262144
MAX_LINKS = 174

# UnixFS Data.DataType
UNIXFS_DIRECTORY = 1
UNIXFS_FILE = 2

CAR_MEDIA_TYPE = "application/vnd.ipld.car"


def encode_varint(n: int) -> bytes:
    """Unsigned LEB128, as used by multiformats, protobuf and CAR section lengths."""
    if n < 0:
        raise ValueError("varint must be non-negative")
    out = bytearray()
    while True:
        b = n & 0x7F
        n >>= 7
        if n:
            out.append(b | 0x80)
        else:
            out.append(b)
            return bytes(out)


def decode_varint(buf: bytes, offset: int = 0) -> tuple[int, int]:
    """Returns (value, next_offset)."""
    value = 0
    shift = 0
    while True:
        if offset >= len(buf):
            raise ValueError("truncated varint")
        b = buf[offset]
        offset += 1
        value |= (b & 0x7F) << shift
        if not b & 0x80:
            return value, offset
        shift += 7


@dataclass(frozen=True)
class CID:
    codec: int
    digest: bytes

    @classmethod
    def of(cls, codec: int, data: bytes) -> "CID":
        return cls(codec=codec, digest=hashlib.sha256(data).digest())

    @classmethod
    def decode(cls, text: str) -> "CID":
        """Parses a base32 CIDv1 string with a sha2-256 multihash."""
        if not text or text[0] != "b":
            raise ValueError(f"unsupported CID encoding: {text!r}")
        body = text[1:].upper()
        raw = base64.b32decode(body + "=" * (-len(body) % 8))
        version, pos = decode_varint(raw)
        if version != 1:
            raise ValueError(f"unsupported CID version {version}")
        codec, pos = decode_varint(raw, pos)
        hash_fn, pos = decode_varint(raw, pos)
        length, pos = decode_varint(raw, pos)
        digest = raw[pos:]
        if hash_fn != SHA2_256 or length != len(digest):
            raise ValueError("unsupported multihash")
        return cls(codec=codec, digest=digest)

    def to_bytes(self) -> bytes:
        return (
            encode_varint(1)
            + encode_varint(self.codec)
            + encode_varint(SHA2_256)
            + encode_varint(len(self.digest))
            + self.digest
        )

    def __str__(self) -> str:
        return "b" + base64.b32encode(self.to_bytes()).decode("ascii").lower().rstrip("=")


# ---------- protobuf (dag-pb / UnixFS) ----------

def _key(field_no: int, wire_type: int) -> bytes:
    return encode_varint(field_no << 3 | wire_type)


def _uint_field(field_no: int, n: int) -> bytes:
    return _key(field_no, 0) + encode_varint(n)


def _bytes_field(field_no: int, value: bytes) -> bytes:
    return _key(field_no, 2) + encode_varint(len(value)) + value


def unixfs_data(
    data_type: int,
    *,
    filesize: Optional[int] = None,
    blocksizes: Iterable[int] = (),
) -> bytes:
    out = _uint_field(1, data_type)
    if filesize is not None:
        out += _uint_field(3, filesize)
    for size in blocksizes:
        out += _uint_field(4, size)
    return out


@dataclass(frozen=True)
class Link:
    name: str
    cid: CID
    tsize: int


def encode_pb_node(links: Iterable[Link], data: bytes) -> bytes:
    """dag-pb canonical form: every Links entry (field 2) precedes Data (field 1)."""
    out = bytearray()
    for link in links:
        body = (
            _bytes_field(1, link.cid.to_bytes())
            + _bytes_field(2, link.name.encode("utf-8"))
            + _uint_field(3, link.tsize)
        )
        out += _bytes_field(2, body)
    out += _bytes_field(1, data)
    return bytes(out)


# ---------- CAR ----------

_PLACEHOLDER_ROOT = CID(codec=DAG_PB, digest=bytes(32))


def car_header(root: CID) -> bytes:
    """dag-cbor `{"roots": [root], "version": 1}` prefixed by its varint length."""
    cid_bytes = b"\x00" + root.to_bytes()  # tag 42 payload carries the identity multibase prefix
    body = (
        b"\xa2"
        + b"\x65roots"
        + b"\x81"
        + b"\xd8\x2a"
        + b"\x58" + bytes([len(cid_bytes)]) + cid_bytes
        + b"\x67version"
        + b"\x01"
    )
    return encode_varint(len(body)) + body


# ---------- entries and tree ----------

@dataclass
class DirectoryEntry:
    """One file of a directory upload. `open` is called once, when the encoder reaches it."""

    path: str
    open: Callable[[], BinaryIO]


@dataclass(frozen=True)
class _Node:
    cid: CID
    dag_size: int
    file_size: int = 0


def split_path(path: str) -> List[str]:
    parts = [p for p in path.replace("\\", "/").split("/") if p not in ("", ".")]
    if not parts:
        raise InvalidInput(f"empty path in directory entry: {path!r}")
    if ".." in parts:
        raise InvalidInput(f"invalid path (traversal detected): {path!r}")
    return parts


_Tree = Dict[str, Union["_Tree", DirectoryEntry]]


def build_tree(entries: Iterable[DirectoryEntry]) -> _Tree:
    """
    Builds the complete relative-path tree before anything is encoded.
    Intermediate directories are created once and shared by every sibling below them.
    """
    root: _Tree = {}
    for entry in entries:
        *dirs, leaf = split_path(entry.path)
        node = root
        for i, part in enumerate(dirs):
            child = node.setdefault(part, {})
            if isinstance(child, DirectoryEntry):
                raise InvalidInput(f"path conflict: {'/'.join(dirs[: i + 1])} is both a file and a directory")
            node = child
        if leaf in node:
            kind = "directory" if isinstance(node[leaf], dict) else "file"
            raise InvalidInput(f"duplicate path: {entry.path} (already a {kind})")
        node[leaf] = entry
    return root


def _read_full(stream: BinaryIO, size: int) -> bytes:
    buf = bytearray()
    while len(buf) < size:
        piece = stream.read(size - len(buf))
        if not piece:
            break
        buf += piece
    return bytes(buf)


class ArchiveEncoder:
    """
    Streams a UnixFS tree into a CARv1 archive.

    `root` is a future resolved exactly once, when the archive is closed; it fails
    with the encoding error if the tree could not be encoded. Pass `out=None` to
    compute CIDs without writing an archive.
    """

    def __init__(
        self,
        out: Optional[BinaryIO] = None,
        *,
        chunk_size: int = CHUNK_SIZE,
        max_links: int = MAX_LINKS,
    ) -> None:
        if chunk_size <= 0 or max_links < 2:
            raise ValueError("chunk_size must be positive and max_links at least 2")
        self.root: "Future[CID]" = Future()
        self.chunk_size = chunk_size
        self.max_links = max_links
        self.block_count = 0
        self._out = out
        self._seen: Set[bytes] = set()
        self._header_at = 0
        if out is not None:
            self._header_at = out.tell()
            out.write(car_header(_PLACEHOLDER_ROOT))

    # ---- public ----

    def encode_file(self, stream: BinaryIO) -> CID:
        """Encodes one unwrapped file; its own node is the archive root."""
        return self._finish(lambda: self._add_file(stream).cid)

    def encode_directory(self, entries: Iterable[DirectoryEntry]) -> CID:
        """Encodes entries under a synthetic root directory."""

        def run() -> CID:
            tree = build_tree(entries)
            if not tree:
                raise InvalidInput("No files were processed")
            return self._add_tree(tree).cid

        return self._finish(run)

    # ---- internals ----

    def _finish(self, run: Callable[[], CID]) -> CID:
        if self.root.done():
            raise RuntimeError("archive already closed")
        try:
            root = run()
        except BaseException as e:
            self.root.set_exception(e)
            raise
        self._close(root)
        return root

    def _close(self, root: CID) -> None:
        if self._out is not None:
            end = self._out.tell()
            self._out.seek(self._header_at)
            self._out.write(car_header(root))
            self._out.seek(end)
            self._out.flush()
        log.debug("car.close root=%s blocks=%s", root, self.block_count)
        self.root.set_result(root)

    def _put(self, codec: int, data: bytes) -> CID:
        cid = CID.of(codec, data)
        key = cid.to_bytes()
        if key not in self._seen:
            self._seen.add(key)
            self.block_count += 1
            if self._out is not None:
                self._out.write(encode_varint(len(key) + len(data)))
                self._out.write(key)
                self._out.write(data)
        return cid

    def _add_file(self, stream: BinaryIO) -> _Node:
        leaves: List[_Node] = []
        while True:
            chunk = _read_full(stream, self.chunk_size)
            if chunk or not leaves:
                cid = self._put(RAW, chunk)
                leaves.append(_Node(cid=cid, dag_size=len(chunk), file_size=len(chunk)))
            if len(chunk) < self.chunk_size:
                break

        level = leaves
        while len(level) > 1:
            level = [
                self._file_parent(level[i : i + self.max_links])
                for i in range(0, len(level), self.max_links)
            ]
        return level[0]

    def _file_parent(self, children: List[_Node]) -> _Node:
        file_size = sum(c.file_size for c in children)
        data = unixfs_data(
            UNIXFS_FILE,
            filesize=file_size,
            blocksizes=[c.file_size for c in children],
        )
        block = encode_pb_node([Link("", c.cid, c.dag_size) for c in children], data)
        cid = self._put(DAG_PB, block)
        return _Node(cid=cid, dag_size=len(block) + sum(c.dag_size for c in children), file_size=file_size)

    def _add_tree(self, tree: _Tree) -> _Node:
        links: List[Link] = []
        for name in sorted(tree, key=lambda n: n.encode("utf-8")):
            child = tree[name]
            if isinstance(child, DirectoryEntry):
                with child.open() as stream:
                    node = self._add_file(stream)
            else:
                node = self._add_tree(child)
            links.append(Link(name, node.cid, node.dag_size))
        block = encode_pb_node(links, unixfs_data(UNIXFS_DIRECTORY))
        cid = self._put(DAG_PB, block)
        return _Node(cid=cid, dag_size=len(block) + sum(l.tsize for l in links))


def directory_node(links: Iterable[Link] = ()) -> bytes:
    """Encoded bytes of a UnixFS directory node (links are sorted by name)."""
    ordered = sorted(links, key=lambda l: l.name.encode("utf-8"))
    return encode_pb_node(ordered, unixfs_data(UNIXFS_DIRECTORY))


def read_car(buf: bytes) -> tuple[List[CID], Dict[str, bytes]]:
    """
    Minimal CARv1 reader: returns (roots, {cid: block}).
    Only understands the single-root headers written by ArchiveEncoder.
    """
    header_len, pos = decode_varint(buf)
    header = buf[pos : pos + header_len]
    pos += header_len
    marker = b"\xd8\x2a\x58"
    at = header.find(marker)
    if at < 0:
        raise ValueError("CAR header has no root CID")
    cid_len = header[at + 3]
    root_bytes = header[at + 4 : at + 4 + cid_len][1:]
    roots = [_cid_from_bytes(root_bytes)]

    blocks: Dict[str, bytes] = {}
    while pos < len(buf):
        section_len, pos = decode_varint(buf, pos)
        section = buf[pos : pos + section_len]
        pos += section_len
        _, p = decode_varint(section)
        _, p = decode_varint(section, p)
        _, p = decode_varint(section, p)
        digest_len, p = decode_varint(section, p)
        cid = _cid_from_bytes(section[: p + digest_len])
        blocks[str(cid)] = section[p + digest_len :]
    return roots, blocks


def _cid_from_bytes(raw: bytes) -> CID:
    _, pos = decode_varint(raw)
    codec, pos = decode_varint(raw, pos)
    _, pos = decode_varint(raw, pos)
    length, pos = decode_varint(raw, pos)
    return CID(codec=codec, digest=raw[pos : pos + length])
