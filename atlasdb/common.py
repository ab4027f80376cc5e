"""Pages, little-endian field access and a simple page store shared by the B-tree nodes."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from pathlib import Path

PAGE_SIZE = 4096

_STORE_MAGIC = b"ATLASPGS"
_STORE_HEADER = struct.Struct("<8sII")


class BtreeError(Exception):
    """Error carrying a stable error code and a human readable message."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


@dataclass
class Page:
    """A fixed-size block of bytes identified by its page id."""

    id: int
    data: bytearray = field(default_factory=lambda: bytearray(PAGE_SIZE))

    @classmethod
    def zeroed(cls, page_id: int, size: int = PAGE_SIZE) -> Page:
        """Return a page of ``size`` zero bytes."""
        return cls(page_id, bytearray(size))

    def _unpack(self, fmt: str, offset: int) -> int:
        try:
            return struct.unpack_from(fmt, self.data, offset)[0]
        except struct.error as exc:
            raise ValueError(f"offset {offset} is outside the page") from exc

    def _pack(self, fmt: str, offset: int, value: int) -> None:
        if offset < 0 or offset + struct.calcsize(fmt) > len(self.data):
            raise ValueError(f"offset {offset} is outside the page")
        try:
            struct.pack_into(fmt, self.data, offset, value)
        except struct.error as exc:
            raise ValueError(f"value {value} does not fit the field") from exc

    def read_u16(self, offset: int) -> int:
        return self._unpack("<H", offset)

    def read_u32(self, offset: int) -> int:
        return self._unpack("<I", offset)

    def read_i64(self, offset: int) -> int:
        return self._unpack("<q", offset)

    def write_u16(self, offset: int, value: int) -> None:
        self._pack("<H", offset, value)

    def write_u32(self, offset: int, value: int) -> None:
        self._pack("<I", offset, value)

    def write_i64(self, offset: int, value: int) -> None:
        self._pack("<q", offset, value)

    def has_magic(self, magic: bytes) -> bool:
        """True when the page starts with ``magic``."""
        return bytes(self.data[: len(magic)]) == bytes(magic)


class PageStore:
    """Page allocator kept in memory, optionally backed by a file.

    Page 0 is reserved for the store header, so allocated ids start at 1 and
    ``page_count`` includes the reserved page.
    """

    def __init__(self, path: str | Path | None = None, page_size: int = PAGE_SIZE) -> None:
        if page_size < _STORE_HEADER.size:
            raise ValueError("page size is too small")
        self._page_size = page_size
        self._pages: dict[int, bytes] = {}
        self._page_count = 1
        self._file = None
        self._open = True
        if path is not None:
            self._open_file(Path(path))

    def _open_file(self, path: Path) -> None:
        if path.exists() and path.stat().st_size > 0:
            self._file = path.open("r+b")
            header = self._file.read(self._page_size)
            if len(header) < _STORE_HEADER.size:
                self._file.close()
                raise BtreeError("E3003", "page store header is truncated")
            magic, page_size, page_count = _STORE_HEADER.unpack_from(header)
            if magic != _STORE_MAGIC:
                self._file.close()
                raise BtreeError("E3003", "page store header has invalid magic")
            if page_size != self._page_size:
                self._file.close()
                raise BtreeError("E3003", "page store page size does not match")
            self._page_count = page_count
            for page_id in range(1, page_count):
                self._file.seek(page_id * page_size)
                block = self._file.read(page_size)
                self._pages[page_id] = block.ljust(page_size, b"\0")
        else:
            self._file = path.open("w+b")
            self._flush_header()

    def _flush_header(self) -> None:
        if self._file is None:
            return
        header = bytearray(self._page_size)
        _STORE_HEADER.pack_into(header, 0, _STORE_MAGIC, self._page_size, self._page_count)
        self._file.seek(0)
        self._file.write(header)
        self._file.flush()

    def _flush_page(self, page_id: int) -> None:
        if self._file is None:
            return
        self._file.seek(page_id * self._page_size)
        self._file.write(self._pages[page_id])
        self._file.flush()

    def _ensure_open(self) -> None:
        if not self._open:
            raise BtreeError("E3002", "page store is not open")

    def _ensure_allocated(self, page_id: int) -> None:
        if not 1 <= page_id < self._page_count:
            raise BtreeError("E3001", f"page id {page_id} is not allocated")

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def page_count(self) -> int:
        return self._page_count

    def allocate_page(self) -> int:
        """Reserve a new zeroed page and return its id."""
        self._ensure_open()
        page_id = self._page_count
        self._page_count += 1
        self._pages[page_id] = bytes(self._page_size)
        self._flush_page(page_id)
        self._flush_header()
        return page_id

    def read_page(self, page_id: int) -> Page:
        """Return a private copy of a stored page."""
        self._ensure_open()
        self._ensure_allocated(page_id)
        return Page(page_id, bytearray(self._pages[page_id]))

    def write_page(self, page: Page) -> None:
        self._ensure_open()
        self._ensure_allocated(page.id)
        if len(page.data) != self._page_size:
            raise BtreeError("E3004", "page size does not match the store")
        self._pages[page.id] = bytes(page.data)
        self._flush_page(page.id)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
        self._open = False

    def __enter__(self) -> PageStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()