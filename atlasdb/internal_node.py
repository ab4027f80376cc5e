"""Internal node layout: a left child followed by sorted (separator key, child) entries."""

from __future__ import annotations

from bisect import bisect_left, bisect_right
from dataclasses import dataclass

from atlasdb.common import BtreeError, Page

INTERNAL_MAGIC = b"ATLBIN\0\0"
INTERNAL_FORMAT_VERSION = 1
INTERNAL_HEADER_SIZE = 16
INTERNAL_ENTRY_SIZE = 16

_VERSION_OFFSET = 8
_ENTRY_COUNT_OFFSET = 10
_LEFT_CHILD_OFFSET = 12


class InternalNodeError(BtreeError):
    """Raised when an internal node operation fails."""


@dataclass(frozen=True)
class InternalEntry:
    key: int
    child_page_id: int


@dataclass(frozen=True)
class InternalSplit:
    promoted_key: int
    left_entry_count: int
    right_entry_count: int
    right_page_id: int
    right_left_child_page_id: int


def internal_capacity(page: Page) -> int:
    """Maximum number of entries an internal node of this page's size can hold."""
    return (len(page.data) - INTERNAL_HEADER_SIZE) // INTERNAL_ENTRY_SIZE


def _entry_offset(index: int) -> int:
    return INTERNAL_HEADER_SIZE + index * INTERNAL_ENTRY_SIZE


def _write_entry(page: Page, index: int, entry: InternalEntry) -> None:
    offset = _entry_offset(index)
    page.write_i64(offset, entry.key)
    page.write_u32(offset + 8, entry.child_page_id)
    page.write_u32(offset + 12, 0)


def _read_entry(page: Page, index: int) -> InternalEntry:
    offset = _entry_offset(index)
    return InternalEntry(key=page.read_i64(offset), child_page_id=page.read_u32(offset + 8))


def _validate(page: Page) -> tuple[list[InternalEntry], int]:
    """Check the layout and return ``(entries, left_child_page_id)``."""
    if not page.has_magic(INTERNAL_MAGIC):
        raise InternalNodeError("E5201", "internal node has invalid magic")
    if page.read_u16(_VERSION_OFFSET) != INTERNAL_FORMAT_VERSION:
        raise InternalNodeError("E5201", "internal node has unsupported format version")
    count = page.read_u16(_ENTRY_COUNT_OFFSET)
    if count > internal_capacity(page):
        raise InternalNodeError("E5201", "internal node entry count exceeds capacity")
    left_child = page.read_u32(_LEFT_CHILD_OFFSET)
    if left_child == 0:
        raise InternalNodeError("E5201", "internal node left child page id is invalid")
    entries = [_read_entry(page, index) for index in range(count)]
    previous: InternalEntry | None = None
    for entry in entries:
        if entry.child_page_id == 0:
            raise InternalNodeError("E5201", "internal node child page id is invalid")
        if previous is not None and entry.key <= previous.key:
            raise InternalNodeError(
                "E5201", "internal node keys are not strictly increasing"
            )
        previous = entry
    return entries, left_child


def _store_entries(page: Page, entries: list[InternalEntry], start: int = 0) -> None:
    for index in range(start, len(entries)):
        _write_entry(page, index, entries[index])
    page.write_u16(_ENTRY_COUNT_OFFSET, len(entries))


def _require_child(entry: InternalEntry) -> None:
    if entry.child_page_id == 0:
        raise InternalNodeError("E5202", "internal entry child page id must be non-zero")


def initialize_internal(page: Page, left_child_page_id: int) -> None:
    """Reset the page to an empty internal node pointing at ``left_child_page_id``."""
    if left_child_page_id == 0:
        raise InternalNodeError("E5202", "left child page id must be non-zero")
    page.data[:] = bytes(len(page.data))
    page.data[: len(INTERNAL_MAGIC)] = INTERNAL_MAGIC
    page.write_u16(_VERSION_OFFSET, INTERNAL_FORMAT_VERSION)
    page.write_u16(_ENTRY_COUNT_OFFSET, 0)
    page.write_u32(_LEFT_CHILD_OFFSET, left_child_page_id)


def append_internal_entry(page: Page, entry: InternalEntry) -> int:
    """Append an entry whose key exceeds every stored key; return its index."""
    _require_child(entry)
    entries, _ = _validate(page)
    if len(entries) >= internal_capacity(page):
        raise InternalNodeError("E5203", "internal node is full")
    if entries and entry.key <= entries[-1].key:
        raise InternalNodeError("E5204", "internal entry key must be strictly increasing")
    index = len(entries)
    _write_entry(page, index, entry)
    page.write_u16(_ENTRY_COUNT_OFFSET, index + 1)
    return index


def insert_internal_entry(page: Page, entry: InternalEntry) -> int:
    """Insert an entry at its sorted position; return its index."""
    _require_child(entry)
    entries, _ = _validate(page)
    if len(entries) >= internal_capacity(page):
        raise InternalNodeError("E5203", "internal node is full")
    keys = [existing.key for existing in entries]
    index = bisect_left(keys, entry.key)
    if index < len(keys) and keys[index] == entry.key:
        raise InternalNodeError("E5204", "internal separator key must be unique")
    entries.insert(index, entry)
    _store_entries(page, entries, start=index)
    return index


def read_internal_entry(page: Page, index: int) -> InternalEntry:
    entries, _ = _validate(page)
    if not 0 <= index < len(entries):
        raise InternalNodeError("E5205", "internal entry index is outside entry count")
    return entries[index]


def internal_entries(page: Page) -> list[InternalEntry]:
    """All separator entries of the node in key order."""
    return _validate(page)[0]


def internal_entry_count(page: Page) -> int:
    return len(_validate(page)[0])


def set_internal_left_child(page: Page, left_child_page_id: int) -> None:
    if left_child_page_id == 0:
        raise InternalNodeError("E5202", "left child page id must be non-zero")
    _validate(page)
    page.write_u32(_LEFT_CHILD_OFFSET, left_child_page_id)


def internal_left_child(page: Page) -> int:
    return _validate(page)[1]


def find_internal_child(page: Page, key: int) -> int:
    """Return the child page whose key range contains ``key``."""
    entries, left_child = _validate(page)
    index = bisect_right([entry.key for entry in entries], key)
    return left_child if index == 0 else entries[index - 1].child_page_id


def initialize_internal_root(
    page: Page, left_child_page_id: int, separator_key: int, right_child_page_id: int
) -> None:
    """Build a one-separator root over two children produced by a split."""
    if left_child_page_id == 0 or right_child_page_id == 0:
        raise InternalNodeError("E5202", "split child page ids must be non-zero")
    if left_child_page_id == right_child_page_id:
        raise InternalNodeError("E5206", "split child page ids must be distinct")
    initialize_internal(page, left_child_page_id)
    append_internal_entry(page, InternalEntry(separator_key, right_child_page_id))


def split_internal(left_page: Page, right_page: Page) -> InternalSplit:
    """Move the entries above the middle separator into ``right_page``.

    The middle separator is removed from both nodes and promoted; its child
    becomes the left child of the right node.
    """
    if right_page.id == 0:
        raise InternalNodeError("E5207", "right internal page id must be non-zero")
    if right_page.id == left_page.id:
        raise InternalNodeError(
            "E5207", "right internal page id must differ from left internal page id"
        )
    entries, original_left_child = _validate(left_page)
    if len(entries) < 2:
        raise InternalNodeError(
            "E5207", "internal node must have at least two entries to split"
        )

    promoted_index = len(entries) // 2
    promoted = entries[promoted_index]
    left_entries = entries[:promoted_index]
    right_entries = entries[promoted_index + 1 :]

    initialize_internal(right_page, promoted.child_page_id)
    _store_entries(right_page, right_entries)

    rebuilt = Page.zeroed(left_page.id, len(left_page.data))
    initialize_internal(rebuilt, original_left_child)
    _store_entries(rebuilt, left_entries)
    left_page.data[:] = rebuilt.data

    return InternalSplit(
        promoted_key=promoted.key,
        left_entry_count=len(left_entries),
        right_entry_count=len(right_entries),
        right_page_id=right_page.id,
        right_left_child_page_id=promoted.child_page_id,
    )