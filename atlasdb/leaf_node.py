"""Leaf node layout: sorted (key, row location) entries with a next-leaf link."""

from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass

from atlasdb.common import BtreeError, Page

LEAF_MAGIC = b"ATLBLF\0\0"
LEAF_FORMAT_VERSION = 1
LEAF_HEADER_SIZE = 16
LEAF_ENTRY_SIZE = 16

_VERSION_OFFSET = 8
_ENTRY_COUNT_OFFSET = 10
_NEXT_PAGE_OFFSET = 12


class LeafNodeError(BtreeError):
    """Raised when a leaf node operation fails."""


@dataclass(frozen=True)
class LeafEntry:
    key: int
    row_page_id: int
    row_slot_index: int


@dataclass(frozen=True)
class LeafSplit:
    promoted_key: int
    left_entry_count: int
    right_entry_count: int
    right_page_id: int


def leaf_capacity(page: Page) -> int:
    """Maximum number of entries a leaf of this page's size can hold."""
    return (len(page.data) - LEAF_HEADER_SIZE) // LEAF_ENTRY_SIZE


def _entry_offset(index: int) -> int:
    return LEAF_HEADER_SIZE + index * LEAF_ENTRY_SIZE


def _write_entry(page: Page, index: int, entry: LeafEntry) -> None:
    offset = _entry_offset(index)
    page.write_i64(offset, entry.key)
    page.write_u32(offset + 8, entry.row_page_id)
    page.write_u16(offset + 12, entry.row_slot_index)
    page.write_u16(offset + 14, 0)


def _read_entry(page: Page, index: int) -> LeafEntry:
    offset = _entry_offset(index)
    return LeafEntry(
        key=page.read_i64(offset),
        row_page_id=page.read_u32(offset + 8),
        row_slot_index=page.read_u16(offset + 12),
    )


def _validate(page: Page) -> list[LeafEntry]:
    if not page.has_magic(LEAF_MAGIC):
        raise LeafNodeError("E5101", "leaf node has invalid magic")
    if page.read_u16(_VERSION_OFFSET) != LEAF_FORMAT_VERSION:
        raise LeafNodeError("E5101", "leaf node has unsupported format version")
    count = page.read_u16(_ENTRY_COUNT_OFFSET)
    if count > leaf_capacity(page):
        raise LeafNodeError("E5101", "leaf node entry count exceeds capacity")
    entries = [_read_entry(page, index) for index in range(count)]
    if any(later.key <= earlier.key for earlier, later in zip(entries, entries[1:])):
        raise LeafNodeError("E5101", "leaf node keys are not strictly increasing")
    return entries


def _store_entries(page: Page, entries: list[LeafEntry], start: int = 0) -> None:
    for index in range(start, len(entries)):
        _write_entry(page, index, entries[index])
    page.write_u16(_ENTRY_COUNT_OFFSET, len(entries))


def initialize_leaf(page: Page) -> None:
    """Reset the page to an empty leaf with no next leaf."""
    page.data[:] = bytes(len(page.data))
    page.data[: len(LEAF_MAGIC)] = LEAF_MAGIC
    page.write_u16(_VERSION_OFFSET, LEAF_FORMAT_VERSION)
    page.write_u16(_ENTRY_COUNT_OFFSET, 0)
    page.write_u32(_NEXT_PAGE_OFFSET, 0)


def append_leaf_entry(page: Page, entry: LeafEntry) -> int:
    """Append an entry whose key exceeds every stored key; return its index."""
    entries = _validate(page)
    if len(entries) >= leaf_capacity(page):
        raise LeafNodeError("E5103", "leaf node is full")
    if entries and entry.key <= entries[-1].key:
        raise LeafNodeError("E5104", "leaf entry key must be strictly increasing")
    index = len(entries)
    _write_entry(page, index, entry)
    page.write_u16(_ENTRY_COUNT_OFFSET, index + 1)
    return index


def insert_leaf_entry(page: Page, entry: LeafEntry) -> int:
    """Insert an entry at its sorted position; return its index."""
    entries = _validate(page)
    if len(entries) >= leaf_capacity(page):
        raise LeafNodeError("E5103", "leaf node is full")
    keys = [existing.key for existing in entries]
    index = bisect_left(keys, entry.key)
    if index < len(keys) and keys[index] == entry.key:
        raise LeafNodeError("E5104", "leaf entry key must be strictly increasing")
    entries.insert(index, entry)
    _store_entries(page, entries, start=index)
    return index


def read_leaf_entry(page: Page, index: int) -> LeafEntry:
    entries = _validate(page)
    if not 0 <= index < len(entries):
        raise LeafNodeError("E5102", "leaf entry index is outside entry count")
    return entries[index]


def leaf_entries(page: Page) -> list[LeafEntry]:
    """All entries of the leaf in key order."""
    return _validate(page)


def find_leaf_entry(page: Page, key: int) -> tuple[int, LeafEntry]:
    """Return ``(index, entry)`` for ``key``."""
    entries = _validate(page)
    keys = [entry.key for entry in entries]
    index = bisect_left(keys, key)
    if index < len(keys) and keys[index] == key:
        return index, entries[index]
    raise LeafNodeError("E5105", "leaf entry key not found")


def leaf_entry_count(page: Page) -> int:
    return len(_validate(page))


def set_leaf_next_page(page: Page, next_page_id: int) -> None:
    _validate(page)
    page.write_u32(_NEXT_PAGE_OFFSET, next_page_id)


def leaf_next_page(page: Page) -> int:
    _validate(page)
    return page.read_u32(_NEXT_PAGE_OFFSET)


def split_leaf(left_page: Page, right_page: Page) -> LeafSplit:
    """Move the upper half of ``left_page`` into ``right_page`` and link them."""
    if right_page.id == 0:
        raise LeafNodeError("E5106", "right leaf page id must be non-zero")
    if right_page.id == left_page.id:
        raise LeafNodeError(
            "E5106", "right leaf page id must differ from left leaf page id"
        )
    entries = _validate(left_page)
    if len(entries) < 2:
        raise LeafNodeError("E5106", "leaf node must have at least two entries to split")
    original_next = left_page.read_u32(_NEXT_PAGE_OFFSET)

    split_index = len(entries) // 2
    left_entries, right_entries = entries[:split_index], entries[split_index:]

    initialize_leaf(right_page)
    right_page.write_u32(_NEXT_PAGE_OFFSET, original_next)
    _store_entries(right_page, right_entries)

    rebuilt = Page.zeroed(left_page.id, len(left_page.data))
    initialize_leaf(rebuilt)
    rebuilt.write_u32(_NEXT_PAGE_OFFSET, right_page.id)
    _store_entries(rebuilt, left_entries)
    left_page.data[:] = rebuilt.data

    return LeafSplit(
        promoted_key=right_entries[0].key,
        left_entry_count=len(left_entries),
        right_entry_count=len(right_entries),
        right_page_id=right_page.id,
    )