"""Forward cursor over the linked chain of B-tree leaf pages."""

from __future__ import annotations

from bisect import bisect_left
from collections.abc import Iterator

from atlasdb.common import BtreeError, Page, PageStore
from atlasdb.leaf_node import LeafEntry, LeafNodeError, leaf_entries, leaf_next_page


class CursorError(BtreeError):
    """Raised when a cursor operation fails."""


class LeafCursor:
    """Walks leaf entries in key order, following next-leaf links."""

    def __init__(self, pager: PageStore | None) -> None:
        self._pager = pager
        self._page_id = 0
        self._entry_index = 0
        self._valid = False

    def _ensure_open(self) -> PageStore:
        if self._pager is None or not self._pager.is_open:
            raise CursorError("E5301", "btree cursor pager is not open")
        return self._pager

    def _read(self, page_id: int) -> Page:
        pager = self._ensure_open()
        try:
            return pager.read_page(page_id)
        except BtreeError as exc:
            raise CursorError("E5303", f"{exc.code}: {exc.message}") from exc

    def _load_leaf(self, page_id: int) -> tuple[list[LeafEntry], int]:
        """Return ``(entries, next_page_id)`` for a leaf page."""
        if page_id == 0:
            raise CursorError("E5302", "starting leaf page id must be non-zero")
        page = self._read(page_id)
        try:
            entries = leaf_entries(page)
            next_page_id = leaf_next_page(page)
        except LeafNodeError as exc:
            raise CursorError(exc.code, exc.message) from exc
        if next_page_id == page_id:
            raise CursorError("E5305", "leaf chain contains a self-cycle")
        return entries, next_page_id

    def _hop_limit(self) -> int:
        hop_limit = self._ensure_open().page_count
        if hop_limit == 0:
            raise CursorError("E5305", "leaf chain traversal has invalid hop limit")
        return hop_limit

    def _position(self, page_id: int, entry_index: int) -> None:
        self._page_id = page_id
        self._entry_index = entry_index
        self._valid = True

    def _reset(self) -> None:
        self._page_id = 0
        self._entry_index = 0
        self._valid = False

    def _walk(self, start_page_id: int, key: int | None) -> None:
        """Position on the first entry at or after ``key`` (or the first entry)."""
        current = start_page_id
        for _ in range(self._hop_limit()):
            entries, next_page_id = self._load_leaf(current)
            if entries:
                index = 0 if key is None else bisect_left([e.key for e in entries], key)
                if index < len(entries):
                    self._position(current, index)
                    return
            if next_page_id == 0:
                self._reset()
                return
            current = next_page_id
        raise CursorError("E5305", "leaf chain traversal exceeded page-count bound")

    def seek_first(self, first_leaf_page_id: int) -> None:
        """Position on the first entry of the chain starting at ``first_leaf_page_id``."""
        self._ensure_open()
        if first_leaf_page_id == 0:
            raise CursorError("E5302", "starting leaf page id must be non-zero")
        self._walk(first_leaf_page_id, None)

    def seek(self, first_leaf_page_id: int, key: int) -> None:
        """Position on ``key`` or the next greater key in the chain."""
        self._ensure_open()
        if first_leaf_page_id == 0:
            raise CursorError("E5302", "starting leaf page id must be non-zero")
        self._walk(first_leaf_page_id, key)

    def next(self) -> None:
        """Advance to the following entry, possibly moving to the end."""
        self._ensure_open()
        if not self._valid:
            raise CursorError("E5304", "cursor is not positioned on an entry")
        entries, next_page_id = self._load_leaf(self._page_id)
        if self._entry_index + 1 < len(entries):
            self._entry_index += 1
            return
        if next_page_id == 0:
            self._reset()
            return
        self._walk(next_page_id, None)

    def current(self) -> LeafEntry:
        """The entry the cursor is positioned on."""
        self._ensure_open()
        if not self._valid:
            raise CursorError("E5304", "cursor is not positioned on an entry")
        entries, _ = self._load_leaf(self._page_id)
        if self._entry_index >= len(entries):
            raise CursorError("E5102", "leaf entry index is outside entry count")
        return entries[self._entry_index]

    def is_valid(self) -> bool:
        return self._valid

    def __iter__(self) -> Iterator[LeafEntry]:
        """Yield entries from the current position to the end of the chain."""
        while self._valid:
            yield self.current()
            self.next()