"""Primary-key B+ tree over leaf and internal node pages held in a page store."""

from __future__ import annotations

from enum import Enum
from typing import Callable, NamedTuple

from atlasdb.common import BtreeError, Page, PageStore
from atlasdb.internal_node import (
    INTERNAL_MAGIC,
    InternalEntry,
    InternalNodeError,
    find_internal_child,
    initialize_internal_root,
    insert_internal_entry,
    internal_entries,
    internal_entry_count,
    internal_left_child,
    split_internal,
)
from atlasdb.leaf_node import (
    LEAF_MAGIC,
    LeafEntry,
    LeafNodeError,
    find_leaf_entry,
    initialize_leaf,
    insert_leaf_entry,
    leaf_entry_count,
    split_leaf,
)


class BtreeIndexError(BtreeError):
    """Raised when a B-tree index operation fails."""


class _NodeType(Enum):
    LEAF = "leaf"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


class _Promotion(NamedTuple):
    key: int
    right_page_id: int


def _node_type(page: Page) -> _NodeType:
    if page.has_magic(LEAF_MAGIC):
        return _NodeType.LEAF
    if page.has_magic(INTERNAL_MAGIC):
        return _NodeType.INTERNAL
    return _NodeType.UNKNOWN


class BtreeIndex:
    """B+ tree mapping unique integer keys to row locations."""

    def __init__(self, pager: PageStore | None) -> None:
        self._pager = pager
        self._root_page_id = 0

    def _ensure_open(self) -> PageStore:
        if self._pager is None or not self._pager.is_open:
            raise BtreeIndexError("E5401", "btree index pager is not open")
        return self._pager

    def _ensure_root(self) -> int:
        if self._root_page_id == 0:
            raise BtreeIndexError("E5403", "btree index root page is not initialized")
        return self._root_page_id

    def _read(self, page_id: int) -> Page:
        if page_id == 0:
            raise BtreeIndexError("E5403", "btree page id must be non-zero")
        return self._ensure_open().read_page(page_id)

    def _new_page(self) -> Page:
        pager = self._ensure_open()
        page_id = pager.allocate_page()
        return Page.zeroed(page_id, pager.page_size)

    def initialize(self) -> int:
        """Create an empty leaf root and return its page id."""
        pager = self._ensure_open()
        root = self._new_page()
        initialize_leaf(root)
        pager.write_page(root)
        self._root_page_id = root.id
        return root.id

    def open(self, root_page_id: int) -> None:
        """Attach the index to an existing root page after checking its layout."""
        self._ensure_open()
        if root_page_id == 0:
            raise BtreeIndexError("E5403", "btree root page id must be non-zero")
        root = self._read(root_page_id)
        node_type = _node_type(root)
        if node_type is _NodeType.LEAF:
            leaf_entry_count(root)
        elif node_type is _NodeType.INTERNAL:
            internal_entry_count(root)
        else:
            raise BtreeIndexError("E5402", "btree root page has unknown node magic")
        self._root_page_id = root_page_id

    def root_page_id(self) -> int:
        return self._ensure_root()

    def _descend(self, choose_child: Callable[[Page], int]) -> int:
        pager = self._ensure_open()
        current = self._ensure_root()
        hop_limit = pager.page_count
        if hop_limit == 0:
            raise BtreeIndexError("E5405", "btree traversal has invalid hop limit")
        for _ in range(hop_limit):
            page = self._read(current)
            node_type = _node_type(page)
            if node_type is _NodeType.LEAF:
                leaf_entry_count(page)
                return current
            if node_type is _NodeType.INTERNAL:
                current = choose_child(page)
                continue
            raise BtreeIndexError("E5402", "btree page has unknown node magic")
        raise BtreeIndexError("E5405", "btree traversal exceeded declared page-count bound")

    def find_leaf_page(self, key: int) -> int:
        """Page id of the leaf whose key range contains ``key``."""
        return self._descend(lambda page: find_internal_child(page, key))

    def first_leaf_page(self) -> int:
        """Page id of the leftmost leaf."""
        return self._descend(internal_left_child)

    def find(self, key: int) -> LeafEntry:
        """Return the entry stored for ``key``."""
        leaf = self._read(self.find_leaf_page(key))
        return find_leaf_entry(leaf, key)[1]

    def insert(self, entry: LeafEntry) -> None:
        """Insert ``entry``, splitting nodes and growing a new root as needed."""
        pager = self._ensure_open()
        root_id = self._ensure_root()
        promotion = self._insert_into(root_id, entry)
        if promotion is None:
            return
        new_root = self._new_page()
        initialize_internal_root(new_root, root_id, promotion.key, promotion.right_page_id)
        pager.write_page(new_root)
        self._root_page_id = new_root.id

    def _insert_into(self, page_id: int, entry: LeafEntry) -> _Promotion | None:
        page = self._read(page_id)
        node_type = _node_type(page)
        if node_type is _NodeType.LEAF:
            return self._insert_into_leaf(page, entry)
        if node_type is _NodeType.INTERNAL:
            return self._insert_into_internal(page, entry)
        raise BtreeIndexError("E5402", "btree page has unknown node magic")

    def _insert_into_leaf(self, page: Page, entry: LeafEntry) -> _Promotion | None:
        pager = self._ensure_open()
        try:
            insert_leaf_entry(page, entry)
        except LeafNodeError as exc:
            if exc.code != "E5103":
                raise
        else:
            pager.write_page(page)
            return None

        try:
            find_leaf_entry(page, entry.key)
        except LeafNodeError as exc:
            if exc.code != "E5105":
                raise
        else:
            raise BtreeIndexError("E5104", "leaf entry key must be strictly increasing")

        right = self._new_page()
        split = split_leaf(page, right)
        target = right if entry.key >= split.promoted_key else page
        insert_leaf_entry(target, entry)
        pager.write_page(page)
        pager.write_page(right)
        return _Promotion(split.promoted_key, split.right_page_id)

    def _insert_into_internal(self, page: Page, entry: LeafEntry) -> _Promotion | None:
        pager = self._ensure_open()
        child_promotion = self._insert_into(find_internal_child(page, entry.key), entry)
        if child_promotion is None:
            return None

        separator = InternalEntry(child_promotion.key, child_promotion.right_page_id)
        try:
            insert_internal_entry(page, separator)
        except InternalNodeError as exc:
            if exc.code != "E5203":
                raise
        else:
            pager.write_page(page)
            return None

        if any(existing.key == separator.key for existing in internal_entries(page)):
            raise BtreeIndexError("E5204", "internal separator key must be unique")

        right = self._new_page()
        split = split_internal(page, right)
        target = right if separator.key >= split.promoted_key else page
        insert_internal_entry(target, separator)
        pager.write_page(page)
        pager.write_page(right)
        return _Promotion(split.promoted_key, split.right_page_id)