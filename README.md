# atlasdb

A small B+tree primary index over fixed-size pages. Keys are signed 64-bit integers. Each
key maps to a row location, which is a page id and a slot index. Leaf pages are linked
together, so an ordered scan walks from one leaf to the next.

## Install

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `atlasdb.common` holds the shared pieces.
  - `Page` is a page id plus a mutable `bytearray`. It offers little-endian `read_u16`,
    `read_u32` and `read_i64`, the matching `write_*` methods, and `has_magic`.
    `Page.zeroed(page_id, size)` builds an empty page.
  - `PageStore` allocates and stores pages. By default it keeps them in memory. Pass a
    `path` and it also writes them to a file, which it reads back when opened again.
    - Page 0 holds the store header, so allocated ids start at 1. `page_count` includes
      that reserved page.
    - Its methods are `allocate_page()`, `read_page(page_id)` (which returns a copy),
      `write_page(page)` and `close()`. It can also be used as a context manager.
  - `BtreeError` is the base error. It carries a stable `code` and a `message`.
- `atlasdb.leaf_node` is the leaf page layout.
  - It defines `LeafEntry(key, row_page_id, row_slot_index)`.
  - The functions are `initialize_leaf`, `append_leaf_entry`, `insert_leaf_entry`,
    `read_leaf_entry`, `leaf_entries`, `find_leaf_entry`, `leaf_entry_count`, `leaf_capacity`,
    `set_leaf_next_page`, `leaf_next_page` and `split_leaf`.
  - `split_leaf` returns a `LeafSplit`.
- `atlasdb.internal_node` is the internal page layout.
  - It defines `InternalEntry(key, child_page_id)`.
  - The functions are `initialize_internal`, `append_internal_entry`, `insert_internal_entry`,
    `read_internal_entry`, `internal_entries`, `internal_entry_count`, `internal_capacity`,
    `set_internal_left_child`, `internal_left_child`, `find_internal_child`,
    `initialize_internal_root` and `split_internal`.
  - `split_internal` returns an `InternalSplit`.
- `atlasdb.index` provides `BtreeIndex(pager)`.
  - `initialize()` creates an empty leaf root and returns its page id.
  - `open(root_page_id)` attaches the index to an existing root.
  - `root_page_id()` returns the current root page id.
  - `insert(entry)` inserts a key. It splits leaves and internal nodes as needed and grows a
    new root.
  - `find(key)` returns the entry stored for a key.
  - `find_leaf_page(key)` returns the leaf that would hold a key.
  - `first_leaf_page()` returns the leftmost leaf.
- `atlasdb.cursor` provides `LeafCursor(pager)`, which walks the leaf chain in key order.
  - `seek_first(leaf_id)` moves to the first entry of the chain.
  - `seek(leaf_id, key)` moves to `key`, or to the next greater key if `key` is absent.
  - `current()` returns the entry under the cursor.
  - `next()` advances the cursor.
  - `is_valid()` tells whether the cursor is on an entry.
  - Iterating the cursor yields the entries from its position to the end.

## Example

```python
from atlasdb.common import PageStore
from atlasdb.cursor import LeafCursor
from atlasdb.index import BtreeIndex
from atlasdb.leaf_node import LeafEntry

with PageStore("index.db") as pager:     # or PageStore() for memory only
    index = BtreeIndex(pager)
    root = index.initialize()

    for key in (20, 5, 15, 30):
        index.insert(LeafEntry(key, row_page_id=100 + key, row_slot_index=0))

    print(index.find(15))                # LeafEntry(key=15, row_page_id=115, row_slot_index=0)

    cursor = LeafCursor(pager)
    cursor.seek_first(index.first_leaf_page())
    print([entry.key for entry in cursor])   # [5, 15, 20, 30]
```

The root page can move when the root splits. To reopen the index later, save the value of
`index.root_page_id()` and pass it to `BtreeIndex(pager).open(...)`.

## Errors

A failed operation raises a subclass of `BtreeError`. The subclasses are `BtreeIndexError`,
`LeafNodeError`, `InternalNodeError` and `CursorError`. Each has a `code` attribute. Some
examples:

| Code    | Meaning                                      |
|---------|----------------------------------------------|
| `E5105` | the key is missing                           |
| `E5104` | the key is a duplicate                       |
| `E5402` | a page has no recognised node magic          |
| `E5401` | the pager is not open (index)                |
| `E5301` | the pager is not open (cursor)               |
| `E3001` | a page id is not allocated (`PageStore`)     |
| `E3002` | the store is closed (`PageStore`)            |

## What it does not do

This package covers the index layer only:

- It has no SQL parser, table or row storage, catalog or command-line tool.
- Keys cannot be deleted or updated.
- `PageStore` writes each page straight to its file. It offers no transactions or crash
  recovery.