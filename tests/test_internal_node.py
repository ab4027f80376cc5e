import pytest

from atlasdb.common import Page
from atlasdb.internal_node import (
    INTERNAL_ENTRY_SIZE,
    INTERNAL_HEADER_SIZE,
    InternalEntry,
    InternalNodeError,
    append_internal_entry,
    find_internal_child,
    initialize_internal,
    initialize_internal_root,
    insert_internal_entry,
    internal_capacity,
    internal_entries,
    internal_entry_count,
    internal_left_child,
    read_internal_entry,
    set_internal_left_child,
    split_internal,
)


def _node(page_id=1, left_child=1, entries=(), size=4096):
    page = Page.zeroed(page_id, size)
    initialize_internal(page, left_child)
    for entry in entries:
        append_internal_entry(page, entry)
    return page


def _code(excinfo):
    return excinfo.value.code


def test_initialize_writes_magic_and_left_child():
    page = _node(left_child=7)
    assert bytes(page.data[:8]) == b"ATLBIN\0\0"
    assert internal_left_child(page) == 7
    assert internal_entry_count(page) == 0
    assert internal_entries(page) == []


def test_initialize_rejects_zero_left_child():
    with pytest.raises(InternalNodeError) as excinfo:
        initialize_internal(Page.zeroed(1), 0)
    assert _code(excinfo) == "E5202"


def test_uninitialized_page_has_invalid_magic():
    with pytest.raises(InternalNodeError) as excinfo:
        internal_entry_count(Page.zeroed(1))
    assert _code(excinfo) == "E5201"
    assert excinfo.value.message == "internal node has invalid magic"


def test_append_round_trip():
    page = _node()
    assert append_internal_entry(page, InternalEntry(10, 2)) == 0
    assert append_internal_entry(page, InternalEntry(20, 3)) == 1
    assert read_internal_entry(page, 1) == InternalEntry(20, 3)
    assert internal_entries(page) == [InternalEntry(10, 2), InternalEntry(20, 3)]


def test_append_rejects_non_increasing_key():
    page = _node(entries=[InternalEntry(10, 2)])
    with pytest.raises(InternalNodeError) as excinfo:
        append_internal_entry(page, InternalEntry(10, 3))
    assert _code(excinfo) == "E5204"
    assert internal_entry_count(page) == 1


def test_append_rejects_zero_child():
    with pytest.raises(InternalNodeError) as excinfo:
        append_internal_entry(_node(), InternalEntry(10, 0))
    assert _code(excinfo) == "E5202"


def test_insert_keeps_keys_sorted():
    page = _node()
    assert insert_internal_entry(page, InternalEntry(30, 4)) == 0
    assert insert_internal_entry(page, InternalEntry(10, 2)) == 0
    assert insert_internal_entry(page, InternalEntry(20, 3)) == 1
    assert [entry.key for entry in internal_entries(page)] == [10, 20, 30]
    assert [entry.child_page_id for entry in internal_entries(page)] == [2, 3, 4]


def test_insert_rejects_duplicate_separator():
    page = _node(entries=[InternalEntry(10, 2)])
    with pytest.raises(InternalNodeError) as excinfo:
        insert_internal_entry(page, InternalEntry(10, 5))
    assert _code(excinfo) == "E5204"
    assert excinfo.value.message == "internal separator key must be unique"


def test_full_node_rejects_insert_and_append():
    size = INTERNAL_HEADER_SIZE + INTERNAL_ENTRY_SIZE * 3
    page = _node(size=size)
    assert internal_capacity(page) == 3
    for key in range(1, 4):
        insert_internal_entry(page, InternalEntry(key * 10, key + 1))
    with pytest.raises(InternalNodeError) as excinfo:
        insert_internal_entry(page, InternalEntry(5, 9))
    assert _code(excinfo) == "E5203"
    with pytest.raises(InternalNodeError) as excinfo:
        append_internal_entry(page, InternalEntry(100, 9))
    assert _code(excinfo) == "E5203"


def test_read_out_of_range():
    page = _node(entries=[InternalEntry(10, 2)])
    with pytest.raises(InternalNodeError) as excinfo:
        read_internal_entry(page, 1)
    assert _code(excinfo) == "E5205"


def test_negative_keys_round_trip():
    page = _node(entries=[InternalEntry(-50, 2), InternalEntry(-1, 3)])
    assert [entry.key for entry in internal_entries(page)] == [-50, -1]


@pytest.mark.parametrize(
    "key, child",
    [(5, 1), (10, 2), (15, 2), (20, 3), (100, 3)],
)
def test_find_child_for_key(key, child):
    page = _node(left_child=1, entries=[InternalEntry(10, 2), InternalEntry(20, 3)])
    assert find_internal_child(page, key) == child


def test_set_left_child():
    page = _node(left_child=1)
    set_internal_left_child(page, 9)
    assert internal_left_child(page) == 9
    with pytest.raises(InternalNodeError) as excinfo:
        set_internal_left_child(page, 0)
    assert _code(excinfo) == "E5202"


def test_initialize_root_from_split():
    page = Page.zeroed(5)
    initialize_internal_root(page, 2, 42, 3)
    assert internal_left_child(page) == 2
    assert internal_entries(page) == [InternalEntry(42, 3)]
    assert find_internal_child(page, 41) == 2
    assert find_internal_child(page, 42) == 3


@pytest.mark.parametrize(
    "left, right, code",
    [(0, 3, "E5202"), (2, 0, "E5202"), (4, 4, "E5206")],
)
def test_initialize_root_errors(left, right, code):
    with pytest.raises(InternalNodeError) as excinfo:
        initialize_internal_root(Page.zeroed(5), left, 1, right)
    assert _code(excinfo) == code


def test_split_moves_upper_half_and_promotes_middle():
    entries = [InternalEntry(key, child) for key, child in zip(range(10, 60, 10), range(2, 7))]
    left = _node(page_id=1, left_child=1, entries=entries)
    right = Page.zeroed(8)
    split = split_internal(left, right)

    assert split.promoted_key == entries[2].key
    assert split.right_left_child_page_id == entries[2].child_page_id
    assert split.right_page_id == 8
    assert split.left_entry_count == 2
    assert split.right_entry_count == 2

    assert internal_entries(left) == entries[:2]
    assert internal_left_child(left) == 1
    assert internal_entries(right) == entries[3:]
    assert internal_left_child(right) == entries[2].child_page_id
    assert left.id == 1


def test_split_preserves_routing():
    entries = [InternalEntry(key, key + 100) for key in range(1, 8)]
    left = _node(left_child=50, entries=entries)
    before = {key: find_internal_child(left, key) for key in range(0, 10)}
    right = Page.zeroed(9)
    split = split_internal(left, right)
    for key, child in before.items():
        target = right if key >= split.promoted_key else left
        assert find_internal_child(target, key) == child


@pytest.mark.parametrize("right_id", [0, 1])
def test_split_rejects_bad_right_page(right_id):
    left = _node(page_id=1, entries=[InternalEntry(10, 2), InternalEntry(20, 3)])
    with pytest.raises(InternalNodeError) as excinfo:
        split_internal(left, Page.zeroed(right_id))
    assert _code(excinfo) == "E5207"


def test_split_requires_two_entries():
    left = _node(entries=[InternalEntry(10, 2)])
    with pytest.raises(InternalNodeError) as excinfo:
        split_internal(left, Page.zeroed(2))
    assert _code(excinfo) == "E5207"
    assert internal_entry_count(left) == 1


def test_corrupt_left_child_detected():
    page = _node()
    page.write_u32(12, 0)
    with pytest.raises(InternalNodeError) as excinfo:
        internal_left_child(page)
    assert _code(excinfo) == "E5201"


def test_corrupt_entry_count_detected():
    page = _node()
    page.write_u16(10, internal_capacity(page) + 1)
    with pytest.raises(InternalNodeError) as excinfo:
        internal_entries(page)
    assert excinfo.value.message == "internal node entry count exceeds capacity"


def test_corrupt_key_order_detected():
    page = _node(entries=[InternalEntry(10, 2), InternalEntry(20, 3)])
    page.write_i64(INTERNAL_HEADER_SIZE + INTERNAL_ENTRY_SIZE, 5)
    with pytest.raises(InternalNodeError) as excinfo:
        internal_entries(page)
    assert excinfo.value.message == "internal node keys are not strictly increasing"


def test_corrupt_zero_child_detected():
    page = _node(entries=[InternalEntry(10, 2)])
    page.write_u32(INTERNAL_HEADER_SIZE + 8, 0)
    with pytest.raises(InternalNodeError) as excinfo:
        find_internal_child(page, 10)
    assert excinfo.value.message == "internal node child page id is invalid"