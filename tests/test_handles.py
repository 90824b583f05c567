import pytest

from edgehost.async_item import AsyncItem
from edgehost.handles import (
    ContentEncodings,
    HandleTable,
    InjectedSecret,
    RequestMetadata,
    SelectTarget,
    StandardSecret,
)
from edgehost.streaming_body import Body


def test_push_returns_distinct_handles_numbered_by_issue_order():
    table = HandleTable()
    handles = []
    for item in ["a", "b", "c"]:
        before = len(table)
        handle = table.push(item)
        assert handle == before
        handles.append(handle)
    assert len(set(handles)) == len(handles)
    assert [table.get(h) for h in handles] == ["a", "b", "c"]


def test_first_handle_is_zero():
    table = HandleTable()
    assert table.push("x") == 0


def test_get_unknown_handle_is_none():
    table = HandleTable()
    table.push("a")
    assert table.get(5) is None
    assert table.get(-1) is None
    assert table.get("0") is None


def test_take_empties_slot_without_reusing_it():
    table = HandleTable()
    handle = table.push("a")
    assert table.take(handle) == "a"
    assert table.take(handle) is None
    assert table.get(handle) is None
    assert handle not in table
    assert len(table) == 1
    assert table.push("b") != handle


def test_put_refills_taken_slot():
    table = HandleTable()
    handle = table.push("a")
    table.take(handle)
    table.put(handle, "again")
    assert table.get(handle) == "again"
    assert handle in table


def test_put_replaces_existing_item():
    table = HandleTable()
    handle = table.push("a")
    table.put(handle, "b")
    assert table.get(handle) == "b"


def test_put_on_never_issued_handle_raises():
    table = HandleTable()
    with pytest.raises(KeyError):
        table.put(0, "a")


def test_none_is_rejected():
    table = HandleTable()
    with pytest.raises(TypeError):
        table.push(None)
    handle = table.push("a")
    with pytest.raises(TypeError):
        table.put(handle, None)


def test_contains_tracks_live_items():
    table = HandleTable()
    first = table.push("a")
    second = table.push("b")
    table.take(first)
    assert first not in table
    assert second in table
    assert 99 not in table
    assert True not in table


def test_content_encodings_flags():
    empty = ContentEncodings(0)
    assert ContentEncodings.GZIP not in empty
    assert ContentEncodings.GZIP in (empty | ContentEncodings.GZIP)


def test_request_metadata_defaults_to_no_encodings():
    meta = RequestMetadata()
    assert meta.auto_decompress_encodings == ContentEncodings(0)
    assert ContentEncodings.GZIP not in meta.auto_decompress_encodings
    other = RequestMetadata(auto_decompress_encodings=ContentEncodings.GZIP)
    assert ContentEncodings.GZIP in other.auto_decompress_encodings


def test_secret_lookups_compare_by_value():
    assert StandardSecret("store", "name") == StandardSecret("store", "name")
    assert StandardSecret("store", "name") != StandardSecret("store", "other")
    assert InjectedSecret(b"secret").plaintext == b"secret"
    with pytest.raises(AttributeError):
        InjectedSecret(b"secret").plaintext = b"token"


def test_select_target_round_trips_through_table():
    table = HandleTable()
    item = AsyncItem(Body(b"hi"))
    handle = table.push(item)
    target = SelectTarget(handle=handle, item=table.take(handle))
    assert table.get(handle) is None
    table.put(target.handle, target.item)
    assert table.get(handle) is item
    assert table.get(handle).as_body() is not None