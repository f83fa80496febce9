"""Tests for large-output storage and paged access."""

import pytest

from aibase.core.exceptions import OutputNotFoundError
from aibase.extensions.output_storage import OutputStorage, data_type_of, get_output_storage
from aibase.extensions.peek import format_bytes, peek, peek_info


@pytest.fixture
def storage(tmp_path):
    return OutputStorage(tmp_path / "outputs", file_threshold=1024, ttl_seconds=3600)


@pytest.mark.parametrize(
    "value, expected",
    [(None, "null"), (True, "boolean"), (3.5, "number"), ("x", "string"), ([1], "array"), ({}, "object")],
)
def test_data_type_of(value, expected):
    assert data_type_of(value) == expected


@pytest.mark.parametrize("size, expected", [(0, "0 Bytes"), (500, "500 Bytes"), (1024, "1 KB"), (1536, "1.5 KB")])
def test_format_bytes(size, expected):
    assert format_bytes(size) == expected


class TestOutputStorage:
    def test_small_output_kept_in_memory(self, storage):
        meta = storage.store_output([1, 2, 3], "c1", "call_1")

        assert meta.id.startswith("c1-call_1-")
        assert meta.type == "memory"
        assert meta.data_type == "array"
        assert meta.row_count == 3
        assert storage.retrieve_output(meta.id) == [1, 2, 3]
        assert not (storage.storage_dir / f"{meta.id}.json").exists()

    def test_large_output_written_to_file(self, storage):
        rows = [{"id": i, "name": "x" * 50} for i in range(100)]
        meta = storage.store_output(rows, "c1", "call_2")

        assert meta.type == "file"
        assert (storage.storage_dir / f"{meta.id}.json").exists()
        assert storage.retrieve_output(meta.id) == rows

    def test_unknown_output(self, storage):
        assert storage.get_output_metadata("missing") is None
        with pytest.raises(OutputNotFoundError):
            storage.retrieve_output("missing")

    def test_expired_output_removed(self, storage):
        meta = storage.store_output({"a": 1}, "c1", "call_1")
        meta.stored_at -= 7200

        assert storage.get_output_metadata(meta.id) is None
        assert len(storage) == 0

    def test_clear_expired_outputs(self, storage):
        old = storage.store_output("x" * 2000, "c1", "old")
        storage.store_output("fresh", "c1", "new")
        old.stored_at -= 7200

        assert storage.clear_expired_outputs() == 1
        assert len(storage) == 1
        assert not (storage.storage_dir / f"{old.id}.json").exists()

    def test_clear_conversation_outputs(self, storage):
        storage.store_output([1], "c1", "a")
        storage.store_output([2], "c1", "b")
        storage.store_output([3], "c2", "c")

        assert storage.clear_conversation_outputs("c1") == 2
        assert len(storage) == 1

    def test_singleton_uses_data_dir(self, data_dir):
        assert get_output_storage().storage_dir == data_dir / "output" / "storage"
        assert get_output_storage() is get_output_storage()


class TestPeek:
    def test_peek_array_pages(self, storage):
        meta = storage.store_output(list(range(250)), "c1", "call_1")

        page = peek(meta.id, offset=100, limit=100, storage=storage)
        assert page["data"] == list(range(100, 200))
        assert page["metadata"]["actual_returned"] == 100
        assert page["metadata"]["has_more"] is True
        assert page["metadata"]["row_count"] == 250

        last = peek(meta.id, offset=200, limit=100, storage=storage)
        assert last["data"] == list(range(200, 250))
        assert last["metadata"]["has_more"] is False

    def test_peek_object_by_keys(self, storage):
        meta = storage.store_output({f"k{i}": i for i in range(5)}, "c1", "call_1")
        page = peek(meta.id, offset=1, limit=2, storage=storage)
        assert page["data"] == {"k1": 1, "k2": 2}
        assert page["metadata"]["has_more"] is True

    def test_peek_string(self, storage):
        meta = storage.store_output("abcdefgh", "c1", "call_1")
        assert peek(meta.id, offset=2, limit=3, storage=storage)["data"] == "cde"

    def test_peek_tuple_pages_like_array(self, storage):
        meta = storage.store_output(tuple(range(10)), "c1", "call_1")
        page = peek(meta.id, offset=2, limit=3, storage=storage)
        assert page["data"] == [2, 3, 4]
        assert page["metadata"]["actual_returned"] == 3
        assert page["metadata"]["has_more"] is True

    def test_peek_scalar_returned_whole(self, storage):
        meta = storage.store_output(42, "c1", "call_1")
        page = peek(meta.id, storage=storage)
        assert page["data"] == 42
        assert page["metadata"]["actual_returned"] == 1

    @pytest.mark.parametrize("offset, limit", [(-1, 10), (0, 0)])
    def test_peek_rejects_bad_window(self, storage, offset, limit):
        meta = storage.store_output([1], "c1", "call_1")
        with pytest.raises(ValueError):
            peek(meta.id, offset=offset, limit=limit, storage=storage)

    def test_peek_unknown(self, storage):
        with pytest.raises(OutputNotFoundError):
            peek("nope", storage=storage)

    def test_peek_info(self, storage):
        meta = storage.store_output(list(range(10)), "c1", "call_1")
        info = peek_info(meta.id, storage=storage)
        assert info["output_id"] == meta.id
        assert info["data_type"] == "array"
        assert info["row_count"] == 10
        assert info["storage_type"] == "memory"
        assert info["size_formatted"].endswith("Bytes")
