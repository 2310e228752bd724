"""Tests for key-value stores."""

import json

import pytest

from luxloop.memory import JsonFileStore, KeyValueStore, MemoryStore, validate_key


class TestKeys:
    @pytest.mark.parametrize("key", ["conv-1", "session.abc_2", "A"])
    def test_valid(self, key):
        assert validate_key(key) == key

    @pytest.mark.parametrize("key", ["", "../etc", "a/b", ".hidden", "a..b", "x" * 200])
    def test_invalid(self, key):
        with pytest.raises(ValueError, match="Invalid store key"):
            validate_key(key)


class TestMemoryStore:
    def test_roundtrip_copies(self):
        store = MemoryStore()
        value = {"items": [1, 2]}
        store.save("k", value)
        value["items"].append(3)

        loaded = store.load("k")
        loaded["items"].append(4)

        assert store.load("k") == {"items": [1, 2]}

    def test_delete_and_keys(self):
        store = MemoryStore()
        store.save("b", {})
        store.save("a", {})

        assert store.keys() == ["a", "b"]
        assert store.delete("a") is True
        assert store.delete("a") is False
        assert store.load("a") is None

    def test_satisfies_protocol(self):
        assert isinstance(MemoryStore(), KeyValueStore)


class TestJsonFileStore:
    def test_save_creates_directory(self, tmp_path):
        store = JsonFileStore(tmp_path / "sessions")
        store.save("conv-1", {"history": []})

        assert (tmp_path / "sessions" / "conv-1.json").exists()
        assert store.load("conv-1") == {"history": []}
        assert store.keys() == ["conv-1"]

    def test_missing_directory_has_no_keys(self, tmp_path):
        assert JsonFileStore(tmp_path / "nope").keys() == []

    def test_corrupt_file_loads_as_none(self, tmp_path):
        (tmp_path / "bad.json").write_text("{not json")
        (tmp_path / "list.json").write_text(json.dumps([1, 2]))
        store = JsonFileStore(tmp_path)

        assert store.load("bad") is None
        assert store.load("list") is None

    def test_no_temp_files_left(self, tmp_path):
        store = JsonFileStore(tmp_path)
        store.save("a", {"x": 1})
        store.save("a", {"x": 2})

        assert [p.name for p in tmp_path.iterdir()] == ["a.json"]
        assert store.load("a") == {"x": 2}

    def test_delete(self, tmp_path):
        store = JsonFileStore(tmp_path)
        store.save("a", {})

        assert store.delete("a") is True
        assert store.delete("a") is False

    def test_rejects_unsafe_keys(self, tmp_path):
        with pytest.raises(ValueError):
            JsonFileStore(tmp_path).save("../escape", {})
