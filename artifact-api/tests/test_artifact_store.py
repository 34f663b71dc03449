from datetime import datetime

import pytest

from artifact_store import DEFAULT_CONTENT_TYPE, FilesystemArtifactStore
from errors import InvalidStorageKey


@pytest.fixture
def store(tmp_path):
    return FilesystemArtifactStore(tmp_path / "store")


class TestFilesystemArtifactStore:
    def test_put_then_get(self, store):
        store.put("main/latest/x.zip", b"PK\x03\x04", "application/zip", {"repository": "noraneko/artifacts"})

        artifact = store.get("main/latest/x.zip")

        assert artifact.data == b"PK\x03\x04"
        assert artifact.content_type == "application/zip"
        assert artifact.metadata == {"repository": "noraneko/artifacts"}

    def test_get_missing(self, store):
        assert store.get("main/latest/nonexistent.zip") is None

    def test_get_directory_is_missing(self, store):
        store.put("main/latest/x.zip", b"x", None, {})
        assert store.get("main/latest") is None

    def test_put_overwrites(self, store):
        store.put("main/latest/x.zip", b"first", "application/zip", {"run_id": "1", "actor": "a"})
        store.put("main/latest/x.zip", b"second", None, {"run_id": "2"})

        artifact = store.get("main/latest/x.zip")

        assert artifact.data == b"second"
        assert artifact.content_type == DEFAULT_CONTENT_TYPE
        assert artifact.metadata == {"run_id": "2"}
        assert len(store.list("main/latest/")) == 1

    def test_list(self, store):
        store.put("main/latest/a.zip", b"aaa", None, {})
        store.put("main/latest/b.zip", b"b", None, {})
        store.put("dev/latest/c.zip", b"c", None, {})

        entries = store.list("main/latest/")

        assert [entry.key for entry in entries] == ["main/latest/a.zip", "main/latest/b.zip"]
        assert [entry.size for entry in entries] == [3, 1]
        assert all(isinstance(entry.uploaded_at, datetime) for entry in entries)
        assert entries[0].uploaded_at.tzinfo is not None

    def test_list_empty(self, store):
        assert store.list("main/latest/") == []

    @pytest.mark.parametrize("first,second", [
        ("rel/latest/x.zip", "rel/latest/x.zip/latest/x.zip"),
        ("rel/latest/x.zip/latest/x.zip", "rel/latest/x.zip"),
    ])
    def test_one_key_never_shadows_another(self, store, first, second):
        store.put(first, first.encode(), None, {})
        store.put(second, second.encode(), None, {})

        assert store.get(first).data == first.encode()
        assert store.get(second).data == second.encode()
        assert [entry.key for entry in store.list("rel/latest/")] == ["rel/latest/x.zip"]

    def test_long_keys(self, store):
        key = "/".join(["b" * 250] * 4) + "/latest/" + "f" * 255
        store.put(key, b"x", None, {})
        assert store.get(key).data == b"x"
        assert [entry.key for entry in store.list(key.rpartition("/")[0] + "/")] == [key]

    def test_list_only_returns_direct_children(self, store):
        store.put("main/latest/a.zip", b"a", None, {})
        store.put("main/latest/nested/latest/b.zip", b"b", None, {})
        assert [entry.key for entry in store.list("main/latest/")] == ["main/latest/a.zip"]

    def test_list_prefix_must_end_with_slash(self, store):
        with pytest.raises(InvalidStorageKey):
            store.list("main/latest")

    def test_no_temporary_files_left_behind(self, store):
        store.put("main/latest/a.zip", b"aaa", None, {})
        assert list(store.tmp_dir.iterdir()) == []

    @pytest.mark.parametrize("key", [
        "../outside",
        "main/../../outside",
        "/etc/passwd",
        "main//latest/x.zip",
        "",
        "..",
        "main/latest/",
        "main/latest/" + "f" * 256,
    ])
    def test_rejects_unusable_keys(self, store, key):
        with pytest.raises(InvalidStorageKey):
            store.put(key, b"x", None, {})
        with pytest.raises(InvalidStorageKey):
            store.get(key)
