"""Tests for the file-backed song store."""

import os

import pytest

from songbook.document_store import SongStore
from songbook.errors import SongNotFound, StorageError, ValidationError

from conftest import YESTERDAY


@pytest.fixture
def store(tmp_path):
    return SongStore(tmp_path / "songs")


class TestReadWrite:

    def test_round_trip_is_byte_exact(self, store):
        body = "{title: X}\r\n{artist: Y}\r\n\r\n[G]Line   with  spaces \n\nünïcödé\n"
        store.write("x-y", body)
        assert store.read("x-y") == body

    def test_file_layout(self, store):
        store.write("yesterday-the-beatles", YESTERDAY)
        path = store.root / "yesterday-the-beatles.song"
        assert path.is_file()
        assert path.read_text(encoding="utf-8") == YESTERDAY

    def test_overwrite(self, store):
        store.write("a", "one")
        store.write("a", "two")
        assert store.read("a") == "two"

    def test_no_temp_files_left(self, store):
        store.write("a", "one")
        assert sorted(os.listdir(store.root)) == ["a.song"]

    def test_read_missing(self, store):
        with pytest.raises(SongNotFound):
            store.read("missing")

    def test_invalid_id_rejected_before_io(self, store):
        for bad in ("../etc/passwd", "Upper", "a b", "", "a--b", "-a"):
            with pytest.raises(ValidationError):
                store.read(bad)
            with pytest.raises(ValidationError):
                store.write(bad, "x")

    def test_unreadable_file(self, store):
        (store.root / "broken.song").write_bytes(b"\xff\xfe\xfa not utf-8")
        with pytest.raises(StorageError):
            store.read("broken")

    def test_write_failure_is_storage_error(self, store, monkeypatch):
        def fail(*args, **kwargs):
            raise OSError("disk full")
        monkeypatch.setattr(os, "replace", fail)
        with pytest.raises(StorageError):
            store.write("a", "one")
        assert not store.exists("a")
        assert os.listdir(store.root) == []


class TestDeleteAndList:

    def test_delete(self, store):
        store.write("a", "one")
        store.delete("a")
        assert not store.exists("a")

    def test_delete_missing(self, store):
        with pytest.raises(SongNotFound):
            store.delete("missing")

    def test_exists(self, store):
        store.write("a", "one")
        assert store.exists("a")
        assert not store.exists("b")
        assert not store.exists("../a")

    def test_list_ids_skips_foreign_files(self, store):
        store.write("b", "two")
        store.write("a", "one")
        (store.root / ".a.123.tmp").write_text("partial")
        (store.root / "notes.txt").write_text("x")
        (store.root / "Bad Name.song").write_text("x")
        assert store.list_ids() == ["a", "b"]
        assert store.count() == 2
