import io
import json
import os

import pytest

from file_exchange.storage import (
    FileStorage, FileTooLargeError, InvalidFilenameError, recover_original_name,
)

NOW = 1700000000000


@pytest.fixture
def store(tmp_path):
    return FileStorage(tmp_path / "nested" / "uploads", max_size=16)


@pytest.mark.parametrize("original, expected", [
    ("report.txt", f"report-{NOW}.txt"),
    ("archive.tar.gz", f"archive.tar-{NOW}.gz"),
    ("noext", f"noext-{NOW}"),
    (".bashrc", f"bashrc-{NOW}"),
    ("../../etc/passwd", f"passwd-{NOW}"),
    ("C:\\Users\\me\\doc.pdf", f"doc-{NOW}.pdf"),
    ("报告.txt", f"file-{NOW}.txt"),
    ("my report.txt", f"my_report-{NOW}.txt"),
])
def test_stored_name_for(original, expected):
    assert FileStorage.stored_name_for(original, NOW) == expected


def test_recover_original_name_is_lossy():
    assert recover_original_name(f"report-{NOW}.txt") == "report"
    assert recover_original_name(f"my-report-{NOW}.txt") == "my-report"
    assert recover_original_name("plain.txt") == ""


def test_root_is_created(tmp_path):
    root = tmp_path / "a" / "b"
    store = FileStorage(root)
    assert root.is_dir()
    assert (root / ".meta").is_dir()
    assert store.root == root.resolve()


def test_save_writes_file_and_metadata(store):
    stored = store.save(io.BytesIO(b"hello"), "my-report-v2.txt")
    assert stored.path.read_bytes() == b"hello"
    assert stored.size == 5
    meta = json.loads((store.meta_dir / f"{stored.name}.json").read_text())
    assert meta["originalName"] == "my-report-v2.txt"
    [listed] = store.list_files()
    assert listed.original_name == "my-report-v2"
    assert listed.original_filename == "my-report-v2.txt"


def test_save_over_limit_leaves_nothing(store):
    with pytest.raises(FileTooLargeError):
        store.save(io.BytesIO(b"x" * 17), "big.bin")
    assert os.listdir(store.root) == [".meta"]
    assert os.listdir(store.meta_dir) == []


def test_save_removes_partial_file_on_stream_error(store):
    class Broken(io.RawIOBase):
        calls = 0

        def read(self, size=-1):
            self.calls += 1
            if self.calls > 1:
                raise OSError("client went away")
            return b"abc"

    with pytest.raises(OSError):
        store.save(Broken(), "partial.txt")
    assert os.listdir(store.root) == [".meta"]


def test_list_skips_hidden_entries_and_directories(store):
    (store.root / ".hidden").write_bytes(b"x")
    (store.root / "subdir").mkdir()
    (store.root / f"plain-{NOW}.txt").write_bytes(b"abc")
    [listed] = store.list_files()
    assert listed.name == f"plain-{NOW}.txt"
    assert listed.original_name == "plain"
    assert listed.original_filename is None
    assert listed.size == 3


def test_unreadable_metadata_falls_back_to_stored_name(store):
    (store.root / f"notes-{NOW}.md").write_bytes(b"#")
    (store.meta_dir / f"notes-{NOW}.md.json").write_text("{not json")
    [listed] = store.list_files()
    assert listed.original_name == "notes"


@pytest.mark.parametrize("record", [
    {"originalName": "x", "uploadTime": "oops"},
    {"originalName": 42, "uploadTime": NOW},
    {"originalName": "x"},
    ["x", NOW],
])
def test_malformed_metadata_falls_back_to_stored_name(store, record):
    (store.root / f"notes-{NOW}.md").write_bytes(b"#")
    (store.meta_dir / f"notes-{NOW}.md.json").write_text(json.dumps(record))
    [listed] = store.list_files()
    assert listed.original_name == "notes"
    assert listed.original_filename is None
    assert listed.to_dict()["uploadTime"].endswith("Z")


@pytest.mark.parametrize("name", ["", ".", "..", ".meta", "../x", "a/b", "a\\b", "a..b", "nul\x00"])
def test_resolve_safe_rejects(store, name):
    with pytest.raises(InvalidFilenameError):
        store.resolve_safe(name)


def test_resolve_safe_rejects_symlink_out_of_root(store, tmp_path):
    outside = tmp_path / "outside.txt"
    outside.write_bytes(b"secret")
    os.symlink(outside, store.root / "link.txt")
    with pytest.raises(InvalidFilenameError):
        store.resolve_safe("link.txt")


def test_resolve_safe_missing(store):
    with pytest.raises(FileNotFoundError):
        store.resolve_safe("missing.txt")


def test_delete_removes_metadata(store):
    stored = store.save(io.BytesIO(b"bye"), "bye.txt")
    store.delete(stored.name)
    assert not stored.path.exists()
    assert os.listdir(store.meta_dir) == []
    with pytest.raises(FileNotFoundError):
        store.delete(stored.name)
