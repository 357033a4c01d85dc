import os

import pytest

from vaultsync.config import VaultSyncConfig
from vaultsync.core import ChangeType, ItemType, LocalChange
from vaultsync.errors import DriveServerError, NoVaultIdError
from vaultsync.utils.hashing import content_hash

from fixtures import T0, write_file


def file_change(change_type, path, old_path=None):
    return LocalChange(change_type, ItemType.File, path, old_path)


def folder_change(change_type, path, old_path=None):
    return LocalChange(change_type, ItemType.Folder, path, old_path)


def created(engine, vault_dir, path, data=b"text", mtime=T0):
    write_file(vault_dir, path, data, mtime)
    engine.handle_change(file_change(ChangeType.Created, path))


# ==== files ===========================================================================


def test_created(engine, vault_dir, drive):
    created(engine, vault_dir, "notes/a.md", b"text")

    remote = drive.by_path("notes/a.md")

    assert drive.uploads == ["notes/a.md"]
    assert engine.index.get_file("notes/a.md").remote_file_id == remote.id
    assert engine.index_store.load("notes").get_file("notes/a.md") is not None


def test_created_ignored(engine, vault_dir, drive):
    created(engine, vault_dir, "script.py")
    engine.handle_change(file_change(ChangeType.Created, "missing.md"))

    assert drive.uploads == []
    assert engine.index.files == {}


def test_created_keeps_existing_record(engine, vault_dir, drive):
    created(engine, vault_dir, "a.md", b"text")
    record = engine.index.get_file("a.md")

    engine.handle_change(file_change(ChangeType.Created, "a.md"))

    assert engine.index.get_file("a.md").remote_file_id == record.remote_file_id
    assert len(drive.files) == 1


def test_created_upload_failure(engine, vault_dir, drive):
    drive.fail_uploads.add("a.md")
    write_file(vault_dir, "a.md", b"text")

    with pytest.raises(DriveServerError):
        engine.handle_change(file_change(ChangeType.Created, "a.md"))

    record = engine.index_store.load("notes").get_file("a.md")

    assert record.is_sentinel
    assert record.last_error


def test_modified(engine, vault_dir, drive):
    created(engine, vault_dir, "a.md", b"text", T0)

    # unchanged file
    engine.handle_change(file_change(ChangeType.Modified, "a.md"))

    assert drive.uploads == ["a.md"]

    write_file(vault_dir, "a.md", b"new text", T0 + 1000)
    engine.handle_change(file_change(ChangeType.Modified, "a.md"))

    record = engine.index.get_file("a.md")

    assert drive.uploads == ["a.md", "a.md"]
    assert drive.contents[record.remote_file_id] == b"new text"
    assert record.last_synced_hash == content_hash(b"new text")
    assert record.last_synced_time == T0 + 1000
    assert record.sync_count == 2


def test_modified_ignored(engine, vault_dir, drive):
    write_file(vault_dir, "script.py", b"print()")

    engine.handle_change(file_change(ChangeType.Modified, "script.py"))
    engine.handle_change(file_change(ChangeType.Modified, "missing.md"))

    assert drive.uploads == []


def test_deleted(engine, vault_dir, drive):
    created(engine, vault_dir, "a.md")
    os.remove(vault_dir / "a.md")

    engine.handle_change(file_change(ChangeType.Deleted, "a.md"))

    assert engine.index.get_file("a.md") is None
    # deletions are not propagated
    assert drive.by_path("a.md") is not None


def test_renamed(engine, vault_dir, drive):
    created(engine, vault_dir, "notes/a.md", b"text", T0)
    file_id = drive.by_path("notes/a.md").id

    os.makedirs(vault_dir / "archive")
    os.rename(vault_dir / "notes" / "a.md", vault_dir / "archive" / "b.md")

    engine.handle_change(
        file_change(ChangeType.Renamed, "archive/b.md", old_path="notes/a.md")
    )

    assert drive.moves == [("notes/a.md", "archive/b.md", drive.folders["archive"], T0)]
    assert drive.files[file_id].name == "archive/b.md"
    assert drive.uploads == ["notes/a.md"]

    assert engine.index.get_file("notes/a.md") is None
    assert engine.index.get_file("archive/b.md").remote_file_id == file_id


def test_renamed_and_modified(engine, vault_dir, drive):
    created(engine, vault_dir, "a.md", b"text", T0)
    file_id = drive.by_path("a.md").id

    os.remove(vault_dir / "a.md")
    write_file(vault_dir, "b.md", b"changed", T0 + 1000)

    engine.handle_change(file_change(ChangeType.Renamed, "b.md", old_path="a.md"))

    assert drive.uploads == ["a.md", "b.md"]
    assert drive.files[file_id].name == "b.md"
    assert drive.contents[file_id] == b"changed"


def test_renamed_untracked(engine, vault_dir, drive):
    write_file(vault_dir, "b.md", b"text")

    engine.handle_change(file_change(ChangeType.Renamed, "b.md", old_path="a.md"))

    assert drive.moves == []
    assert drive.uploads == ["b.md"]


def test_renamed_to_untracked_extension(engine, vault_dir, drive):
    created(engine, vault_dir, "a.md")
    os.rename(vault_dir / "a.md", vault_dir / "a.py")

    engine.handle_change(file_change(ChangeType.Renamed, "a.py", old_path="a.md"))

    assert engine.index.files == {}
    assert drive.moves == []


# ==== folders =========================================================================


def test_folder_created(engine, vault_dir):
    write_file(vault_dir, "notes/a.md", b"a")
    write_file(vault_dir, "notes/b.md", b"b")
    os.makedirs(vault_dir / "notes" / "daily")

    engine.handle_change(folder_change(ChangeType.Created, "notes"))
    engine.handle_change(folder_change(ChangeType.Created, ".trash"))

    folder = engine.index.get_folder("notes")

    assert folder.file_count == 2
    assert folder.subfolder_count == 1
    assert engine.index.get_folder(".trash") is None


def test_folder_deleted(engine, vault_dir):
    created(engine, vault_dir, "notes/a.md")
    created(engine, vault_dir, "notes/daily/b.md")
    created(engine, vault_dir, "other.md")

    engine.handle_change(folder_change(ChangeType.Deleted, "notes"))

    assert set(engine.index.files) == {"other.md"}
    assert engine.index.get_folder("notes") is None
    assert engine.index.get_folder("notes/daily") is None


def test_folder_renamed(engine, vault_dir, drive):
    created(engine, vault_dir, "notes/a.md")
    created(engine, vault_dir, "notes/daily/b.md")
    folder_id = drive.folders["notes"]

    os.rename(vault_dir / "notes", vault_dir / "archive")

    engine.handle_change(folder_change(ChangeType.Renamed, "archive", old_path="notes"))

    assert drive.moves[0][:2] == ("notes", "archive")
    assert drive.folders["archive"] == folder_id
    assert drive.by_path("archive/a.md") is not None
    assert drive.by_path("archive/daily/b.md") is not None

    assert set(engine.index.files) == {"archive/a.md", "archive/daily/b.md"}
    assert engine.index.get_folder("archive").remote_folder_id == folder_id
    assert engine.index.get_folder("notes") is None

    # no uploads are required
    assert len(drive.uploads) == 2


def test_folder_renamed_to_excluded(engine, vault_dir, drive):
    created(engine, vault_dir, "notes/a.md")
    os.rename(vault_dir / "notes", vault_dir / ".notes")

    engine.handle_change(folder_change(ChangeType.Renamed, ".notes", old_path="notes"))

    assert engine.index.files == {}
    assert drive.moves == []


# ==== reconciliation ==================================================================


def test_reconcile_requires_vault_id(engine):
    VaultSyncConfig(engine.config_name).set("sync", "vault_id", "")
    engine.reload_cached_config()

    with pytest.raises(NoVaultIdError):
        engine.reconcile_index()


def test_reconcile(engine, vault_dir, drive):
    created(engine, vault_dir, "synced.md")
    os.remove(vault_dir / "synced.md")

    engine.index.track_file("vanished.md")
    write_file(vault_dir, "notes/new.md", b"new")
    write_file(vault_dir, "notes/daily/other.md", b"other")
    write_file(vault_dir, "notes/script.py", b"print()")
    write_file(vault_dir, ".obsidian/app.md", b"{}")

    assert engine.reconcile_index() == 2

    assert set(drive.uploads) == {"synced.md", "notes/new.md", "notes/daily/other.md"}
    # records of synced files are kept for the next sync
    assert set(engine.index.files) == {
        "synced.md",
        "notes/new.md",
        "notes/daily/other.md",
    }

    folder = engine.index.get_folder("notes")

    assert folder.file_count == 1
    assert folder.subfolder_count == 1
    assert engine.index.get_folder("notes/daily") is not None
    assert engine.index.get_folder(".obsidian") is None

    # nothing left to do
    assert engine.reconcile_index() == 0


def test_reconcile_upload_failure(engine, vault_dir, drive):
    write_file(vault_dir, "a.md", b"a")
    write_file(vault_dir, "b.md", b"b")
    drive.fail_uploads.add("a.md")

    assert engine.reconcile_index() == 1
    assert engine.index.get_file("a.md").last_error
    assert engine.reconcile_index() == 0

    drive.fail_uploads.clear()

    # the failed upload is retried
    assert engine.reconcile_index() == 1
    assert not engine.index.get_file("a.md").is_sentinel
    assert drive.by_path("a.md") is not None
    assert engine.reconcile_index() == 0
