from vaultsync.core import (
    DownloadReason,
    FileRecord,
    RemoteFile,
    UploadReason,
)
from vaultsync.delta import calculate_delta, filter_valid_files
from vaultsync.index import SyncIndex


T0 = 1_700_000_000_000


def remote(path, file_id, mtime, size=10):
    return RemoteFile(
        id=file_id, name=path, mime_type="text/markdown", size=size, modified_time=mtime
    )


def record(path, mtime=T0, file_id="file1", content_hash="h1"):
    return FileRecord(
        path=path,
        last_synced_hash=content_hash,
        last_synced_time=mtime,
        last_synced_size=10,
        remote_file_id=file_id,
    )


def test_filter_valid_files():
    index = SyncIndex("notes")
    index.mark_synced("synced.md", "h1", T0, 10, "file1")
    index.mark_synced("vanished-synced.md", "h2", T0, 10, "file2")
    index.track_file("vanished-never-synced.md")
    index.track_file("local-never-synced.md")
    index.update_remote_file_info("remote-only.md", "file3", T0)

    valid = filter_valid_files(index, {"synced.md", "local-never-synced.md"})

    assert set(valid) == {"synced.md", "vanished-synced.md", "local-never-synced.md"}
    assert valid["synced.md"] is index.get_file("synced.md")
    # filtering does not modify the index
    assert len(index.files) == 5


def test_missing_local():
    delta = calculate_delta({}, [remote("a.md", "file1", T0, size=42)])

    assert len(delta.to_download) == 1
    download = delta.to_download[0]
    assert download.path == "a.md"
    assert download.file_id == "file1"
    assert download.reason is DownloadReason.MissingLocal
    assert download.remote_mtime == T0
    assert download.remote_size == 42
    assert delta.total_remote == 1
    assert delta.total_local == 0


def test_same_id():
    valid = {
        "newer-remote.md": record("newer-remote.md", T0, "file1"),
        "newer-local.md": record("newer-local.md", T0 + 1000, "file2"),
        "in-sync.md": record("in-sync.md", T0, "file3"),
    }
    remote_files = [
        remote("newer-remote.md", "file1", T0 + 1000),
        remote("newer-local.md", "file2", T0),
        remote("in-sync.md", "file3", T0),
    ]

    delta = calculate_delta(valid, remote_files)

    assert [d.path for d in delta.to_download] == ["newer-remote.md"]
    assert delta.to_download[0].reason is DownloadReason.RemoteNewer
    assert [u.path for u in delta.to_upload] == ["newer-local.md"]
    assert delta.to_upload[0].reason is UploadReason.LocalNewer
    assert delta.to_upload[0].local_mtime == T0 + 1000
    assert delta.in_sync == 1
    assert delta.conflicts == []


def test_different_id():
    valid = {
        "a.md": record("a.md", T0, "old-id"),
        "b.md": record("b.md", T0 + 1000, "old-id-2"),
    }
    remote_files = [
        remote("a.md", "new-id", T0 + 1000),
        remote("b.md", "new-id-2", T0),
    ]

    delta = calculate_delta(valid, remote_files)

    assert [d.path for d in delta.to_download] == ["a.md"]
    assert delta.to_download[0].reason is DownloadReason.RemoteNewer
    assert delta.to_download[0].file_id == "new-id"
    # a different remote file which is not newer is treated as in sync
    assert delta.to_upload == []
    assert delta.in_sync == 1


def test_local_only():
    valid = {
        "deleted-remotely.md": record("deleted-remotely.md", T0, "file1"),
        "never-uploaded.md": FileRecord(
            path="never-uploaded.md", last_synced_hash="h1", last_synced_time=T0
        ),
        "untracked.md": FileRecord(path="untracked.md", extension=".md"),
    }

    delta = calculate_delta(valid, [])

    reasons = {u.path: u.reason for u in delta.to_upload}

    assert reasons == {
        "deleted-remotely.md": UploadReason.MissingRemote,
        "never-uploaded.md": UploadReason.NeverSynced,
    }
    assert delta.to_download == []
    assert delta.in_sync == 0
    assert delta.total_local == 3


def test_untracked_with_remote_counterpart():
    valid = {"a.md": FileRecord(path="a.md", extension=".md")}

    delta = calculate_delta(valid, [remote("a.md", "file1", T0)])

    assert [d.path for d in delta.to_download] == ["a.md"]
    assert delta.to_download[0].reason is DownloadReason.RemoteNewer


def test_every_file_classified_once():
    valid = {
        f"{i}.md": record(f"{i}.md", T0 + (i % 3) * 1000, f"file{i}")
        for i in range(30)
    }
    remote_files = [remote(f"{i}.md", f"file{i}", T0 + 1000) for i in range(0, 40, 2)]

    delta = calculate_delta(valid, remote_files)

    paths = [d.path for d in delta.to_download] + [u.path for u in delta.to_upload]
    all_paths = set(valid) | {r.name for r in remote_files}

    assert len(paths) == len(set(paths))
    assert len(paths) + delta.in_sync == len(all_paths)
