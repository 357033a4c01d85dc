from unittest.mock import Mock

import pytest

from vaultsync.conflicts import ConflictManager, create_merged_content
from vaultsync.constants import (
    MERGE_LOCAL_MARKER,
    MERGE_REMOTE_MARKER,
    MERGE_SEPARATOR,
    SIZE_DIFF_THRESHOLD,
)
from vaultsync.core import Resolution, VersionInfo


T0 = 1_700_000_000_000


@pytest.fixture
def manager():
    return ConflictManager("test-config")


def version(content="text", mtime=T0, size=None):
    return VersionInfo(
        content=content,
        last_modified=mtime,
        size=len(content) if size is None else size,
    )


def test_add_conflict(manager):
    conflict = manager.add_conflict(
        "notes/a.md", version("local"), version("remote"), remote_file_id="file1"
    )

    assert conflict.id.startswith("conflict_")
    assert conflict.path == "notes/a.md"
    assert conflict.remote_file_id == "file1"
    assert conflict.timestamp > 0

    assert manager.get_pending_conflicts() == [conflict]
    assert manager.get_conflict(conflict.id) is conflict
    assert manager.has_conflict("notes/a.md")
    assert not manager.has_conflict("notes/b.md")

    other = manager.add_conflict("notes/a.md", version(), version())

    assert other.id != conflict.id
    assert len(manager.get_pending_conflicts()) == 2


def test_resolve_conflict(manager):
    callback = Mock()
    manager.on_resolution(callback)

    conflict = manager.add_conflict("a.md", version("local"), version("remote"))

    assert manager.resolve_conflict(conflict.id, Resolution.Manual, "merged")

    callback.assert_called_once()
    event = callback.call_args[0][0]

    assert event.conflict_id == conflict.id
    assert event.resolution is Resolution.Manual
    assert event.conflict is conflict
    assert event.resolved_content == "merged"

    assert manager.get_pending_conflicts() == []
    assert not manager.resolve_conflict(conflict.id, Resolution.Local)
    callback.assert_called_once()


def test_conflict_removed_before_callbacks(manager):
    seen = []

    def callback(event):
        seen.append(manager.has_conflict(event.conflict.path))

    manager.on_resolution(callback)
    conflict = manager.add_conflict("a.md", version(), version())
    manager.resolve_conflict(conflict.id, Resolution.Local)

    assert seen == [False]


def test_failing_callback(manager):
    failing = Mock(side_effect=RuntimeError("boom"))
    callback = Mock()

    manager.on_resolution(failing)
    manager.on_resolution(callback)

    conflict = manager.add_conflict("a.md", version(), version())

    assert manager.resolve_conflict(conflict.id, Resolution.Remote)
    failing.assert_called_once()
    callback.assert_called_once()


def test_remove_resolution_listener(manager):
    callback = Mock()
    manager.on_resolution(callback)
    manager.remove_resolution_listener(callback)
    manager.remove_resolution_listener(callback)

    conflict = manager.add_conflict("a.md", version(), version())
    manager.resolve_conflict(conflict.id, Resolution.Local)

    callback.assert_not_called()


def test_auto_resolve_larger_version_wins(manager):
    big = "x" * (SIZE_DIFF_THRESHOLD + 100)

    conflict = manager.add_conflict(
        "a.md", version(big, mtime=T0), version("small", mtime=T0 + 1000)
    )
    assert manager.auto_resolve_conflict(conflict) == (Resolution.Local, None)

    conflict = manager.add_conflict(
        "a.md", version("small", mtime=T0 + 1000), version(big, mtime=T0)
    )
    assert manager.auto_resolve_conflict(conflict) == (Resolution.Remote, None)


def test_auto_resolve_newer_version_wins(manager):
    conflict = manager.add_conflict(
        "a.md", version("local", mtime=T0 + 1000), version("remote!", mtime=T0)
    )
    assert manager.auto_resolve_conflict(conflict) == (Resolution.Local, None)

    conflict = manager.add_conflict(
        "a.md", version("local", mtime=T0), version("remote!", mtime=T0 + 1000)
    )
    assert manager.auto_resolve_conflict(conflict) == (Resolution.Remote, None)


def test_auto_resolve_merges_concurrent_edits(manager):
    conflict = manager.add_conflict(
        "a.md", version("local", mtime=T0), version("remote", mtime=T0)
    )

    resolution, content = manager.auto_resolve_conflict(conflict)

    assert resolution is Resolution.Manual
    assert content == create_merged_content("local", "remote")


def test_merged_content():
    content = create_merged_content("mine", "theirs")

    assert content.splitlines() == [
        MERGE_LOCAL_MARKER,
        "mine",
        MERGE_SEPARATOR,
        "theirs",
        MERGE_REMOTE_MARKER,
    ]


def test_conflict_stats(manager):
    stats = manager.get_conflict_stats()

    assert stats.pending == 0
    assert stats.oldest_timestamp is None
    assert stats.paths == []

    first = manager.add_conflict("b.md", version(), version())
    manager.add_conflict("a.md", version(), version())

    stats = manager.get_conflict_stats()

    assert stats.pending == 2
    assert stats.oldest_timestamp == first.timestamp
    assert stats.paths == ["a.md", "b.md"]

    manager.clear_conflicts()

    assert manager.get_pending_conflicts() == []
