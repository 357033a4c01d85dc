import time
from threading import Event, Thread
from unittest.mock import Mock

import pytest

from vaultsync.config import VaultSyncConfig
from vaultsync.core import ChangeType, ItemType, LocalChange, SyncResult
from vaultsync.errors import DriveServerError, NoVaultDirError
from vaultsync.manager import SyncManager
from vaultsync.sync import SyncEngine

from fixtures import FakeDrive, write_file


def change(path, change_type=ChangeType.Created):
    return LocalChange(change_type, ItemType.File, path)


def wait_until(condition, timeout=5.0):
    t0 = time.monotonic()
    while not condition():
        if time.monotonic() - t0 > timeout:
            raise TimeoutError("Condition not met")
        time.sleep(0.01)


@pytest.fixture
def manager(engine):
    manager = SyncManager(engine)

    yield manager

    manager.stop()


# ==== local changes ===================================================================


def test_process_change(manager):
    manager.sync.handle_change = Mock()
    manager.schedule_debounced_sync = Mock()

    manager.process_change(change("a.md"))

    manager.sync.handle_change.assert_called_once_with(change("a.md"))
    manager.schedule_debounced_sync.assert_not_called()
    assert len(manager.pending_changes) == 0


def test_process_change_failure(manager):
    manager.sync.handle_change = Mock(
        side_effect=DriveServerError("Remote server error", "Try again later.")
    )
    manager.schedule_debounced_sync = Mock()

    manager.process_change(change("a.md"))

    assert "a.md" in manager.pending_changes
    manager.schedule_debounced_sync.assert_called_once()


def test_process_change_without_auto_sync(manager):
    VaultSyncConfig(manager.sync.config_name).set("sync", "auto_sync", False)
    manager.sync.handle_change = Mock()
    manager.schedule_debounced_sync = Mock()

    manager.process_change(change("a.md"))

    manager.sync.handle_change.assert_not_called()
    manager.schedule_debounced_sync.assert_not_called()
    assert "a.md" in manager.pending_changes


def test_debounced_sync(manager):
    manager.debounce_delay = 0.1
    manager.sync_now = Mock()
    manager.pending_changes.add("a.md")

    for _ in range(5):
        manager.schedule_debounced_sync()

    manager.sync_now.assert_not_called()

    wait_until(lambda: manager.sync_now.call_count > 0)
    time.sleep(0.2)

    manager.sync_now.assert_called_once()


def test_debounced_sync_cancelled_on_stop(manager):
    manager.debounce_delay = 0.1
    manager.sync_now = Mock()
    manager.pending_changes.add("a.md")

    manager.schedule_debounced_sync()
    manager.stop()
    time.sleep(0.2)

    manager.sync_now.assert_not_called()


# ==== full syncs ======================================================================


def test_sync_now_clears_pending_changes(manager, vault_dir, drive):
    manager.pending_changes.add("a.md")

    result = manager.sync_now()

    assert result.success
    assert len(manager.pending_changes) == 0


def test_failed_sync_keeps_pending_changes(manager):
    manager.sync.sync_vault = Mock(return_value=SyncResult(False, "failed"))
    manager.pending_changes.add("a.md")

    assert not manager.sync_now().success
    assert "a.md" in manager.pending_changes


def test_auto_sync_tick(manager):
    manager.sync_now = Mock()

    # never synced
    manager.auto_sync_tick()
    assert manager.sync_now.call_count == 1

    manager.sync.index.mark_full_sync_completed()
    manager.auto_sync_tick()
    assert manager.sync_now.call_count == 1

    manager.pending_changes.add("a.md")
    manager.auto_sync_tick()
    assert manager.sync_now.call_count == 2


def test_auto_sync_tick_disabled(manager):
    VaultSyncConfig(manager.sync.config_name).set("sync", "auto_sync", False)
    manager.sync_now = Mock()
    manager.pending_changes.add("a.md")

    manager.auto_sync_tick()

    assert manager.sync_now.call_count == 0
    assert "a.md" in manager.pending_changes


def test_failed_upload_after_created_event(manager, vault_dir, drive):
    write_file(vault_dir, "new.md", b"new")
    drive.fail_uploads.add("new.md")
    manager.schedule_debounced_sync = Mock()

    manager.process_change(change("new.md"))

    assert "new.md" in manager.pending_changes
    assert manager.sync.index.get_file("new.md").last_error

    drive.fail_uploads.clear()
    manager.sync_now()
    manager.reconcile_tick()

    record = manager.sync.index.get_file("new.md")

    assert drive.uploads == ["new.md"]
    assert not record.is_sentinel
    assert record.last_error is None


def test_remote_check_tick(manager):
    manager.sync_now = Mock()

    manager.remote_check_tick()
    assert manager.sync_now.call_count == 1

    manager.sync.index.mark_remote_check_completed()
    manager.remote_check_tick()
    assert manager.sync_now.call_count == 1


def test_reconcile_tick(manager, vault_dir, drive):
    write_file(vault_dir, "a.md", b"a")

    manager.reconcile_tick()

    assert drive.uploads == ["a.md"]


# ==== workers =========================================================================


def test_event_worker(manager):
    manager.sync.handle_change = Mock()
    manager.event_wait_timeout = 0.1
    fs_events = manager.sync.fs_events

    changes = [change(f"{i}.md") for i in range(5)]

    for c in changes:
        fs_events.queue_change(c)

    running = Event()
    running.set()

    thread = Thread(target=manager.event_worker, args=(running,), daemon=True)
    thread.start()

    try:
        wait_until(lambda: manager.sync.handle_change.call_count == 5)
    finally:
        running.clear()
        thread.join(timeout=5)

    assert not thread.is_alive()
    assert [c.args[0] for c in manager.sync.handle_change.call_args_list] == changes


def test_periodic_worker(manager):
    calls = []

    def task():
        calls.append(time.monotonic())
        if len(calls) == 1:
            raise RuntimeError("first run fails")

    running = Event()
    running.set()
    stopped = Event()

    thread = Thread(
        target=manager.periodic_worker,
        args=(running, stopped, task, lambda: 0.01, lambda: 0.01),
        daemon=True,
    )
    thread.start()

    try:
        wait_until(lambda: len(calls) >= 3)
    finally:
        running.clear()
        stopped.set()
        thread.join(timeout=5)

    assert not thread.is_alive()


def test_start_and_stop(manager):
    manager.initial_sync_delay = 60
    manager.reconcile_initial_delay = 60
    manager.event_wait_timeout = 0.1

    manager.start()

    assert manager.running.is_set()
    assert manager.sync.fs_events.enabled
    assert manager.local_observer_thread is not None
    assert all(t.is_alive() for t in manager._threads)

    # starting again has no effect
    threads = list(manager._threads)
    manager.start()
    assert manager._threads == threads

    manager.stop()

    assert not manager.running.is_set()
    assert not manager.sync.fs_events.enabled
    assert manager.local_observer_thread is None
    assert not any(t.is_alive() for t in threads)


def test_start_without_vault(config_name):
    engine = SyncEngine(FakeDrive(config_name))
    manager = SyncManager(engine)

    with pytest.raises(NoVaultDirError):
        manager.start()

    assert not manager.running.is_set()
