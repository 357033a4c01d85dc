"""This module contains the classes to coordinate sync threads."""

from __future__ import annotations

# system imports
import errno
from contextlib import contextmanager
from functools import wraps
from queue import Empty
from threading import Event, Lock, RLock, Thread, Timer
from typing import Callable, Iterator, List, Optional, TypeVar
from typing_extensions import ParamSpec, Concatenate

# external imports
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

# local imports
from .config import VaultSyncConfig, VaultSyncState, PersistentMutableSet
from .constants import (
    DEBOUNCE_DELAY,
    DISCONNECTED,
    FULL_SYNC_MAX_AGE,
    INITIAL_SYNC_DELAY,
    RECONCILE_INITIAL_DELAY,
    RECONCILE_INTERVAL,
    REMOTE_CHECK_INTERVAL,
    STOPPED,
)
from .core import LocalChange, SyncResult
from .errors import (
    DriveConnectionError,
    DriveServerError,
    NoVaultDirError,
    VaultSyncApiError,
)
from .logging import scoped_logger
from .sync import SyncEngine


__all__ = ["SyncManager"]


P = ParamSpec("P")
T = TypeVar("T")


class SyncManager:
    """Class to manage sync threads

    Runs a file system observer which feeds local changes to a single event worker,
    debounces bursts of changes into one full sync and runs periodic auto-sync, remote
    check and reconciliation workers. All work is delegated to the
    :class:`vaultsync.sync.SyncEngine` whose lock serialises remote calls and index
    access.

    :param sync: The SyncEngine.
    """

    pending_changes: PersistentMutableSet[str]
    """Vault paths with local changes which still need to be synced."""

    def __init__(self, sync: SyncEngine) -> None:
        self.sync = sync
        self._conf = VaultSyncConfig(self.sync.config_name)
        self._state = VaultSyncState(self.sync.config_name)
        self._logger = scoped_logger(__name__, self.sync.config_name)

        self._lock = RLock()
        self._debounce_lock = Lock()

        self.running = Event()
        self._stopped = Event()

        self.pending_changes = PersistentMutableSet(
            self._state, "sync", "pending_changes"
        )

        self.debounce_delay = DEBOUNCE_DELAY
        self.initial_sync_delay: float = INITIAL_SYNC_DELAY
        self.remote_check_interval: float = REMOTE_CHECK_INTERVAL
        self.reconcile_interval: float = RECONCILE_INTERVAL
        self.reconcile_initial_delay: float = RECONCILE_INITIAL_DELAY
        self.full_sync_max_age: float = FULL_SYNC_MAX_AGE
        self.event_wait_timeout: float = 40

        self.local_observer_thread: Optional[BaseObserver] = None
        self._threads: List[Thread] = []
        self._debounce_timer: Optional[Timer] = None

    def _with_lock(  # type:ignore[misc]
        fn: Callable[Concatenate[SyncManager, P], T]
    ) -> Callable[Concatenate[SyncManager, P], T]:
        @wraps(fn)
        def wrapper(__self: SyncManager, *args: P.args, **kwargs: P.kwargs) -> T:
            with __self._lock:
                return fn(__self, *args, **kwargs)

        return wrapper

    # ---- config ----------------------------------------------------------------------

    @property
    def sync_interval(self) -> float:
        """Interval of the auto-sync worker in seconds."""
        return self._conf.get("sync", "interval")

    @property
    def auto_sync(self) -> bool:
        """Whether local changes are synced automatically."""
        return self._conf.get("sync", "auto_sync")

    # ---- control methods -------------------------------------------------------------

    @_with_lock
    def start(self) -> None:
        """Creates the observer and worker threads and starts syncing."""
        if self.running.is_set():
            return

        if not self.sync.fs_events:
            raise NoVaultDirError(
                "No local vault folder", "Please set the path of the local vault."
            )

        if not self.local_observer_thread:
            self.local_observer_thread = self._create_observer()

        # create a new set of events to let old threads die down
        self.running = Event()
        self._stopped = Event()

        self._threads = [
            Thread(
                target=self.event_worker,
                args=(self.running,),
                daemon=True,
                name="vaultsync-events",
            ),
            Thread(
                target=self.periodic_worker,
                args=(
                    self.running,
                    self._stopped,
                    self.auto_sync_tick,
                    lambda: self.sync_interval,
                    lambda: self.sync_interval,
                ),
                daemon=True,
                name="vaultsync-auto-sync",
            ),
            Thread(
                target=self.periodic_worker,
                args=(
                    self.running,
                    self._stopped,
                    self.remote_check_tick,
                    lambda: self.remote_check_interval,
                    lambda: self.remote_check_interval,
                ),
                daemon=True,
                name="vaultsync-remote-check",
            ),
            Thread(
                target=self.periodic_worker,
                args=(
                    self.running,
                    self._stopped,
                    self.reconcile_tick,
                    lambda: self.reconcile_initial_delay,
                    lambda: self.reconcile_interval,
                ),
                daemon=True,
                name="vaultsync-reconcile",
            ),
            Thread(
                target=self.startup_worker,
                args=(self.running, self._stopped),
                daemon=True,
                name="vaultsync-startup",
            ),
        ]

        self.running.set()
        self.sync.fs_events.enable()

        for thread in self._threads:
            thread.start()

        self._logger.info("Sync started")

    def _create_observer(self) -> BaseObserver:
        local_observer_thread = Observer(timeout=1)
        local_observer_thread.name = "vaultsync-fsobserver"
        local_observer_thread.schedule(
            self.sync.fs_events, self.sync.vault_path, recursive=True
        )

        try:
            local_observer_thread.start()
        except OSError as exc:
            if exc.errno in (errno.ENOENT, errno.ENOTDIR):
                raise NoVaultDirError(
                    "Vault folder missing",
                    "Please move the vault folder back to its original location or "
                    "configure a new path.",
                )
            raise VaultSyncApiError(
                "Could not start watch of local directory", exc.strerror or str(exc)
            )

        return local_observer_thread

    @_with_lock
    def stop(self) -> None:
        """Stops syncing and joins all worker threads. A running transfer completes
        before its worker exits."""
        if self.running.is_set():
            self._logger.info("Shutting down threads...")

        self.running.clear()
        self._stopped.set()
        self._cancel_debounced_sync()

        fs_events = self.sync.fs_events

        if fs_events:
            fs_events.disable()
            # Wake up the event worker.
            with fs_events.has_events:
                fs_events.has_events.notify_all()

        if self.local_observer_thread:
            self.local_observer_thread.unschedule_all()
            self.local_observer_thread.stop()
            self.local_observer_thread.join()
            self.local_observer_thread = None

        for thread in self._threads:
            thread.join()

        self._threads = []

        self._logger.info(STOPPED)

    # ---- syncing ---------------------------------------------------------------------

    def sync_now(self) -> SyncResult:
        """
        Runs a full sync pass. Pending changes which were recorded before the pass
        started are cleared if it succeeds.

        :returns: Summary of the sync pass.
        """
        pending = set(self.pending_changes)

        result = self.sync.sync_vault()

        if result.success:
            for path in pending:
                self.pending_changes.discard(path)

        return result

    def process_change(self, change: LocalChange) -> None:
        """
        Syncs a single local change. Failed changes, and all changes while auto-sync
        is disabled, are recorded as pending and picked up by the next full sync.

        :param change: The local change.
        """
        if not self.auto_sync:
            self.pending_changes.add(change.path)
            return

        try:
            self.sync.handle_change(change)
        except VaultSyncApiError as exc:
            self._logger.warning("Could not sync %s: %s", change.path, exc)
            self.pending_changes.add(change.path)

        if self.auto_sync and len(self.pending_changes) > 0:
            self.schedule_debounced_sync()

    def schedule_debounced_sync(self) -> None:
        """
        Schedules a full sync after :attr:`debounce_delay` seconds. Scheduling again
        before the delay has passed restarts the timer.
        """
        with self._debounce_lock:
            if self._debounce_timer:
                self._debounce_timer.cancel()

            self._debounce_timer = Timer(self.debounce_delay, self._debounced_sync)
            self._debounce_timer.name = "vaultsync-debounce"
            self._debounce_timer.daemon = True
            self._debounce_timer.start()

    def _cancel_debounced_sync(self) -> None:
        with self._debounce_lock:
            if self._debounce_timer:
                self._debounce_timer.cancel()
                self._debounce_timer = None

    def _debounced_sync(self) -> None:
        with self._debounce_lock:
            self._debounce_timer = None

        with self._handle_sync_thread_errors():
            if self.auto_sync and len(self.pending_changes) > 0:
                self._logger.info(
                    "Syncing %s changed file(s)...", len(self.pending_changes)
                )
                self.sync_now()

    def auto_sync_tick(self) -> None:
        """Runs a full sync if changes are pending or the last full sync is overdue."""
        if not self.auto_sync:
            self._logger.debug("Auto-sync: disabled, skipping")
            return

        if len(self.pending_changes) > 0:
            self._logger.info(
                "Auto-sync: %s pending change(s)", len(self.pending_changes)
            )
            self.sync_now()
        elif self.sync.index.needs_full_sync(self.full_sync_max_age):
            self._logger.info("Auto-sync: full sync overdue")
            self.sync_now()
        else:
            self._logger.debug("Auto-sync: no changes, skipping")

    def remote_check_tick(self) -> None:
        """Runs a full sync to pick up remote changes if the last check is overdue."""
        if self.sync.index.needs_remote_check(self.remote_check_interval):
            self._logger.debug("Checking for remote changes")
            self.sync_now()

    def reconcile_tick(self) -> None:
        """Reconciles the index with the local vault."""
        uploaded = self.sync.reconcile_index()

        if uploaded > 0:
            self._logger.info("Reconciliation uploaded %s file(s)", uploaded)

    # ---- thread methods --------------------------------------------------------------

    def event_worker(self, running: Event) -> None:
        """
        Worker to sync local changes one at a time, in the order they occurred.

        :param running: Event to shut down the worker.
        """
        fs_events = self.sync.fs_events

        if not fs_events:
            return

        while running.is_set():
            with self._handle_sync_thread_errors():
                if not fs_events.wait_for_event(self.event_wait_timeout):
                    continue

                if not running.is_set():
                    return

                try:
                    change = fs_events.local_change_queue.get_nowait()
                except Empty:
                    continue

                self.process_change(change)

    def periodic_worker(
        self,
        running: Event,
        stopped: Event,
        task: Callable[[], None],
        initial_delay: Callable[[], float],
        interval: Callable[[], float],
    ) -> None:
        """
        Worker to run a task periodically until stopped.

        :param running: Event which is set while syncing is active.
        :param stopped: Event which is set when syncing is stopped.
        :param task: The task to run.
        :param initial_delay: Returns the delay before the first run in seconds.
        :param interval: Returns the delay between subsequent runs in seconds.
        """
        delay = initial_delay()

        while running.is_set():
            if stopped.wait(delay):
                return

            with self._handle_sync_thread_errors():
                task()

            delay = interval()

    def startup_worker(self, running: Event, stopped: Event) -> None:
        """
        Worker to run the initial full sync shortly after starting.

        :param running: Event which is set while syncing is active.
        :param stopped: Event which is set when syncing is stopped.
        """
        if stopped.wait(self.initial_sync_delay) or not running.is_set():
            return

        with self._handle_sync_thread_errors():
            result = self.sync_now()
            self._logger.info(result.message)

    # ---- utilities -------------------------------------------------------------------

    @contextmanager
    def _handle_sync_thread_errors(self) -> Iterator[None]:
        try:
            yield
        except (DriveConnectionError, DriveServerError):
            self._logger.debug("Connection error", exc_info=True)
            self._logger.info(DISCONNECTED)
        except VaultSyncApiError as err:
            self._logger.error(err.title, exc_info=True)
        except Exception:
            self._logger.error("Unexpected error", exc_info=True)
