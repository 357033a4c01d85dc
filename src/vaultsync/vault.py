"""
This module contains the local side of syncing: :class:`LocalVault` gives access to
the files in the local vault folder by vault path and :class:`VaultEventHandler`
translates watchdog file system events into :class:`vaultsync.core.LocalChange`
values for the sync engine.
"""

from __future__ import annotations

# system imports
import os
import os.path as osp
import time
import shutil
import tempfile
from stat import S_ISDIR
from contextlib import contextmanager
from queue import Queue, Empty
from threading import Condition
from typing import Iterable, Iterator

# external imports
from pathspec import PathSpec
from watchdog.events import (
    FileSystemEvent,
    FileSystemEventHandler,
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
)

# local imports
from .constants import EVENT_IGNORE_TIMEOUT
from .core import (
    ChangeType,
    FileEntry,
    FolderEntry,
    ItemType,
    LocalChange,
    LocalEntry,
    VaultListing,
)
from .utils.path import is_equal_or_child, is_excluded, normalize_path


__all__ = [
    "LocalVault",
    "VaultEventHandler",
    "compile_excluded_patterns",
    "is_excluded_by_user",
]


def _to_ms(ns: int) -> int:
    return ns // 1_000_000


def compile_excluded_patterns(patterns: Iterable[str]) -> PathSpec:
    """
    Compiles user defined exclusion patterns.

    :param patterns: Patterns in gitignore syntax.
    :returns: PathSpec instance.
    """
    return PathSpec.from_lines("gitwildmatch", patterns)


def is_excluded_by_user(rules: PathSpec, path: str, is_dir: bool = False) -> bool:
    """
    Checks if a vault path is excluded by user defined patterns.

    :param rules: Compiled patterns.
    :param path: Vault path.
    :param is_dir: Whether the path refers to a folder.
    :returns: Whether the path matches any of the patterns.
    """
    if len(rules.patterns) == 0:
        return False

    if is_dir:
        path = f"{path}/"

    return rules.match_file(path)


# ==== local store =====================================================================


class LocalVault:
    """Access to the local vault folder

    All methods take vault paths. I/O errors are raised as :class:`OSError`, callers
    convert them with :func:`vaultsync.errorhandling.convert_api_errors`.

    :param root: Absolute path of the local vault folder.
    """

    def __init__(self, root: str) -> None:
        self.root = osp.realpath(osp.expanduser(root))

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(root={self.root!r})>"

    def to_local_path(self, path: str) -> str:
        """
        Converts a vault path to an absolute local path.

        :param path: Vault path.
        :returns: Absolute path on the local drive.
        """
        path = normalize_path(path)

        if not path:
            return self.root

        return osp.join(self.root, *path.split("/"))

    def to_vault_path(self, local_path: str) -> str:
        """
        Converts an absolute local path to a vault path.

        :param local_path: Absolute path on the local drive.
        :returns: Vault path.
        :raises ValueError: if the path lies outside the vault folder.
        """
        if not is_equal_or_child(local_path, self.root):
            raise ValueError(f'"{local_path}" is not in "{self.root}"')
        return normalize_path(osp.relpath(local_path, self.root))

    def _entry(self, path: str, stat: os.stat_result, is_dir: bool) -> LocalEntry:
        ctime = getattr(stat, "st_birthtime", None)
        ctime_ms = int(ctime * 1000) if ctime else _to_ms(stat.st_ctime_ns)

        mtime_ms = _to_ms(stat.st_mtime_ns)

        if is_dir:
            return FolderEntry(path=path, mtime=mtime_ms, ctime=ctime_ms)
        else:
            return FileEntry(
                path=path,
                size=stat.st_size,
                mtime=mtime_ms,
                ctime=ctime_ms,
            )

    def stat(self, path: str) -> LocalEntry | None:
        """
        :param path: Vault path.
        :returns: The file or folder entry or ``None`` if nothing exists at the path.
        """
        path = normalize_path(path)

        try:
            stat = os.stat(self.to_local_path(path))
        except (FileNotFoundError, NotADirectoryError):
            return None

        return self._entry(path, stat, S_ISDIR(stat.st_mode))

    def exists(self, path: str) -> bool:
        return osp.exists(self.to_local_path(path))

    def is_file(self, path: str) -> bool:
        return osp.isfile(self.to_local_path(path))

    def is_folder(self, path: str) -> bool:
        return osp.isdir(self.to_local_path(path))

    def list(self, path: str = "") -> VaultListing:
        """
        Lists the direct children of a folder.

        :param path: Vault path of the folder, the vault root by default.
        :returns: Files and folders inside the folder.
        """
        path = normalize_path(path)
        listing = VaultListing()

        with os.scandir(self.to_local_path(path)) as it:
            for dir_entry in it:
                child = f"{path}/{dir_entry.name}" if path else dir_entry.name
                is_dir = dir_entry.is_dir()
                entry = self._entry(child, dir_entry.stat(), is_dir)

                if isinstance(entry, FolderEntry):
                    listing.folders.append(entry)
                else:
                    listing.files.append(entry)

        return listing

    def walk(self, path: str = "") -> Iterator[LocalEntry]:
        """
        Recursively yields all files and folders below a folder. Hidden folders are not
        descended into.

        :param path: Vault path of the folder, the vault root by default.
        """
        stack = [normalize_path(path)]

        while stack:
            folder = stack.pop()

            try:
                listing = self.list(folder)
            except (FileNotFoundError, NotADirectoryError):
                continue

            for folder_entry in listing.folders:
                yield folder_entry
                if not is_excluded(folder_entry.path):
                    stack.append(folder_entry.path)

            yield from listing.files

    def read_bytes(self, path: str) -> bytes:
        with open(self.to_local_path(path), "rb") as f:
            return f.read()

    def read_text(self, path: str) -> str:
        with open(self.to_local_path(path), encoding="utf-8") as f:
            return f.read()

    def write_bytes(self, path: str, data: bytes, mtime: int | None = None) -> None:
        """
        Creates or replaces a file. Parent folders are created as needed. The data is
        written to a hidden temporary file first and then moved into place.

        :param path: Vault path of the file.
        :param data: New file contents.
        :param mtime: Modification time to set in ms since the epoch.
        """
        local_path = self.to_local_path(path)
        dirname = osp.dirname(local_path)
        os.makedirs(dirname, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(prefix=".vaultsync-", dir=dirname)

        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_path, local_path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            raise

        if mtime is not None:
            ns = mtime * 1_000_000
            os.utime(local_path, ns=(ns, ns))

    def write_text(self, path: str, text: str, mtime: int | None = None) -> None:
        self.write_bytes(path, text.encode("utf-8"), mtime)

    def create_folder(self, path: str) -> None:
        os.makedirs(self.to_local_path(path), exist_ok=True)

    def remove(self, path: str) -> None:
        """
        Removes a file or a folder with all its contents.

        :param path: Vault path.
        :raises FileNotFoundError: if nothing exists at the path.
        """
        local_path = self.to_local_path(path)

        if osp.isdir(local_path) and not osp.islink(local_path):
            shutil.rmtree(local_path)
        else:
            os.unlink(local_path)


# ==== local events ====================================================================


class _Ignore:
    def __init__(self, path: str, ttl: float | None) -> None:
        self.path = path
        self.ttl = ttl

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(path={self.path!r}, ttl={self.ttl})>"


class VaultEventHandler(FileSystemEventHandler):
    """A local file event handler

    Translates watchdog events into :class:`vaultsync.core.LocalChange` values and
    puts them on :attr:`local_change_queue`, to be consumed one at a time by the sync
    manager. Modified events of folders are dropped, as are events for hidden or user
    excluded paths. Moves are delivered as a single renamed change.

    :param vault: The local vault which is watched.
    :param excluded_rules: Compiled user exclusion patterns.

    :cvar float ignore_timeout: Timeout in seconds after which filters for ignored
        paths will expire.
    """

    local_change_queue: Queue[LocalChange]
    _ignored_paths: set[_Ignore]

    file_event_types = (
        EVENT_TYPE_CREATED,
        EVENT_TYPE_DELETED,
        EVENT_TYPE_MODIFIED,
        EVENT_TYPE_MOVED,
    )
    dir_event_types = (EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MOVED)

    def __init__(self, vault: LocalVault, excluded_rules: PathSpec | None = None):
        super().__init__()

        self.vault = vault
        self.excluded_rules = excluded_rules or compile_excluded_patterns([])

        self._enabled = False
        self.has_events = Condition()

        self._ignored_paths = set()
        self.ignore_timeout = EVENT_IGNORE_TIMEOUT
        self.local_change_queue = Queue()

    @property
    def enabled(self) -> bool:
        """Whether queuing of events is enabled."""
        return self._enabled

    def enable(self) -> None:
        """Turn on queueing of events."""
        self._enabled = True

    def disable(self) -> None:
        """Turn off queueing of new events and remove all events from queue."""
        self._enabled = False

        while True:
            try:
                self.local_change_queue.get_nowait()
            except Empty:
                break

    @contextmanager
    def ignore(self, *paths: str) -> Iterator[None]:
        """A context manager to ignore local file events

        Events for the given vault paths and their children are ignored while inside
        the context and for :attr:`ignore_timeout` sec after leaving it. This accounts
        for possible delays in the emission of local file system events.

        This is used to filter out events caused by the sync engine itself, for
        instance when writing a downloaded file.

        :param paths: Vault paths to ignore.
        """
        new_ignores = {_Ignore(normalize_path(p), ttl=None) for p in paths}
        self._ignored_paths.update(new_ignores)

        try:
            yield
        finally:
            for ignore in new_ignores:
                ignore.ttl = time.time() + self.ignore_timeout

    def _is_ignored(self, path: str) -> bool:
        now = time.time()

        for ignore in self._ignored_paths.copy():
            if ignore.ttl and ignore.ttl < now:
                self._ignored_paths.discard(ignore)
                continue

            if is_equal_or_child(path, ignore.path):
                return True

        return False

    def is_excluded(self, path: str, is_dir: bool = False) -> bool:
        """
        Checks if events for a vault path should be dropped.

        :param path: Vault path.
        :param is_dir: Whether the path refers to a folder.
        :returns: Whether the path is hidden, the vault root or excluded by the user.
        """
        return (
            not path
            or is_excluded(path)
            or is_excluded_by_user(self.excluded_rules, path, is_dir)
        )

    def _vault_path(self, local_path: str | bytes) -> str | None:
        try:
            return self.vault.to_vault_path(os.fsdecode(local_path))
        except ValueError:
            return None

    def translate(self, event: FileSystemEvent) -> LocalChange | None:
        """
        Translates a watchdog event into a local change.

        :param event: Watchdog file system event.
        :returns: The local change or ``None`` if the event should be dropped.
        """
        is_dir = event.is_directory
        item_type = ItemType.Folder if is_dir else ItemType.File

        if is_dir and event.event_type not in self.dir_event_types:
            return None

        if not is_dir and event.event_type not in self.file_event_types:
            return None

        path = self._vault_path(event.src_path)

        if path is None:
            return None

        if event.event_type == EVENT_TYPE_MOVED:
            dest_path = self._vault_path(event.dest_path)

            # Ignore moves onto itself.
            if dest_path == path:
                return None

            src_excluded = self.is_excluded(path, is_dir)
            dest_excluded = dest_path is None or self.is_excluded(dest_path, is_dir)

            if src_excluded and dest_excluded:
                return None
            elif dest_excluded:
                return LocalChange(ChangeType.Deleted, item_type, path)
            elif src_excluded:
                return LocalChange(ChangeType.Created, item_type, dest_path)
            else:
                return LocalChange(ChangeType.Renamed, item_type, dest_path, path)

        if self.is_excluded(path, is_dir):
            return None

        if event.event_type == EVENT_TYPE_CREATED:
            return LocalChange(ChangeType.Created, item_type, path)
        elif event.event_type == EVENT_TYPE_DELETED:
            return LocalChange(ChangeType.Deleted, item_type, path)
        else:
            return LocalChange(ChangeType.Modified, item_type, path)

    def on_any_event(self, event: FileSystemEvent) -> None:
        """
        Translates the event and adds it to the queue unless it should be ignored. If
        syncing is stopped, all events will be ignored.

        :param event: Watchdog file event.
        """
        if not self._enabled:
            return

        change = self.translate(event)

        if not change:
            return

        paths: list[str] = [change.path]
        if change.old_path is not None:
            paths.append(change.old_path)

        if any(self._is_ignored(p) for p in paths):
            return

        self.queue_change(change)

    def queue_change(self, change: LocalChange) -> None:
        """
        Queues an individual change. Notifies / wakes up all threads that are waiting
        with :meth:`wait_for_event`.

        :param change: Local change to queue.
        """
        with self.has_events:
            self.local_change_queue.put(change)
            self.has_events.notify_all()

    def wait_for_event(self, timeout: float = 40) -> bool:
        """
        Blocks until a change is available in the queue or a timeout occurs, whichever
        comes first.

        :param timeout: Maximum time to block in seconds.
        :returns: ``True`` if a change is available, ``False`` if the call returns due
            to a timeout.
        """
        with self.has_events:
            if self.local_change_queue.qsize() > 0:
                return True
            self.has_events.wait(timeout)
            return self.local_change_queue.qsize() > 0
