"""
This module holds conflicts which await a resolution. Pending conflicts live in memory
only, they are detected again on the next sync if the process restarts before they are
resolved.
"""

from __future__ import annotations

# system imports
import uuid
import threading
from typing import Callable

# local imports
from .constants import (
    CONCURRENT_EDIT_WINDOW,
    DEFAULT_CONFIG_NAME,
    MERGE_LOCAL_MARKER,
    MERGE_REMOTE_MARKER,
    MERGE_SEPARATOR,
    SIZE_DIFF_THRESHOLD,
)
from .core import (
    ConflictResolution,
    ConflictStats,
    PendingConflict,
    Resolution,
    VersionInfo,
)
from .logging import scoped_logger
from .utils import now_ms


__all__ = ["ConflictManager", "ResolutionCallback", "create_merged_content"]


ResolutionCallback = Callable[[ConflictResolution], None]


def create_merged_content(local_content: str, remote_content: str) -> str:
    """
    Concatenates both versions of a file between conflict markers.

    :param local_content: Content of the local version.
    :param remote_content: Content of the remote version.
    :returns: Merged content.
    """
    return "\n".join(
        [
            MERGE_LOCAL_MARKER,
            local_content,
            MERGE_SEPARATOR,
            remote_content,
            MERGE_REMOTE_MARKER,
        ]
    )


class ConflictManager:
    """Pending conflicts and their resolution

    Resolutions are delivered to callbacks registered with :meth:`on_resolution`. A
    conflict is removed from the pending set before any callback runs.

    :param config_name: Name of the vaultsync configuration, used for logging.
    """

    def __init__(self, config_name: str = DEFAULT_CONFIG_NAME) -> None:
        self._logger = scoped_logger(__name__, config_name)
        self._lock = threading.Lock()
        self._conflicts: dict[str, PendingConflict] = {}
        self._callbacks: list[ResolutionCallback] = []

    def add_conflict(
        self,
        path: str,
        local_version: VersionInfo,
        remote_version: VersionInfo,
        remote_file_id: str | None = None,
    ) -> PendingConflict:
        """
        Adds a conflict to the pending set.

        :param path: Vault path of the file.
        :param local_version: The local version.
        :param remote_version: The remote version.
        :param remote_file_id: ID of the remote file.
        :returns: The pending conflict with a newly generated ID.
        """
        conflict = PendingConflict(
            id=f"conflict_{uuid.uuid4().hex}",
            path=path,
            local_version=local_version,
            remote_version=remote_version,
            timestamp=now_ms(),
            remote_file_id=remote_file_id,
        )

        with self._lock:
            self._conflicts[conflict.id] = conflict

        self._logger.info("Conflict detected: %s", path)

        return conflict

    def get_pending_conflicts(self) -> list[PendingConflict]:
        with self._lock:
            return list(self._conflicts.values())

    def get_conflict(self, conflict_id: str) -> PendingConflict | None:
        with self._lock:
            return self._conflicts.get(conflict_id)

    def has_conflict(self, path: str) -> bool:
        with self._lock:
            return any(c.path == path for c in self._conflicts.values())

    def on_resolution(self, callback: ResolutionCallback) -> None:
        """
        Registers a callback which is invoked for every resolved conflict.

        :param callback: Callable which takes a
            :class:`vaultsync.core.ConflictResolution`.
        """
        with self._lock:
            self._callbacks.append(callback)

    def remove_resolution_listener(self, callback: ResolutionCallback) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

    def resolve_conflict(
        self, conflict_id: str, resolution: Resolution, content: str | None = None
    ) -> bool:
        """
        Resolves a pending conflict and notifies all callbacks. A failing callback is
        logged and does not prevent the remaining callbacks from running.

        :param conflict_id: ID of the conflict.
        :param resolution: The chosen resolution.
        :param content: Resolved content for manual resolutions.
        :returns: ``False`` if there is no pending conflict with the given ID.
        """
        with self._lock:
            conflict = self._conflicts.pop(conflict_id, None)
            callbacks = list(self._callbacks)

        if not conflict:
            return False

        self._logger.info(
            "Resolved conflict for %s: %s", conflict.path, resolution.value
        )

        event = ConflictResolution(
            conflict_id=conflict_id,
            resolution=resolution,
            conflict=conflict,
            resolved_content=content,
        )

        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                self._logger.error(
                    "Error in conflict resolution callback", exc_info=True
                )

        return True

    def auto_resolve_conflict(
        self, conflict: PendingConflict
    ) -> tuple[Resolution, str | None]:
        """
        Suggests a resolution. The larger version wins if the sizes differ by more than
        :const:`SIZE_DIFF_THRESHOLD`, otherwise the newer version wins. Versions with
        the same modification time are merged with conflict markers.

        :param conflict: The conflict to resolve.
        :returns: Tuple of the resolution and, for merges, the merged content.
        """
        local = conflict.local_version
        remote = conflict.remote_version

        if abs(local.size - remote.size) > SIZE_DIFF_THRESHOLD:
            if local.size > remote.size:
                return Resolution.Local, None
            else:
                return Resolution.Remote, None

        if local.last_modified != remote.last_modified:
            if local.last_modified > remote.last_modified:
                return Resolution.Local, None
            else:
                return Resolution.Remote, None

        if abs(local.last_modified - remote.last_modified) <= CONCURRENT_EDIT_WINDOW:
            merged = create_merged_content(local.content, remote.content)
            return Resolution.Manual, merged

        return Resolution.Manual, None

    def create_merged_content(self, local_content: str, remote_content: str) -> str:
        return create_merged_content(local_content, remote_content)

    def get_conflict_stats(self) -> ConflictStats:
        with self._lock:
            conflicts = list(self._conflicts.values())

        return ConflictStats(
            pending=len(conflicts),
            oldest_timestamp=min((c.timestamp for c in conflicts), default=None),
            paths=sorted(c.path for c in conflicts),
        )

    def clear_conflicts(self) -> None:
        with self._lock:
            self._conflicts.clear()
