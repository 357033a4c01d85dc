"""
This module contains the sync index: the mapping from vault paths to the last known
sync state of files and folders. The index is a plain in-memory state object without
any I/O. It is owned by :class:`vaultsync.sync.SyncEngine` which serialises all access
and persists it with :class:`vaultsync.persistence.IndexStore`.
"""

from __future__ import annotations

# system imports
from collections import Counter
from typing import Any

# local imports
from .constants import (
    CONFLICT_ERROR_MSG,
    FULL_SYNC_MAX_AGE,
    INDEX_VERSION,
    REMOTE_CHECK_INTERVAL,
)
from .core import (
    FileRecord,
    FolderRecord,
    HistoryEntry,
    IndexStats,
    Operation,
    RemoteDecision,
)
from .utils import now_ms
from .utils.path import get_extension, is_child, is_equal_or_child, replace_prefix


__all__ = ["SyncIndex"]


class SyncIndex:
    """The sync index of a single vault

    :param vault_id: Identifier of the vault. Determines the remote container.
    """

    def __init__(self, vault_id: str) -> None:
        self.vault_id = vault_id
        self.last_full_sync = 0
        self.last_remote_check = 0
        self.files: dict[str, FileRecord] = {}
        self.folders: dict[str, FolderRecord] = {}

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}(vault_id={self.vault_id!r}, "
            f"files={len(self.files)}, folders={len(self.folders)})>"
        )

    # ==== file records ================================================================

    def get_file(self, path: str) -> FileRecord | None:
        return self.files.get(path)

    def needs_sync(self, path: str, content_hash: str, mtime: int, size: int) -> bool:
        """
        Checks if a local file has changed since it was last synced.

        :param path: Vault path of the file.
        :param content_hash: Current content fingerprint.
        :param mtime: Current local modification time.
        :param size: Current size in bytes.
        :returns: ``True`` if there is no record or if the fingerprint, size or time
            differ from the last sync.
        """
        record = self.files.get(path)

        if not record:
            return True

        return (
            record.last_synced_hash != content_hash
            or record.last_synced_size != size
            or record.last_synced_time < mtime
        )

    def mark_synced(
        self,
        path: str,
        content_hash: str,
        mtime: int,
        size: int,
        remote_file_id: str | None = None,
        *,
        ctime: int | None = None,
        extension: str | None = None,
        operation: Operation = Operation.Upload,
        revision_id: str | None = None,
    ) -> FileRecord:
        """
        Records a successful upload or download. Descriptive metadata and cached remote
        observations of an existing record are kept unless new values are given.

        :param path: Vault path of the file.
        :param content_hash: Content fingerprint of the synced version.
        :param mtime: Local modification time of the synced version.
        :param size: Size of the synced version in bytes.
        :param remote_file_id: ID of the remote file.
        :param ctime: Local creation time.
        :param extension: File extension, derived from the path if not given.
        :param operation: The operation which was performed.
        :param revision_id: Remote revision of the synced version.
        :returns: The updated record.
        """
        now = now_ms()
        existing = self.files.get(path)

        record = FileRecord(
            path=path,
            last_synced_hash=content_hash,
            last_synced_time=mtime,
            last_synced_size=size,
            remote_file_id=remote_file_id,
            created_time=ctime,
            extension=extension or get_extension(path),
            first_synced_time=now,
            sync_count=1,
        )

        if existing:
            record.remote_file_id = remote_file_id or existing.remote_file_id
            record.created_time = ctime or existing.created_time
            record.extension = extension or existing.extension or record.extension
            record.remote_mtime = existing.remote_mtime
            record.remote_hash = existing.remote_hash
            record.remote_revision_id = existing.remote_revision_id
            record.last_remote_check = existing.last_remote_check
            record.first_synced_time = existing.first_synced_time or now
            record.sync_count = existing.sync_count + 1
            record.conflict_count = existing.conflict_count
            record.history = existing.history

        if revision_id:
            record.remote_revision_id = revision_id

        record.add_history(HistoryEntry(now, operation, success=True))
        self.files[path] = record

        return record

    def mark_sync_error(self, path: str, error: str, operation: Operation) -> None:
        """
        Records a failed upload or download. Other fields of an existing record are not
        touched. If there is no record, a zeroed record holding only the failure is
        created.

        :param path: Vault path of the file.
        :param error: Error message.
        :param operation: The operation which failed.
        """
        entry = HistoryEntry(now_ms(), operation, success=False, error=error)
        record = self.files.get(path)

        if not record:
            record = FileRecord(path=path, extension=get_extension(path))
            self.files[path] = record

        record.last_error = error
        record.add_history(entry)

    def mark_conflict(self, path: str) -> None:
        """
        Records a conflict for an existing record. Does nothing if the file is unknown.

        :param path: Vault path of the file.
        """
        record = self.files.get(path)

        if not record:
            return

        record.conflict_count += 1
        record.add_history(
            HistoryEntry(
                now_ms(), Operation.Conflict, success=False, error=CONFLICT_ERROR_MSG
            )
        )

    def track_file(self, path: str) -> FileRecord:
        """
        Starts tracking a file which has never been synced. Existing records are
        returned unchanged.

        :param path: Vault path of the file.
        :returns: The existing record or a new sentinel record.
        """
        try:
            return self.files[path]
        except KeyError:
            record = FileRecord(path=path, extension=get_extension(path))
            self.files[path] = record
            return record

    def remove_file(self, path: str) -> bool:
        """
        Removes a file record. A delete entry is logged before removal.

        :param path: Vault path of the file.
        :returns: Whether a record existed.
        """
        record = self.files.get(path)

        if not record:
            return False

        record.add_history(HistoryEntry(now_ms(), Operation.Delete, success=True))
        del self.files[path]
        return True

    def rename_file(self, old_path: str, new_path: str) -> FileRecord | None:
        """
        Moves a file record to a new path, keeping its sync state.

        :param old_path: Previous vault path.
        :param new_path: New vault path.
        :returns: The moved record or ``None`` if ``old_path`` was not tracked.
        """
        record = self.files.pop(old_path, None)

        if not record:
            return None

        record.path = new_path
        record.extension = get_extension(new_path)
        self.files[new_path] = record
        return record

    def update_remote_file_info(
        self,
        path: str,
        remote_id: str,
        remote_mtime: int,
        remote_hash: str | None = None,
        revision_id: str | None = None,
    ) -> None:
        """
        Caches an observation of the remote file. Creates a sentinel record carrying the
        remote information if the file is not tracked yet.

        :param path: Vault path of the file.
        :param remote_id: ID of the remote file.
        :param remote_mtime: Remote modification time.
        :param remote_hash: Remote content hash, if known.
        :param revision_id: Remote revision, if known.
        """
        record = self.track_file(path)

        record.remote_file_id = remote_id
        record.remote_mtime = remote_mtime
        record.last_remote_check = now_ms()

        if remote_hash is not None:
            record.remote_hash = remote_hash
        if revision_id is not None:
            record.remote_revision_id = revision_id

    def should_download_remote_file(
        self,
        path: str,
        remote_id: str,
        remote_mtime: int,
        local_exists: bool,
        local_mtime: int = 0,
        local_hash: str = "",
    ) -> RemoteDecision:
        """
        Decides what to do with a single remote file. This takes the local state into
        account and detects conflicts where both sides changed since the last sync.

        :param path: Vault path of the file.
        :param remote_id: ID of the remote file.
        :param remote_mtime: Remote modification time.
        :param local_exists: Whether the file exists locally.
        :param local_mtime: Local modification time.
        :param local_hash: Local content fingerprint, empty if unknown or empty.
        :returns: Whether to download, skip or to raise a conflict.
        """
        record = self.files.get(path)

        if not local_exists:
            return RemoteDecision.Download

        # Local content without provenance.
        if not record or record.is_sentinel:
            return RemoteDecision.Conflict if local_hash else RemoteDecision.Download

        # No remote change since we last looked.
        if record.remote_mtime and remote_mtime <= record.remote_mtime:
            if record.last_synced_time == 0:
                return RemoteDecision.Download
            return RemoteDecision.Skip

        local_changed = (
            local_hash != record.last_synced_hash
            or local_mtime > record.last_synced_time
        )
        remote_changed = remote_mtime > record.last_synced_time

        if local_changed and remote_changed:
            return RemoteDecision.Conflict
        elif remote_changed:
            return RemoteDecision.Download
        else:
            return RemoteDecision.Skip

    def get_files_with_errors(self) -> list[FileRecord]:
        return [r for r in self.files.values() if r.last_error]

    def get_files_with_conflicts(self) -> list[FileRecord]:
        return [r for r in self.files.values() if r.conflict_count > 0]

    # ==== folder records ==============================================================

    def get_folder(self, path: str) -> FolderRecord | None:
        return self.folders.get(path)

    def track_folder(
        self,
        path: str,
        mtime: int,
        file_count: int = 0,
        subfolder_count: int = 0,
        remote_folder_id: str | None = None,
    ) -> FolderRecord:
        """
        Adds or replaces a folder record. A known remote folder ID is kept if no new
        one is given.

        :param path: Vault path of the folder.
        :param mtime: Local modification time.
        :param file_count: Number of files in the folder.
        :param subfolder_count: Number of direct sub-folders.
        :param remote_folder_id: ID of the remote folder, if known.
        :returns: The new record.
        """
        existing = self.folders.get(path)

        if not remote_folder_id and existing:
            remote_folder_id = existing.remote_folder_id

        record = FolderRecord(
            path=path,
            last_synced_time=mtime,
            remote_folder_id=remote_folder_id,
            last_remote_check=now_ms(),
            file_count=file_count,
            subfolder_count=subfolder_count,
        )
        self.folders[path] = record
        return record

    def update_folder(self, path: str, **changes: Any) -> FolderRecord | None:
        """
        Updates fields of an existing folder record.

        :param path: Vault path of the folder.
        :param changes: Attributes of :class:`vaultsync.core.FolderRecord` to update.
        :returns: The updated record or ``None`` if the folder is unknown.
        """
        record = self.folders.get(path)

        if not record:
            return None

        for name, value in changes.items():
            if not hasattr(record, name) or name == "path":
                raise AttributeError(f"Cannot update folder attribute '{name}'")
            setattr(record, name, value)

        return record

    def remove_folder(self, path: str, recursive: bool = False) -> list[str]:
        """
        Removes a folder record.

        :param path: Vault path of the folder.
        :param recursive: If ``True``, all file and folder records inside the folder are
            removed as well.
        :returns: Paths of removed file records.
        """
        self.folders.pop(path, None)

        if not recursive:
            return []

        for folder_path in [p for p in self.folders if is_child(p, path)]:
            del self.folders[folder_path]

        removed = [p for p in self.files if is_child(p, path)]

        for file_path in removed:
            self.remove_file(file_path)

        return removed

    def rename_folder(self, old_path: str, new_path: str) -> int:
        """
        Moves a folder record and every file and folder record inside it to a new path.
        The new mappings are built first and swapped in at once, no caller can observe
        a partially renamed folder.

        :param old_path: Previous vault path of the folder.
        :param new_path: New vault path of the folder.
        :returns: Number of moved file records.
        """
        new_folders: dict[str, FolderRecord] = {}

        for path, folder in self.folders.items():
            if is_equal_or_child(path, old_path):
                path = replace_prefix(path, old_path, new_path)
                folder.path = path
            new_folders[path] = folder

        new_files: dict[str, FileRecord] = {}
        moved = 0

        for path, record in self.files.items():
            if is_child(path, old_path):
                path = replace_prefix(path, old_path, new_path)
                record.path = path
                moved += 1
            new_files[path] = record

        self.folders = new_folders
        self.files = new_files

        return moved

    def has_folder_changed(
        self, path: str, mtime: int, file_count: int, subfolder_count: int
    ) -> bool:
        """
        Checks if a folder differs from its record.

        :returns: ``True`` if the folder is unknown or any of the values differ.
        """
        record = self.folders.get(path)

        if not record:
            return True

        return (
            record.last_synced_time != mtime
            or record.file_count != file_count
            or record.subfolder_count != subfolder_count
        )

    # ==== vault wide state ============================================================

    def mark_full_sync_completed(self) -> None:
        self.last_full_sync = now_ms()

    def time_since_last_full_sync(self) -> int:
        """Milliseconds since the last full sync or since the epoch if never synced."""
        return now_ms() - self.last_full_sync

    def needs_full_sync(self, max_age: float = FULL_SYNC_MAX_AGE) -> bool:
        """
        :param max_age: Maximum age of the last full sync in seconds.
        :returns: Whether the last full sync is older than ``max_age``.
        """
        return self.time_since_last_full_sync() > max_age * 1000

    def mark_remote_check_completed(self) -> None:
        self.last_remote_check = now_ms()

    def needs_remote_check(self, interval: float = REMOTE_CHECK_INTERVAL) -> bool:
        """
        :param interval: Minimum time between remote checks in seconds.
        :returns: Whether the last remote check is older than ``interval``.
        """
        return now_ms() - self.last_remote_check > interval * 1000

    def get_stats(self) -> IndexStats:
        records = list(self.files.values())
        extension_counts = Counter(r.extension or "(none)" for r in records)

        if records:
            average = sum(r.sync_count for r in records) / len(records)
        else:
            average = 0.0

        return IndexStats(
            total_files=len(records),
            total_folders=len(self.folders),
            files_with_errors=len(self.get_files_with_errors()),
            files_with_conflicts=len(self.get_files_with_conflicts()),
            never_synced=sum(1 for r in records if r.is_sentinel),
            extension_counts=dict(extension_counts),
            average_sync_count=round(average, 1),
            last_full_sync=self.last_full_sync,
            last_remote_check=self.last_remote_check,
        )

    def clear(self) -> None:
        """Removes all records and resets the sync times."""
        self.files.clear()
        self.folders.clear()
        self.last_full_sync = 0
        self.last_remote_check = 0

    # ==== serialization ===============================================================

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": INDEX_VERSION,
            "vaultId": self.vault_id,
            "lastFullSync": self.last_full_sync,
            "lastRemoteCheck": self.last_remote_check,
            "files": {path: r.to_dict() for path, r in self.files.items()},
            "folders": {path: r.to_dict() for path, r in self.folders.items()},
        }

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], vault_id: str | None = None
    ) -> SyncIndex:
        """
        Creates an index from its serialized form. Unknown keys are ignored and missing
        keys fall back to defaults, this also accepts documents of older versions.

        :param data: Serialized index.
        :param vault_id: Vault identifier to use instead of the stored one.
        :returns: The sync index.
        """
        index = cls(vault_id or data.get("vaultId", ""))
        index.last_full_sync = int(data.get("lastFullSync") or 0)
        index.last_remote_check = int(data.get("lastRemoteCheck") or 0)

        for path, record in (data.get("files") or {}).items():
            index.files[path] = FileRecord.from_dict(record, path=path)

        for path, record in (data.get("folders") or {}).items():
            # Older documents stored folder keys with a trailing slash.
            path = path.rstrip("/")
            index.folders[path] = FolderRecord.from_dict(record, path=path)

        return index
