"""
Dataclasses for our internal and external APIs. All timestamps are integer milliseconds
since the epoch and all paths are vault paths as returned by
:func:`vaultsync.utils.path.normalize_path`.
"""

from __future__ import annotations

from collections import deque
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Union

from .constants import HISTORY_SIZE


# ==== sync index ======================================================================


class Operation(Enum):
    """Enum of operations logged in the history of a file"""

    Upload = "upload"
    Download = "download"
    Delete = "delete"
    Conflict = "conflict"


@dataclass
class HistoryEntry:
    """An entry in the history of a file"""

    timestamp: int
    """Time of the operation"""
    operation: Operation
    """The operation which was performed"""
    success: bool
    """Whether the operation succeeded"""
    error: str | None = None
    """Error message for failed operations and conflicts"""

    def to_dict(self) -> dict[str, Any]:
        res: dict[str, Any] = {
            "timestamp": self.timestamp,
            "operation": self.operation.value,
            "success": self.success,
        }
        if self.error is not None:
            res["error"] = self.error
        return res

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryEntry:
        return cls(
            timestamp=int(data.get("timestamp", 0)),
            operation=Operation(data.get("operation", Operation.Upload.value)),
            success=bool(data.get("success", False)),
            error=data.get("error"),
        )


def new_history(entries: list[HistoryEntry] | None = None) -> deque[HistoryEntry]:
    """
    Creates a bounded history, newest entry first. Entries beyond the capacity are
    dropped from the old end.

    :param entries: Initial entries, newest first.
    :returns: Deque with a maximum length of :const:`HISTORY_SIZE`.
    """
    return deque((entries or [])[:HISTORY_SIZE], maxlen=HISTORY_SIZE)


# Attribute name -> key in the persisted document.
_FILE_RECORD_KEYS = {
    "path": "path",
    "last_synced_hash": "lastSyncedHash",
    "last_synced_time": "lastSyncedTime",
    "last_synced_size": "lastSyncedSize",
    "remote_file_id": "remoteFileId",
    "remote_mtime": "remoteMtime",
    "remote_hash": "remoteHash",
    "remote_revision_id": "remoteRevisionId",
    "last_remote_check": "lastRemoteCheck",
    "created_time": "createdTime",
    "extension": "extension",
    "first_synced_time": "firstSyncedTime",
    "sync_count": "syncCount",
    "conflict_count": "conflictCount",
    "last_error": "lastError",
}

_FOLDER_RECORD_KEYS = {
    "path": "path",
    "last_synced_time": "lastSyncedTime",
    "remote_folder_id": "remoteFolderId",
    "last_remote_check": "lastRemoteCheck",
    "file_count": "fileCount",
    "subfolder_count": "subfolderCount",
}


@dataclass
class FileRecord:
    """Last known sync state of a file

    A record with ``last_synced_time == 0`` and an empty ``last_synced_hash`` is a
    sentinel: the file is known to exist but has never been synced.
    """

    path: str
    """Vault path of the file, also the key in the index"""
    last_synced_hash: str = ""
    """Content fingerprint at the last successful sync"""
    last_synced_time: int = 0
    """Local modification time at the last successful sync"""
    last_synced_size: int = 0
    """Size in bytes at the last successful sync"""
    remote_file_id: str | None = None
    """ID of the corresponding remote file, if any"""
    remote_mtime: int | None = None
    """Remote modification time at the last observation"""
    remote_hash: str | None = None
    """Remote content hash at the last observation"""
    remote_revision_id: str | None = None
    """Remote revision at the last observation"""
    last_remote_check: int | None = None
    """Time of the last remote observation"""
    created_time: int | None = None
    """Local creation time"""
    extension: str = ""
    """Lowercase file extension including the dot"""
    first_synced_time: int | None = None
    """Time of the first successful sync"""
    sync_count: int = 0
    """Number of successful syncs"""
    conflict_count: int = 0
    """Number of detected conflicts"""
    last_error: str | None = None
    """Error message of the last failed sync, cleared on success"""
    history: deque[HistoryEntry] = field(default_factory=new_history)
    """The most recent operations, newest first"""

    @property
    def is_sentinel(self) -> bool:
        """Whether the file is tracked but was never synced."""
        return self.last_synced_time == 0 and self.last_synced_hash == ""

    def add_history(self, entry: HistoryEntry) -> None:
        """Adds an entry to the front of the history, dropping the oldest one."""
        self.history.appendleft(entry)

    def to_dict(self) -> dict[str, Any]:
        res: dict[str, Any] = {}
        for attr, key in _FILE_RECORD_KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                res[key] = value
        res["history"] = [entry.to_dict() for entry in self.history]
        return res

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str | None = None) -> FileRecord:
        kwargs = {
            attr: data[key] for attr, key in _FILE_RECORD_KEYS.items() if key in data
        }
        if path is not None:
            kwargs["path"] = path
        history = [HistoryEntry.from_dict(e) for e in data.get("history", [])]
        return cls(**kwargs, history=new_history(history))


@dataclass
class FolderRecord:
    """Last known sync state of a folder"""

    path: str
    """Vault path of the folder, also the key in the index"""
    last_synced_time: int = 0
    """Local modification time when the folder was last tracked"""
    remote_folder_id: str | None = None
    """ID of the corresponding remote folder, if known"""
    last_remote_check: int = 0
    """Time when the folder was last tracked or checked"""
    file_count: int = 0
    """Number of files in the folder"""
    subfolder_count: int = 0
    """Number of direct sub-folders"""

    def to_dict(self) -> dict[str, Any]:
        res: dict[str, Any] = {}
        for attr, key in _FOLDER_RECORD_KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                res[key] = value
        return res

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], path: str | None = None
    ) -> FolderRecord:
        kwargs = {
            attr: data[key] for attr, key in _FOLDER_RECORD_KEYS.items() if key in data
        }
        if path is not None:
            kwargs["path"] = path
        return cls(**kwargs)


@dataclass
class IndexStats:
    """Summary of the sync index"""

    total_files: int
    total_folders: int
    files_with_errors: int
    files_with_conflicts: int
    never_synced: int
    extension_counts: dict[str, int]
    average_sync_count: float
    last_full_sync: int
    last_remote_check: int


# ==== local store =====================================================================


@dataclass
class FileEntry:
    """A file in the local vault"""

    path: str
    size: int
    mtime: int
    ctime: int


@dataclass
class FolderEntry:
    """A folder in the local vault"""

    path: str
    mtime: int
    ctime: int


LocalEntry = Union[FileEntry, FolderEntry]


@dataclass
class VaultListing:
    """Direct children of a local folder"""

    files: list[FileEntry] = field(default_factory=list)
    folders: list[FolderEntry] = field(default_factory=list)


class ChangeType(Enum):
    """Enumeration of local change types"""

    Created = "created"
    Modified = "modified"
    Deleted = "deleted"
    Renamed = "renamed"


class ItemType(Enum):
    """Enumeration of local item types"""

    File = "file"
    Folder = "folder"


@dataclass(frozen=True)
class LocalChange:
    """A change in the local vault, as delivered to the sync engine"""

    change_type: ChangeType
    item_type: ItemType
    path: str
    """Vault path of the item after the change"""
    old_path: str | None = None
    """Previous vault path for renamed items"""

    @property
    def is_file(self) -> bool:
        return self.item_type is ItemType.File

    @property
    def is_folder(self) -> bool:
        return self.item_type is ItemType.Folder


# ==== remote store ====================================================================


@dataclass
class RemoteFile:
    """A file in the remote container"""

    id: str
    """Unique ID of the remote file"""
    name: str
    """Path of the file relative to the container"""
    mime_type: str
    size: int
    modified_time: int
    revision_id: str | None = None
    parent_id: str | None = None


@dataclass
class UploadResult:
    """Result of an upload"""

    file_id: str
    revision_id: str | None
    parent_id: str
    """ID of the remote folder which holds the file"""


# ==== delta ===========================================================================


class DownloadReason(Enum):
    """Why a file is downloaded"""

    MissingLocal = "missing_local"
    RemoteNewer = "remote_newer"


class UploadReason(Enum):
    """Why a file is uploaded"""

    LocalNewer = "local_newer"
    NeverSynced = "never_synced"
    MissingRemote = "missing_remote"


class RemoteDecision(Enum):
    """Decision for a single remote file"""

    Download = "download"
    Conflict = "conflict"
    Skip = "skip"


@dataclass
class DownloadCandidate:
    file_id: str
    path: str
    reason: DownloadReason
    remote_mtime: int
    remote_size: int


@dataclass
class UploadCandidate:
    path: str
    reason: UploadReason
    local_mtime: int
    local_size: int


@dataclass
class ConflictCandidate:
    path: str
    local_mtime: int
    remote_mtime: int
    local_hash: str
    remote_file_id: str | None


@dataclass
class SyncDelta:
    """Classified difference between the index and the remote listing"""

    to_download: list[DownloadCandidate] = field(default_factory=list)
    to_upload: list[UploadCandidate] = field(default_factory=list)
    conflicts: list[ConflictCandidate] = field(default_factory=list)
    in_sync: int = 0
    total_remote: int = 0
    total_local: int = 0


@dataclass
class SyncResult:
    """Summary of a full sync pass"""

    success: bool
    message: str
    uploaded_files: int = 0
    downloaded_files: int = 0
    conflicts: int = 0
    skipped_files: int = 0
    """Files which were already in sync"""


# ==== conflicts =======================================================================


class Resolution(Enum):
    """How a conflict is resolved"""

    Local = "local"
    Remote = "remote"
    Manual = "manual"


@dataclass
class VersionInfo:
    """One side of a conflict"""

    content: str
    last_modified: int
    size: int


@dataclass
class PendingConflict:
    """A conflict which awaits resolution"""

    id: str
    path: str
    local_version: VersionInfo
    remote_version: VersionInfo
    timestamp: int
    """Time when the conflict was detected"""
    remote_file_id: str | None = None


@dataclass
class ConflictResolution:
    """Delivered to resolution callbacks"""

    conflict_id: str
    resolution: Resolution
    conflict: PendingConflict
    resolved_content: str | None = None


@dataclass
class ConflictStats:
    """Summary of pending conflicts"""

    pending: int
    oldest_timestamp: int | None
    paths: list[str]
