"""
This module contains the sync engine. It owns the sync index and performs all uploads,
downloads, local change handling, full sync passes and reconciliation. Every mutation
of the index and every remote call is serialised by :attr:`SyncEngine.sync_lock`.
"""

from __future__ import annotations

# system imports
import mimetypes
from contextlib import nullcontext
from collections import Counter
from threading import RLock
from typing import ContextManager

# local imports
from .client import DriveClient
from .config import VaultSyncConfig, VaultSyncState
from .conflicts import ConflictManager
from .constants import (
    BINARY_EXTENSIONS,
    DEFAULT_MIME_TYPE,
    IDLE,
    MIME_TYPES,
    RECONCILING,
    SYNC_ERROR,
    SYNCING,
)
from .core import (
    ChangeType,
    ConflictResolution,
    DownloadCandidate,
    DownloadReason,
    FileEntry,
    FileRecord,
    FolderEntry,
    IndexStats,
    LocalChange,
    Operation,
    PendingConflict,
    RemoteDecision,
    Resolution,
    SyncResult,
    VersionInfo,
)
from .delta import calculate_delta, filter_valid_files
from .errors import (
    IsAFolderError,
    NoVaultDirError,
    NoVaultIdError,
    NotFoundError,
    NotLinkedError,
    VaultSyncApiError,
)
from .errorhandling import convert_api_errors
from .index import SyncIndex
from .logging import scoped_logger
from .persistence import IndexStore
from .utils.hashing import content_hash
from .utils.path import (
    get_extension,
    is_child,
    is_excluded,
    is_tracked_file,
    split_path,
)
from .vault import (
    LocalVault,
    VaultEventHandler,
    compile_excluded_patterns,
    is_excluded_by_user,
)


__all__ = ["SyncEngine", "get_mime_type"]


def get_mime_type(path: str) -> str:
    """
    :param path: Vault path of a file.
    :returns: MIME type to use when uploading the file.
    """
    ext = get_extension(path).lstrip(".")

    try:
        return MIME_TYPES[ext]
    except KeyError:
        return mimetypes.guess_type(path)[0] or DEFAULT_MIME_TYPE


def _decode_content(path: str, data: bytes) -> str:
    """Returns the text content of a file or an empty string for binary files."""
    if get_extension(path).lstrip(".") in BINARY_EXTENSIONS:
        return ""
    return data.decode("utf-8", errors="replace")


class SyncEngine:
    """Class that handles syncing with the remote drive

    Provides methods to handle local changes, to run full sync passes and to reconcile
    the index with the local vault, including conflict handling and updates to the
    index.

    :param client: Remote drive client instance.
    """

    def __init__(self, client: DriveClient) -> None:
        self.client = client
        self.config_name = self.client.config_name
        self._logger = scoped_logger(__name__, self.config_name)

        self._conf = VaultSyncConfig(self.config_name)
        self._state = VaultSyncState(self.config_name)

        # Upload and download cycles, index access.
        self.sync_lock = RLock()

        self.vault: LocalVault | None = None
        self.fs_events: VaultEventHandler | None = None
        self.reload_cached_config()

        self.index_store = IndexStore(self.config_name)
        self.index: SyncIndex = self.index_store.load_or_migrate(
            self._vault_id, self._state
        )

        self.conflicts = ConflictManager(self.config_name)
        self.conflicts.on_resolution(self._on_conflict_resolved)

        self._status = IDLE

    def reload_cached_config(self) -> None:
        """
        Reloads all config values that are otherwise cached by this class. Call this
        method if config values where modified directly instead of through
        :class:`SyncEngine` APIs.
        """
        with self.sync_lock:
            self._vault_id: str = self._conf.get("sync", "vault_id")
            self._excluded_rules = compile_excluded_patterns(
                self._conf.get("sync", "excluded_patterns")
            )

            vault_path: str = self._conf.get("sync", "path")

            if vault_path:
                self.vault = LocalVault(vault_path)
                self.fs_events = VaultEventHandler(self.vault, self._excluded_rules)
            else:
                self.vault = None
                self.fs_events = None

            if hasattr(self, "index"):
                self.index.vault_id = self._vault_id

            self.client.clear_cache()

    # ==== Config access ===============================================================

    @property
    def vault_id(self) -> str:
        """The vault ID. Determines the remote container."""
        return self._vault_id

    @vault_id.setter
    def vault_id(self, vault_id: str) -> None:
        """Setter: vault_id"""
        with self.sync_lock:
            self._conf.set("sync", "vault_id", vault_id)
            self.reload_cached_config()

    @property
    def vault_path(self) -> str:
        """Path of the local vault folder."""
        return self.vault.root if self.vault else ""

    @vault_path.setter
    def vault_path(self, path: str) -> None:
        """Setter: vault_path"""
        with self.sync_lock:
            self._conf.set("sync", "path", path)
            self.reload_cached_config()

    @property
    def conflict_resolution(self) -> str:
        """Default policy applied to new conflicts."""
        return self._conf.get("sync", "conflict_resolution")

    @property
    def status(self) -> str:
        """The current sync status."""
        return self._status

    @status.setter
    def status(self, status: str) -> None:
        """Setter: status"""
        self._status = status
        self._logger.info(status)

    # ==== Helpers =====================================================================

    def _require_vault(self) -> LocalVault:
        if not self.vault:
            raise NoVaultDirError(
                "No local vault folder", "Please set the path of the local vault."
            )
        return self.vault

    def _require_vault_id(self) -> str:
        if not self._vault_id:
            raise NoVaultIdError(
                "No vault ID", "Please set a vault ID to select the remote container."
            )
        return self._vault_id

    def _require_linked(self) -> None:
        if not self.client.linked:
            raise NotLinkedError(
                "No auth token set", "Please link a remote drive to get started."
            )

    def _container_id(self) -> str:
        return self.client.get_or_create_container(self._require_vault_id())

    def is_excluded(self, path: str, is_dir: bool = False) -> bool:
        """
        :param path: Vault path.
        :param is_dir: Whether the path refers to a folder.
        :returns: Whether the item is hidden or excluded by the user.
        """
        return is_excluded(path) or is_excluded_by_user(
            self._excluded_rules, path, is_dir
        )

    def is_tracked(self, path: str) -> bool:
        """
        :param path: Vault path of a file.
        :returns: Whether the file has a tracked extension and is not excluded.
        """
        return is_tracked_file(path) and not self.is_excluded(path)

    def save_index(self) -> None:
        """Writes the index to the drive."""
        with self.sync_lock:
            self.index_store.save(self.index)

    # ==== Local scans =================================================================

    def scan_vault(self) -> tuple[dict[str, FileEntry], dict[str, FolderEntry]]:
        """
        Recursively lists the local vault, skipping excluded folders and files without
        a tracked extension.

        :returns: Tuple of files and folders, mapped by their vault path.
        """
        vault = self._require_vault()

        files: dict[str, FileEntry] = {}
        folders: dict[str, FolderEntry] = {}

        with convert_api_errors(local_path=vault.root):
            for entry in vault.walk():
                is_dir = isinstance(entry, FolderEntry)

                if self._is_excluded_tree(entry.path, is_dir):
                    continue

                if isinstance(entry, FolderEntry):
                    folders[entry.path] = entry
                elif is_tracked_file(entry.path):
                    files[entry.path] = entry

        return files, folders

    def _is_excluded_tree(self, path: str, is_dir: bool) -> bool:
        """Checks if an item or any of its parent folders is excluded."""
        if self.is_excluded(path, is_dir):
            return True

        parent, _ = split_path(path)

        while parent:
            if self.is_excluded(parent, is_dir=True):
                return True
            parent, _ = split_path(parent)

        return False

    @staticmethod
    def _folder_counts(
        files: dict[str, FileEntry], folders: dict[str, FolderEntry]
    ) -> tuple[Counter, Counter]:
        file_counts: Counter = Counter(split_path(p)[0] for p in files)
        subfolder_counts: Counter = Counter(split_path(p)[0] for p in folders)
        return file_counts, subfolder_counts

    # ==== Transfers ===================================================================

    def upload_file(self, path: str) -> FileRecord:
        """
        Uploads a local file and records the result in the index. The remote file gets
        the local modification time.

        :param path: Vault path of the file.
        :returns: The updated record.
        :raises VaultSyncApiError: if the upload fails. The failure is recorded in the
            index before raising.
        """
        with self.sync_lock:
            vault = self._require_vault()
            local_path = vault.to_local_path(path)

            try:
                with convert_api_errors(path=path, local_path=local_path):
                    entry = vault.stat(path)

                    if entry is None:
                        raise NotFoundError(
                            "Could not upload file",
                            "The file does not exist.",
                            path=path,
                            local_path=local_path,
                        )
                    elif isinstance(entry, FolderEntry):
                        raise IsAFolderError(
                            "Could not upload file",
                            "The given path refers to a folder.",
                            path=path,
                            local_path=local_path,
                        )

                    data = vault.read_bytes(path)

                fingerprint = content_hash(data)

                result = self.client.upload_file(
                    path,
                    data,
                    get_mime_type(path),
                    self._container_id(),
                    mtime=entry.mtime,
                )

            except VaultSyncApiError as exc:
                self.index.mark_sync_error(path, str(exc), Operation.Upload)
                self.save_index()
                raise

            record = self.index.mark_synced(
                path,
                fingerprint,
                entry.mtime,
                entry.size,
                result.file_id,
                ctime=entry.ctime,
                operation=Operation.Upload,
                revision_id=result.revision_id,
            )
            self.index.update_remote_file_info(
                path,
                result.file_id,
                entry.mtime,
                remote_hash=fingerprint,
                revision_id=result.revision_id,
            )
            self._update_parent_folder(path, result.parent_id)
            self.save_index()

            self._logger.debug("Uploaded %s", path)

            return record

    def _update_parent_folder(self, path: str, remote_folder_id: str) -> None:
        parent, _ = split_path(path)

        if not parent:
            return

        if self.index.get_folder(parent):
            self.index.update_folder(parent, remote_folder_id=remote_folder_id)
        elif self.vault and self.vault.is_folder(parent):
            entry = self.vault.stat(parent)
            mtime = entry.mtime if entry else 0
            self.index.track_folder(parent, mtime, remote_folder_id=remote_folder_id)

    def download_file(self, candidate: DownloadCandidate) -> FileRecord:
        """
        Downloads a remote file and records the result in the index. The local file
        gets the remote modification time and parent folders are created as needed.
        Local events caused by writing the file are ignored.

        :param candidate: The file to download.
        :returns: The updated record.
        :raises VaultSyncApiError: if the download fails. The failure is recorded in
            the index before raising.
        """
        with self.sync_lock:
            vault = self._require_vault()
            path = candidate.path
            local_path = vault.to_local_path(path)

            try:
                data = self.client.download_file(candidate.file_id, path=path)

                with self._ignore_events(path):
                    with convert_api_errors(path=path, local_path=local_path):
                        vault.write_bytes(path, data, mtime=candidate.remote_mtime)
                        entry = vault.stat(path)

                if not isinstance(entry, FileEntry):
                    raise NotFoundError(
                        "Could not download file",
                        "The file was removed while downloading.",
                        path=path,
                        local_path=local_path,
                    )

            except VaultSyncApiError as exc:
                self.index.mark_sync_error(path, str(exc), Operation.Download)
                self.save_index()
                raise

            fingerprint = content_hash(data)

            record = self.index.mark_synced(
                path,
                fingerprint,
                entry.mtime,
                entry.size,
                candidate.file_id,
                ctime=entry.ctime,
                operation=Operation.Download,
            )
            self.index.update_remote_file_info(
                path, candidate.file_id, candidate.remote_mtime, remote_hash=fingerprint
            )
            self.save_index()

            self._logger.debug("Downloaded %s", path)

            return record

    def _ignore_events(self, *paths: str) -> ContextManager[None]:
        if self.fs_events:
            return self.fs_events.ignore(*paths)
        return nullcontext()

    # ==== Local changes ===============================================================

    def handle_change(self, change: LocalChange) -> None:
        """
        Applies a single local change to the index and the remote drive. Each change
        results in at most one upload or remote move.

        :param change: The local change.
        :raises VaultSyncApiError: if syncing the change fails.
        """
        with self.sync_lock:
            self._logger.debug("Handling %s", change)

            try:
                if change.is_file:
                    self._handle_file_change(change)
                else:
                    self._handle_folder_change(change)
            finally:
                self.save_index()

    def _handle_file_change(self, change: LocalChange) -> None:
        vault = self._require_vault()
        path = change.path

        if change.change_type is ChangeType.Created:
            if not self.is_tracked(path):
                self._logger.debug("Skipping untracked file: %s", path)
                return
            if not vault.is_file(path):
                return

            self.index.track_file(path)
            self.upload_file(path)

        elif change.change_type is ChangeType.Modified:
            if not self.is_tracked(path):
                return

            local_path = vault.to_local_path(path)

            with convert_api_errors(path=path, local_path=local_path):
                entry = vault.stat(path)
                if not isinstance(entry, FileEntry):
                    return
                data = vault.read_bytes(path)

            if self.index.needs_sync(path, content_hash(data), entry.mtime, entry.size):
                self.upload_file(path)
            else:
                self._logger.debug("No changes to sync: %s", path)

        elif change.change_type is ChangeType.Deleted:
            if self.index.remove_file(path):
                self._logger.info("Removed from index: %s", path)

        elif change.change_type is ChangeType.Renamed:
            self._handle_file_rename(change)

    def _handle_file_rename(self, change: LocalChange) -> None:
        old_path = change.old_path or ""
        new_path = change.path

        record = self.index.get_file(old_path)

        if not self.is_tracked(new_path):
            if record:
                self.index.remove_file(old_path)
            return

        if record and record.remote_file_id and self.is_tracked(old_path):
            try:
                self._move_remote_item(
                    record.remote_file_id,
                    old_path,
                    new_path,
                    mtime=record.remote_mtime or record.last_synced_time,
                )
            except VaultSyncApiError as exc:
                self._logger.warning(
                    "Could not move %s to %s: %s", old_path, new_path, exc
                )
            else:
                self.index.rename_file(old_path, new_path)
                self._logger.info("Renamed %s to %s", old_path, new_path)
                # Content may have changed together with the name.
                self._handle_file_change(
                    LocalChange(ChangeType.Modified, change.item_type, new_path)
                )
                return

        if record:
            self.index.remove_file(old_path)

        self._handle_file_change(
            LocalChange(ChangeType.Created, change.item_type, new_path)
        )

    def _move_remote_item(
        self, item_id: str, old_path: str, new_path: str, mtime: int | None = None
    ) -> None:
        container_id = self._container_id()
        old_parent, _ = split_path(old_path)
        new_parent, new_name = split_path(new_path)

        old_parent_id = self.client.ensure_folder_path(old_parent, container_id)
        new_parent_id = self.client.ensure_folder_path(new_parent, container_id)

        self.client.move_item(
            item_id, new_name, new_parent_id, old_parent_id, mtime=mtime
        )

    def _handle_folder_change(self, change: LocalChange) -> None:
        vault = self._require_vault()
        path = change.path

        if change.change_type is ChangeType.Created:
            if self.is_excluded(path, is_dir=True):
                return

            entry = vault.stat(path)

            if not isinstance(entry, FolderEntry):
                return

            with convert_api_errors(path=path, local_path=vault.to_local_path(path)):
                listing = vault.list(path)

            self.index.track_folder(
                path, entry.mtime, len(listing.files), len(listing.folders)
            )

        elif change.change_type is ChangeType.Deleted:
            removed = self.index.remove_folder(path, recursive=True)
            self._logger.info(
                "Removed folder from index: %s (%s file(s))", path, len(removed)
            )

        elif change.change_type is ChangeType.Renamed:
            self._handle_folder_rename(change)

    def _handle_folder_rename(self, change: LocalChange) -> None:
        old_path = change.old_path or ""
        new_path = change.path

        if self.is_excluded(new_path, is_dir=True):
            self.index.remove_folder(old_path, recursive=True)
            return

        folder = self.index.get_folder(old_path)
        remote_folder_id = folder.remote_folder_id if folder else None

        has_remote_files = any(
            r.remote_file_id
            for p, r in self.index.files.items()
            if is_child(p, old_path)
        )

        moved = self.index.rename_folder(old_path, new_path)
        self._logger.info(
            "Renamed folder %s to %s (%s file(s))", old_path, new_path, moved
        )

        if not self.index.get_folder(new_path):
            entry = self.vault.stat(new_path) if self.vault else None
            self.index.track_folder(new_path, entry.mtime if entry else 0)

        if not (remote_folder_id or has_remote_files):
            return

        try:
            if not remote_folder_id:
                remote_folder_id = self.client.ensure_folder_path(
                    old_path, self._container_id()
                )
            self._move_remote_item(remote_folder_id, old_path, new_path)
        except VaultSyncApiError as exc:
            self._logger.error(
                "Could not move remote folder %s to %s: %s", old_path, new_path, exc
            )
        else:
            self.index.update_folder(new_path, remote_folder_id=remote_folder_id)

    # ==== Full sync ===================================================================

    def sync_vault(self) -> SyncResult:
        """
        Runs a full sync pass: prunes stale index entries, compares the index with the
        remote listing, uploads and then downloads all changes sequentially. Files which
        changed on both sides since the last sync are handed to the conflict manager
        instead of being downloaded. Failures of individual transfers are logged and do
        not abort the pass.

        :returns: Summary of the sync pass.
        :raises NoVaultIdError: if no vault ID is configured.
        :raises NotLinkedError: if no access token is stored.
        """
        with self.sync_lock:
            self._require_vault_id()
            self._require_linked()
            self._require_vault()

            self.status = SYNCING

            try:
                result = self._sync_vault()
            except Exception as exc:
                self._logger.error("Sync failed", exc_info=True)
                self.status = SYNC_ERROR
                self.save_index()
                return SyncResult(success=False, message=str(exc))

            self.status = IDLE
            return result

    def _sync_vault(self) -> SyncResult:
        files, _ = self.scan_vault()

        valid_files = filter_valid_files(self.index, files)

        for path in [p for p in self.index.files if p not in valid_files]:
            self.index.remove_file(path)

        # Untracked local files only take part in this delta calculation.
        for path in files:
            if path not in valid_files:
                self._logger.debug("Found new file: %s", path)
                valid_files[path] = FileRecord(path=path, extension=get_extension(path))

        remote_files = self.client.list_files(self._container_id())
        delta = calculate_delta(valid_files, remote_files)

        self._logger.info(
            "Delta: %s to download, %s to upload, %s in sync",
            len(delta.to_download),
            len(delta.to_upload),
            delta.in_sync,
        )

        uploaded = 0

        for upload in delta.to_upload:
            if upload.path not in files:
                # Missing locally. Only the record is dropped, a remaining remote
                # copy is downloaded again on the next pass.
                self.index.remove_file(upload.path)
                continue

            try:
                self.upload_file(upload.path)
                uploaded += 1
                self._logger.info("Uploaded %s (%s)", upload.path, upload.reason.value)
            except VaultSyncApiError as exc:
                self._logger.error("Failed to upload %s: %s", upload.path, exc)

        downloaded = 0
        conflict_paths: list[str] = [c.path for c in delta.conflicts]

        for download in delta.to_download:
            try:
                decision = self._check_remote_shadow(download)

                if decision is RemoteDecision.Conflict:
                    conflict_paths.append(download.path)
                    continue
                elif decision is RemoteDecision.Skip:
                    self._logger.debug("No remote changes: %s", download.path)
                    continue

                self.download_file(download)
                downloaded += 1
                self._logger.info(
                    "Downloaded %s (%s)", download.path, download.reason.value
                )
            except VaultSyncApiError as exc:
                self._logger.error("Failed to download %s: %s", download.path, exc)

        for path in conflict_paths:
            self.index.mark_conflict(path)

        self.index.mark_full_sync_completed()
        self.index.mark_remote_check_completed()
        self.save_index()

        message = (
            f"Sync completed: {uploaded} uploaded, {downloaded} downloaded, "
            f"{len(conflict_paths)} conflict(s)"
        )
        self._logger.info(message)

        return SyncResult(
            success=True,
            message=message,
            uploaded_files=uploaded,
            downloaded_files=downloaded,
            conflicts=len(conflict_paths),
            skipped_files=delta.in_sync,
        )

    def _check_remote_shadow(self, download: DownloadCandidate) -> RemoteDecision:
        """
        Checks whether a download would overwrite local changes. Raises a conflict if
        both sides changed since the last sync.

        :param download: The download candidate from the delta.
        :returns: The decision for the download.
        """
        vault = self._require_vault()
        path = download.path
        local_path = vault.to_local_path(path)

        with convert_api_errors(path=path, local_path=local_path):
            entry = vault.stat(path)
            if not isinstance(entry, FileEntry):
                return RemoteDecision.Download
            data = vault.read_bytes(path)

        # Do not raise the same conflict again while it is pending.
        if self.conflicts.has_conflict(path):
            return RemoteDecision.Conflict

        decision = self.index.should_download_remote_file(
            path,
            download.file_id,
            download.remote_mtime,
            local_exists=True,
            local_mtime=entry.mtime,
            local_hash=content_hash(data) if data else "",
        )

        if decision is RemoteDecision.Conflict:
            self._raise_conflict(download, entry, data)

        return decision

    # ==== Conflicts ===================================================================

    def _raise_conflict(
        self, download: DownloadCandidate, entry: FileEntry, local_data: bytes
    ) -> PendingConflict:
        path = download.path
        remote_data = self.client.download_file(download.file_id, path=path)

        conflict = self.conflicts.add_conflict(
            path,
            VersionInfo(
                content=_decode_content(path, local_data),
                last_modified=entry.mtime,
                size=entry.size,
            ),
            VersionInfo(
                content=_decode_content(path, remote_data),
                last_modified=download.remote_mtime,
                size=download.remote_size,
            ),
            remote_file_id=download.file_id,
        )

        self._apply_conflict_policy(conflict)

        return conflict

    def _apply_conflict_policy(self, conflict: PendingConflict) -> None:
        policy = self.conflict_resolution

        if policy == "local":
            self.conflicts.resolve_conflict(conflict.id, Resolution.Local)
        elif policy == "remote":
            self.conflicts.resolve_conflict(conflict.id, Resolution.Remote)
        elif policy == "auto":
            resolution, content = self.conflicts.auto_resolve_conflict(conflict)
            is_binary = get_extension(conflict.path).lstrip(".") in BINARY_EXTENSIONS

            if resolution is Resolution.Manual and (content is None or is_binary):
                self._logger.info(
                    "Conflict requires manual resolution: %s", conflict.path
                )
            else:
                self.conflicts.resolve_conflict(conflict.id, resolution, content)
        else:
            self._logger.info("Conflict awaits resolution: %s", conflict.path)

    def _on_conflict_resolved(self, event: ConflictResolution) -> None:
        conflict = event.conflict

        with self.sync_lock:
            if event.resolution is Resolution.Local:
                self.upload_file(conflict.path)

            elif event.resolution is Resolution.Remote:
                if not conflict.remote_file_id:
                    self._logger.warning(
                        "Cannot download %s, remote file unknown", conflict.path
                    )
                    return

                self.download_file(
                    DownloadCandidate(
                        file_id=conflict.remote_file_id,
                        path=conflict.path,
                        reason=DownloadReason.RemoteNewer,
                        remote_mtime=conflict.remote_version.last_modified,
                        remote_size=conflict.remote_version.size,
                    )
                )

            elif event.resolved_content is not None:
                vault = self._require_vault()
                local_path = vault.to_local_path(conflict.path)

                with self._ignore_events(conflict.path):
                    with convert_api_errors(path=conflict.path, local_path=local_path):
                        vault.write_text(conflict.path, event.resolved_content)

                self.upload_file(conflict.path)

            else:
                self._logger.info(
                    "Conflict for %s resolved without changes", conflict.path
                )

    # ==== Reconciliation ==============================================================

    def reconcile_index(self) -> int:
        """
        Repairs drift between the index and the local vault: adds records for untracked
        folders, adds and uploads untracked files and removes stale records of files
        which vanished locally and were never synced. Files whose first upload failed
        are uploaded again.

        :returns: Number of uploaded files.
        :raises NoVaultIdError: if no vault ID is configured.
        :raises NotLinkedError: if no access token is stored.
        """
        with self.sync_lock:
            self._require_vault_id()
            self._require_linked()

            self.status = RECONCILING

            files, folders = self.scan_vault()
            file_counts, subfolder_counts = self._folder_counts(files, folders)

            for path, folder in folders.items():
                if not self.index.get_folder(path):
                    self.index.track_folder(
                        path, folder.mtime, file_counts[path], subfolder_counts[path]
                    )

            uploaded = 0

            for path in files:
                record = self.index.get_file(path)

                if record is None:
                    self._logger.info("Found untracked file: %s", path)
                    self.index.track_file(path)
                elif record.is_sentinel and record.last_error:
                    self._logger.info("Retrying failed upload: %s", path)
                else:
                    continue

                try:
                    self.upload_file(path)
                    uploaded += 1
                except VaultSyncApiError as exc:
                    self._logger.error("Failed to upload %s: %s", path, exc)

            for path, record in list(self.index.files.items()):
                if path in files:
                    continue
                if not record.remote_file_id or not record.last_synced_hash:
                    self._logger.debug("Removing stale index entry: %s", path)
                    self.index.remove_file(path)

            self.save_index()
            self.status = IDLE

            self._logger.info("Reconciliation uploaded %s file(s)", uploaded)

            return uploaded

    # ==== Index management ============================================================

    def get_stats(self) -> IndexStats:
        with self.sync_lock:
            return self.index.get_stats()

    def reset_sync_state(self) -> None:
        """
        Clears the index and deletes the index file. The next sync will compare all
        files by their modification time only.
        """
        with self.sync_lock:
            self.index.clear()
            self.index_store.delete()
            self.conflicts.clear_conflicts()
            self.client.clear_cache()
            self._logger.info("Sync state reset")
