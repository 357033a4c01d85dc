"""
This module calculates the difference between the sync index and a listing of the
remote container. The calculation is a pure function of its inputs: it performs no I/O
and does not modify the index.

For files which exist on both sides, the newer side wins. True conflicts, where both
sides changed since the last sync, are only detected by
:meth:`vaultsync.index.SyncIndex.should_download_remote_file` before a download.
"""

from __future__ import annotations

# system imports
import logging
from typing import Collection, Iterable

# local imports
from .core import (
    DownloadCandidate,
    DownloadReason,
    FileRecord,
    RemoteFile,
    SyncDelta,
    UploadCandidate,
    UploadReason,
)
from .index import SyncIndex


__all__ = ["filter_valid_files", "calculate_delta"]


logger = logging.getLogger(__name__)


def filter_valid_files(
    index: SyncIndex, local_paths: Collection[str]
) -> dict[str, FileRecord]:
    """
    Selects the index records which take part in a delta calculation. Records of files
    which vanished locally are only kept if they were synced before, stale entries
    without any sync history are dropped.

    :param index: The sync index.
    :param local_paths: Paths of all files which currently exist locally.
    :returns: Mapping of path to record.
    """
    valid: dict[str, FileRecord] = {}

    for path, record in index.files.items():
        if path in local_paths or (record.remote_file_id and record.last_synced_hash):
            valid[path] = record
        else:
            logger.debug("Excluding stale index entry: %s", path)

    return valid


def calculate_delta(
    valid_files: dict[str, FileRecord], remote_files: Iterable[RemoteFile]
) -> SyncDelta:
    """
    Classifies every remote file and every valid local record into exactly one of
    download, upload or in-sync. Never-synced sentinel records without a remote
    counterpart are skipped and counted in neither bucket.

    :param valid_files: Records returned by :func:`filter_valid_files`, optionally
        extended with sentinels for untracked local files.
    :param remote_files: Full listing of the remote container.
    :returns: The delta.
    """
    remote_files = list(remote_files)
    remote_by_path = {r.name: r for r in remote_files}

    delta = SyncDelta(total_remote=len(remote_files), total_local=len(valid_files))

    for remote in remote_files:
        record = valid_files.get(remote.name)

        if not record:
            logger.debug("Missing local: %s", remote.name)
            delta.to_download.append(_download(remote, DownloadReason.MissingLocal))

        elif record.remote_file_id == remote.id:
            if remote.modified_time > record.last_synced_time:
                logger.debug("Remote newer: %s", remote.name)
                delta.to_download.append(_download(remote, DownloadReason.RemoteNewer))
            elif record.last_synced_time > remote.modified_time:
                logger.debug("Local newer: %s", remote.name)
                delta.to_upload.append(_upload(record, UploadReason.LocalNewer))
            else:
                delta.in_sync += 1

        # Different or unknown remote ID: compare times only.
        elif remote.modified_time > record.last_synced_time:
            logger.debug("Remote newer (different ID): %s", remote.name)
            delta.to_download.append(_download(remote, DownloadReason.RemoteNewer))
        else:
            delta.in_sync += 1

    for path, record in valid_files.items():
        if path in remote_by_path:
            continue

        if record.is_sentinel:
            logger.debug("Skipping never synced entry: %s", path)
        elif not record.remote_file_id:
            logger.debug("Never synced: %s", path)
            delta.to_upload.append(_upload(record, UploadReason.NeverSynced))
        else:
            logger.debug("Missing remote: %s", path)
            delta.to_upload.append(_upload(record, UploadReason.MissingRemote))

    return delta


def _download(remote: RemoteFile, reason: DownloadReason) -> DownloadCandidate:
    return DownloadCandidate(
        file_id=remote.id,
        path=remote.name,
        reason=reason,
        remote_mtime=remote.modified_time,
        remote_size=remote.size,
    )


def _upload(record: FileRecord, reason: UploadReason) -> UploadCandidate:
    return UploadCandidate(
        path=record.path,
        reason=reason,
        local_mtime=record.last_synced_time,
        local_size=record.last_synced_size,
    )
