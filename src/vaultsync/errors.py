# -*- coding: utf-8 -*-
"""
This module defines vaultsync's error classes. It should be kept free of memory heavy
imports.

All errors inherit from :class:`VaultSyncApiError` which has title and message
attributes to display the error to the user. Errors which are related to syncing a
specific file or folder inherit from :class:`SyncError`, a subclass of
:class:`VaultSyncApiError`. Conflicts are never raised as errors, they are handed to
the conflict manager instead.
"""

from typing import Optional


class VaultSyncApiError(Exception):
    """Base class for vaultsync errors

    VaultSyncApiError provides attributes that can be used to generate human-readable
    error messages and metadata regarding affected file paths (if any).

    :param title: A short description of the error type. This can be used in a CLI to
        give a short error summary.
    :param message: A more verbose description which can include instructions on how to
        proceed to fix the error.
    :param path: Vault path of the file that caused the error.
    :param local_path: Local path of the file that caused the error.
    """

    def __init__(
        self,
        title: str,
        message: str = "",
        path: Optional[str] = None,
        local_path: Optional[str] = None,
    ) -> None:
        super().__init__(title, message)
        self.title = title
        self.message = message
        self.path = path
        self.local_path = local_path

    def __str__(self) -> str:
        return ". ".join([self.title, self.message])


# ==== regular sync errors =============================================================


class SyncError(VaultSyncApiError):
    """Base class for recoverable sync issues."""


class InsufficientPermissionsError(SyncError):
    """Raised when accessing a file or folder fails due to insufficient permissions,
    both locally and on the remote drive."""


class InsufficientSpaceError(SyncError):
    """Raised when the remote drive or local disk has insufficient storage space."""


class PathError(SyncError):
    """Raised when there is an issue with the provided file or folder path such as
    invalid characters, a too long file name, etc."""


class NotFoundError(SyncError):
    """Raised when a file or folder is requested but does not exist."""


class ConflictError(SyncError):
    """Raised when trying to create a file or folder which already exists."""


class IsAFolderError(SyncError):
    """Raised when a file is required but a folder is provided."""


class NotAFolderError(SyncError):
    """Raised when a folder is required but a file is provided."""


class DriveServerError(SyncError):
    """Raised in case of internal errors of the remote drive or when the request rate
    limit has been exceeded and retries did not help."""


class UnsupportedFileError(SyncError):
    """Raised when a remote item cannot be downloaded, for instance native documents
    which can only be exported."""


class FileReadError(SyncError):
    """Raised when reading a local file failed."""


# ==== errors which are not related to a specific sync event ===========================


class DriveConnectionError(VaultSyncApiError):
    """Raised when the connection to the remote drive fails."""


class NotLinkedError(VaultSyncApiError):
    """Raised when no access token has been stored."""


class NoVaultIdError(VaultSyncApiError):
    """Raised when no vault identifier has been configured."""


class NoVaultDirError(VaultSyncApiError):
    """Raised when the local vault folder cannot be found."""


class KeyringAccessError(VaultSyncApiError):
    """Raised when retrieval of a saved auth token from the user keyring fails."""


class IndexCorruptedError(VaultSyncApiError):
    """Raised when the persisted sync index cannot be read or written."""


class DriveAuthError(VaultSyncApiError):
    """Raised when authentication fails."""


class TokenExpiredError(DriveAuthError):
    """Raised when authentication fails because the user's token has expired."""


class BadInputError(VaultSyncApiError):
    """Raised when an API request is made with bad input. This should not happen
    during syncing but only in case of manual API calls."""


class BusyError(VaultSyncApiError):
    """Raised when trying to perform an action which is only allowed in the idle state
    or when the sync engine of a config is already running in another process."""
