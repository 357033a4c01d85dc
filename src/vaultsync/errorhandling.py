"""
This module contains methods and decorators to convert OSErrors and HTTP errors of the
remote drive to instances of :exc:`vaultsync.errors.VaultSyncApiError`.
"""

from __future__ import annotations

# system imports
import os
import errno
import contextlib
from typing import Iterator, Optional, Union

# external imports
import requests

# local imports
from .errors import (
    VaultSyncApiError,
    InsufficientPermissionsError,
    PathError,
    FileReadError,
    InsufficientSpaceError,
    ConflictError,
    UnsupportedFileError,
    NotFoundError,
    NotAFolderError,
    IsAFolderError,
    BadInputError,
    DriveAuthError,
    TokenExpiredError,
    DriveServerError,
    DriveConnectionError,
)


__all__ = [
    "CONNECTION_ERRORS",
    "http_to_vaultsync_error",
    "os_to_vaultsync_error",
    "convert_api_errors",
]

CONNECTION_ERRORS = (
    requests.exceptions.Timeout,
    requests.exceptions.RetryError,
    requests.exceptions.ChunkedEncodingError,
    requests.exceptions.ConnectionError,
    ConnectionError,
)

LocalError = Union[VaultSyncApiError, OSError]


# ==== Conversion functions to generate error messages and types =======================


@contextlib.contextmanager
def convert_api_errors(
    path: str | None = None, local_path: str | None = None
) -> Iterator[None]:
    """
    A context manager that catches and re-raises instances of :exc:`OSError` and
    :exc:`requests.HTTPError` as :exc:`vaultsync.errors.VaultSyncApiError`.

    :param path: Vault path associated with the error.
    :param local_path: Local path associated with the error.
    """
    try:
        yield
    # HTTP and connection errors inherit from OSError, catch them first.
    except requests.HTTPError as exc:
        raise http_to_vaultsync_error(exc, path, local_path) from exc
    except CONNECTION_ERRORS as exc:
        raise DriveConnectionError(
            "Cannot connect to the remote drive",
            "Please check you internet connection and try again later.",
        ) from exc
    except OSError as exc:
        if exc.errno == errno.EPROTOTYPE:
            # Can occur on macOS, see https://bugs.python.org/issue33450.
            raise DriveConnectionError(
                "Cannot connect to the remote drive",
                "Please check you internet connection and try again later.",
            ) from exc
        else:
            raise os_to_vaultsync_error(exc, path, local_path)


def os_to_vaultsync_error(
    exc: OSError, path: str | None = None, local_path: str | None = None
) -> LocalError:
    """
    Converts a :exc:`OSError` to a :exc:`vaultsync.errors.VaultSyncApiError` and
    tries to add a reasonably informative error title and message.

    :param exc: Original OSError.
    :param path: Vault path associated with the error.
    :param local_path: Local path associated with the error.
    :returns: Converted exception.
    """
    title = "Could not sync file or folder"
    err_cls: type[VaultSyncApiError]

    if isinstance(exc, PermissionError):
        err_cls = InsufficientPermissionsError  # subclass of SyncError
        text = "Insufficient read or write permissions for this location."
    elif isinstance(exc, FileNotFoundError):
        err_cls = NotFoundError  # subclass of SyncError
        text = "The given path does not exist."
    elif isinstance(exc, FileExistsError):
        err_cls = ConflictError  # subclass of SyncError
        title = "Could not download file"
        text = "There already is an item at the given path."
    elif isinstance(exc, IsADirectoryError):
        err_cls = IsAFolderError  # subclass of SyncError
        title = "Could not create local file"
        text = "The given path refers to a folder."
    elif isinstance(exc, NotADirectoryError):
        err_cls = NotAFolderError  # subclass of SyncError
        title = "Could not create local folder"
        text = "The given path refers to a file."
    elif exc.errno == errno.ENAMETOOLONG:
        err_cls = PathError  # subclass of SyncError
        title = "Could not create local file"
        text = "The file name or path is too long."
    elif exc.errno == errno.EINVAL:
        err_cls = PathError  # subclass of SyncError
        title = "Could not create local file"
        text = (
            "The file name contains characters which are not allowed on your file "
            "system. This could be for instance a colon or a trailing period."
        )
    elif exc.errno == errno.ENOSPC:
        err_cls = InsufficientSpaceError  # subclass of SyncError
        title = "Could not download file"
        text = "There is not enough space left on the selected drive."
    elif exc.errno is not None:
        err_cls = FileReadError
        text = f"Could not access file. Errno {exc.errno}: {os.strerror(exc.errno)}."
    else:
        err_cls = VaultSyncApiError
        text = str(exc)

    local_path = local_path or exc.filename

    new_exc = err_cls(title, text, path=path, local_path=local_path)
    new_exc.__cause__ = exc

    return new_exc


def _error_details(response: Optional[requests.Response]) -> tuple[str, str]:
    """Extracts the reason and message from a Drive API error response."""
    if response is None:
        return "", ""

    try:
        error = response.json().get("error", {})
    except ValueError:
        return "", response.text or ""

    if not isinstance(error, dict):
        return "", str(error)

    errors = error.get("errors") or [{}]
    reason = errors[0].get("reason", "")
    message = error.get("message", "")

    return reason, message


def http_to_vaultsync_error(
    exc: requests.HTTPError,
    path: str | None = None,
    local_path: str | None = None,
) -> VaultSyncApiError:
    """
    Converts an HTTP error response of the remote drive to a
    :exc:`vaultsync.errors.VaultSyncApiError`.

    :param exc: HTTP error raised by :meth:`requests.Response.raise_for_status`.
    :param path: Vault path associated with the error.
    :param local_path: Local path associated with the error.
    :returns: Converted exception.
    """
    response = exc.response
    status = response.status_code if response is not None else 0
    reason, message = _error_details(response)

    title = "Could not sync file or folder"
    err_cls: type[VaultSyncApiError]

    if status == 400:
        err_cls = BadInputError
        title = "Bad request"
        text = message or "The request was rejected by the remote drive."
    elif status == 401:
        err_cls = TokenExpiredError
        title = "Authentication error"
        text = (
            "The access token has expired or is invalid. Please link vaultsync again "
            "with a new access token."
        )
    elif status == 403:
        if reason == "storageQuotaExceeded":
            err_cls = InsufficientSpaceError
            text = "There is not enough space left on the remote drive."
        elif reason in ("rateLimitExceeded", "userRateLimitExceeded"):
            err_cls = DriveServerError
            text = "Too many requests. Please try again later."
        elif reason in ("fileNotDownloadable", "cannotDownloadFile"):
            err_cls = UnsupportedFileError
            title = "Could not download file"
            text = "This file type cannot be downloaded, it can only be exported."
        elif reason == "insufficientFilePermissions":
            err_cls = InsufficientPermissionsError
            text = "Insufficient permissions for this file or folder."
        else:
            err_cls = DriveAuthError
            title = "Authorization error"
            text = message or "Access to the remote drive was denied."
    elif status == 404:
        err_cls = NotFoundError
        text = "The file or folder does not exist on the remote drive."
    elif status == 409:
        err_cls = ConflictError
        text = "There already is an item at the given path."
    elif status == 429:
        err_cls = DriveServerError
        text = "Too many requests. Please try again later."
    elif status >= 500:
        err_cls = DriveServerError
        title = "Remote server error"
        text = "An error occurred on the remote server. Please try again later."
    else:
        err_cls = VaultSyncApiError
        text = message or f"Unexpected response with status code {status}."

    return err_cls(title, text, path=path, local_path=local_path)
