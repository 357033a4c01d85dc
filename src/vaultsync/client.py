"""
This module contains the remote drive client. It wraps calls to the Google Drive v3
REST API, handles pagination, retries of transient errors and converts HTTP errors.
"""

from __future__ import annotations

# system imports
import json
import time
import uuid
import functools
from datetime import datetime, timezone
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Tuple,
    Type,
    TypeVar,
)
from typing_extensions import ParamSpec, Concatenate

# external imports
import requests

# local imports
from . import __version__
from .config import VaultSyncConfig
from .constants import (
    CONTAINER_PREFIX,
    DEFAULT_CONFIG_NAME,
    DRIVE_API_URL,
    DRIVE_UPLOAD_URL,
    FOLDER_MIME_TYPE,
    LIST_PAGE_SIZE,
)
from .core import RemoteFile, UploadResult
from .errors import (
    DriveAuthError,
    DriveConnectionError,
    DriveServerError,
    NotLinkedError,
)
from .errorhandling import convert_api_errors
from .keyring import CredentialStorage
from .logging import scoped_logger
from .utils.path import normalize_path, split_path


__all__ = ["DriveClient", "parse_timestamp", "format_timestamp"]


P = ParamSpec("P")
T = TypeVar("T")

USER_AGENT = f"vaultsync/v{__version__}"

FILE_FIELDS = "id, name, mimeType, size, modifiedTime, headRevisionId, parents"
LIST_FIELDS = f"nextPageToken, files({FILE_FIELDS})"


def parse_timestamp(value: str) -> int:
    """
    Parses an RFC 3339 timestamp as returned by the Drive API.

    :param value: Timestamp string, for example "2024-05-01T12:00:00.000Z".
    :returns: Milliseconds since the epoch.
    """
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return round(dt.timestamp() * 1000)


def format_timestamp(ms: int) -> str:
    """
    Formats milliseconds since the epoch as an RFC 3339 timestamp in UTC.

    :param ms: Milliseconds since the epoch.
    :returns: Timestamp string with millisecond precision.
    """
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _escape_query(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _retry_on_error(  # type: ignore
    error_cls: Type[Exception] | Tuple[Type[Exception], ...],
) -> Callable[
    [Callable[Concatenate[DriveClient, P], T]],
    Callable[Concatenate[DriveClient, P], T],
]:
    """
    A decorator to retry a method call if a specified exception occurs. The number of
    retries and the initial backoff are taken from the client, the backoff is doubled
    after each attempt.

    :param error_cls: Error type or types to catch.
    """

    def decorator(
        func: Callable[Concatenate[DriveClient, P], T]
    ) -> Callable[Concatenate[DriveClient, P], T]:
        @functools.wraps(func)
        def wrapper(__self: DriveClient, *args: P.args, **kwargs: P.kwargs) -> T:
            tries = 0

            while True:
                try:
                    return func(__self, *args, **kwargs)
                except error_cls as exc:
                    if tries < __self.max_retries:
                        delay = __self.backoff * 2**tries
                        tries += 1
                        __self._logger.debug(
                            "Retrying call %s after %s: %s/%s",
                            func.__name__,
                            exc.__class__.__name__,
                            tries,
                            __self.max_retries,
                        )
                        if delay > 0:
                            time.sleep(delay)
                    else:
                        raise exc

        return wrapper

    return decorator


class DriveClient:
    """Client for the remote drive

    All paths passed to this client are vault paths, they are resolved relative to the
    remote container of the vault. Every request is sent with a timeout and retried
    with exponential backoff on connection errors, rate limiting and server errors.

    :param config_name: Name of vaultsync configuration.
    :param session: Optional requests session to use.
    :param credentials: Optional credential storage to read the access token from.
    """

    def __init__(
        self,
        config_name: str = DEFAULT_CONFIG_NAME,
        session: requests.Session | None = None,
        credentials: CredentialStorage | None = None,
    ) -> None:
        self.config_name = config_name
        self._conf = VaultSyncConfig(config_name)
        self._logger = scoped_logger(__name__, config_name)

        self._cred_storage = credentials or CredentialStorage(config_name)

        self._session = session or requests.Session()
        self._session.headers["User-Agent"] = USER_AGENT

        self._container_ids: Dict[str, str] = {}
        self._folder_ids: Dict[Tuple[str, str], str] = {}

    # ---- Settings --------------------------------------------------------------------

    @property
    def timeout(self) -> float:
        """Timeout for individual requests in seconds."""
        return self._conf.get("remote", "timeout")

    @property
    def max_retries(self) -> int:
        """Number of retries for transient errors."""
        return self._conf.get("remote", "max_retries")

    @property
    def backoff(self) -> float:
        """Initial backoff between retries in seconds."""
        return self._conf.get("remote", "backoff")

    @property
    def linked(self) -> bool:
        """Whether an access token has been stored. This does not check if the token
        is still valid, use :meth:`check_connection` for that."""
        return bool(self._cred_storage.token)

    # ---- Requests --------------------------------------------------------------------

    def _auth_headers(self) -> Dict[str, str]:
        token = self._cred_storage.token

        if not token:
            raise NotLinkedError(
                "No auth token set", "Please link a remote drive to get started."
            )

        return {"Authorization": f"Bearer {token}"}

    @_retry_on_error((DriveConnectionError, DriveServerError))
    def _request(
        self,
        method: str,
        url: str,
        *,
        path: str | None = None,
        params: Dict[str, Any] | None = None,
        json: Dict[str, Any] | None = None,
        data: bytes | None = None,
        headers: Dict[str, str] | None = None,
    ) -> requests.Response:
        """
        Sends a request to the Drive API.

        :param method: HTTP method.
        :param url: Full URL of the endpoint.
        :param path: Vault path associated with the request, for error messages.
        :param params: Query parameters.
        :param json: JSON body.
        :param data: Raw body.
        :param headers: Additional headers.
        :returns: The successful response.
        :raises VaultSyncApiError: if the request fails after all retries.
        """
        all_headers = self._auth_headers()

        if headers:
            all_headers.update(headers)

        with convert_api_errors(path=path):
            res = self._session.request(
                method,
                url,
                params=params,
                json=json,
                data=data,
                headers=all_headers,
                timeout=self.timeout,
            )
            res.raise_for_status()

        return res

    def _multipart_body(
        self, metadata: Dict[str, Any], data: bytes, mime_type: str
    ) -> Tuple[bytes, str]:
        boundary = f"vaultsync-{uuid.uuid4().hex}"

        body = b"".join(
            [
                f"--{boundary}\r\n".encode(),
                b"Content-Type: application/json; charset=UTF-8\r\n\r\n",
                json.dumps(metadata).encode(),
                f"\r\n--{boundary}\r\n".encode(),
                f"Content-Type: {mime_type}\r\n\r\n".encode(),
                data,
                f"\r\n--{boundary}--".encode(),
            ]
        )

        return body, f"multipart/related; boundary={boundary}"

    def _list_query(self, query: str) -> Iterator[Dict[str, Any]]:
        """Yields all items matching a query, following page tokens."""
        params: Dict[str, Any] = {
            "q": query,
            "fields": LIST_FIELDS,
            "pageSize": LIST_PAGE_SIZE,
            "spaces": "drive",
        }

        while True:
            res = self._request("GET", f"{DRIVE_API_URL}/files", params=params)
            page = res.json()

            yield from page.get("files", [])

            token = page.get("nextPageToken")

            if not token:
                break

            params["pageToken"] = token

    def _find_children(
        self, parent_id: str, name: str, folder: bool
    ) -> List[Dict[str, Any]]:
        mime_op = "=" if folder else "!="
        query = (
            f"name = '{_escape_query(name)}' and '{parent_id}' in parents "
            f"and mimeType {mime_op} '{FOLDER_MIME_TYPE}' and trashed = false"
        )
        return list(self._list_query(query))

    @staticmethod
    def _to_remote_file(item: Dict[str, Any], name: str) -> RemoteFile:
        parents = item.get("parents") or [None]
        return RemoteFile(
            id=item["id"],
            name=name,
            mime_type=item.get("mimeType", ""),
            size=int(item.get("size", 0)),
            modified_time=parse_timestamp(item["modifiedTime"]),
            revision_id=item.get("headRevisionId"),
            parent_id=parents[0],
        )

    # ---- Remote API ------------------------------------------------------------------

    def check_connection(self) -> bool:
        """
        Checks if the stored access token is accepted by the remote drive.

        :returns: ``True`` if an authenticated request succeeds, ``False`` if we are not
            linked or authentication fails.
        :raises DriveConnectionError: if the remote drive cannot be reached.
        """
        try:
            self._request("GET", f"{DRIVE_API_URL}/about", params={"fields": "user"})
        except (NotLinkedError, DriveAuthError) as exc:
            self._logger.info("Auth check failed: %s", exc)
            return False

        return True

    def get_or_create_container(self, vault_id: str) -> str:
        """
        Returns the ID of the remote folder which holds all files of a vault. The
        folder is created in the drive root if it does not exist yet. If there are
        duplicates, the first one is kept and the others are deleted.

        :param vault_id: Vault identifier.
        :returns: Folder ID.
        """
        try:
            return self._container_ids[vault_id]
        except KeyError:
            pass

        name = f"{CONTAINER_PREFIX}{vault_id}"
        matches = self._find_children("root", name, folder=True)

        if matches:
            container_id = matches[0]["id"]
            for duplicate in matches[1:]:
                self._logger.warning("Deleting duplicate container %s", duplicate["id"])
                self.delete_file(duplicate["id"])
        else:
            container_id = self.create_folder(name, "root")
            self._logger.info("Created remote container %s", name)

        self._container_ids[vault_id] = container_id
        return container_id

    def create_folder(self, name: str, parent_id: str) -> str:
        """
        Creates a folder.

        :param name: Folder name.
        :param parent_id: ID of the parent folder.
        :returns: ID of the new folder.
        """
        res = self._request(
            "POST",
            f"{DRIVE_API_URL}/files",
            json={"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]},
            params={"fields": "id"},
        )
        return res.json()["id"]

    def ensure_folder_path(self, path: str, parent_id: str) -> str:
        """
        Returns the ID of a folder, creating it and any missing intermediate folders.

        :param path: Vault path of the folder.
        :param parent_id: ID of the folder which ``path`` is relative to.
        :returns: Folder ID. ``parent_id`` itself for an empty path.
        """
        folder_id = parent_id
        current = ""

        for name in [c for c in normalize_path(path).split("/") if c]:
            current = f"{current}/{name}" if current else name
            key = (parent_id, current)

            try:
                folder_id = self._folder_ids[key]
                continue
            except KeyError:
                pass

            matches = self._find_children(folder_id, name, folder=True)

            if matches:
                folder_id = matches[0]["id"]
            else:
                folder_id = self.create_folder(name, folder_id)

            self._folder_ids[key] = folder_id

        return folder_id

    def list_files(self, container_id: str) -> List[RemoteFile]:
        """
        Lists all files in the container, including files in sub-folders. Folders are
        not returned.

        :param container_id: ID of the remote container.
        :returns: Remote files with ``name`` set to the path relative to the container.
        """
        files: List[RemoteFile] = []
        folders = [("", container_id)]

        while folders:
            prefix, folder_id = folders.pop()
            query = f"'{folder_id}' in parents and trashed = false"

            for item in self._list_query(query):
                path = f"{prefix}/{item['name']}" if prefix else item["name"]

                if item.get("mimeType") == FOLDER_MIME_TYPE:
                    self._folder_ids[(container_id, path)] = item["id"]
                    folders.append((path, item["id"]))
                else:
                    files.append(self._to_remote_file(item, path))

        self._logger.debug("Found %s remote file(s)", len(files))

        return files

    def upload_file(
        self,
        path: str,
        data: bytes,
        mime_type: str,
        container_id: str,
        mtime: int | None = None,
    ) -> UploadResult:
        """
        Uploads a file. An existing file with the same name in the same folder is
        updated, any further duplicates are deleted.

        :param path: Vault path of the file.
        :param data: File contents.
        :param mime_type: MIME type of the file.
        :param container_id: ID of the remote container.
        :param mtime: Modification time to set on the remote file.
        :returns: IDs of the file, its new revision and its parent folder.
        """
        dirname, name = split_path(normalize_path(path))
        parent_id = self.ensure_folder_path(dirname, container_id)

        metadata: Dict[str, Any] = {"name": name}

        if mtime is not None:
            metadata["modifiedTime"] = format_timestamp(mtime)

        existing = self._find_children(parent_id, name, folder=False)

        if existing:
            file_id = existing[0]["id"]
            for duplicate in existing[1:]:
                self._logger.warning(
                    "Deleting duplicate of %s: %s", path, duplicate["id"]
                )
                self.delete_file(duplicate["id"])

            body, content_type = self._multipart_body(metadata, data, mime_type)
            res = self._request(
                "PATCH",
                f"{DRIVE_UPLOAD_URL}/files/{file_id}",
                path=path,
                params={"uploadType": "multipart", "fields": "id, headRevisionId"},
                data=body,
                headers={"Content-Type": content_type},
            )
        else:
            metadata["parents"] = [parent_id]
            body, content_type = self._multipart_body(metadata, data, mime_type)
            res = self._request(
                "POST",
                f"{DRIVE_UPLOAD_URL}/files",
                path=path,
                params={"uploadType": "multipart", "fields": "id, headRevisionId"},
                data=body,
                headers={"Content-Type": content_type},
            )

        result = res.json()

        return UploadResult(
            file_id=result["id"],
            revision_id=result.get("headRevisionId"),
            parent_id=parent_id,
        )

    def download_file(self, file_id: str, path: str | None = None) -> bytes:
        """
        Downloads the contents of a file.

        :param file_id: ID of the remote file.
        :param path: Vault path of the file, for error messages.
        :returns: File contents.
        """
        res = self._request(
            "GET",
            f"{DRIVE_API_URL}/files/{file_id}",
            path=path,
            params={"alt": "media"},
        )
        return res.content

    def delete_file(self, file_id: str) -> None:
        """
        Deletes a file or folder permanently.

        :param file_id: ID of the remote item.
        """
        self._request("DELETE", f"{DRIVE_API_URL}/files/{file_id}")

    def get_file_metadata(self, file_id: str) -> RemoteFile:
        """
        :param file_id: ID of the remote file.
        :returns: Metadata of the file. ``name`` is the plain file name.
        """
        res = self._request(
            "GET", f"{DRIVE_API_URL}/files/{file_id}", params={"fields": FILE_FIELDS}
        )
        item = res.json()
        return self._to_remote_file(item, item["name"])

    def move_item(
        self,
        item_id: str,
        new_name: str,
        new_parent_id: str | None = None,
        old_parent_id: str | None = None,
        mtime: int | None = None,
    ) -> None:
        """
        Renames a file or folder and optionally moves it to a new parent.

        :param item_id: ID of the remote item.
        :param new_name: New name of the item.
        :param new_parent_id: ID of the new parent folder.
        :param old_parent_id: ID of the current parent folder. Required when
            ``new_parent_id`` is given.
        :param mtime: Modification time to keep on the item, in milliseconds.
        """
        params: Dict[str, Any] = {"fields": "id"}

        if new_parent_id and new_parent_id != old_parent_id:
            params["addParents"] = new_parent_id
            if old_parent_id:
                params["removeParents"] = old_parent_id

        body: Dict[str, Any] = {"name": new_name}
        if mtime is not None:
            body["modifiedTime"] = format_timestamp(mtime)

        self._request(
            "PATCH",
            f"{DRIVE_API_URL}/files/{item_id}",
            params=params,
            json=body,
        )

        # Cached folder paths may have changed.
        self._folder_ids.clear()

    def clear_cache(self) -> None:
        """Clears cached container and folder IDs."""
        self._container_ids.clear()
        self._folder_ids.clear()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(config={self.config_name!r})>"

