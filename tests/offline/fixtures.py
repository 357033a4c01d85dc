# -*- coding: utf-8 -*-

import os
import json
import itertools
import posixpath
from dataclasses import replace
from typing import Dict, List, Optional, Set, Tuple

import requests

from vaultsync.core import RemoteFile, UploadResult
from vaultsync.errors import DriveConnectionError, DriveServerError, NotFoundError
from vaultsync.keyring import CredentialStorage
from vaultsync.utils import now_ms
from vaultsync.utils.path import is_equal_or_child, replace_prefix, split_path


T0 = 1_700_000_000_000  # fixed mtime in ms used across tests


class FakeDrive:
    """In-memory remote drive with the interface of
    :class:`vaultsync.client.DriveClient`. Files are stored by ID, folders by their
    vault path."""

    def __init__(
        self, config_name: str, credentials: Optional[CredentialStorage] = None
    ) -> None:
        self.config_name = config_name
        self._cred_storage = credentials

        self.files: Dict[str, RemoteFile] = {}
        self.contents: Dict[str, bytes] = {}
        self.folders: Dict[str, str] = {}
        self.containers: Dict[str, str] = {}

        self.uploads: List[str] = []
        self.downloads: List[str] = []
        self.moves: List[Tuple[str, str, Optional[str], Optional[int]]] = []
        self.fail_uploads: Set[str] = set()

        self.token_valid = True
        self.reachable = True

        self._ids = itertools.count(1)

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids)}"

    @property
    def linked(self) -> bool:
        if self._cred_storage is None:
            return True
        return bool(self._cred_storage.token)

    def clear_cache(self) -> None:
        pass

    def check_connection(self) -> bool:
        if not self.reachable:
            raise DriveConnectionError("Cannot connect to the remote drive")
        return self.linked and self.token_valid

    def get_or_create_container(self, vault_id: str) -> str:
        return self.containers.setdefault(vault_id, f"container-{vault_id}")

    def ensure_folder_path(self, path: str, parent_id: str) -> str:
        if not path:
            return parent_id

        parent, _ = split_path(path)
        self.ensure_folder_path(parent, parent_id)

        if path not in self.folders:
            self.folders[path] = self._new_id("folder")

        return self.folders[path]

    def _folder_path(self, folder_id: Optional[str]) -> str:
        for path, fid in self.folders.items():
            if fid == folder_id:
                return path
        return ""

    def path_for(self, file_id: str) -> str:
        return self.files[file_id].name

    def by_path(self, path: str) -> Optional[RemoteFile]:
        for remote in self.files.values():
            if remote.name == path:
                return remote
        return None

    def put(self, path: str, data: bytes, mtime: int) -> RemoteFile:
        """Creates or replaces a remote file, as if changed by another device."""
        existing = self.by_path(path)
        file_id = existing.id if existing else self._new_id("file")
        parent_id = self.ensure_folder_path(split_path(path)[0], "container")

        remote = RemoteFile(
            id=file_id,
            name=path,
            mime_type="text/markdown",
            size=len(data),
            modified_time=mtime,
            revision_id=self._new_id("rev"),
            parent_id=parent_id,
        )
        self.files[file_id] = remote
        self.contents[file_id] = data
        return remote

    def list_files(self, container_id: str) -> List[RemoteFile]:
        return [replace(remote) for remote in self.files.values()]

    def upload_file(
        self,
        path: str,
        data: bytes,
        mime_type: str,
        container_id: str,
        mtime: Optional[int] = None,
    ) -> UploadResult:
        if path in self.fail_uploads:
            raise DriveServerError(
                "Remote server error", "Please try again later.", path=path
            )

        remote = self.put(path, data, mtime if mtime is not None else now_ms())
        remote.mime_type = mime_type
        self.uploads.append(path)

        return UploadResult(
            file_id=remote.id,
            revision_id=remote.revision_id,
            parent_id=remote.parent_id or container_id,
        )

    def download_file(self, file_id: str, path: Optional[str] = None) -> bytes:
        try:
            data = self.contents[file_id]
        except KeyError:
            raise NotFoundError(
                "Could not sync file or folder",
                "The file or folder does not exist on the remote drive.",
                path=path,
            )

        self.downloads.append(path or file_id)
        return data

    def move_item(
        self,
        item_id: str,
        new_name: str,
        new_parent_id: Optional[str] = None,
        old_parent_id: Optional[str] = None,
        mtime: Optional[int] = None,
    ) -> None:
        if item_id in self.files:
            remote = self.files[item_id]
            parent_path = self._folder_path(new_parent_id or remote.parent_id)
            new_path = posixpath.join(parent_path, new_name).lstrip("/")
            self.moves.append((remote.name, new_path, new_parent_id, mtime))
            remote.name = new_path
            remote.parent_id = new_parent_id or remote.parent_id
            if mtime is not None:
                remote.modified_time = mtime
            return

        old_path = self._folder_path(item_id)

        if not old_path:
            raise NotFoundError("Could not sync file or folder", "No such item.")

        parent_path = self._folder_path(new_parent_id)
        new_path = posixpath.join(parent_path, new_name).lstrip("/")
        self.moves.append((old_path, new_path, new_parent_id, mtime))

        folders = {}

        for path, fid in self.folders.items():
            if is_equal_or_child(path, old_path):
                path = replace_prefix(path, old_path, new_path)
            folders[path] = fid

        self.folders = folders

        for remote in self.files.values():
            if is_equal_or_child(remote.name, old_path):
                remote.name = replace_prefix(remote.name, old_path, new_path)

    def delete_file(self, file_id: str) -> None:
        self.files.pop(file_id, None)
        self.contents.pop(file_id, None)


def write_file(root, path: str, data: bytes, mtime: int = T0) -> str:
    """Writes a file into a vault folder and sets its mtime in ms."""
    local_path = os.path.join(str(root), *path.split("/"))
    os.makedirs(os.path.dirname(local_path), exist_ok=True)

    with open(local_path, "wb") as f:
        f.write(data)

    ns = mtime * 1_000_000
    os.utime(local_path, ns=(ns, ns))

    return local_path


def read_file(root, path: str) -> bytes:
    with open(os.path.join(str(root), *path.split("/")), "rb") as f:
        return f.read()


def http_response(
    status: int = 200, body: object = None, content: bytes = b""
) -> requests.Response:
    """Creates a response as returned by the Drive API."""
    res = requests.Response()
    res.status_code = status
    res.reason = "OK" if status < 400 else "Error"
    res.url = "https://www.googleapis.com/drive/v3/files"

    if body is not None:
        res._content = json.dumps(body).encode()
        res.headers["Content-Type"] = "application/json"
    else:
        res._content = content

    return res
