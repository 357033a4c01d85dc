import json
from typing import Any, Dict, List, NamedTuple, Optional
from unittest.mock import Mock

import pytest
import requests

from vaultsync.client import DriveClient, format_timestamp, parse_timestamp
from vaultsync.config import VaultSyncConfig
from vaultsync.constants import DRIVE_API_URL, DRIVE_UPLOAD_URL, FOLDER_MIME_TYPE
from vaultsync.errors import (
    DriveConnectionError,
    DriveServerError,
    NotFoundError,
    NotLinkedError,
)

from fixtures import T0, http_response


class Request(NamedTuple):
    method: str
    url: str
    params: Optional[Dict[str, Any]]
    json: Optional[Dict[str, Any]]
    data: Optional[bytes]
    headers: Dict[str, str]
    timeout: float


class FakeSession:
    """Replays scripted responses and records all requests."""

    def __init__(self) -> None:
        self.headers: Dict[str, str] = {}
        self.responses: List[Any] = []
        self.requests: List[Request] = []

    def request(
        self, method, url, params=None, json=None, data=None, headers=None, timeout=None
    ):
        self.requests.append(
            Request(method, url, dict(params or {}), json, data, headers or {}, timeout)
        )

        res = self.responses.pop(0)

        if isinstance(res, Exception):
            raise res

        return res


def item(file_id, name, mime_type="text/markdown", mtime="2023-11-14T22:13:20.000Z"):
    return {
        "id": file_id,
        "name": name,
        "mimeType": mime_type,
        "size": "12",
        "modifiedTime": mtime,
        "headRevisionId": f"rev-{file_id}",
        "parents": ["parent"],
    }


def folder(file_id, name):
    return {"id": file_id, "name": name, "mimeType": FOLDER_MIME_TYPE}


def page(*items, next_page_token=None):
    body: Dict[str, Any] = {"files": list(items)}
    if next_page_token:
        body["nextPageToken"] = next_page_token
    return http_response(200, body)


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def client(config_name, session):
    conf = VaultSyncConfig(config_name)
    conf.set("remote", "backoff", 0.0)
    conf.set("remote", "max_retries", 2)
    conf.set("remote", "timeout", 5.0)

    return DriveClient(config_name, session=session, credentials=Mock(token="token"))


def test_timestamps():
    assert parse_timestamp("2023-11-14T22:13:20.000Z") == T0
    assert parse_timestamp("2023-11-14T22:13:20.123Z") == T0 + 123
    assert parse_timestamp("2023-11-14T23:13:20+01:00") == T0
    assert format_timestamp(T0 + 5) == "2023-11-14T22:13:20.005Z"
    assert parse_timestamp(format_timestamp(T0 + 999)) == T0 + 999


def test_request_headers(client, session):
    session.responses = [http_response(200, {"user": {}})]

    assert client.check_connection()

    request = session.requests[0]

    assert request.url == f"{DRIVE_API_URL}/about"
    assert request.headers["Authorization"] == "Bearer token"
    assert request.timeout == 5.0
    assert session.headers["User-Agent"].startswith("vaultsync/")


def test_check_connection(config_name, session):
    client = DriveClient(config_name, session=session, credentials=Mock(token=None))

    assert not client.linked
    assert not client.check_connection()
    assert session.requests == []

    with pytest.raises(NotLinkedError):
        client.download_file("file1")

    client = DriveClient(config_name, session=session, credentials=Mock(token="bad"))
    session.responses = [http_response(401, {"error": {"message": "Invalid"}})]

    assert client.linked
    assert not client.check_connection()


def test_retry_transient_errors(client, session):
    session.responses = [
        http_response(503, {"error": {"message": "Backend error"}}),
        requests.ConnectionError("Connection reset"),
        http_response(200, content=b"data"),
    ]

    assert client.download_file("file1") == b"data"
    assert len(session.requests) == 3


def test_retry_gives_up(client, session):
    session.responses = [http_response(500, {}) for _ in range(3)]

    with pytest.raises(DriveServerError):
        client.download_file("file1")

    assert len(session.requests) == 3

    session.responses = [requests.Timeout("Read timed out") for _ in range(3)]

    with pytest.raises(DriveConnectionError):
        client.download_file("file1")


def test_no_retry_for_other_errors(client, session):
    session.responses = [http_response(404, {"error": {"message": "Not found"}})]

    with pytest.raises(NotFoundError) as exc_info:
        client.download_file("file1", path="a.md")

    assert exc_info.value.path == "a.md"
    assert len(session.requests) == 1


def test_get_or_create_container(client, session):
    session.responses = [
        page(),
        http_response(200, {"id": "container1"}),
    ]

    assert client.get_or_create_container("notes") == "container1"

    query, create = session.requests

    assert "name = 'vault_notes'" in query.params["q"]
    assert "'root' in parents" in query.params["q"]
    assert create.method == "POST"
    assert create.json == {
        "name": "vault_notes",
        "mimeType": FOLDER_MIME_TYPE,
        "parents": ["root"],
    }

    # cached
    assert client.get_or_create_container("notes") == "container1"
    assert len(session.requests) == 2


def test_duplicate_containers_are_removed(client, session):
    session.responses = [
        page(folder("c1", "vault_notes"), folder("c2", "vault_notes")),
        http_response(204),
    ]

    assert client.get_or_create_container("notes") == "c1"
    assert session.requests[1].method == "DELETE"
    assert session.requests[1].url.endswith("/files/c2")


def test_ensure_folder_path(client, session):
    session.responses = [
        page(folder("f1", "notes")),
        page(),
        http_response(200, {"id": "f2"}),
    ]

    assert client.ensure_folder_path("notes/daily", "container") == "f2"
    assert "'f1' in parents" in session.requests[1].params["q"]
    assert session.requests[2].json["parents"] == ["f1"]

    # cached
    assert client.ensure_folder_path("notes/daily", "container") == "f2"
    assert client.ensure_folder_path("", "container") == "container"
    assert len(session.requests) == 3


def test_list_files(client, session):
    session.responses = [
        page(item("a", "a.md"), folder("f1", "notes"), next_page_token="token2"),
        page(item("b", "b.md")),
        page(item("c", "c.md")),
    ]

    files = client.list_files("container")

    assert {f.name for f in files} == {"a.md", "b.md", "notes/c.md"}
    assert session.requests[1].params["pageToken"] == "token2"

    c = next(f for f in files if f.id == "c")

    assert c.modified_time == T0
    assert c.size == 12
    assert c.revision_id == "rev-c"
    assert c.parent_id == "parent"

    # folder IDs found while listing are cached
    assert client.ensure_folder_path("notes", "container") == "f1"
    assert len(session.requests) == 3


def test_upload_new_file(client, session):
    session.responses = [
        page(),
        http_response(200, {"id": "file1", "headRevisionId": "rev1"}),
    ]

    result = client.upload_file("a.md", b"text", "text/markdown", "container", T0)

    assert result.file_id == "file1"
    assert result.revision_id == "rev1"
    assert result.parent_id == "container"

    upload = session.requests[1]

    assert upload.method == "POST"
    assert upload.url == f"{DRIVE_UPLOAD_URL}/files"
    assert upload.params["uploadType"] == "multipart"
    assert upload.headers["Content-Type"].startswith("multipart/related; boundary=")

    metadata = json.loads(upload.data.split(b"\r\n\r\n")[1].split(b"\r\n")[0])

    assert metadata == {
        "name": "a.md",
        "modifiedTime": "2023-11-14T22:13:20.000Z",
        "parents": ["container"],
    }
    assert b"Content-Type: text/markdown\r\n\r\ntext\r\n" in upload.data


def test_upload_existing_file(client, session):
    session.responses = [
        page(item("file1", "a.md")),
        http_response(200, {"id": "file1", "headRevisionId": "rev2"}),
    ]

    result = client.upload_file("a.md", b"text", "text/markdown", "container")

    assert result.revision_id == "rev2"

    upload = session.requests[1]

    assert upload.method == "PATCH"
    assert upload.url == f"{DRIVE_UPLOAD_URL}/files/file1"
    assert b'"parents"' not in upload.data
    assert b'"modifiedTime"' not in upload.data


def test_get_file_metadata(client, session):
    session.responses = [http_response(200, item("file1", "a.md"))]

    remote = client.get_file_metadata("file1")

    assert remote.id == "file1"
    assert remote.name == "a.md"
    assert remote.modified_time == T0


def test_move_item(client, session):
    session.responses = [http_response(200, {"id": "file1"})]

    client.move_item("file1", "b.md", "new-parent", "old-parent", mtime=T0)

    move = session.requests[0]

    assert move.method == "PATCH"
    assert move.params["addParents"] == "new-parent"
    assert move.params["removeParents"] == "old-parent"
    assert move.json == {"name": "b.md", "modifiedTime": "2023-11-14T22:13:20.000Z"}


def test_rename_item(client, session):
    session.responses = [http_response(200, {"id": "file1"})]

    client.move_item("file1", "b.md", "parent", "parent")

    move = session.requests[0]

    assert "addParents" not in move.params
    assert "removeParents" not in move.params
    assert move.json == {"name": "b.md"}
