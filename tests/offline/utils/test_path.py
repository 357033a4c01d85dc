import pytest

from vaultsync.utils.path import (
    normalize_path,
    split_path,
    get_extension,
    is_child,
    is_equal_or_child,
    replace_prefix,
    is_excluded,
    is_tracked_file,
)


@pytest.mark.parametrize(
    "path,expected",
    [
        ("", ""),
        ("/", ""),
        ("notes/a.md", "notes/a.md"),
        ("/notes/a.md/", "notes/a.md"),
        ("notes//daily/./a.md", "notes/daily/a.md"),
        ("notes/../a.md", "a.md"),
        ("../../a.md", "a.md"),
    ],
)
def test_normalize_path(path, expected):
    assert normalize_path(path) == expected


def test_split_path():
    assert split_path("notes/daily/a.md") == ("notes/daily", "a.md")
    assert split_path("a.md") == ("", "a.md")


def test_get_extension():
    assert get_extension("notes/A.MD") == ".md"
    assert get_extension("archive.tar.gz") == ".gz"
    assert get_extension("README") == ""
    assert get_extension(".hidden") == ""
    assert get_extension("folder.d/file") == ""


def test_is_child():
    assert is_child("notes/a.md", "notes")
    assert is_child("notes/daily/a.md", "notes")
    assert is_child("a.md", "")
    assert not is_child("notes", "notes")
    assert not is_child("notes-old/a.md", "notes")
    assert not is_child("", "")


def test_is_equal_or_child():
    assert is_equal_or_child("notes", "notes")
    assert is_equal_or_child("notes/a.md", "notes")
    assert not is_equal_or_child("other/a.md", "notes")


def test_replace_prefix():
    path = replace_prefix("notes/daily/a.md", "notes", "archive")
    assert path == "archive/daily/a.md"
    assert replace_prefix("notes", "notes", "archive/2023") == "archive/2023"
    assert replace_prefix("notes/a.md", "notes", "") == "a.md"

    with pytest.raises(ValueError):
        replace_prefix("other/a.md", "notes", "archive")


def test_is_excluded():
    assert is_excluded(".git")
    assert is_excluded("notes/.trash/a.md")
    assert is_excluded(".obsidian/workspace.json")
    assert not is_excluded("notes/a.md")
    assert not is_excluded("")


def test_is_tracked_file():
    assert is_tracked_file("notes/a.md")
    assert is_tracked_file("attachments/diagram.PNG")
    assert is_tracked_file("scan.pdf")
    assert not is_tracked_file("script.py")
    assert not is_tracked_file("notes/.hidden.md")
    assert not is_tracked_file(".trash/a.md")
