"""
This module contains functions for common operations on vault paths. Vault paths are
POSIX style paths relative to the vault root, without leading or trailing slashes.
The vault root itself is the empty string.
"""

# system imports
import os
import posixpath
from typing import List, Tuple

# local imports
from ..constants import TRACKED_EXTENSIONS


def _path_components(path: str) -> List[str]:
    return [c for c in path.split("/") if c]


# ==== normalization ===================================================================


def normalize_path(path: str) -> str:
    """
    Normalizes a vault path: converts OS specific separators, collapses redundant
    separators and up-level references and strips leading and trailing slashes.

    :param path: Path to normalize.
    :returns: Normalized vault path. The vault root is returned as an empty string.
    """
    path = path.replace(os.sep, "/")
    path = posixpath.normpath("/" + path)
    return path.strip("/")


def split_path(path: str) -> Tuple[str, str]:
    """
    Splits a vault path into its parent folder and its name.

    :param path: Vault path.
    :returns: Tuple of parent folder (empty string for the root) and name.
    """
    dirname, basename = posixpath.split(path)
    return dirname, basename


def get_extension(path: str) -> str:
    """
    Returns the lowercase file extension of a path, including the leading dot.

    :param path: Vault path.
    :returns: File extension or an empty string if the name has none.
    """
    _, name = split_path(path)
    index = name.rfind(".")
    if index <= 0:
        return ""
    return name[index:].lower()


# ==== path relationships ==============================================================


def is_child(path: str, parent: str) -> bool:
    """
    Checks if ``path`` semantically is inside ``parent``. Neither path needs to
    refer to an actual item in the vault.

    :param path: Item path.
    :param parent: Parent path. An empty string refers to the vault root.
    :returns: ``True`` if ``path`` semantically lies inside ``parent`` but is not
        equal to it.
    """
    parent_components = _path_components(parent)
    path_components = _path_components(path)

    if len(path_components) <= len(parent_components):
        return False

    return path_components[: len(parent_components)] == parent_components


def is_equal_or_child(path: str, parent: str) -> bool:
    """
    Checks if ``path`` semantically is inside ``parent`` or equal to it.

    :param path: Item path.
    :param parent: Parent path.
    :returns: ``True`` if ``path`` lies inside ``parent`` or is equal to it.
    """
    return _path_components(path) == _path_components(parent) or is_child(path, parent)


def replace_prefix(path: str, old_prefix: str, new_prefix: str) -> str:
    """
    Replaces the leading folder ``old_prefix`` of ``path`` with ``new_prefix``.

    :param path: Path to rewrite. Must be equal to or inside ``old_prefix``.
    :param old_prefix: Folder path to replace.
    :param new_prefix: New folder path.
    :returns: Rewritten path.
    :raises ValueError: if ``path`` does not lie inside ``old_prefix``.
    """
    if not is_equal_or_child(path, old_prefix):
        raise ValueError(f'"{path}" does not lie inside "{old_prefix}"')

    remainder = _path_components(path)[len(_path_components(old_prefix)) :]
    return "/".join(_path_components(new_prefix) + remainder)


# ==== tracked items ===================================================================


def is_excluded(path: str) -> bool:
    """
    Checks if a path is a hidden system path. Any item whose path contains a component
    starting with a dot is excluded from syncing, for example ``.git`` or ``.trash``.

    :param path: Vault path.
    :returns: Whether the path is excluded.
    """
    return any(c.startswith(".") for c in _path_components(path))


def is_tracked_file(path: str) -> bool:
    """
    Checks if a file path has one of the tracked extensions and is not excluded.

    :param path: Vault path of a file.
    :returns: Whether changes to the file should be synced.
    """
    return get_extension(path) in TRACKED_EXTENSIONS and not is_excluded(path)
