"""
This module handles persistence of the sync index. The index is stored as a single JSON
document in the data directory of the config and rewritten atomically on every save.
Older releases stored the index inline in the state file, :meth:`IndexStore.
load_or_migrate` moves it to its own file once.
"""

from __future__ import annotations

# system imports
import os
import json
import tempfile
from typing import Any

# local imports
from .config.main import CONFIG_DIR_NAME
from .config.user import UserConfig
from .constants import INDEX_VERSION
from .errors import IndexCorruptedError
from .index import SyncIndex
from .logging import scoped_logger
from .utils.appdirs import get_data_path


__all__ = ["IndexStore"]


class IndexStore:
    """Reads and writes the sync index of a config

    :param config_name: Name of the vaultsync configuration.
    """

    def __init__(self, config_name: str) -> None:
        self.config_name = config_name
        self._logger = scoped_logger(__name__, config_name)
        self.path = get_data_path(CONFIG_DIR_NAME, f"{config_name}.index.json")

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(path={self.path!r})>"

    def exists(self) -> bool:
        return os.path.isfile(self.path)

    def save(self, index: SyncIndex) -> None:
        """
        Writes the index to a temporary file next to the target and moves it into
        place. Readers never observe a partially written document.

        :param index: The sync index to save.
        :raises IndexCorruptedError: if the index cannot be written.
        """
        data = index.to_dict()
        dirname = os.path.dirname(self.path)

        try:
            os.makedirs(dirname, exist_ok=True)

            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self.config_name}.", suffix=".tmp", dir=dirname
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp_path, self.path)
            except BaseException:
                os.unlink(tmp_path)
                raise

        except OSError as exc:
            self._logger.error("Could not save sync index: %s", exc)
            raise IndexCorruptedError(
                "Could not save sync index",
                exc.strerror or str(exc),
                local_path=self.path,
            ) from exc

        self._logger.debug(
            "Saved sync index: %s file(s), %s folder(s)",
            len(index.files),
            len(index.folders),
        )

    def load(self, vault_id: str) -> SyncIndex | None:
        """
        Loads the index from the drive.

        :param vault_id: The configured vault ID. Takes precedence over the stored ID.
        :returns: The sync index or ``None`` if there is no readable index file.
        """
        if not self.exists():
            self._logger.debug("No sync index file found, will create on first save")
            return None

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            self._logger.error("Failed to load sync index: %s", exc)
            return None

        if not isinstance(data, dict):
            self._logger.error("Failed to load sync index: unexpected document")
            return None

        stored_id = data.get("vaultId")

        if stored_id and vault_id and stored_id != vault_id:
            self._logger.warning(
                "Sync index belongs to vault %r, using configured vault %r",
                stored_id,
                vault_id,
            )

        index = SyncIndex.from_dict(data, vault_id=vault_id or None)

        if not data.get("version"):
            self._logger.warning("Sync index missing version, migrating...")
            self.save(index)
        elif data["version"] != INDEX_VERSION:
            self._logger.info(
                "Sync index version %s, current version %s",
                data["version"],
                INDEX_VERSION,
            )

        self._logger.debug(
            "Loaded sync index: %s file(s), %s folder(s)",
            len(index.files),
            len(index.folders),
        )

        return index

    def migrate_legacy(self, data: dict[str, Any], vault_id: str) -> SyncIndex:
        """
        Converts an index in the legacy embedded format and saves it to the index file.

        :param data: Legacy index document.
        :param vault_id: The configured vault ID.
        :returns: The migrated index.
        """
        self._logger.info("Migrating sync index from state file...")

        index = SyncIndex.from_dict(data, vault_id=vault_id or None)
        self.save(index)

        self._logger.info(
            "Migrated %s file(s), %s folder(s)", len(index.files), len(index.folders)
        )

        return index

    def load_or_migrate(self, vault_id: str, state: UserConfig) -> SyncIndex:
        """
        Loads the index file. Falls back to migrating an index embedded in the state
        file and finally to an empty index.

        :param vault_id: The configured vault ID.
        :param state: State file of the config.
        :returns: The sync index.
        """
        index = self.load(vault_id)

        if index:
            return index

        legacy = state.get("sync", "index")

        if isinstance(legacy, dict) and legacy:
            index = self.migrate_legacy(legacy, vault_id)
            state.set("sync", "index", {})
            return index

        return SyncIndex(vault_id)

    def delete(self) -> bool:
        """
        Deletes the index file.

        :returns: Whether a file was deleted.
        """
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            return False

        self._logger.info("Deleted sync index file")
        return True

    def stats(self) -> dict[str, Any]:
        """
        :returns: Dictionary with keys "exists", "size" in bytes and "last_modified"
            in ms since the epoch.
        """
        try:
            stat = os.stat(self.path)
        except FileNotFoundError:
            return {"exists": False, "size": 0, "last_modified": None}

        return {
            "exists": True,
            "size": stat.st_size,
            "last_modified": int(stat.st_mtime * 1000),
        }
