"""This module defines the main API which is exposed to the CLI."""

from __future__ import annotations

# system imports
import os
import os.path as osp
import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence

# external imports
from fasteners import InterProcessLock

# local imports
from . import __version__
from .client import DriveClient
from .keyring import CredentialStorage
from .core import IndexStats, PendingConflict, Resolution, SyncResult
from .sync import SyncEngine
from .manager import SyncManager
from .errors import (
    BusyError,
    DriveConnectionError,
    KeyringAccessError,
    NotLinkedError,
    NoVaultDirError,
    NoVaultIdError,
)
from .config import VaultSyncConfig, VaultSyncState, validate_config_name
from .logging import CachedHandler, scoped_logger, setup_logging, LOG_FMT_SHORT
from .utils.appdirs import get_runtime_path
from .constants import CONFLICT_POLICIES, DEFAULT_CONFIG_NAME, NOT_LINKED


__all__ = ["VaultSync", "Lock", "vaultsync_lock"]


class Lock:
    """An inter-process and inter-thread lock

    This internally uses :class:`fasteners.InterProcessLock` but provides non-blocking
    acquire. It also guarantees thread-safety when using the :meth:`singleton` class
    method to create / retrieve a lock instance.

    :param path: Path of the lock file to use / create.
    """

    _instances: dict[str, Lock] = {}
    _singleton_lock = threading.Lock()

    @classmethod
    def singleton(cls, path: str) -> Lock:
        """
        Retrieve an existing lock object for a given path or create a new one.

        :param path: Path of the lock file to use / create.
        """
        with cls._singleton_lock:
            path = os.path.abspath(path)

            if path not in cls._instances:
                cls._instances[path] = cls(path)

            return cls._instances[path]

    def __init__(self, path: str) -> None:
        self.path = path
        self._external_lock = InterProcessLock(self.path)
        self._lock = threading.RLock()

    def acquire(self) -> bool:
        """
        Attempts to acquire the lock without blocking.

        :returns: Whether the acquisition succeeded.
        """
        with self._lock:
            if self._external_lock.acquired:
                return False
            return self._external_lock.acquire(blocking=False)

    def release(self) -> None:
        """Release the previously acquired lock."""
        with self._lock:
            if not self._external_lock.acquired:
                raise RuntimeError("Cannot release a lock which is not held")

            self._external_lock.release()

    def locked(self) -> bool:
        """
        Checks if the lock is currently held by any thread or process.

        :returns: Whether the lock is acquired.
        """
        with self._lock:
            gotten = self.acquire()
            if gotten:
                self.release()
            return not gotten


def vaultsync_lock(config_name: str) -> Lock:
    """
    Returns the inter-process lock which guarantees a single sync engine per config.

    :param config_name: The name of the vaultsync configuration.
    :returns: Lock instance for the config name.
    """
    name = f"{config_name}.lock"
    path = get_runtime_path("vaultsync")
    return Lock.singleton(osp.join(path, name))


class VaultSync:
    """The public API

    Links a remote drive, configures the local vault and runs syncing. Methods which
    modify the sync state take an inter-process lock, only one process can sync a
    given config at a time.

    :Example:

        >>> from vaultsync.main import VaultSync
        >>> v = VaultSync(config_name="notes")
        >>> v.link("ya29.a0Af...")
        >>> v.vault_path = "~/Notes"
        >>> v.vault_id = "notes"
        >>> result = v.sync_now()
        >>> print(result.message)

    :param config_name: Name of vaultsync configuration to run. Must not contain any
        whitespace. If the given config file does exist, it will be created.
    :param log_to_stderr: If ``True``, vaultsync will print log messages to stderr.
    """

    _external_log_handlers: Sequence[logging.Handler]
    _log_handler_info_cache: CachedHandler
    _log_handler_error_cache: CachedHandler

    def __init__(
        self,
        config_name: str = DEFAULT_CONFIG_NAME,
        log_to_stderr: bool = False,
    ) -> None:
        self._config_name = validate_config_name(config_name)
        self._conf = VaultSyncConfig(self.config_name)
        self._state = VaultSyncState(self.config_name)
        self._logger = scoped_logger(__name__, self.config_name)
        self.cred_storage = CredentialStorage(self.config_name)

        # Set up logging.
        self._log_to_stderr = log_to_stderr
        self._root_logger = scoped_logger("vaultsync", self.config_name)
        self._root_logger.setLevel(min(self.log_level, logging.INFO))
        self._root_logger.handlers.clear()
        self._setup_logging_external()
        self._setup_logging_internal()

        self._lock = vaultsync_lock(self.config_name)
        self._holds_lock = False

        # Set up sync infrastructure.
        self.client = DriveClient(self.config_name, credentials=self.cred_storage)
        self.sync = SyncEngine(self.client)
        self.manager = SyncManager(self.sync)

    def _setup_logging_external(self) -> None:
        """Sets up logging to the log file and, if requested, to stderr."""
        self._external_log_handlers = setup_logging(
            self.config_name, stderr=self._log_to_stderr
        )

    def _setup_logging_internal(self) -> None:
        """Sets up logging to internal info and error caches."""
        self._log_handler_info_cache = CachedHandler(maxlen=1)
        self._log_handler_info_cache.setFormatter(LOG_FMT_SHORT)
        self._log_handler_info_cache.setLevel(logging.INFO)
        self._root_logger.addHandler(self._log_handler_info_cache)

        self._log_handler_error_cache = CachedHandler()
        self._log_handler_error_cache.setFormatter(LOG_FMT_SHORT)
        self._log_handler_error_cache.setLevel(logging.ERROR)
        self._root_logger.addHandler(self._log_handler_error_cache)

    @property
    def version(self) -> str:
        """Returns the current vaultsync version."""
        return __version__

    # ==== Linking =====================================================================

    def link(self, token: str) -> int:
        """
        Stores an access token for the remote drive and checks that it is accepted.
        Obtaining the token is up to the user.

        :param token: OAuth access token with access to the remote drive.
        :returns: 0 on success, 1 for an invalid token and 2 for connection errors.
        """
        self.cred_storage.save_creds(token)
        self.client.clear_cache()

        try:
            valid = self.client.check_connection()
        except DriveConnectionError:
            self._logger.warning("Could not verify access token", exc_info=True)
            return 2

        if not valid:
            self.cred_storage.delete_creds()
            return 1

        self._logger.info("Linked remote drive")
        return 0

    def unlink(self) -> None:
        """
        Removes the stored access token and all sync state. Local files are left in
        place.

        :raises NotLinkedError: if no remote drive is linked.
        """
        self._check_linked()
        self.stop_sync()

        try:
            self.cred_storage.delete_creds()
        except KeyringAccessError:
            self._logger.debug("Could not remove token from keyring", exc_info=True)

        with self._sync_lock():
            self.sync.reset_sync_state()

        self.manager.pending_changes.clear()
        self._logger.info("Unlinked remote drive")

    @property
    def is_linked(self) -> bool:
        """Whether an access token is stored."""
        return self.client.linked

    def check_auth(self) -> str:
        """
        Checks whether the stored access token is accepted by the remote drive.

        :returns: A short auth status message.
        """
        if not self.client.linked:
            return NOT_LINKED

        try:
            valid = self.client.check_connection()
        except DriveConnectionError:
            return "Cannot connect to the remote drive"

        return "Authenticated" if valid else "Access token invalid or expired"

    # ==== Methods to access config and saved state ====================================

    @property
    def config_name(self) -> str:
        """The selected configuration."""
        return self._config_name

    def set_conf(self, section: str, name: str, value: Any) -> None:
        """
        Sets a configuration option.

        :param section: Name of section in config file.
        :param name: Name of config option.
        :param value: Config value. May be any type accepted by :obj:`ast.literal_eval`.
        """
        self._conf.set(section, name, value)
        self.sync.reload_cached_config()

    def get_conf(self, section: str, name: str) -> Any:
        """
        Gets a configuration option.

        :param section: Name of section in config file.
        :param name: Name of config option.
        :returns: Config value. May be any type accepted by :obj:`ast.literal_eval`.
        """
        return self._conf.get(section, name)

    def get_state(self, section: str, name: str) -> Any:
        """
        Gets a state value.

        :param section: Name of section in state file.
        :param name: Name of state variable.
        :returns: State value.
        """
        return self._state.get(section, name)

    # ==== Getters / setters for config with side effects ==============================

    @property
    def log_level(self) -> int:
        """Log level for log files and stderr."""
        return self._conf.get("app", "log_level")

    @log_level.setter
    def log_level(self, level: int) -> None:
        """Setter: log_level."""
        self._conf.set("app", "log_level", level)
        self._root_logger.setLevel(min(level, logging.INFO))
        for handler in self._external_log_handlers:
            handler.setLevel(level)

    @property
    def vault_id(self) -> str:
        """The vault ID which selects the remote container."""
        return self.sync.vault_id

    @vault_id.setter
    def vault_id(self, vault_id: str) -> None:
        """Setter: vault_id."""
        vault_id = vault_id.strip()

        if not vault_id or len(vault_id.split()) > 1 or "/" in vault_id:
            raise ValueError("Vault ID must be a non-empty string without whitespace")

        self.sync.vault_id = vault_id

    @property
    def vault_path(self) -> str:
        """Path of the local vault folder."""
        return self.sync.vault_path

    @vault_path.setter
    def vault_path(self, path: str) -> None:
        """Setter: vault_path."""
        path = osp.realpath(osp.expanduser(path))

        if not osp.isdir(path):
            raise NoVaultDirError(
                "Vault folder does not exist", f"There is no folder at '{path}'."
            )

        if self.manager.running.is_set():
            raise BusyError(
                "Cannot change the vault path", "Please stop syncing first."
            )

        self.sync.vault_path = path

    @property
    def sync_interval(self) -> int:
        """Interval of periodic syncs in seconds."""
        return self._conf.get("sync", "interval")

    @sync_interval.setter
    def sync_interval(self, interval: int) -> None:
        """Setter: sync_interval."""
        if interval < 1:
            raise ValueError("Sync interval must be at least one second")

        self._conf.set("sync", "interval", int(interval))

    @property
    def conflict_resolution(self) -> str:
        """Default policy for new conflicts: manual, local, remote or auto."""
        return self.sync.conflict_resolution

    @conflict_resolution.setter
    def conflict_resolution(self, policy: str) -> None:
        """Setter: conflict_resolution."""
        if policy not in CONFLICT_POLICIES:
            raise ValueError(
                f"Unknown conflict policy '{policy}', must be one of "
                f"{', '.join(CONFLICT_POLICIES)}"
            )

        self._conf.set("sync", "conflict_resolution", policy)

    # ==== Status ======================================================================

    @property
    def running(self) -> bool:
        """Whether sync threads are running."""
        return self.manager.running.is_set()

    @property
    def status(self) -> str:
        """The last status message."""
        if not self.client.linked:
            return NOT_LINKED

        return self._log_handler_info_cache.get_last_message() or self.sync.status

    @property
    def errors(self) -> List[str]:
        """Recent error messages."""
        return self._log_handler_error_cache.get_all_messages()

    @property
    def pending_changes(self) -> List[str]:
        """Vault paths with local changes which still need to be synced."""
        return sorted(self.manager.pending_changes)

    def get_stats(self) -> IndexStats:
        """
        :returns: Summary of the sync index.
        """
        return self.sync.get_stats()

    def get_sync_errors(self) -> List[tuple[str, str]]:
        """
        :returns: Vault paths and error messages of files whose last sync failed.
        """
        return [
            (record.path, record.last_error or "")
            for record in self.sync.index.get_files_with_errors()
        ]

    # ==== Syncing =====================================================================

    def sync_now(self) -> SyncResult:
        """
        Runs a full sync pass in the calling thread.

        :returns: Summary of the sync pass.
        :raises NoVaultIdError: if no vault ID is configured.
        :raises NotLinkedError: if no remote drive is linked.
        :raises BusyError: if another process is syncing the same config.
        """
        self._check_ready()

        with self._sync_lock():
            return self.manager.sync_now()

    def reconcile(self) -> int:
        """
        Reconciles the index with the local vault.

        :returns: Number of uploaded files.
        :raises BusyError: if another process is syncing the same config.
        """
        self._check_ready()

        with self._sync_lock():
            return self.sync.reconcile_index()

    def start_sync(self) -> None:
        """
        Creates syncing threads and starts syncing. Holds the inter-process lock until
        :meth:`stop_sync` is called.

        :raises NotLinkedError: if no remote drive is linked.
        :raises NoVaultIdError: if no vault ID is configured.
        :raises NoVaultDirError: if the local vault folder is not set up.
        :raises BusyError: if another process is syncing the same config.
        """
        self._check_ready()

        if self.running:
            return

        self._acquire_lock()

        try:
            self.manager.start()
        except Exception:
            self._release_lock()
            raise

    def stop_sync(self) -> None:
        """Stops all syncing threads if running and releases the inter-process lock."""
        self.manager.stop()
        self._release_lock()

    def reset_sync_state(self) -> None:
        """
        Clears the sync index and deletes the index file. The next sync compares all
        files by modification time only.

        :raises BusyError: if sync is running.
        """
        if self.running:
            raise BusyError(
                "Cannot reset sync state while syncing", "Please stop syncing first."
            )

        with self._sync_lock():
            self.sync.reset_sync_state()

    # ==== Conflicts ===================================================================

    @property
    def pending_conflicts(self) -> List[PendingConflict]:
        """Conflicts which await resolution."""
        return self.sync.conflicts.get_pending_conflicts()

    def resolve_conflict(
        self,
        conflict_id: str,
        resolution: Resolution | str,
        content: Optional[str] = None,
    ) -> bool:
        """
        Resolves a pending conflict. The chosen version is uploaded or downloaded,
        merged content is written locally and uploaded.

        :param conflict_id: ID of the conflict.
        :param resolution: Which version to keep.
        :param content: Merged content for a manual resolution.
        :returns: Whether a pending conflict with the given ID existed.
        """
        resolution = Resolution(resolution)

        with self._sync_lock():
            return self.sync.conflicts.resolve_conflict(
                conflict_id, resolution, content
            )

    # ==== Verifiers ===================================================================

    def _check_linked(self) -> None:
        if not self.client.linked:
            raise NotLinkedError(
                "No remote drive linked", "Please link a drive using the CLI."
            )

    def _check_ready(self) -> None:
        self._check_linked()

        if not self.sync.vault_id:
            raise NoVaultIdError(
                "No vault ID", "Please set a vault ID to select the remote container."
            )

        if not self.sync.vault:
            raise NoVaultDirError(
                "No local vault folder", "Please set the path of the local vault."
            )

    # ==== Locking =====================================================================

    def _acquire_lock(self) -> None:
        if self._holds_lock:
            return

        if not self._lock.acquire():
            raise BusyError(
                "Vault is busy",
                f"Another process is syncing the config '{self.config_name}'.",
            )

        self._holds_lock = True

    def _release_lock(self) -> None:
        if self._holds_lock:
            self._lock.release()
            self._holds_lock = False

    @contextmanager
    def _sync_lock(self) -> Iterator[None]:
        was_held = self._holds_lock
        self._acquire_lock()

        try:
            yield
        finally:
            if not was_held:
                self._release_lock()

    def __repr__(self) -> str:
        linked = "linked" if self.client.linked else "not linked"
        return f"<{self.__class__.__name__}(config={self.config_name!r}, {linked})>"

