"""
This module contains the default configuration and state values and functions to return
existing config or state instances for a specified config_name.
"""

from __future__ import annotations

import threading

from packaging.version import Version

from .user import UserConfig, _DefaultsType
from ..utils.appdirs import get_conf_path, get_data_path


CONFIG_DIR_NAME = "vaultsync"


# =============================================================================
#  Defaults
# =============================================================================

DEFAULTS_CONFIG: _DefaultsType = {
    "auth": {
        "keyring": "automatic",  # keychain backend to use for credential storage
    },
    "app": {
        "log_level": 20,  # log level for file and stderr, default: INFO
    },
    "sync": {
        "path": "",  # local vault location
        "vault_id": "",  # identifies the remote container of this vault
        "interval": 30,  # auto-sync interval in seconds
        "auto_sync": True,  # sync automatically after local changes
        "conflict_resolution": "manual",  # manual, local, remote or auto
        "excluded_patterns": [],  # gitwildmatch patterns excluded from sync
    },
    "remote": {
        "timeout": 30.0,  # timeout for individual requests in seconds
        "max_retries": 3,  # retries for transient errors
        "backoff": 1.0,  # initial backoff in seconds, doubled on each retry
    },
}

DEFAULTS_STATE: _DefaultsType = {
    "sync": {
        "pending_changes": [],  # paths with changes that failed to sync
        "index": {},  # legacy: sync index embedded in the state file
    },
}


KEY_SECTION_MAP = {
    key: section for section, values in DEFAULTS_CONFIG.items() for key in values
}


# IMPORTANT NOTES:
# 1. If you want to *change* the default value of a current option, you need to
#    do a MINOR update in config version, e.g. from 3.0 to 3.1
# 2. If you want to *remove* options that are no longer needed in our codebase,
#    or if you want to *rename* options, then you need to do a MAJOR update in
#    version, e.g. from 3.0 to 4.0
# 3. You don't need to touch this value if you're just adding a new option
CONF_VERSION = Version("1.0")


# =============================================================================
# Factories
# =============================================================================


def _get_conf(
    config_name: str,
    config_path: str,
    defaults: _DefaultsType,
    registry: dict[str, UserConfig],
) -> UserConfig:
    try:
        conf = registry[config_name]
    except KeyError:
        try:
            conf = UserConfig(config_path, defaults=defaults, version=CONF_VERSION)
        except OSError:
            conf = UserConfig(
                config_path, defaults=defaults, version=CONF_VERSION, load=False
            )

        registry[config_name] = conf

    return conf


_config_instances: dict[str, UserConfig] = {}
_config_lock = threading.Lock()


def VaultSyncConfig(config_name: str) -> UserConfig:
    """
    Returns an existing config instance or creates a new one.

    :param config_name: Name of the vaultsync configuration. A new config file will be
        created if none exists for the given config_name.
    :return: Config instance which saves any changes to the drive.
    """
    with _config_lock:
        config_path = get_conf_path(CONFIG_DIR_NAME, f"{config_name}.ini")
        return _get_conf(config_name, config_path, DEFAULTS_CONFIG, _config_instances)


_state_instances: dict[str, UserConfig] = {}
_state_lock = threading.Lock()


def VaultSyncState(config_name: str) -> UserConfig:
    """
    Returns an existing state instance or creates a new one.

    :param config_name: Name of the vaultsync configuration. A new state file will be
        created if none exists for the given config_name.
    :return: State instance which saves any changes to the drive.
    """
    with _state_lock:
        state_path = get_data_path(CONFIG_DIR_NAME, f"{config_name}.state")
        return _get_conf(config_name, state_path, DEFAULTS_STATE, _state_instances)


def forget_instances(config_name: str) -> None:
    """
    Drops cached config and state instances for a config name. The next call to
    :func:`VaultSyncConfig` or :func:`VaultSyncState` will load them from the drive.

    :param config_name: Name of the vaultsync configuration.
    """
    with _config_lock:
        _config_instances.pop(config_name, None)
    with _state_lock:
        _state_instances.pop(config_name, None)
