# -*- coding: utf-8 -*-

import os
from typing import List, TypeVar

from .main import VaultSyncConfig, VaultSyncState, CONFIG_DIR_NAME, forget_instances
from .user import PersistentMutableSet
from ..utils.appdirs import get_conf_path, get_data_path


__all__ = [
    "VaultSyncConfig",
    "VaultSyncState",
    "PersistentMutableSet",
    "list_configs",
    "remove_configuration",
    "validate_config_name",
]


_C = TypeVar("_C", bound=str)


def list_configs() -> List[str]:
    """
    Lists all vaultsync configs.

    :returns: A list of all currently existing config files.
    """
    configs = []
    for file in os.listdir(get_conf_path(CONFIG_DIR_NAME)):
        if file.endswith(".ini"):
            configs.append(os.path.splitext(os.path.basename(file))[0])

    return configs


def remove_configuration(config_name: str) -> None:
    """
    Removes all config, state and index files associated with the given configuration.

    :param config_name: The configuration to remove.
    """
    VaultSyncConfig(config_name).cleanup()
    VaultSyncState(config_name).cleanup()
    forget_instances(config_name)

    data_path = get_data_path(CONFIG_DIR_NAME)

    for file_name in os.listdir(data_path):
        if file_name.startswith(f"{config_name}."):
            try:
                os.unlink(os.path.join(data_path, file_name))
            except OSError:
                pass


def validate_config_name(string: _C) -> _C:
    """
    Validates that the config name does not contain any whitespace.

    :param string: String to validate.
    :returns: The input value.
    :raises ValueError: if the config name contains whitespace.
    """
    if len(string.split()) > 1:
        raise ValueError("Config name may not contain any whitespace")

    return string
