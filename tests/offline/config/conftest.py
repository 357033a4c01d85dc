# -*- coding: utf-8 -*-

import copy

import pytest
from packaging.version import Version
from vaultsync.config.user import UserConfig


DEFAULTS_CONFIG = {
    "auth": {
        "keyring": "automatic",
    },
    "sync": {
        "path": "/Users/Leslie/Notes",
        "vault_id": "notes",
        "interval": 30,
        "auto_sync": True,
        "excluded_patterns": ["*.tmp"],
    },
    "remote": {
        "timeout": 30.0,
    },
}

CONF_VERSION = Version("1.0.0")


@pytest.fixture
def defaults():
    return copy.deepcopy(DEFAULTS_CONFIG)


@pytest.fixture
def config(tmp_path, defaults):
    config_path = tmp_path / "test-config.ini"

    # Create an initial config on disk.
    conf = UserConfig(str(config_path), defaults=defaults, version=CONF_VERSION)

    yield conf

    conf.cleanup()
