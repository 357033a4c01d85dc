# -*- coding: utf-8 -*-

import pytest
import keyrings.alt.file

from vaultsync.config import VaultSyncConfig, remove_configuration
from vaultsync.config.main import forget_instances
from vaultsync.keyring import CredentialStorage
from vaultsync.sync import SyncEngine

from fixtures import FakeDrive


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keeps config, state, index, log and keyring files inside tmp_path."""
    home = tmp_path / "home"
    home.mkdir()

    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(home / ".local" / "share"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(home / ".cache"))
    monkeypatch.setenv("XDG_RUNTIME_DIR", str(home / ".runtime"))

    monkeypatch.setattr(
        CredentialStorage,
        "_best_keyring_backend",
        lambda self: keyrings.alt.file.PlaintextKeyring(),
    )

    yield home


@pytest.fixture
def config_name():
    config_name = "test-config"

    yield config_name

    remove_configuration(config_name)
    forget_instances(config_name)


@pytest.fixture
def vault_dir(tmp_path):
    path = tmp_path / "vault"
    path.mkdir()
    return path


@pytest.fixture
def drive(config_name):
    return FakeDrive(config_name)


@pytest.fixture
def engine(config_name, vault_dir, drive):
    conf = VaultSyncConfig(config_name)
    conf.set("sync", "path", str(vault_dir))
    conf.set("sync", "vault_id", "notes")

    yield SyncEngine(drive)
