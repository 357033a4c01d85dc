from __future__ import annotations

import ast
import io
from typing import TYPE_CHECKING, Any

import click

from .output import echo, ok, warn
from .common import convert_api_errors, existing_config_option, inject_vaultsync
from .core import ConfigKey, CliException

if TYPE_CHECKING:
    from ..main import VaultSync


@click.group(help="Read and write configuration values.")
def config() -> None:
    pass


@config.command(name="get", help="Print the value of a given configuration key.")
@click.argument("key", type=ConfigKey())
@existing_config_option
def config_get(key: str, config_name: str) -> None:
    from ..config import VaultSyncConfig
    from ..config.main import KEY_SECTION_MAP

    section = KEY_SECTION_MAP.get(key, "")

    if not section:
        raise CliException(f"'{key}' is not a valid configuration key.")

    echo(str(VaultSyncConfig(config_name).get(section, key)))


@config.command(
    name="set",
    help="""
Update configuration with a value for the given key.

Values will be cast to the proper type, raising an error where this is not possibly. For
instance, setting a boolean config value to 1 will actually set it to True.
""",
)
@click.argument("key", type=ConfigKey())
@click.argument("value")
@inject_vaultsync(existing_config=True)
@convert_api_errors
def config_set(m: VaultSync, key: str, value: str) -> None:
    from ..config.main import KEY_SECTION_MAP, DEFAULTS_CONFIG

    section = KEY_SECTION_MAP.get(key, "")

    if not section:
        raise CliException(f"'{key}' is not a valid configuration key.")

    default_value = DEFAULTS_CONFIG[section][key]

    py_value: Any

    if isinstance(default_value, str):
        py_value = value
    else:
        try:
            py_value = ast.literal_eval(value)
        except (SyntaxError, ValueError):
            py_value = value

    if isinstance(default_value, bool) and isinstance(py_value, int):
        py_value = bool(py_value)

    try:
        if key == "path":
            m.vault_path = py_value
        elif key == "vault_id":
            m.vault_id = py_value
        elif key == "interval":
            m.sync_interval = py_value
        elif key == "conflict_resolution":
            m.conflict_resolution = py_value
        else:
            m.set_conf(section, key, py_value)
    except (ValueError, TypeError) as e:
        warn(str(e))
    else:
        ok(f"Set {key} to {m.get_conf(section, key)!r}.")


@config.command(name="show", help="Show all config keys and values.")
@existing_config_option
def config_show(config_name: str) -> None:
    from ..config import VaultSyncConfig

    conf = VaultSyncConfig(config_name)

    with io.StringIO() as fp:
        conf.write(fp)
        echo(fp.getvalue())


@click.command(name="config-files", help="List all configurations.")
def config_files() -> None:
    from ..config import list_configs
    from ..config.main import VaultSyncConfig

    for name in list_configs():
        conf = VaultSyncConfig(name)
        echo(f"{name}: {conf.config_path}")
