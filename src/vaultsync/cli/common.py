from __future__ import annotations

import functools
import sys
from typing import Callable, Any, TypeVar
from typing_extensions import ParamSpec

import click

from .core import ConfigName
from .output import warn
from ..constants import DEFAULT_CONFIG_NAME


P = ParamSpec("P")
T = TypeVar("T")


def convert_api_errors(func: Callable[P, T]) -> Callable[P, T]:
    """
    Decorator that catches a VaultSyncApiError and prints a formatted error message to
    stdout before exiting. Calls ``sys.exit(1)`` after printing the error to stdout.
    """

    from ..errors import VaultSyncApiError

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return func(*args, **kwargs)
        except VaultSyncApiError as exc:
            warn(f"{exc.title}. {exc.message}")
            sys.exit(1)

    return wrapper


config_option = click.option(
    "-c",
    "--config-name",
    default=DEFAULT_CONFIG_NAME,
    type=ConfigName(existing=False),
    is_eager=True,
    expose_value=True,
    help="Run command with the given configuration.",
)
existing_config_option = click.option(
    "-c",
    "--config-name",
    default=DEFAULT_CONFIG_NAME,
    type=ConfigName(),
    is_eager=True,
    expose_value=True,
    help="Run command with the given configuration.",
)


def inject_vaultsync(
    existing_config: bool,
) -> Callable[[Callable[P, T]], Callable[P, Any]]:
    """
    Decorator which replaces the config name option with a
    :class:`vaultsync.main.VaultSync` instance for that config, passed as the first
    argument to the command.

    :param existing_config: Whether the config must already exist.
    """

    def decorator(f: Callable[P, T]) -> Callable[P, Any]:
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
            from ..main import VaultSync

            ctx = click.get_current_context()

            config_name = ctx.params.pop("config_name", DEFAULT_CONFIG_NAME)
            kwargs.pop("config_name", None)

            m = convert_api_errors(VaultSync)(config_name)

            return ctx.invoke(f, m, *args, **kwargs)

        if existing_config:
            f = existing_config_option(f)
        else:
            f = config_option(f)

        return functools.update_wrapper(wrapper, f)

    return decorator
