"""
This module provides custom click command line parameters for vaultsync such as
:class:`ConfigKey` and :class:`ConfigName`, as well as an ordered command group class
which prints its help output in sections.
"""
from __future__ import annotations

from typing import Any

import click
from click.shell_completion import CompletionItem

from .output import warn


# ==== Custom parameter types ==========================================================


class ConfigKey(click.ParamType):
    """A command line parameter representing a config key

    This parameter type provides custom shell completion for existing config keys.
    """

    name = "key"

    def shell_complete(
        self,
        ctx: click.Context | None,
        param: click.Parameter | None,
        incomplete: str,
    ) -> list[CompletionItem]:
        from ..config.main import KEY_SECTION_MAP as KEYS

        return [CompletionItem(key) for key in KEYS if key.startswith(incomplete)]


class ConfigName(click.ParamType):
    """A command line parameter representing a config name

    This parameter type provides custom shell completion for existing config names.

    :param existing: If ``True`` require an existing config, otherwise create a new
        config on demand.
    """

    name = "config"

    def __init__(self, existing: bool = True) -> None:
        self.existing = existing

    def convert(
        self,
        value: str | None,
        param: click.Parameter | None,
        ctx: click.Context | None,
    ) -> str | None:
        if value is None:
            return value

        from ..config import validate_config_name, list_configs

        if not self.existing:
            try:
                return validate_config_name(value)
            except ValueError:
                raise CliException("Configuration name may not contain any whitespace")

        if value in list_configs():
            return value

        raise CliException(
            f"Configuration '{value}' does not exist. "
            f"Use 'vaultsync auth link' to set up a new configuration."
        )

    def shell_complete(
        self,
        ctx: click.Context | None,
        param: click.Parameter | None,
        incomplete: str,
    ) -> list[CompletionItem]:
        from ..config import list_configs

        matches = [conf for conf in list_configs() if conf.startswith(incomplete)]
        return [CompletionItem(m) for m in matches]


# ==== custom command group with ordered output ========================================


class OrderedGroup(click.Group):
    """Click command group with customizable sections of help output."""

    sections: dict[str, list[tuple[str, click.Command]]] = {}

    def add_command(
        self, cmd: click.Command, name: str | None = None, section: str = ""
    ) -> None:
        name = name or cmd.name

        if name is None:
            raise TypeError("Command has no name.")

        self.sections[section] = self.sections.get(section, []) + [(name, cmd)]
        super().add_command(cmd, name)

    def format_commands(
        self, ctx: click.Context, formatter: click.HelpFormatter
    ) -> None:
        commands = [
            (name, cmd)
            for name, cmd in ((n, self.get_command(ctx, n)) for n in self.commands)
            if cmd is not None and not cmd.hidden
        ]

        if len(commands) == 0:
            return

        max_len = max(len(name) for name, _ in commands)
        limit = formatter.width - 6 - max_len

        for section, cmd_list in self.sections.items():
            rows = [
                (name.ljust(max_len), cmd.get_short_help_str(limit))
                for name, cmd in cmd_list
            ]

            if rows:
                with formatter.section(section):
                    formatter.write_dl(rows)


# ==== custom exceptions ===============================================================


class CliException(click.ClickException):
    """
    Subclass of :class:`click.ClickException` with a nicely formatted error message.
    """

    def show(self, file: Any = None) -> None:
        warn(self.format_message())
