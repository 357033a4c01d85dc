#
# Copyright © Spyder Project Contributors
# Licensed under the terms of the MIT License
# (see spyder/__init__.py for details)

"""
This module provides user configuration file management, based on the config module of
the Spyder IDE. Values are stored in ini files and parsed with :func:`ast.literal_eval`
so that ints, floats, bools, lists and dicts survive a round trip.
"""

from __future__ import annotations

import ast
import os
import os.path as osp
import copy
import logging
import configparser as cp
from threading import RLock
from typing import Iterator, Any, Dict, TypeVar, MutableSet

from packaging.version import Version


logger = logging.getLogger(__name__)

_DefaultsType = Dict[str, Dict[str, Any]]
_T = TypeVar("_T")


class NoDefault:
    pass


# =============================================================================
# User config class
# =============================================================================


class UserConfig(cp.ConfigParser):
    """
    UserConfig class, based on ConfigParser. This class is safe to use from different
    threads but must not be used from different processes!

    :param path: Configuration file will be saved to this path.
    :param defaults: Dictionary containing options.
    :param version: Version of the configuration file.
    :param load: Whether to load existing values from ``path``.

    .. note:: The ``get`` and ``set`` arguments number and type differ from the
        reimplemented methods.
    """

    DEFAULT_SECTION_NAME = "main"

    def __init__(
        self,
        path: str,
        defaults: _DefaultsType | None = None,
        version: Version = Version("0.0.0"),
        load: bool = True,
    ) -> None:
        super().__init__(interpolation=None)

        self._path = path
        self._dirname = osp.dirname(path)
        self._lock = RLock()

        self.default_config = self._set_defaults(version, defaults)

        # Start from the defaults, values from file override them.
        self.reset_to_defaults(save=False)

        if load:
            self._load_from_ini(self.config_path)

            old_version = self.get_version()

            if version != old_version:
                self.apply_configuration_patches(old_version)
                self.set_version(version, save=False)

            self.save()

    @property
    def config_path(self) -> str:
        """The ini file where this configuration is stored."""
        return self._path

    # --- Helpers ----------------------------------------------------------------------

    def _set_defaults(
        self, version: Version, defaults: _DefaultsType | None
    ) -> _DefaultsType:
        defaults = copy.deepcopy(defaults) if defaults else {}
        defaults.setdefault(UserConfig.DEFAULT_SECTION_NAME, {})
        defaults[UserConfig.DEFAULT_SECTION_NAME]["version"] = str(version)
        return defaults

    def _set(self, section: str, option: str, value: Any) -> None:
        if not self.has_section(section):
            self.add_section(section)
        if not isinstance(value, str):
            value = repr(value)

        super().set(section, option, value)

    def _load_from_ini(self, path: str) -> None:
        with self._lock:
            try:
                self.read(path, encoding="utf-8")
            except cp.MissingSectionHeaderError:
                logger.error("File contains no section headers.")

    def apply_configuration_patches(self, old_version: Version) -> None:
        """
        Apply any patch to configuration values on version changes. To be reimplemented
        if patches to configuration values are needed.

        :param old_version: Old config version to patch.
        """
        pass

    # --- Public API -------------------------------------------------------------------

    def save(self) -> None:
        """Save config into the associated file."""
        with self._lock:
            os.makedirs(self._dirname, exist_ok=True)

            with open(self.config_path, "w", encoding="utf-8") as configfile:
                self.write(configfile)

    def get_version(self) -> Version:
        """
        Get the current config version.

        :returns: Configuration (not application!) version.
        """
        with self._lock:
            return Version(self.get(UserConfig.DEFAULT_SECTION_NAME, "version"))

    def set_version(self, version: Version, save: bool = True) -> None:
        """
        Set configuration (not application!) version.

        :param version: New version to set.
        :param save: Whether to save changes to drive.
        """
        with self._lock:
            self.set(UserConfig.DEFAULT_SECTION_NAME, "version", str(version), save)

    def reset_to_defaults(self, section: str | None = None, save: bool = True) -> None:
        """
        Reset config to default values.

        :param section: The section to reset. If not given, reset all sections.
        :param save: Whether to save the changes to the drive.
        """
        with self._lock:
            for sec, options in self.default_config.items():
                if section is None or section == sec:
                    for option, value in options.items():
                        self._set(sec, option, value)
            if save:
                self.save()

    def get_default(self, section: str, option: str) -> Any:
        """
        Get default value for a given ``section`` and ``option``.

        :param section: Section to search for option.
        :param option: Config option.
        :returns: Default value or :class:`NoDefault` if the option is unknown.
        """
        with self._lock:
            return self.default_config.get(section, {}).get(option, NoDefault)

    def set_default(self, section: str, option: str, default_value: Any) -> None:
        """Set the default value for a given ``section`` and ``option``."""
        with self._lock:
            self.default_config.setdefault(section, {})[option] = default_value

    def get(self, section: str, option: str, default: Any = NoDefault) -> Any:  # type: ignore
        """
        Get an option.

        :param section: Config section to search in.
        :param option: Config option to get.
        :param default: Default value to fall back to if not present.
        :returns: Config value.
        :raises cp.NoSectionError: if the section does not exist.
        :raises cp.NoOptionError: if the option does not exist and no default is given.
        """
        with self._lock:
            if not self.has_section(section):
                if default is NoDefault:
                    raise cp.NoSectionError(section)
                self.add_section(section)

            if not self.has_option(section, option):
                if default is NoDefault:
                    raise cp.NoOptionError(option, section)
                self.set(section, option, default)
                return default

            raw_value: str = super().get(section, option, raw=True)
            default_value = self.get_default(section, option)
            value: Any

            if isinstance(default_value, str):
                value = raw_value
            else:
                try:
                    value = ast.literal_eval(raw_value)
                except (SyntaxError, ValueError):
                    value = raw_value

            if default_value is not NoDefault and type(default_value) is not type(value):
                logger.error(
                    f"Inconsistent config type for [{section}][{option}]. "
                    f"Expected {default_value.__class__.__name__} but "
                    f"got {value.__class__.__name__}."
                )

            return value

    def set(self, section: str, option: str, value: Any, save: bool = True) -> None:  # type: ignore
        """
        Set an ``option`` on a given ``section``. Values must have the same type as the
        default value of the option, ints are accepted for float options.

        :param section: Config section to search in.
        :param option: Config option to set.
        :param value: Config value.
        :param save: Whether to save the changes to the drive.
        :raises ValueError: if the type of ``value`` does not match the default.
        """
        with self._lock:
            default_value = self.get_default(section, option)

            if default_value is NoDefault:
                default_value = value
                self.set_default(section, option, default_value)

            if isinstance(default_value, float) and isinstance(value, int):
                value = float(value)

            if type(default_value) is not type(value):
                raise ValueError(
                    f"Inconsistent type for config value [{section}][{option}]. "
                    f"Expected {default_value.__class__.__name__} but "
                    f"got {value.__class__.__name__}."
                )

            self._set(section, option, value)

            if save:
                self.save()

    def cleanup(self) -> None:
        """Remove the file associated with this config and reset to defaults."""
        with self._lock:
            self.reset_to_defaults(save=False)

            try:
                os.remove(self.config_path)
            except FileNotFoundError:
                pass


# ======================================================================================
# Wrapper classes
# ======================================================================================


class PersistentMutableSet(MutableSet[_T]):
    """Wraps a list in our state file as a MutableSet

    :param conf: UserConfig instance to store the set.
    :param section: Section name in state file.
    :param option: Option name in state file.
    """

    def __init__(self, conf: UserConfig, section: str, option: str) -> None:
        super().__init__()
        self.section = section
        self.option = option
        self._conf = conf
        self._lock = RLock()

    def _load(self) -> set:
        return set(self._conf.get(self.section, self.option))

    def _store(self, entries: set) -> None:
        self._conf.set(self.section, self.option, sorted(entries))

    def __iter__(self) -> Iterator[_T]:
        with self._lock:
            return iter(self._load())

    def __contains__(self, entry: Any) -> bool:
        with self._lock:
            return entry in self._load()

    def __len__(self) -> int:
        with self._lock:
            return len(self._conf.get(self.section, self.option))

    def add(self, entry: _T) -> None:
        with self._lock:
            entries = self._load()
            entries.add(entry)
            self._store(entries)

    def discard(self, entry: _T) -> None:
        with self._lock:
            entries = self._load()
            entries.discard(entry)
            self._store(entries)

    def clear(self) -> None:
        """Clears all elements."""
        with self._lock:
            self._conf.set(self.section, self.option, [])

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}(section='{self.section}',"
            f"option='{self.option}', entries={list(self)})>"
        )
