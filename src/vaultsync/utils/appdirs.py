"""
This module contains functions to retrieve platform dependent locations for config,
data, log and runtime files. Only macOS and Linux are supported.
"""

# system imports
import os
import platform
import os.path as osp
from typing import Optional


__all__ = [
    "get_home_dir",
    "get_conf_path",
    "get_data_path",
    "get_log_path",
    "get_runtime_path",
]


def to_full_path(
    path: str, subfolder: Optional[str], filename: Optional[str], create: bool
) -> str:
    if subfolder:
        path = osp.join(path, subfolder)

    if create:
        os.makedirs(path, exist_ok=True)

    if filename:
        path = osp.join(path, filename)

    return path


def get_home_dir() -> str:
    """
    Returns user home directory. This will be determined from the first
    valid result out of (osp.expanduser("~"), $HOME, $TMP).
    """
    path = osp.expanduser("~")

    if osp.isdir(path):
        return path

    for env_var in ("HOME", "TMP"):
        path = os.environ.get(env_var, "")
        if osp.isdir(path):
            return path

    raise RuntimeError(
        "Please set the environment variable HOME to your user/home directory."
    )


def _platform_dir(macos_parts: tuple, xdg_var: str, xdg_fallback: tuple) -> str:
    if platform.system() == "Darwin":
        return osp.join(get_home_dir(), *macos_parts)
    elif platform.system() == "Linux":
        fallback = osp.join(get_home_dir(), *xdg_fallback)
        return os.environ.get(xdg_var, fallback)
    else:
        raise RuntimeError("Platform not supported")


def get_conf_path(
    subfolder: Optional[str] = None, filename: Optional[str] = None, create: bool = True
) -> str:
    """
    Returns the default config path for the platform. This will be:

        - macOS: "~/Library/Application Support/SUBFOLDER/FILENAME"
        - Linux: "$XDG_CONFIG_HOME/SUBFOLDER/FILENAME"
        - fallback: "$HOME/.config/SUBFOLDER/FILENAME"

    :param subfolder: The subfolder for the app.
    :param filename: The filename to append for the app.
    :param create: If ``True``, the folder ``subfolder`` will be created on-demand.
    """
    conf_path = _platform_dir(
        ("Library", "Application Support"), "XDG_CONFIG_HOME", (".config",)
    )
    return to_full_path(conf_path, subfolder, filename, create)


def get_data_path(
    subfolder: Optional[str] = None, filename: Optional[str] = None, create: bool = True
) -> str:
    """
    Returns the default path to save application data for the platform. The sync
    index and the state file live here. This will be:

        - macOS: "~/Library/Application Support/SUBFOLDER/FILENAME"
        - Linux: "$XDG_DATA_HOME/SUBFOLDER/FILENAME"
        - fallback: "$HOME/.local/share/SUBFOLDER/FILENAME"

    :param subfolder: The subfolder for the app.
    :param filename: The filename to append for the app.
    :param create: If ``True``, the folder ``subfolder`` will be created on-demand.
    """
    data_path = _platform_dir(
        ("Library", "Application Support"), "XDG_DATA_HOME", (".local", "share")
    )
    return to_full_path(data_path, subfolder, filename, create)


def get_log_path(
    subfolder: Optional[str] = None, filename: Optional[str] = None, create: bool = True
) -> str:
    """
    Returns the default log path for the platform. This will be:

        - macOS: "~/Library/Logs/SUBFOLDER/FILENAME"
        - Linux: "$XDG_CACHE_HOME/SUBFOLDER/FILENAME"
        - fallback: "$HOME/.cache/SUBFOLDER/FILENAME"

    :param subfolder: The subfolder for the app.
    :param filename: The filename to append for the app.
    :param create: If ``True``, the folder ``subfolder`` will be created on-demand.
    """
    log_path = _platform_dir(("Library", "Logs"), "XDG_CACHE_HOME", (".cache",))
    return to_full_path(log_path, subfolder, filename, create)


def get_runtime_path(
    subfolder: Optional[str] = None, filename: Optional[str] = None, create: bool = True
) -> str:
    """
    Returns the default runtime path for the platform. Lock files are stored here.
    This will be:

        - macOS: "~/Library/Application Support/SUBFOLDER/FILENAME"
        - Linux: "$XDG_RUNTIME_DIR/SUBFOLDER/FILENAME"
        - fallback: "$HOME/.cache/SUBFOLDER/FILENAME"

    :param subfolder: The subfolder for the app.
    :param filename: The filename to append for the app.
    :param create: If ``True``, the folder ``subfolder`` will be created on-demand.
    """
    runtime_path = _platform_dir(
        ("Library", "Application Support"), "XDG_RUNTIME_DIR", (".cache",)
    )
    return to_full_path(runtime_path, subfolder, filename, create)
