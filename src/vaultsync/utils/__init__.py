"""Utility modules and functions"""

from __future__ import annotations

import os
import time
from types import TracebackType
from typing import Optional, Tuple, Type


_ExecInfoType = Tuple[Type[BaseException], BaseException, Optional[TracebackType]]


def now_ms() -> int:
    """Returns the current time as integer milliseconds since the epoch."""
    return int(time.time() * 1000)


def sanitize_string(string: str) -> str:
    """
    Converts a string provided by file system APIs, which may contain surrogate escapes
    for bytes with unknown encoding, to a string which can always be displayed or
    printed. This is done by replacing invalid characters with "�".

    :param string: Original string.
    :returns: Sanitised path where all surrogate escapes have been replaced with "�".
    """
    return os.fsencode(string).decode(errors="replace")


def exc_info_tuple(exc: BaseException) -> _ExecInfoType:
    """Creates an exc-info tuple from an exception."""
    return type(exc), exc, exc.__traceback__
