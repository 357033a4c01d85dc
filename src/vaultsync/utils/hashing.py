"""Module for content hashing of file contents."""

from __future__ import annotations

# system imports
import hashlib
from typing import BinaryIO


def content_hash(data: bytes) -> str:
    """
    Computes the content fingerprint that is stored in the sync index: the SHA-256 hex
    digest of the file contents.

    :param data: File contents.
    :returns: Lowercase hex digest.
    """
    return hashlib.sha256(data).hexdigest()


def stream_hash(stream: BinaryIO, chunk_size: int = 1024 * 1024) -> str:
    """
    Computes the same fingerprint as :func:`content_hash` but reads the data in chunks
    from a binary stream.

    :param stream: Stream opened in binary mode.
    :param chunk_size: Number of bytes to read at once.
    :returns: Lowercase hex digest.
    """
    hasher = hashlib.sha256()

    while True:
        chunk = stream.read(chunk_size)
        if len(chunk) == 0:
            break
        hasher.update(chunk)

    return hasher.hexdigest()
