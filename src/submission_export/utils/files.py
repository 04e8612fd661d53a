"""
Filename and checksum helpers shared by the parser and the writers.
"""

import hashlib
import re
import zlib
from pathlib import Path
from typing import Optional, Union

ILLEGAL_CHARS = re.compile(r"[^\w\- ]")

CHUNK_SIZE = 64 * 1024


def strip_illegal_chars(name: str) -> str:
    """Replace anything but letters, digits, spaces, "-" and "_" with "_"."""
    return ILLEGAL_CHARS.sub("_", name)


def strip_file_extension(filename: str) -> str:
    """'photo.final.jpg' -> 'photo.final'. Names without a dot are returned as is."""
    dot = filename.rfind(".")
    return filename if dot <= 0 else filename[:dot]


def file_extension(filename: str) -> Optional[str]:
    dot = filename.rfind(".")
    return None if dot <= 0 or dot == len(filename) - 1 else filename[dot + 1:]


def md5_hash(path: Union[str, Path]) -> str:
    """Hex MD5 digest of a file's contents."""
    digest = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def crc32_checksum(path: Union[str, Path]) -> int:
    checksum = 0
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            checksum = zlib.crc32(chunk, checksum)
    return checksum
