"""CRC32 helpers used to check that files are in the expected state before and after patching."""

import zlib
from pathlib import Path
from typing import Union


def crc32_bytes(data: bytes) -> int:
    """Return the unsigned CRC32 of an in-memory buffer."""
    return zlib.crc32(data) & 0xFFFFFFFF


def calculate_crc32(file_path: Union[str, Path], chunk_size: int = 1048576) -> int:
    """Calculate the CRC32 of a file without loading it in full. Raises OSError if the file cannot be read."""
    crc = 0
    with open(file_path, 'rb') as f:
        while True:
            data = f.read(chunk_size)
            if not data:
                break
            crc = zlib.crc32(data, crc)
    return crc & 0xFFFFFFFF


def format_crc(value: int) -> str:
    return "%08X" % (value & 0xFFFFFFFF)
