"""Integrity-checked bsdiff patcher.

Applies downgrade diffs in the BSDIFF40 format:
- Header: "BSDIFF40" (8 bytes)
- Three 8-byte signed lengths: control block, diff block, new file size
- bzip2 compressed control, diff and extra blocks

The source file must match the CRC32 advertised by the diff before anything
is written, otherwise the installation is not in the state the diff expects.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import bsdiff4

from ..exceptions import (
    DiffMissingError,
    InvalidDiffError,
    OutputMismatchError,
    PatchError,
    UnexpectedSourceError,
)
from ..hash_utils import calculate_crc32, crc32_bytes, format_crc
from ..models import Diff

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class PatchResult:
    """Result of a patch operation."""

    output_path: str
    original_size: int
    patched_size: int
    source_crc: int
    output_crc: int
    output_verified: bool = False


def _decode_offtin(buf: bytes) -> int:
    """Decode a bsdiff sign-magnitude 64-bit integer."""
    value = int.from_bytes(buf[:7] + bytes([buf[7] & 0x7F]), "little")
    return -value if buf[7] & 0x80 else value


class BsPatch:
    """A parsed BSDIFF40 patch."""

    MAGIC = b"BSDIFF40"
    HEADER_SIZE = 32

    def __init__(self, data: bytes, control_size: int, diff_size: int, new_size: int):
        self.data = data
        self.control_size = control_size
        self.diff_size = diff_size
        self.new_size = new_size

    @classmethod
    def parse(cls, data: bytes, diff_name: Optional[str] = None) -> "BsPatch":
        if len(data) < cls.HEADER_SIZE or data[:8] != cls.MAGIC:
            raise InvalidDiffError("Diff file was invalid: missing BSDIFF40 header", diff_name=diff_name)

        control_size = _decode_offtin(data[8:16])
        diff_size = _decode_offtin(data[16:24])
        new_size = _decode_offtin(data[24:32])
        if control_size < 0 or diff_size < 0 or new_size < 0:
            raise InvalidDiffError("Diff file was invalid: negative block length", diff_name=diff_name)
        if cls.HEADER_SIZE + control_size + diff_size > len(data):
            raise InvalidDiffError(
                "Diff file was invalid: truncated",
                diff_name=diff_name,
                details={"declared_blocks": control_size + diff_size, "size": len(data)},
            )
        return cls(data, control_size, diff_size, new_size)

    def apply(self, source: bytes) -> bytes:
        """Apply the patch to ``source`` and return the patched content."""
        try:
            return bsdiff4.patch(source, self.data)
        except (ValueError, OSError) as exc:
            raise InvalidDiffError(f"Diff could not be applied: {exc}") from exc


def read_file_bytes(path: PathLike) -> bytes:
    """Read the full content of a file, failing if fewer bytes than its size were read."""
    with open(path, "rb") as handle:
        expected = Path(path).stat().st_size
        content = handle.read()
    if len(content) != expected:
        raise OSError(f"Short read from {path}: {len(content)} of {expected} bytes")
    return content


def apply_diff(from_path: PathLike, to_path: PathLike, diff: Diff, diffs_path: PathLike) -> PatchResult:
    """Verify ``from_path`` against ``diff.file_crc``, apply the diff and write ``to_path``.

    The output is written to a temporary file beside ``to_path``, checked
    against ``diff.output_crc`` when the diff carries one, and only then
    moved into place. ``to_path`` is untouched on any failure, so
    ``from_path`` and ``to_path`` may be the same file.
    """
    payload_path = Path(diffs_path) / diff.file_name
    try:
        payload = read_file_bytes(payload_path)
    except OSError as exc:
        raise DiffMissingError(
            f"Diff {diff.diff_name} could not be opened. Was it downloaded? ({exc})",
            diff_name=diff.diff_name,
        ) from exc

    patch = BsPatch.parse(payload, diff_name=diff.diff_name)

    try:
        file_content = read_file_bytes(from_path)
    except OSError as exc:
        raise PatchError(
            f"Could not read {from_path}: {exc}", diff_name=diff.diff_name
        ) from exc

    logger.info("Verifying installation is unmodified")
    before_crc = crc32_bytes(file_content)
    if before_crc != diff.file_crc:
        raise UnexpectedSourceError(
            f"File CRC {format_crc(before_crc)} did not match expected value of {format_crc(diff.file_crc)}. "
            "Your installation differs from what was expected: the file may be corrupt, or the game "
            "may not be a legitimate copy.",
            diff_name=diff.diff_name,
            expected_crc=diff.file_crc,
            actual_crc=before_crc,
        )

    output = patch.apply(file_content)
    result = PatchResult(
        output_path=str(to_path),
        original_size=len(file_content),
        patched_size=len(output),
        source_crc=before_crc,
        output_crc=0,
    )

    to_path = Path(to_path)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{to_path.name}-", suffix=".patched", dir=str(to_path.parent))
    try:
        with os.fdopen(fd, "wb") as tmp:
            tmp.write(output)

        if diff.output_crc is not None:
            result.output_crc = calculate_crc32(tmp_name)
            if result.output_crc != diff.output_crc:
                raise OutputMismatchError(
                    f"Patched file CRC {format_crc(result.output_crc)} did not match expected "
                    f"{format_crc(diff.output_crc)}",
                    diff_name=diff.diff_name,
                )
            result.output_verified = True
        else:
            logger.debug("Diff %s carries no output checksum, skipping post-patch verification", diff.diff_name)

        os.replace(tmp_name, to_path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise

    return result
