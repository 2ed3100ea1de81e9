"""
Mutable view over an APK (ZIP) archive.

Reads go through ``zipfile``; edits are kept as an overlay of deleted and
written entries until ``finalize_and_sign_v2`` rebuilds the archive. The
rebuild copies untouched entries raw, realigns stored entries and writes
the v2 signing block before the central directory.
"""

from __future__ import annotations

import io
import logging
import os
import re
import struct
import tempfile
import zipfile
import zlib
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, Optional, Tuple, Union

from cryptography import x509

from ..exceptions import ContainerError
from . import signing

logger = logging.getLogger(__name__)

# LFH 30 bytes: sig ver flag comp time date crc csz usz fnl exl
_LFH = struct.Struct("<4sHHHHHIIIHH")
# CDH 46 bytes: sig vmade vneed flag comp time date crc csz usz fnl exl cml dsk iat eat off
_CDH = struct.Struct("<4sHHHHHHIIIHHHHHII")
# EOCD 22 bytes: sig dsk dsk_cd ent tot cdsz cdoff cml
_EOCD = struct.Struct("<4sHHHHIIH")

_LFH_SIG = b"PK\x03\x04"
_CDH_SIG = b"PK\x01\x02"
_EOCD_SIG = b"PK\x05\x06"

FLAG_DATA_DESCRIPTOR = 0x08
FLAG_UTF8 = 0x800
ZIP_VERSION = 20

STORED_ALIGNMENT = 4
NATIVE_LIB_ALIGNMENT = 4096

# 1980-01-01 00:00:00 in DOS format
FIXED_DOS_TIME = 0
FIXED_DOS_DATE = (1 << 5) | 1

V1_SIGNATURE_FILE = re.compile(r"^META-INF/(?:.*/)?(?:[^/]+\.(?:SF|RSA|DSA|EC)|MANIFEST\.MF)$")

PathLike = Union[str, Path]


class FileCompression(Enum):
    STORED = zipfile.ZIP_STORED
    DEFLATE = zipfile.ZIP_DEFLATED


def is_v1_signature_file(name: str) -> bool:
    return bool(V1_SIGNATURE_FILE.match(name))


def _encode_name(name: str) -> Tuple[bytes, int]:
    try:
        return name.encode("ascii"), 0
    except UnicodeEncodeError:
        return name.encode("utf-8"), FLAG_UTF8


def _alignment_for(name: str) -> int:
    return NATIVE_LIB_ALIGNMENT if name.endswith(".so") else STORED_ALIGNMENT


def _deflate(data: bytes) -> bytes:
    compressor = zlib.compressobj(9, zlib.DEFLATED, -15)
    return compressor.compress(data) + compressor.flush()


class _PendingEntry:
    __slots__ = ("name", "data", "compression")

    def __init__(self, name: str, data: bytes, compression: FileCompression):
        self.name = name
        self.data = data
        self.compression = compression


class ApkContainer:
    """An opened APK. Use as a context manager or call ``close``."""

    def __init__(self, path: Path, handle: BinaryIO, archive: zipfile.ZipFile):
        self.path = path
        self._handle: Optional[BinaryIO] = handle
        self._zip: Optional[zipfile.ZipFile] = archive
        self._infos: Dict[str, zipfile.ZipInfo] = {}
        for info in archive.infolist():
            if info.filename in self._infos:
                logger.warning("Duplicate entry %s in %s, keeping the last one", info.filename, path)
            self._infos[info.filename] = info
        self._deleted: set = set()
        self._pending: Dict[str, _PendingEntry] = {}

    @classmethod
    def open(cls, path: PathLike) -> "ApkContainer":
        path = Path(path)
        try:
            handle = open(path, "rb")
        except OSError as exc:
            raise ContainerError(f"Cannot open APK {path}: {exc}") from exc
        try:
            archive = zipfile.ZipFile(handle, "r")
        except (zipfile.BadZipFile, OSError, ValueError) as exc:
            handle.close()
            raise ContainerError(f"{path} is not a valid ZIP archive: {exc}") from exc
        return cls(path, handle, archive)

    def __enter__(self) -> "ApkContainer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._zip is not None:
            self._zip.close()
            self._zip = None
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def _require_open(self) -> zipfile.ZipFile:
        if self._zip is None:
            raise ContainerError(f"APK container for {self.path} has been finalized or closed")
        return self._zip

    # -------------------------------------------------------------------------------------------------
    # Entry access
    # -------------------------------------------------------------------------------------------------

    def contains_entry(self, name: str) -> bool:
        self._require_open()
        if name in self._pending:
            return True
        return name in self._infos and name not in self._deleted

    def iter_entry_names(self) -> Iterator[str]:
        self._require_open()
        for name in self._infos:
            if name not in self._deleted and name not in self._pending:
                yield name
        yield from self._pending

    def read_entry(self, name: str) -> bytes:
        archive = self._require_open()
        pending = self._pending.get(name)
        if pending is not None:
            return pending.data
        if name not in self._infos or name in self._deleted:
            raise ContainerError(f"No entry named {name}", entry=name)
        try:
            return archive.read(self._infos[name])
        except (zipfile.BadZipFile, zlib.error, OSError, NotImplementedError) as exc:
            raise ContainerError(f"Failed to read entry {name}: {exc}", entry=name) from exc

    def delete_entry(self, name: str) -> bool:
        """Remove an entry. Returns False if it did not exist."""
        self._require_open()
        existed = self.contains_entry(name)
        self._pending.pop(name, None)
        if name in self._infos:
            self._deleted.add(name)
        return existed

    def write_entry(self, name: str, data: bytes, compression: FileCompression = FileCompression.DEFLATE) -> None:
        """Add or replace an entry."""
        self._require_open()
        if not name or name.startswith("/") or name.endswith("/"):
            raise ContainerError(f"Invalid entry name {name!r}", entry=name)
        if name in self._infos:
            self._deleted.add(name)
        self._pending.pop(name, None)
        self._pending[name] = _PendingEntry(name, bytes(data), compression)

    # -------------------------------------------------------------------------------------------------
    # Rebuild
    # -------------------------------------------------------------------------------------------------

    def _read_raw(self, info: zipfile.ZipInfo) -> bytes:
        """Compressed bytes of an original entry, located through its local header."""
        handle = self._handle
        handle.seek(info.header_offset)
        header = handle.read(_LFH.size)
        if len(header) != _LFH.size or header[:4] != _LFH_SIG:
            raise ContainerError(f"Bad local file header for {info.filename}", entry=info.filename)
        fields = _LFH.unpack(header)
        name_len, extra_len = fields[9], fields[10]
        handle.seek(info.header_offset + _LFH.size + name_len + extra_len)
        data = handle.read(info.compress_size)
        if len(data) != info.compress_size:
            raise ContainerError(f"Entry {info.filename} is truncated", entry=info.filename)
        return data

    def _write_entry(
        self,
        out: io.BytesIO,
        central: List[bytes],
        name: str,
        flags: int,
        method: int,
        dos_time: int,
        dos_date: int,
        crc: int,
        payload: bytes,
        size: int,
        create_version: int,
        external_attr: int,
    ) -> None:
        if len(payload) >= 0xFFFFFFFF or size >= 0xFFFFFFFF:
            raise ContainerError(f"Entry {name} needs ZIP64, which is not supported", entry=name)

        name_bytes, name_flag = _encode_name(name)
        flags = (flags & ~FLAG_DATA_DESCRIPTOR) | name_flag

        extra = b""
        offset = out.tell()
        if method == zipfile.ZIP_STORED:
            alignment = _alignment_for(name)
            data_offset = offset + _LFH.size + len(name_bytes)
            pad = (alignment - data_offset % alignment) % alignment
            extra = b"\x00" * pad

        out.write(_LFH.pack(
            _LFH_SIG, ZIP_VERSION, flags, method, dos_time, dos_date,
            crc, len(payload), size, len(name_bytes), len(extra),
        ))
        out.write(name_bytes)
        out.write(extra)
        out.write(payload)

        central.append(_CDH.pack(
            _CDH_SIG, create_version, ZIP_VERSION, flags, method, dos_time, dos_date,
            crc, len(payload), size, len(name_bytes), 0, 0, 0, 0, external_attr, offset,
        ) + name_bytes)

    def _build_unsigned(self) -> bytes:
        out = io.BytesIO()
        central: List[bytes] = []

        for name, info in self._infos.items():
            if name in self._deleted or name in self._pending:
                continue
            if is_v1_signature_file(name):
                logger.debug("Dropping v1 signature file %s", name)
                continue
            if info.compress_type not in (zipfile.ZIP_STORED, zipfile.ZIP_DEFLATED):
                raise ContainerError(
                    f"Entry {name} uses unsupported compression {info.compress_type}", entry=name
                )
            dos_time = (info.date_time[3] << 11) | (info.date_time[4] << 5) | (info.date_time[5] // 2)
            dos_date = ((info.date_time[0] - 1980) << 9) | (info.date_time[1] << 5) | info.date_time[2]
            self._write_entry(
                out, central, name, info.flag_bits, info.compress_type, dos_time, dos_date,
                info.CRC, self._read_raw(info), info.file_size,
                (info.create_system << 8) | info.create_version, info.external_attr,
            )

        for entry in self._pending.values():
            method = entry.compression.value
            payload = _deflate(entry.data) if method == zipfile.ZIP_DEFLATED else entry.data
            self._write_entry(
                out, central, entry.name, 0, method, FIXED_DOS_TIME, FIXED_DOS_DATE,
                zlib.crc32(entry.data) & 0xFFFFFFFF, payload, len(entry.data), ZIP_VERSION, 0,
            )

        if len(central) > 0xFFFF:
            raise ContainerError("Too many entries for a non-ZIP64 archive")
        cd_offset = out.tell()
        for record in central:
            out.write(record)
        cd_size = out.tell() - cd_offset
        out.write(_EOCD.pack(_EOCD_SIG, 0, 0, len(central), len(central), cd_size, cd_offset, 0))
        return out.getvalue()

    def finalize_and_sign_v2(self, cert: x509.Certificate, key: signing.PrivateKey) -> None:
        """Rebuild the archive, sign it and replace the file on disk. Consumes the container."""
        self._require_open()
        try:
            unsigned = self._build_unsigned()
        finally:
            self.close()

        directory = str(self.path.parent)
        fd, unsigned_name = tempfile.mkstemp(prefix=".apk-", suffix=".unsigned", dir=directory)
        signed_fd, signed_name = tempfile.mkstemp(prefix=".apk-", suffix=".signed", dir=directory)
        os.close(signed_fd)
        try:
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(unsigned)
            signing.sign_v2_file(unsigned_name, signed_name, cert, key)
            os.replace(signed_name, self.path)
        except OSError as exc:
            raise ContainerError(f"Failed to write signed APK {self.path}: {exc}") from exc
        finally:
            for leftover in (unsigned_name, signed_name):
                if os.path.exists(leftover):
                    try:
                        os.remove(leftover)
                    except OSError:
                        logger.warning("Could not remove temporary file %s", leftover)

        logger.info("Wrote signed APK %s (%d bytes)", self.path, self.path.stat().st_size)
