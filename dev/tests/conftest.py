from __future__ import annotations

import sys
import zipfile
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

ANDROID_NS = "http://schemas.android.com/apk/res/android"
LABEL_ID = 0x01010001
NAME_ID = 0x01010003
VERSION_CODE_ID = 0x0101021B
MIN_SDK_ID = 0x0101020C


def build_manifest_document(permissions=(), debuggable=None):
    """A small manifest: package attribute, uses-sdk, optional permissions, application."""
    from modpatcher.apk.axml import (
        Attribute,
        AxmlDocument,
        EndElement,
        EndNamespace,
        StartElement,
        StartNamespace,
        ValueType,
    )

    nodes = [
        StartNamespace("android", ANDROID_NS, line=1),
        StartElement(
            "manifest",
            attributes=[
                Attribute("versionCode", ANDROID_NS, VERSION_CODE_ID, ValueType.INT_DEC, 1234),
                Attribute("package", None, None, ValueType.STRING, "com.example.game"),
            ],
            line=1,
        ),
        StartElement(
            "uses-sdk",
            attributes=[Attribute("minSdkVersion", ANDROID_NS, MIN_SDK_ID, ValueType.INT_DEC, 29)],
            line=2,
        ),
        EndElement("uses-sdk", line=2),
    ]
    for i, permission in enumerate(permissions):
        nodes += [
            StartElement(
                "uses-permission",
                attributes=[Attribute("name", ANDROID_NS, NAME_ID, ValueType.STRING, permission)],
                line=3 + i,
            ),
            EndElement("uses-permission", line=3 + i),
        ]

    app_attrs = [Attribute("label", ANDROID_NS, LABEL_ID, ValueType.STRING, "Game")]
    if debuggable is not None:
        app_attrs.append(
            Attribute("debuggable", ANDROID_NS, 0x0101000F, ValueType.INT_BOOLEAN,
                      0xFFFFFFFF if debuggable else 0)
        )
    nodes += [
        StartElement("application", attributes=app_attrs, line=10),
        EndElement("application", line=10),
        EndElement("manifest", line=11),
        EndNamespace("android", ANDROID_NS, line=11),
    ]
    return AxmlDocument(nodes=nodes, utf8=True)


def build_manifest_bytes(**kwargs) -> bytes:
    from modpatcher.apk import axml

    return axml.encode(build_manifest_document(**kwargs))


def write_test_apk(path: Path, manifest: bytes = None, extra_entries=None) -> Path:
    """A stock-looking APK with a stale v1 signature."""
    entries = {
        "AndroidManifest.xml": (manifest if manifest is not None else build_manifest_bytes(), zipfile.ZIP_DEFLATED),
        "classes.dex": (b"dex\n035\x00" + bytes(range(256)) * 8, zipfile.ZIP_DEFLATED),
        "resources.arsc": (b"\x02\x00\x0c\x00" + b"\x00" * 61, zipfile.ZIP_STORED),
        "lib/arm64-v8a/libmain.so": (b"\x7fELF-original-libmain" * 16, zipfile.ZIP_DEFLATED),
        "lib/arm64-v8a/libil2cpp.so": (b"\x7fELF-il2cpp" * 64, zipfile.ZIP_STORED),
        "META-INF/MANIFEST.MF": (b"Manifest-Version: 1.0\r\n", zipfile.ZIP_DEFLATED),
        "META-INF/CERT.SF": (b"Signature-Version: 1.0\r\n", zipfile.ZIP_DEFLATED),
        "META-INF/CERT.RSA": (b"\x30\x82\x00\x00", zipfile.ZIP_DEFLATED),
    }
    for name, data in (extra_entries or {}).items():
        entries[name] = (data, zipfile.ZIP_DEFLATED)

    with zipfile.ZipFile(path, "w") as zf:
        for name, (data, method) in entries.items():
            zf.writestr(zipfile.ZipInfo(name, date_time=(2023, 5, 17, 12, 30, 0)), data, compress_type=method)
    return path


@pytest.fixture
def test_apk(tmp_path: Path) -> Path:
    return write_test_apk(tmp_path / "base.apk")


@pytest.fixture
def patcher_config(tmp_path: Path):
    """Config with every device path redirected into ``tmp_path``."""
    from modpatcher.config.models import PatcherConfig

    libs = tmp_path / "bundled"
    libs.mkdir()
    (libs / "libmain.so").write_bytes(b"\x7fELF-modded-libmain" * 32)
    (libs / "libsl2.so").write_bytes(b"\x7fELF-scotland2" * 32)

    return PatcherConfig.model_validate({
        "libmain_path": str(libs / "libmain.so"),
        "modloader_path": str(libs / "libsl2.so"),
        "paths": {
            "app_data_dir": str(tmp_path / "device" / "data" / "files"),
            "obb_dir": str(tmp_path / "device" / "obb"),
            "temp_dir": str(tmp_path / "device" / "tmp"),
            "mod_data_root": str(tmp_path / "device" / "ModData"),
        },
    })
