import struct
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402

NO_INDEX = 0xFFFFFFFF
ANDROID_NS = "http://schemas.android.com/apk/res/android"


def _utf16_pool(strings):
    offsets = []
    blob = b""
    for s in strings:
        offsets.append(len(blob))
        encoded = s.encode("utf-16le")
        blob += struct.pack("<H", len(encoded) // 2) + encoded + b"\x00\x00"
    while len(blob) % 4:
        blob += b"\x00"
    strings_start = 28 + 4 * len(strings)
    header = struct.pack("<HHIIIIII", 0x0001, 28, strings_start + len(blob), len(strings), 0, 0, strings_start, 0)
    return header + b"".join(struct.pack("<I", o) for o in offsets) + blob


def _node(chunk_type, body, line=1):
    return struct.pack("<HHIII", chunk_type, 16, 16 + len(body), line, NO_INDEX) + body


def _hand_built_manifest() -> bytes:
    strings = ["versionCode", "android", ANDROID_NS, "manifest", "package", "com.example.app"]
    pool = _utf16_pool(strings)
    res_map = struct.pack("<HHI", 0x0180, 8, 12) + struct.pack("<I", 0x0101021B)
    attrs = (
        struct.pack("<IIIHBBI", 2, 0, NO_INDEX, 8, 0, 0x10, 42)
        + struct.pack("<IIIHBBI", NO_INDEX, 4, 5, 8, 0, 0x03, 5)
    )
    body = (
        _node(0x0100, struct.pack("<II", 1, 2))
        + _node(0x0102, struct.pack("<IIHHHHHH", NO_INDEX, 3, 20, 20, 2, 0, 0, 0) + attrs, line=2)
        + _node(0x0103, struct.pack("<II", NO_INDEX, 3), line=3)
        + _node(0x0101, struct.pack("<II", 1, 2), line=3)
    )
    total = 8 + len(pool) + len(res_map) + len(body)
    return struct.pack("<HHI", 0x0003, 8, total) + pool + res_map + body


class TestDecode:
    def test_hand_built_utf16_document(self):
        from modpatcher.apk import axml

        doc = axml.decode(_hand_built_manifest())

        assert doc.utf8 is False
        kinds = [type(n).__name__ for n in doc.nodes]
        assert kinds == ["StartNamespace", "StartElement", "EndElement", "EndNamespace"]
        assert doc.nodes[0].prefix == "android"
        assert doc.nodes[0].uri == ANDROID_NS

        manifest = doc.nodes[1]
        assert manifest.name == "manifest"
        assert manifest.namespace is None
        assert manifest.line == 2
        version_code, package = manifest.attributes
        assert version_code.name == "versionCode"
        assert version_code.namespace == ANDROID_NS
        assert version_code.resource_id == 0x0101021B
        assert version_code.value_type == axml.ValueType.INT_DEC
        assert version_code.data == 42
        assert package.resource_id is None
        assert package.data == "com.example.app"
        assert package.raw_value == "com.example.app"

    def test_reencoded_document_decodes_identically(self):
        from modpatcher.apk import axml

        doc = axml.decode(_hand_built_manifest())
        again = axml.decode(axml.encode(doc))
        assert again.nodes == doc.nodes
        assert again.utf8 is False

    def test_not_binary_xml(self):
        from modpatcher.apk import axml
        from modpatcher.exceptions import AxmlError

        with pytest.raises(AxmlError):
            axml.decode(b"<?xml version='1.0'?><manifest/>")

    def test_truncated(self):
        from modpatcher.apk import axml
        from modpatcher.exceptions import AxmlError, ManifestError

        data = _hand_built_manifest()
        with pytest.raises(AxmlError) as excinfo:
            axml.decode(data[:-10])
        assert isinstance(excinfo.value, ManifestError)

    def test_string_index_out_of_range(self):
        from modpatcher.apk import axml
        from modpatcher.exceptions import AxmlError

        data = bytearray(_hand_built_manifest())
        # point the END_ELEMENT name at string 99
        end_element = data.rfind(struct.pack("<HHI", 0x0103, 16, 24))
        struct.pack_into("<I", data, end_element + 20, 99)
        with pytest.raises(AxmlError) as excinfo:
            axml.decode(bytes(data))
        assert "offset" in excinfo.value.details

    def test_empty(self):
        from modpatcher.apk import axml
        from modpatcher.exceptions import AxmlError

        with pytest.raises(AxmlError):
            axml.decode(b"")


class TestEncode:
    def test_resource_names_lead_the_string_pool(self):
        from conftest import build_manifest_document
        from modpatcher.apk import axml

        data = axml.encode(build_manifest_document())

        pool_size = struct.unpack_from("<I", data, 12)[0]
        res_map_type, _, res_map_size = struct.unpack_from("<HHI", data, 8 + pool_size)
        assert res_map_type == 0x0180
        ids = struct.unpack_from(f"<{(res_map_size - 8) // 4}I", data, 8 + pool_size + 8)
        assert ids == (0x0101021B, 0x0101020C, 0x01010001)

    def test_long_and_non_ascii_utf8_strings(self):
        from modpatcher.apk import axml
        from modpatcher.apk.axml import Attribute, AxmlDocument, EndElement, StartElement, ValueType

        label = "Spiel über alles " * 12
        doc = AxmlDocument(nodes=[
            StartElement("application", attributes=[Attribute("label", None, None, ValueType.STRING, label)]),
            EndElement("application"),
        ])
        decoded = axml.decode(axml.encode(doc))
        assert len(label) > 127
        assert decoded.nodes[0].attributes[0].data == label

    def test_cdata_and_boolean(self):
        from modpatcher.apk import axml
        from modpatcher.apk.axml import BOOL_TRUE, Attribute, AxmlDocument, CData, EndElement, StartElement, ValueType

        doc = AxmlDocument(nodes=[
            StartElement("meta", attributes=[Attribute("enabled", ANDROID_NS, 0x0101000E, ValueType.INT_BOOLEAN, BOOL_TRUE)]),
            CData("some text", line=4),
            EndElement("meta"),
        ])
        decoded = axml.decode(axml.encode(doc))
        assert decoded.nodes[1] == CData("some text", line=4)
        assert decoded.nodes[0].attributes[0].data == BOOL_TRUE

    def test_string_attribute_with_int_data_is_rejected(self):
        from modpatcher.apk import axml
        from modpatcher.apk.axml import Attribute, AxmlDocument, StartElement, ValueType
        from modpatcher.exceptions import AxmlError

        doc = AxmlDocument(nodes=[StartElement("x", attributes=[Attribute("a", data=5, value_type=ValueType.STRING)])])
        with pytest.raises(AxmlError):
            axml.encode(doc)
