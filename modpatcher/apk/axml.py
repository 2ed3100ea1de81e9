# -*- coding: utf-8 -*-
"""
Android binary XML (AXML) codec.

An AXML file is a sequence of chunks, each starting with a ``<HHI`` header
(type, header size, total size):

    XML (0x0003)
      STRING_POOL (0x0001)      all strings, UTF-8 or UTF-16
      RESOURCE_MAP (0x0180)     resource ID for the first N strings
      START_NAMESPACE (0x0100)
      START_ELEMENT (0x0102)    attributes are 20-byte records
      END_ELEMENT (0x0103)
      CDATA (0x0104)
      END_NAMESPACE (0x0101)

``decode`` resolves every string index so the document can be edited
freely; ``encode`` rebuilds the string pool and resource map from scratch.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional, Tuple, Union

from ..exceptions import AxmlError

logger = logging.getLogger(__name__)

NO_INDEX = 0xFFFFFFFF
ANDROID_NS = "http://schemas.android.com/apk/res/android"


class ChunkType(IntEnum):
    STRING_POOL = 0x0001
    XML = 0x0003
    START_NAMESPACE = 0x0100
    END_NAMESPACE = 0x0101
    START_ELEMENT = 0x0102
    END_ELEMENT = 0x0103
    CDATA = 0x0104
    RESOURCE_MAP = 0x0180


class ValueType(IntEnum):
    NULL = 0x00
    REFERENCE = 0x01
    ATTRIBUTE = 0x02
    STRING = 0x03
    FLOAT = 0x04
    INT_DEC = 0x10
    INT_HEX = 0x11
    INT_BOOLEAN = 0x12


BOOL_TRUE = 0xFFFFFFFF
UTF8_FLAG = 1 << 8

_CHUNK_HEADER = struct.Struct("<HHI")
_NODE_HEADER = struct.Struct("<HHIII")            # chunk header + line number + comment
_STRING_POOL_HEADER = struct.Struct("<HHIIIIII")
_START_ELEMENT_BODY = struct.Struct("<IIHHHHHH")
_ATTRIBUTE = struct.Struct("<IIIHBBI")
_NS_BODY = struct.Struct("<II")
_CDATA_BODY = struct.Struct("<IHBBI")


# =====================================================================================================
# Document model
# =====================================================================================================

@dataclass
class Attribute:
    name: str
    namespace: Optional[str] = None
    resource_id: Optional[int] = None
    value_type: int = ValueType.STRING
    data: Union[int, str] = 0
    raw_value: Optional[str] = None


@dataclass
class StartNamespace:
    prefix: Optional[str]
    uri: str
    line: int = 0


@dataclass
class EndNamespace:
    prefix: Optional[str]
    uri: str
    line: int = 0


@dataclass
class StartElement:
    name: str
    namespace: Optional[str] = None
    attributes: List[Attribute] = field(default_factory=list)
    line: int = 0
    id_index: int = 0
    class_index: int = 0
    style_index: int = 0

    def find_attribute(self, name: str, resource_id: Optional[int] = None) -> Optional[Attribute]:
        for attr in self.attributes:
            if resource_id is not None and attr.resource_id == resource_id:
                return attr
            if resource_id is None and attr.name == name:
                return attr
        return None


@dataclass
class EndElement:
    name: str
    namespace: Optional[str] = None
    line: int = 0


@dataclass
class CData:
    text: str
    line: int = 0
    value_type: int = ValueType.NULL
    value_data: int = 0


Node = Union[StartNamespace, EndNamespace, StartElement, EndElement, CData]


@dataclass
class AxmlDocument:
    nodes: List[Node] = field(default_factory=list)
    utf8: bool = True

    def elements(self, name: str) -> List[StartElement]:
        return [n for n in self.nodes if isinstance(n, StartElement) and n.name == name]


# =====================================================================================================
# Decoding
# =====================================================================================================

def _decode_string_pool(chunk: bytes, base: int) -> Tuple[List[str], bool]:
    if len(chunk) < _STRING_POOL_HEADER.size:
        raise AxmlError("String pool header truncated", offset=base)
    (_, header_size, _, string_count, _, flags,
     strings_start, _) = _STRING_POOL_HEADER.unpack_from(chunk, 0)
    utf8 = bool(flags & UTF8_FLAG)

    offsets_end = header_size + string_count * 4
    if offsets_end > len(chunk):
        raise AxmlError("String pool offsets truncated", offset=base)

    strings: List[str] = []
    for (offset,) in struct.iter_unpack("<I", chunk[header_size:offsets_end]):
        pos = strings_start + offset
        try:
            if utf8:
                _, pos = _read_utf8_length(chunk, pos)
                length, pos = _read_utf8_length(chunk, pos)
                raw = chunk[pos:pos + length]
                if len(raw) != length:
                    raise AxmlError("UTF-8 string truncated", offset=base + pos)
                strings.append(raw.decode("utf-8"))
            else:
                (length,) = struct.unpack_from("<H", chunk, pos)
                pos += 2
                if length & 0x8000:
                    (low,) = struct.unpack_from("<H", chunk, pos)
                    length = ((length & 0x7FFF) << 16) | low
                    pos += 2
                raw = chunk[pos:pos + length * 2]
                if len(raw) != length * 2:
                    raise AxmlError("UTF-16 string truncated", offset=base + pos)
                strings.append(raw.decode("utf-16le"))
        except (struct.error, IndexError, UnicodeDecodeError) as exc:
            raise AxmlError(f"Invalid string at pool offset {offset}: {exc}", offset=base + pos) from exc

    return strings, utf8


def _read_utf8_length(chunk: bytes, pos: int) -> Tuple[int, int]:
    length = chunk[pos]
    pos += 1
    if length & 0x80:
        length = ((length & 0x7F) << 8) | chunk[pos]
        pos += 1
    return length, pos


class _Decoder:
    def __init__(self, data: bytes):
        self.data = data
        self.strings: List[str] = []
        self.resource_map: List[int] = []
        self.utf8 = True

    def string(self, index: int, offset: int) -> Optional[str]:
        if index == NO_INDEX:
            return None
        if index >= len(self.strings):
            raise AxmlError(f"String index {index} out of range", offset=offset)
        return self.strings[index]

    def required_string(self, index: int, offset: int) -> str:
        value = self.string(index, offset)
        if value is None:
            raise AxmlError("Missing required string", offset=offset)
        return value

    def decode(self) -> AxmlDocument:
        data = self.data
        if len(data) < _CHUNK_HEADER.size:
            raise AxmlError("File too short for an AXML header", offset=0)
        chunk_type, header_size, total_size = _CHUNK_HEADER.unpack_from(data, 0)
        if chunk_type != ChunkType.XML:
            raise AxmlError(f"Not a binary XML file (chunk type 0x{chunk_type:04x})", offset=0)
        if total_size > len(data):
            raise AxmlError("AXML declared size exceeds data", offset=0)

        nodes: List[Node] = []
        pos = header_size
        while pos < total_size:
            if pos + _CHUNK_HEADER.size > total_size:
                raise AxmlError("Trailing bytes after last chunk", offset=pos)
            chunk_type, chunk_header_size, chunk_size = _CHUNK_HEADER.unpack_from(data, pos)
            if chunk_size < _CHUNK_HEADER.size or pos + chunk_size > total_size:
                raise AxmlError(f"Invalid chunk size {chunk_size}", offset=pos)
            chunk = data[pos:pos + chunk_size]

            if chunk_type == ChunkType.STRING_POOL:
                self.strings, self.utf8 = _decode_string_pool(chunk, pos)
            elif chunk_type == ChunkType.RESOURCE_MAP:
                count = (chunk_size - chunk_header_size) // 4
                self.resource_map = list(struct.unpack_from(f"<{count}I", chunk, chunk_header_size))
            elif chunk_type in (ChunkType.START_NAMESPACE, ChunkType.END_NAMESPACE,
                                ChunkType.START_ELEMENT, ChunkType.END_ELEMENT, ChunkType.CDATA):
                nodes.append(self._decode_node(chunk_type, chunk_header_size, chunk, pos))
            else:
                logger.debug("Skipping unknown AXML chunk 0x%04x at %d", chunk_type, pos)
            pos += chunk_size

        return AxmlDocument(nodes=nodes, utf8=self.utf8)

    def _decode_node(self, chunk_type: int, header_size: int, chunk: bytes, offset: int) -> Node:
        try:
            _, _, _, line, _ = _NODE_HEADER.unpack_from(chunk, 0)
            body = header_size

            if chunk_type in (ChunkType.START_NAMESPACE, ChunkType.END_NAMESPACE):
                prefix_idx, uri_idx = _NS_BODY.unpack_from(chunk, body)
                cls = StartNamespace if chunk_type == ChunkType.START_NAMESPACE else EndNamespace
                return cls(self.string(prefix_idx, offset), self.required_string(uri_idx, offset), line)

            if chunk_type == ChunkType.END_ELEMENT:
                ns_idx, name_idx = _NS_BODY.unpack_from(chunk, body)
                return EndElement(self.required_string(name_idx, offset), self.string(ns_idx, offset), line)

            if chunk_type == ChunkType.CDATA:
                text_idx, _, _, value_type, value_data = _CDATA_BODY.unpack_from(chunk, body)
                return CData(self.required_string(text_idx, offset), line, value_type, value_data)

            (ns_idx, name_idx, attr_start, attr_size, attr_count,
             id_index, class_index, style_index) = _START_ELEMENT_BODY.unpack_from(chunk, body)
            attributes = []
            for i in range(attr_count):
                attr_pos = body + attr_start + i * attr_size
                (a_ns, a_name, a_raw, _, _, value_type, value) = _ATTRIBUTE.unpack_from(chunk, attr_pos)
                resource_id = None
                if a_name < len(self.resource_map) and self.resource_map[a_name] != 0:
                    resource_id = self.resource_map[a_name]
                data: Union[int, str] = value
                if value_type == ValueType.STRING:
                    data = self.required_string(value, offset + attr_pos)
                attributes.append(Attribute(
                    name=self.required_string(a_name, offset + attr_pos),
                    namespace=self.string(a_ns, offset + attr_pos),
                    resource_id=resource_id,
                    value_type=value_type,
                    data=data,
                    raw_value=self.string(a_raw, offset + attr_pos),
                ))
            return StartElement(
                name=self.required_string(name_idx, offset),
                namespace=self.string(ns_idx, offset),
                attributes=attributes,
                line=line,
                id_index=id_index,
                class_index=class_index,
                style_index=style_index,
            )
        except struct.error as exc:
            raise AxmlError(f"Truncated node chunk: {exc}", offset=offset) from exc


def decode(data: bytes) -> AxmlDocument:
    """Decode binary XML into an editable document. Raises AxmlError on malformed input."""
    return _Decoder(bytes(data)).decode()


# =====================================================================================================
# Encoding
# =====================================================================================================

class _StringPoolBuilder:
    """Resource-ID-bearing attribute names occupy the first slots, in resource map order."""

    def __init__(self):
        self.res_slots: Dict[Tuple[str, int], int] = {}
        self.res_ids: List[int] = []
        self.plain: Dict[str, int] = {}
        self.strings: List[str] = []

    def add_resource_name(self, name: str, resource_id: int) -> None:
        key = (name, resource_id)
        if key not in self.res_slots:
            self.res_slots[key] = len(self.res_ids)
            self.res_ids.append(resource_id)

    def finish_resource_names(self) -> None:
        self.strings = [""] * len(self.res_ids)
        for (name, _), index in self.res_slots.items():
            self.strings[index] = name

    def ref(self, value: Optional[str]) -> int:
        if value is None:
            return NO_INDEX
        index = self.plain.get(value)
        if index is None:
            index = len(self.strings)
            self.strings.append(value)
            self.plain[value] = index
        return index

    def attr_name_ref(self, attr: Attribute) -> int:
        if attr.resource_id is not None:
            return self.res_slots[(attr.name, attr.resource_id)]
        return self.ref(attr.name)


def _encode_utf8_length(length: int) -> bytes:
    if length > 0x7FFF:
        raise AxmlError(f"String too long for UTF-8 pool ({length})")
    if length > 0x7F:
        return bytes([0x80 | (length >> 8), length & 0xFF])
    return bytes([length])


def _encode_string_pool(strings: List[str], utf8: bool) -> bytes:
    offsets = []
    blob = bytearray()
    for value in strings:
        offsets.append(len(blob))
        if utf8:
            encoded = value.encode("utf-8")
            blob += _encode_utf8_length(len(value.encode("utf-16le")) // 2)
            blob += _encode_utf8_length(len(encoded))
            blob += encoded + b"\x00"
        else:
            encoded = value.encode("utf-16le")
            length = len(encoded) // 2
            if length > 0x7FFF:
                blob += struct.pack("<HH", 0x8000 | (length >> 16), length & 0xFFFF)
            else:
                blob += struct.pack("<H", length)
            blob += encoded + b"\x00\x00"
    if len(blob) % 4:
        blob += b"\x00" * (4 - len(blob) % 4)

    header_size = _STRING_POOL_HEADER.size
    strings_start = header_size + 4 * len(strings)
    total = strings_start + len(blob)
    header = _STRING_POOL_HEADER.pack(
        ChunkType.STRING_POOL, header_size, total,
        len(strings), 0, UTF8_FLAG if utf8 else 0, strings_start, 0,
    )
    return header + b"".join(struct.pack("<I", o) for o in offsets) + bytes(blob)


def _node_header(chunk_type: int, size: int, line: int) -> bytes:
    return _NODE_HEADER.pack(chunk_type, _NODE_HEADER.size, size, line, NO_INDEX)


def encode(document: AxmlDocument) -> bytes:
    """Encode a document back to binary XML."""
    pool = _StringPoolBuilder()
    for node in document.nodes:
        if isinstance(node, StartElement):
            for attr in node.attributes:
                if attr.resource_id is not None:
                    pool.add_resource_name(attr.name, attr.resource_id)
    pool.finish_resource_names()

    body = bytearray()
    for node in document.nodes:
        if isinstance(node, (StartNamespace, EndNamespace)):
            chunk_type = ChunkType.START_NAMESPACE if isinstance(node, StartNamespace) else ChunkType.END_NAMESPACE
            body += _node_header(chunk_type, _NODE_HEADER.size + _NS_BODY.size, node.line)
            body += _NS_BODY.pack(pool.ref(node.prefix), pool.ref(node.uri))

        elif isinstance(node, StartElement):
            size = _NODE_HEADER.size + _START_ELEMENT_BODY.size + _ATTRIBUTE.size * len(node.attributes)
            body += _node_header(ChunkType.START_ELEMENT, size, node.line)
            body += _START_ELEMENT_BODY.pack(
                pool.ref(node.namespace), pool.ref(node.name),
                _START_ELEMENT_BODY.size, _ATTRIBUTE.size, len(node.attributes),
                node.id_index, node.class_index, node.style_index,
            )
            for attr in node.attributes:
                if attr.value_type == ValueType.STRING:
                    if not isinstance(attr.data, str):
                        raise AxmlError(f"String attribute {attr.name} has non-string data")
                    value = pool.ref(attr.data)
                    raw = pool.ref(attr.raw_value if attr.raw_value is not None else attr.data)
                else:
                    if not isinstance(attr.data, int):
                        raise AxmlError(f"Attribute {attr.name} of type 0x{attr.value_type:02x} has non-integer data")
                    value = attr.data & 0xFFFFFFFF
                    raw = pool.ref(attr.raw_value)
                body += _ATTRIBUTE.pack(
                    pool.ref(attr.namespace), pool.attr_name_ref(attr), raw,
                    8, 0, attr.value_type, value,
                )

        elif isinstance(node, EndElement):
            body += _node_header(ChunkType.END_ELEMENT, _NODE_HEADER.size + _NS_BODY.size, node.line)
            body += _NS_BODY.pack(pool.ref(node.namespace), pool.ref(node.name))

        elif isinstance(node, CData):
            body += _node_header(ChunkType.CDATA, _NODE_HEADER.size + _CDATA_BODY.size, node.line)
            body += _CDATA_BODY.pack(pool.ref(node.text), 8, 0, node.value_type, node.value_data)

        else:
            raise AxmlError(f"Unsupported node {type(node).__name__}")

    string_pool = _encode_string_pool(pool.strings, document.utf8)
    resource_map = _CHUNK_HEADER.pack(ChunkType.RESOURCE_MAP, 8, 8 + 4 * len(pool.res_ids))
    resource_map += b"".join(struct.pack("<I", rid) for rid in pool.res_ids)

    total = _CHUNK_HEADER.size + len(string_pool) + len(resource_map) + len(body)
    return _CHUNK_HEADER.pack(ChunkType.XML, _CHUNK_HEADER.size, total) + string_pool + resource_map + bytes(body)
