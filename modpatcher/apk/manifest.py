"""Declarative edits to a binary AndroidManifest.xml."""

from __future__ import annotations

import json
import logging
import struct
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..exceptions import ManifestError, ResourceIdError
from . import axml
from .axml import ANDROID_NS, BOOL_TRUE, Attribute, AxmlDocument, EndElement, StartElement, ValueType

logger = logging.getLogger(__name__)

MANIFEST_ENTRY = "AndroidManifest.xml"
RES_IDS_PATH = Path(__file__).resolve().parent / "resources" / "res_ids.json"


class ResourceIds:
    """Maps symbolic framework attribute names to their numeric resource IDs."""

    def __init__(self, attributes: Dict[str, int]):
        self._attributes = dict(attributes)

    @classmethod
    def load(cls, path: Union[str, Path, None] = None) -> "ResourceIds":
        return _load_resource_ids(str(path or RES_IDS_PATH))

    def resolve(self, name: str) -> int:
        try:
            return self._attributes[name]
        except KeyError:
            raise ResourceIdError(f"No resource ID known for attribute '{name}'", name=name) from None

    def __contains__(self, name: str) -> bool:
        return name in self._attributes


@lru_cache(maxsize=4)
def _load_resource_ids(path: str) -> ResourceIds:
    try:
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
        attributes = {name: int(value, 16) for name, value in payload["attributes"].items()}
    except (OSError, ValueError, KeyError, TypeError) as exc:
        raise ManifestError(f"Could not load resource ID table {path}: {exc}") from exc
    return ResourceIds(attributes)


class ManifestMod:
    """A set of manifest edits, built fluently and applied with ``apply_mod``."""

    def __init__(self):
        self.make_debuggable = False
        self.permissions: List[str] = []

    def debuggable(self, value: bool = True) -> "ManifestMod":
        self.make_debuggable = value
        return self

    def with_permission(self, name: str) -> "ManifestMod":
        if name not in self.permissions:
            self.permissions.append(name)
        return self

    def __repr__(self) -> str:
        return f"ManifestMod(debuggable={self.make_debuggable}, permissions={self.permissions})"


def _android_attr(name: str, res_ids: ResourceIds, value_type: int, data) -> Attribute:
    return Attribute(
        name=name,
        namespace=ANDROID_NS,
        resource_id=res_ids.resolve(name),
        value_type=value_type,
        data=data,
    )


def _insert_attribute(element: StartElement, attr: Attribute) -> None:
    """Insert keeping attributes ordered by resource ID; unresolved names sort last."""
    position = len(element.attributes)
    for i, existing in enumerate(element.attributes):
        if existing.resource_id is None or existing.resource_id > attr.resource_id:
            position = i
            break
    element.attributes.insert(position, attr)

    # id/class/style indices are 1-based, 0 means absent
    inserted = position + 1
    if element.id_index >= inserted:
        element.id_index += 1
    if element.class_index >= inserted:
        element.class_index += 1
    if element.style_index >= inserted:
        element.style_index += 1


def _find_element(document: AxmlDocument, name: str) -> Optional[StartElement]:
    found = document.elements(name)
    return found[0] if found else None


def _set_debuggable(document: AxmlDocument, res_ids: ResourceIds) -> None:
    application = _find_element(document, "application")
    if application is None:
        raise ManifestError("Manifest has no <application> element")

    resource_id = res_ids.resolve("debuggable")
    existing = application.find_attribute("debuggable", resource_id=resource_id)
    if existing is not None:
        if existing.value_type == ValueType.INT_BOOLEAN and existing.data == BOOL_TRUE:
            logger.debug("Application is already debuggable")
            return
        existing.value_type = ValueType.INT_BOOLEAN
        existing.data = BOOL_TRUE
        existing.raw_value = None
        return

    _insert_attribute(application, _android_attr("debuggable", res_ids, ValueType.INT_BOOLEAN, BOOL_TRUE))


def _declared_permissions(document: AxmlDocument, name_id: int) -> List[str]:
    declared = []
    for element in document.elements("uses-permission"):
        attr = element.find_attribute("name", resource_id=name_id)
        if attr is not None and isinstance(attr.data, str):
            declared.append(attr.data)
    return declared


def _add_permission(document: AxmlDocument, permission: str, res_ids: ResourceIds) -> None:
    name_id = res_ids.resolve("name")
    if permission in _declared_permissions(document, name_id):
        logger.debug("Permission %s already declared", permission)
        return

    manifest = _find_element(document, "manifest")
    if manifest is None:
        raise ManifestError("Manifest has no <manifest> root element")

    # Declarations go ahead of <application>, or last in <manifest> if it has none
    nodes = document.nodes
    index = next(
        (i for i, node in enumerate(nodes) if isinstance(node, StartElement) and node.name == "application"),
        None,
    )
    if index is None:
        index = max(
            i for i, node in enumerate(nodes) if isinstance(node, EndElement) and node.name == "manifest"
        )
    line = getattr(nodes[index], "line", 0)

    start = StartElement(
        name="uses-permission",
        attributes=[_android_attr("name", res_ids, ValueType.STRING, permission)],
        line=line,
    )
    nodes[index:index] = [start, EndElement(name="uses-permission", line=line)]
    logger.debug("Added uses-permission %s", permission)


def apply_mod(document: AxmlDocument, mod: ManifestMod, res_ids: ResourceIds) -> AxmlDocument:
    """Apply ``mod`` to ``document`` in place. Applying the same mod twice is a no-op."""
    if mod.make_debuggable:
        _set_debuggable(document, res_ids)
    for permission in mod.permissions:
        _add_permission(document, permission, res_ids)
    return document


def patch_manifest_bytes(data: bytes, mod: ManifestMod, res_ids: ResourceIds) -> bytes:
    try:
        document = axml.decode(data)
        apply_mod(document, mod, res_ids)
        return axml.encode(document)
    except ManifestError:
        raise
    except (struct.error, ValueError, TypeError, IndexError) as exc:
        raise ManifestError(f"Failed to patch manifest: {exc}") from exc
