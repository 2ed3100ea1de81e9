"""Turns a stock APK into a modded one, in place."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from ..config.models import PatcherConfig
from ..exceptions import ContainerError, ManifestError
from ..models import ModLoader, ModTag
from .container import ApkContainer, FileCompression
from .manifest import MANIFEST_ENTRY, ManifestMod, ResourceIds, patch_manifest_bytes
from .signing import load_cert_and_priv_key

logger = logging.getLogger(__name__)

MOD_TAG_PATH = "modded.json"

PathLike = Union[str, Path]


def build_manifest_mod(config: PatcherConfig) -> ManifestMod:
    return ManifestMod().debuggable(True).with_permission(config.storage_permission)


def patch_manifest(container: ApkContainer, mod: ManifestMod, res_ids: Optional[ResourceIds] = None) -> None:
    """Rewrite the manifest entry. Every failure surfaces as ``ManifestError``."""
    res_ids = res_ids or ResourceIds.load()
    try:
        original = container.read_entry(MANIFEST_ENTRY)
    except ContainerError as exc:
        raise ManifestError(f"Could not read {MANIFEST_ENTRY}: {exc}") from exc

    patched = patch_manifest_bytes(original, mod, res_ids)
    container.delete_entry(MANIFEST_ENTRY)
    container.write_entry(MANIFEST_ENTRY, patched, FileCompression.DEFLATE)
    logger.debug("Manifest patched (%d -> %d bytes)", len(original), len(patched))


def add_modded_tag(container: ApkContainer, tag: ModTag) -> None:
    container.write_entry(MOD_TAG_PATH, tag.to_bytes(), FileCompression.DEFLATE)


def get_modloader_installed(container: ApkContainer) -> Optional[ModLoader]:
    """Identify the modloader recorded in an APK, or None for an unmodded one."""
    if container.contains_entry(MOD_TAG_PATH):
        tag_data = container.read_entry(MOD_TAG_PATH)
        try:
            mod_tag = ModTag.from_bytes(tag_data)
        except ValidationError as err:
            logger.warning("Mod tag was invalid JSON: %s... Assuming unknown modloader", err)
            return ModLoader.UNKNOWN

        name = mod_tag.modloader_name.lower()
        if name == ModLoader.QUEST_LOADER.value.lower():
            return ModLoader.QUEST_LOADER
        if name == ModLoader.SCOTLAND2.value.lower():
            return ModLoader.SCOTLAND2
        return ModLoader.UNKNOWN

    if any("modded" in entry for entry in container.iter_entry_names()):
        return ModLoader.UNKNOWN
    return None


def patch_apk_in_place(path: PathLike, config: PatcherConfig, libunity_path: Optional[PathLike] = None) -> None:
    """Patch the manifest, inject libmain (and libunity), tag and re-sign the APK at ``path``."""
    cert, key = load_cert_and_priv_key(config.read_bundled("debug_cert_path"))
    libmain = config.read_bundled("libmain_path")

    with ApkContainer.open(path) as container:
        patch_manifest(container, build_manifest_mod(config))

        container.delete_entry(config.libmain_entry)
        container.write_entry(config.libmain_entry, libmain, FileCompression.DEFLATE)

        add_modded_tag(container, ModTag(
            patcher_name=config.patcher_name,
            patcher_version=config.patcher_version,
            modloader_name=config.modloader_name,
            modloader_version=None,
        ))

        if libunity_path is not None:
            container.write_entry(config.libunity_entry, Path(libunity_path).read_bytes(), FileCompression.DEFLATE)
        else:
            logger.warning("No unstripped unity added to the APK! This might cause issues later")

        container.finalize_and_sign_v2(cert, key)
