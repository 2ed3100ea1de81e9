"""APK container, manifest and signing support."""

from .container import ApkContainer, FileCompression
from .manifest import ManifestMod, ResourceIds, apply_mod, patch_manifest_bytes
from .mutation import MOD_TAG_PATH, add_modded_tag, get_modloader_installed, patch_apk_in_place
from .signing import load_cert_and_priv_key, v2_signer_certificates

__all__ = [
    "ApkContainer",
    "FileCompression",
    "ManifestMod",
    "ResourceIds",
    "apply_mod",
    "patch_manifest_bytes",
    "MOD_TAG_PATH",
    "add_modded_tag",
    "get_modloader_installed",
    "patch_apk_in_place",
    "load_cert_and_priv_key",
    "v2_signer_certificates",
]
