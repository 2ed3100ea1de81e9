"""
APK Signature Scheme v2 signing through ``apksigtool``.

``apksigtool`` reads the certificate and key from DER files, so both are
written to a private temporary directory for the duration of the call.
"""

from __future__ import annotations

import logging
import re
import tempfile
from pathlib import Path
from typing import List, Tuple, Union

import apksigtool
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from ..exceptions import SigningError

logger = logging.getLogger(__name__)

_PEM_BLOCK = re.compile(rb"-----BEGIN ([A-Z0-9 ]+)-----\s.*?-----END \1-----", re.DOTALL)

PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]
PathLike = Union[str, Path]


def load_cert_and_priv_key(pem: Union[bytes, str]) -> Tuple[x509.Certificate, PrivateKey]:
    """Read a certificate and its private key from one PEM bundle."""
    if isinstance(pem, str):
        pem = pem.encode("ascii")

    cert = None
    key = None
    for match in _PEM_BLOCK.finditer(pem):
        label = match.group(1)
        try:
            if label == b"CERTIFICATE" and cert is None:
                cert = x509.load_pem_x509_certificate(match.group(0))
            elif label.endswith(b"PRIVATE KEY") and key is None:
                key = serialization.load_pem_private_key(match.group(0), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise SigningError(f"Invalid PEM block {label.decode()}: {exc}") from exc

    if cert is None:
        raise SigningError("No certificate found in PEM data")
    if key is None:
        raise SigningError("No private key found in PEM data")
    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise SigningError(f"Unsupported key type {type(key).__name__}")
    if cert.public_key().public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    ) != key.public_key().public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    ):
        raise SigningError("Certificate does not match private key")
    return cert, key


def sign_v2_file(unsigned_apk: PathLike, output_apk: PathLike, cert: x509.Certificate, key: PrivateKey) -> None:
    """Write a v2-signed copy of ``unsigned_apk`` to ``output_apk``. No v1 signature is added."""
    with tempfile.TemporaryDirectory(prefix="apk-signer-") as key_dir:
        cert_path = Path(key_dir) / "cert.der"
        key_path = Path(key_dir) / "privkey.der"
        cert_path.write_bytes(cert.public_bytes(serialization.Encoding.DER))
        key_path.write_bytes(key.private_bytes(
            serialization.Encoding.DER,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ))
        try:
            apksigtool.do_sign(str(unsigned_apk), str(output_apk), cert=str(cert_path), key=str(key_path), no_v1=True)
        except Exception as exc:
            raise SigningError(f"Failed to sign {unsigned_apk}: {exc}") from exc
    logger.debug("Signed %s -> %s", unsigned_apk, output_apk)


def v2_signer_certificates(path: PathLike) -> List[x509.Certificate]:
    """Certificates of every v2 signer recorded in the APK's signing block."""
    try:
        _, sig_block = apksigtool.extract_v2_sig(str(path))
        block = apksigtool.parse_apk_signing_block(sig_block, allow_nonzero_verity=True)
    except Exception as exc:
        raise SigningError(f"No readable APK signing block in {path}: {exc}") from exc

    certs = []
    for pair in block.pairs:
        if pair.id != apksigtool.APK_SIGNATURE_SCHEME_V2_BLOCK_ID:
            continue
        for signer in pair.value.signers:
            for cert in signer.signed_data.certificates:
                certs.append(x509.load_der_x509_certificate(cert.raw_data))
    if not certs:
        raise SigningError(f"{path} has no v2 signer")
    return certs
