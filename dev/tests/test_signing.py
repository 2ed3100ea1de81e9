import datetime
import io
import sys
import zipfile
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402
from cryptography import x509  # noqa: E402
from cryptography.hazmat.primitives import hashes, serialization  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import ec  # noqa: E402
from cryptography.x509.oid import NameOID  # noqa: E402


def _unsigned_zip() -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr(zipfile.ZipInfo("a.txt", date_time=(2020, 1, 1, 0, 0, 0)), b"alpha" * 100)
        zf.writestr(zipfile.ZipInfo("b.bin", date_time=(2020, 1, 1, 0, 0, 0)), bytes(range(256)) * 10,
                    compress_type=zipfile.ZIP_DEFLATED)
    return buf.getvalue()


def _ec_pem() -> bytes:
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Test EC")])
    now = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(1)
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=365))
        .sign(key, hashes.SHA256())
    )
    key_pem = key.private_bytes(
        serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8, serialization.NoEncryption()
    )
    return cert.public_bytes(serialization.Encoding.PEM) + key_pem


def _bundled_pem() -> bytes:
    from modpatcher.config.models import PatcherConfig

    return PatcherConfig().read_bundled("debug_cert_path")


class TestLoadCertAndKey:
    def test_bundled_debug_certificate(self):
        from cryptography.hazmat.primitives.asymmetric import rsa
        from modpatcher.apk.signing import load_cert_and_priv_key

        cert, key = load_cert_and_priv_key(_bundled_pem())
        assert isinstance(key, rsa.RSAPrivateKey)
        assert cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value == "Android Debug"

    def test_missing_key(self):
        from modpatcher.apk.signing import load_cert_and_priv_key
        from modpatcher.exceptions import SigningError

        cert_only = _bundled_pem().split(b"-----END CERTIFICATE-----")[0] + b"-----END CERTIFICATE-----\n"
        with pytest.raises(SigningError):
            load_cert_and_priv_key(cert_only)

    def test_mismatched_pair(self):
        from modpatcher.apk.signing import load_cert_and_priv_key
        from modpatcher.exceptions import SigningError

        bundled_cert = _bundled_pem().split(b"-----END CERTIFICATE-----")[0] + b"-----END CERTIFICATE-----\n"
        ec_key = _ec_pem().split(b"-----END CERTIFICATE-----")[1]
        with pytest.raises(SigningError):
            load_cert_and_priv_key(bundled_cert + ec_key)


@pytest.mark.integration
class TestSignAndReadSigners:
    def test_signed_zip_records_signer_and_still_opens(self, tmp_path):
        from modpatcher.apk.signing import load_cert_and_priv_key, sign_v2_file, v2_signer_certificates

        cert, key = load_cert_and_priv_key(_bundled_pem())
        unsigned = tmp_path / "unsigned.apk"
        signed = tmp_path / "signed.apk"
        unsigned.write_bytes(_unsigned_zip())

        sign_v2_file(unsigned, signed, cert, key)

        assert v2_signer_certificates(signed) == [cert]
        with zipfile.ZipFile(signed) as zf:
            assert zf.read("a.txt") == b"alpha" * 100
            assert not [n for n in zf.namelist() if n.startswith("META-INF/")]

    def test_entry_data_is_not_moved(self, tmp_path):
        from modpatcher.apk.signing import load_cert_and_priv_key, sign_v2_file

        cert, key = load_cert_and_priv_key(_bundled_pem())
        unsigned = tmp_path / "unsigned.apk"
        signed = tmp_path / "signed.apk"
        unsigned.write_bytes(_unsigned_zip())
        sign_v2_file(unsigned, signed, cert, key)

        with zipfile.ZipFile(unsigned) as before, zipfile.ZipFile(signed) as after:
            assert [(i.filename, i.header_offset, i.CRC) for i in before.infolist()] == [
                (i.filename, i.header_offset, i.CRC) for i in after.infolist()
            ]

    def test_unsigned_zip_has_no_signers(self, tmp_path):
        from modpatcher.apk.signing import v2_signer_certificates
        from modpatcher.exceptions import SigningError

        path = tmp_path / "unsigned.apk"
        path.write_bytes(_unsigned_zip())
        with pytest.raises(SigningError):
            v2_signer_certificates(path)

    def test_unreadable_input_raises_signing_error(self, tmp_path):
        from modpatcher.apk.signing import load_cert_and_priv_key, sign_v2_file
        from modpatcher.exceptions import SigningError

        cert, key = load_cert_and_priv_key(_bundled_pem())
        with pytest.raises(SigningError):
            sign_v2_file(tmp_path / "missing.apk", tmp_path / "out.apk", cert, key)
