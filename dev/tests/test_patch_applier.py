import sys
import zlib
from pathlib import Path

# Ensure repo root on path
ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import bsdiff4  # noqa: E402
import pytest  # noqa: E402

OLD = b"The quick brown fox jumps over the lazy dog. " * 200
NEW = b"The quick brown cat naps beside the lazy dog! " * 190 + b"extra tail"


def _crc(data: bytes) -> int:
    return zlib.crc32(data) & 0xFFFFFFFF


def _setup(tmp_path: Path, old: bytes = OLD, new: bytes = NEW, **diff_kwargs):
    from modpatcher.models import Diff

    diffs_dir = tmp_path / "diffs"
    diffs_dir.mkdir()
    (diffs_dir / "game.apk.diff").write_bytes(bsdiff4.diff(old, new))
    source = tmp_path / "game.apk"
    source.write_bytes(old)
    diff = Diff(
        diff_name="game-1.35-to-1.28.apk.diff",
        file_name="game.apk.diff",
        file_crc=diff_kwargs.pop("file_crc", _crc(old)),
        **diff_kwargs,
    )
    return source, diffs_dir, diff


class TestApplyDiff:
    def test_applies_and_reports_sizes(self, tmp_path):
        from modpatcher.patching.patcher import apply_diff

        source, diffs_dir, diff = _setup(tmp_path)
        dest = tmp_path / "out.apk"

        result = apply_diff(source, dest, diff, diffs_dir)

        assert dest.read_bytes() == NEW
        assert result.original_size == len(OLD)
        assert result.patched_size == len(NEW)
        assert result.source_crc == _crc(OLD)
        assert result.output_verified is False

    def test_in_place_patch(self, tmp_path):
        from modpatcher.patching.patcher import apply_diff

        source, diffs_dir, diff = _setup(tmp_path)
        apply_diff(source, source, diff, diffs_dir)
        assert source.read_bytes() == NEW

    def test_corrupt_diff_body_keeps_in_place_source(self, tmp_path):
        from modpatcher.exceptions import InvalidDiffError
        from modpatcher.patching.patcher import apply_diff

        source, diffs_dir, diff = _setup(tmp_path)
        payload = bytearray((diffs_dir / "game.apk.diff").read_bytes())
        for i in range(len(payload) - 10, len(payload)):
            payload[i] ^= 0xFF
        (diffs_dir / "game.apk.diff").write_bytes(bytes(payload))

        with pytest.raises(InvalidDiffError):
            apply_diff(source, source, diff, diffs_dir)

        assert source.read_bytes() == OLD
        assert sorted(p.name for p in tmp_path.iterdir()) == ["diffs", "game.apk"]

    def test_output_mismatch_keeps_in_place_source(self, tmp_path):
        from modpatcher.exceptions import OutputMismatchError
        from modpatcher.patching.patcher import apply_diff

        source, diffs_dir, diff = _setup(tmp_path, output_crc=(_crc(NEW) ^ 1))

        with pytest.raises(OutputMismatchError):
            apply_diff(source, source, diff, diffs_dir)

        assert source.read_bytes() == OLD
        assert sorted(p.name for p in tmp_path.iterdir()) == ["diffs", "game.apk"]

    def test_crc_mismatch_leaves_destination_untouched(self, tmp_path):
        from modpatcher.exceptions import UnexpectedSourceError
        from modpatcher.patching.patcher import apply_diff

        source, diffs_dir, diff = _setup(tmp_path, file_crc=0xDEADBEEF)
        dest = tmp_path / "out.apk"

        with pytest.raises(UnexpectedSourceError) as excinfo:
            apply_diff(source, dest, diff, diffs_dir)

        assert not dest.exists()
        assert source.read_bytes() == OLD
        assert excinfo.value.error_code == "UNEXPECTED_SOURCE"
        assert "DEADBEEF" in str(excinfo.value)

    def test_missing_diff_payload(self, tmp_path):
        from modpatcher.exceptions import DiffMissingError
        from modpatcher.patching.patcher import apply_diff

        source, diffs_dir, diff = _setup(tmp_path)
        (diffs_dir / "game.apk.diff").unlink()

        with pytest.raises(DiffMissingError):
            apply_diff(source, tmp_path / "out.apk", diff, diffs_dir)

    def test_garbage_payload_is_invalid_diff(self, tmp_path):
        from modpatcher.exceptions import InvalidDiffError
        from modpatcher.patching.patcher import apply_diff

        source, diffs_dir, diff = _setup(tmp_path)
        (diffs_dir / "game.apk.diff").write_bytes(b"not a bsdiff payload at all, sorry")

        with pytest.raises(InvalidDiffError):
            apply_diff(source, tmp_path / "out.apk", diff, diffs_dir)

    def test_output_crc_verified_when_present(self, tmp_path):
        from modpatcher.patching.patcher import apply_diff

        source, diffs_dir, diff = _setup(tmp_path, output_crc=_crc(NEW))
        result = apply_diff(source, tmp_path / "out.apk", diff, diffs_dir)

        assert result.output_verified is True
        assert result.output_crc == _crc(NEW)

    def test_output_crc_mismatch(self, tmp_path):
        from modpatcher.exceptions import OutputMismatchError
        from modpatcher.patching.patcher import apply_diff

        source, diffs_dir, diff = _setup(tmp_path, output_crc=(_crc(NEW) ^ 1))
        with pytest.raises(OutputMismatchError):
            apply_diff(source, tmp_path / "out.apk", diff, diffs_dir)


class TestBsPatchParse:
    def test_rejects_bad_magic(self):
        from modpatcher.exceptions import InvalidDiffError
        from modpatcher.patching.patcher import BsPatch

        with pytest.raises(InvalidDiffError):
            BsPatch.parse(b"BSDIFF39" + b"\x00" * 24)

    def test_rejects_truncated_blocks(self):
        from modpatcher.exceptions import InvalidDiffError
        from modpatcher.patching.patcher import BsPatch

        header = b"BSDIFF40" + (1000).to_bytes(8, "little") + (10).to_bytes(8, "little") + (5).to_bytes(8, "little")
        with pytest.raises(InvalidDiffError) as excinfo:
            BsPatch.parse(header + b"\x00" * 20, diff_name="x.diff")
        assert excinfo.value.details["diff_name"] == "x.diff"

    def test_reads_sizes(self):
        from modpatcher.patching.patcher import BsPatch

        patch = BsPatch.parse(bsdiff4.diff(OLD, NEW))
        assert patch.new_size == len(NEW)


def test_crc_helpers(tmp_path):
    from modpatcher.hash_utils import calculate_crc32, crc32_bytes, format_crc

    path = tmp_path / "blob.bin"
    path.write_bytes(OLD)
    assert calculate_crc32(path, chunk_size=7) == crc32_bytes(OLD)
    assert format_crc(0xAB) == "000000AB"
