import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def test_attempt_wraps_return_value():
    from modpatcher.utils.result import Ok, attempt, is_err

    result = attempt(len, b"abc")
    assert result == Ok(3)
    assert not is_err(result)


def test_attempt_catches_listed_errors_only(tmp_path):
    import pytest

    from modpatcher.utils.result import attempt, is_err

    missing = attempt(Path.unlink, tmp_path / "absent", context="cleanup")
    assert is_err(missing)
    assert isinstance(missing.error, FileNotFoundError)

    with pytest.raises(ZeroDivisionError):
        attempt(lambda: 1 / 0)


def test_err_logs_with_context(caplog):
    from modpatcher.utils.result import Err

    with caplog.at_level(logging.WARNING):
        Err(OSError("read-only file system"), "Failed to delete backup").log(logging.getLogger("modpatcher.test"))
    assert "Failed to delete backup: read-only file system" in caplog.text
