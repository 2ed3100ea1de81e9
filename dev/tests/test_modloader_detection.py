import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402

from conftest import write_test_apk  # noqa: E402


def _detect(tmp_path, extra_entries=None):
    from modpatcher.apk.container import ApkContainer
    from modpatcher.apk.mutation import get_modloader_installed

    apk = write_test_apk(tmp_path / "app.apk", extra_entries=extra_entries)
    with ApkContainer.open(apk) as container:
        return get_modloader_installed(container)


@pytest.mark.parametrize(
    "loader_name, expected",
    [
        ("Scotland2", "Scotland2"),
        ("scotland2", "Scotland2"),
        ("QUESTLOADER", "QuestLoader"),
        ("QuestLoader", "QuestLoader"),
        ("SomethingElse", "Unknown"),
    ],
)
def test_tag_names_match_case_insensitively(tmp_path, loader_name, expected):
    from modpatcher.models import ModLoader

    tag = f'{{"patcher_name": "x", "modloader_name": "{loader_name}"}}'.encode()
    assert _detect(tmp_path, {"modded.json": tag}) == ModLoader(expected)


def test_invalid_tag_is_unknown(tmp_path, caplog):
    from modpatcher.models import ModLoader

    with caplog.at_level(logging.WARNING):
        result = _detect(tmp_path, {"modded.json": b"{not json"})
    assert result == ModLoader.UNKNOWN
    assert "invalid JSON" in caplog.text


def test_other_modded_marker_is_unknown(tmp_path):
    from modpatcher.models import ModLoader

    assert _detect(tmp_path, {"assets/modded_by_other_tool": b"1"}) == ModLoader.UNKNOWN


def test_vanilla_apk(tmp_path):
    assert _detect(tmp_path) is None


def test_add_modded_tag_round_trip(tmp_path):
    from modpatcher.apk.container import ApkContainer
    from modpatcher.apk.mutation import add_modded_tag, get_modloader_installed
    from modpatcher.models import ModLoader, ModTag

    apk = write_test_apk(tmp_path / "app.apk")
    with ApkContainer.open(apk) as container:
        add_modded_tag(container, ModTag(patcher_name="p", modloader_name="QuestLoader"))
        assert get_modloader_installed(container) == ModLoader.QUEST_LOADER
