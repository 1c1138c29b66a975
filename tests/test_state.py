import json

import pytest

from kbsync.core.errors import ConfigError
from kbsync.core.state import StateStore


def test_set_persists_immediately(tmp_path):
    path = tmp_path / "state" / "ids.json"
    store = StateStore(str(path))
    assert store.get("rule", "cpu") is None

    store.set("rule", "cpu", "r-1")

    assert json.loads(path.read_text(encoding="utf-8")) == {"rule": {"cpu": "r-1"}}
    assert StateStore(str(path)).get("rule", "cpu") == "r-1"
    assert list(path.parent.glob(".kbsync-state-*")) == []


def test_as_dict_is_a_copy(tmp_path):
    store = StateStore(str(tmp_path / "ids.json"))
    store.set("connector", "idx", "c-1")
    snapshot = store.as_dict()
    snapshot["connector"]["idx"] = "tampered"
    assert store.get("connector", "idx") == "c-1"


@pytest.mark.parametrize("content", ["{not json", '["r-1"]', '{"rule": "r-1"}'])
def test_corrupt_state_is_config_error(tmp_path, content):
    path = tmp_path / "ids.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ConfigError):
        StateStore(str(path))
