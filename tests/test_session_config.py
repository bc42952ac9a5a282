import json

import pytest

from tagsync.models.data_item import DataItem
from tagsync.models.session_config import DEFAULT_HEALTH_INTERVAL_S, DEFAULT_HOST, SessionConfig


def test_defaults():
    config = SessionConfig.from_dict({})
    assert config.host == DEFAULT_HOST
    assert config.health_interval_s == DEFAULT_HEALTH_INTERVAL_S
    assert config.items == []


def test_save_and_load(tmp_path):
    path = tmp_path / "session.json"
    config = SessionConfig(
        server_name="Plant.OPC.1",
        host="10.1.2.3",
        health_interval_s=2.5,
        items=[DataItem("Line1.Pressure", 1000), DataItem("Line1.Flow", 250)],
    )
    config.save(str(path))

    loaded = SessionConfig.load(str(path))

    assert loaded.server_name == "Plant.OPC.1"
    assert loaded.host == "10.1.2.3"
    assert loaded.health_interval_s == 2.5
    assert [(i.name, i.poll_rate_ms) for i in loaded.items] == [("Line1.Pressure", 1000), ("Line1.Flow", 250)]


def test_hand_written_file(tmp_path):
    path = tmp_path / "session.json"
    path.write_text(json.dumps({
        "server_name": "Plant.OPC.1",
        "items": [{"name": "T1", "update_rate": 500}],
    }))

    config = SessionConfig.load(str(path))

    assert config.host == DEFAULT_HOST
    assert config.items[0].poll_rate_ms == 500


def test_invalid_item_rejected():
    with pytest.raises(ValueError):
        SessionConfig.from_dict({"items": [{"name": "T1", "poll_rate_ms": 0}]})
