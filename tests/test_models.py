import pytest

from kbsync.core.models import (
    INDEX_CONNECTOR_CONFIG_KEYS,
    IndexConnectorConfig,
    RuleParams,
    bag_from_wire,
    index_connector_from_wire,
    role_mapping_from_wire,
    rule_from_wire,
    RULE_PARAM_KEYS,
)


def test_rule_from_wire_reads_echoed_fields():
    rule = rule_from_wire({
        "id": "r-1",
        "name": "cpu-alert",
        "consumer": "alerts",
        "rule_type_id": ".index-threshold",
        "schedule": {"interval": "1m"},
        "params": {"aggType": "avg", "termSize": 6, "index": [".metrics"], "unknownFutureKey": 1},
        "actions": [],
        "enabled": True,
        "mute_all": False,
    })
    assert rule.id == "r-1"
    assert rule.schedule.interval == "1m"
    assert rule.params == RuleParams(agg_type="avg", term_size=6, index=[".metrics"])


@pytest.mark.parametrize("body", [{}, {"id": 12}, [], "r-1", {"id": "r-1", "schedule": "1m"}])
def test_rule_from_wire_rejects_wrong_shapes(body):
    with pytest.raises((KeyError, TypeError)):
        rule_from_wire(body)


def test_connector_from_wire():
    conn = index_connector_from_wire({
        "id": "c-1",
        "name": "idx-conn",
        "connector_type_id": ".index",
        "config": {"index": ".test-index", "executionTimeField": None, "refresh": False},
        "is_preconfigured": False,
    })
    assert conn.id == "c-1"
    assert conn.config == IndexConnectorConfig(index=".test-index", refresh=False)


def test_strict_bag_rejects_unknown_keys():
    with pytest.raises(KeyError) as ei:
        bag_from_wire(RuleParams, {"aggType": "avg", "aggtype": "avg"}, RULE_PARAM_KEYS, strict=True)
    assert "aggtype" in str(ei.value)
    cfg = bag_from_wire(IndexConnectorConfig, {"executionTimeField": "@timestamp"}, INDEX_CONNECTOR_CONFIG_KEYS)
    assert cfg.execution_time_field == "@timestamp"


def test_role_mapping_from_wire_requires_named_entry():
    with pytest.raises(KeyError):
        role_mapping_from_wire("admins", {"others": {}})
    mapping = role_mapping_from_wire("admins", {"admins": {"roles": ["superuser"], "rules": {"any": []}}})
    assert mapping.enabled is True
    assert mapping.id == "admins"
