import pytest

from kbsync.core.errors import EncodingError, UnsupportedOperation
from kbsync.core.kinds import CREATE, DELETE, READ, UPDATE, IndexConnectorKind, RoleMappingKind, RuleKind
from kbsync.core.models import (
    IndexConnector,
    IndexConnectorConfig,
    RoleMapping,
    Rule,
    RuleParams,
    Schedule,
)

RULE_PARAM_WIRE_KEYS = {
    "aggType",
    "termSize",
    "thresholdComparator",
    "timeWindowSize",
    "timeWindowUnit",
    "groupBy",
    "threshold",
    "index",
    "timeField",
    "aggField",
    "termField",
}


def _full_rule(**kw) -> Rule:
    base = dict(
        name="cpu-alert",
        consumer="alerts",
        rule_type_id=".index-threshold",
        notify_when="onActionGroupChange",
        schedule=Schedule(interval="1m"),
        params=RuleParams(
            agg_type="avg",
            term_size=6,
            threshold_comparator=">",
            time_window_size=5,
            time_window_unit="m",
            group_by="top",
            threshold=[1000],
            index=[".test-index"],
            time_field="@timestamp",
            agg_field="sheet.version",
            term_field="name.keyword",
        ),
        actions=[{"group": "threshold met", "id": "conn-1", "params": {"level": "info"}}],
    )
    base.update(kw)
    return Rule(**base)


def test_rule_create_payload_has_exact_param_keys():
    payload = RuleKind().encode(_full_rule(), CREATE)
    assert set(payload["params"]) == RULE_PARAM_WIRE_KEYS
    assert payload["params"]["aggType"] == "avg"
    assert payload["params"]["termField"] == "name.keyword"
    assert payload["params"]["threshold"] == [1000]


def test_rule_create_payload_shape_and_no_identifier():
    rule = _full_rule(id="already-there")
    payload = RuleKind().encode(rule, CREATE)
    assert set(payload) == {"name", "consumer", "rule_type_id", "notify_when", "schedule", "params", "actions"}
    assert "id" not in payload
    assert payload["rule_type_id"] == ".index-threshold"
    assert payload["schedule"] == {"interval": "1m"}
    assert payload["actions"][0]["id"] == "conn-1"


def test_rule_update_payload_omits_immutable_fields():
    payload = RuleKind().encode(_full_rule(id="r-1", notify_when="onActiveAlert"), UPDATE)
    assert set(payload) == {"name", "notify_when", "schedule", "params"}
    assert payload["notify_when"] == "onActiveAlert"
    assert set(payload["params"]) == RULE_PARAM_WIRE_KEYS


def test_unset_params_are_not_sent():
    rule = _full_rule(params=RuleParams(agg_type="avg", term_size=6, index=[".metrics"]), notify_when="")
    payload = RuleKind().encode(rule, CREATE)
    assert payload["params"] == {"aggType": "avg", "termSize": 6, "index": [".metrics"]}
    assert "notify_when" not in payload


def test_encoding_does_not_mutate_or_alias_resource():
    rule = _full_rule()
    payload = RuleKind().encode(rule, CREATE)
    payload["actions"][0]["id"] = "changed"
    payload["params"]["aggType"] = "max"
    assert rule.actions[0]["id"] == "conn-1"
    assert rule.params.agg_type == "avg"
    assert rule.id == ""


def test_connector_create_and_update_payloads():
    conn = IndexConnector(
        name="idx-conn",
        config=IndexConnectorConfig(index=".test-index", refresh=True, execution_time_field="@timestamp"),
    )
    created = IndexConnectorKind().encode(conn, CREATE)
    assert created == {
        "name": "idx-conn",
        "connector_type_id": ".index",
        "config": {"index": ".test-index", "refresh": True, "executionTimeField": "@timestamp"},
    }
    updated = IndexConnectorKind().encode(conn, UPDATE)
    assert set(updated) == {"name", "config"}


def test_role_mapping_payload_and_paths():
    kind = RoleMappingKind()
    mapping = RoleMapping(name="ops team", roles=["viewer"], rules={"field": {"groups": "ops"}})
    assert kind.encode(mapping, CREATE) == {
        "enabled": True,
        "roles": ["viewer"],
        "rules": {"field": {"groups": "ops"}},
        "metadata": {},
    }
    assert kind.encode(mapping, UPDATE) == kind.encode(mapping, CREATE)
    assert kind.create_target(mapping) == "/_security/role_mapping/ops%20team"
    assert kind.create_method == "PUT"


def test_update_target_is_create_path_plus_identifier():
    assert RuleKind().update_target(_full_rule(id="abc123")) == "/api/alerting/rule/abc123"
    assert IndexConnectorKind().update_target(IndexConnector(name="c", id="c-9")) == "/api/actions/connector/c-9"


def test_wrong_resource_type_and_unknown_mode_are_encoding_errors():
    with pytest.raises(EncodingError):
        RuleKind().encode(IndexConnector(name="x"), CREATE)
    with pytest.raises(EncodingError):
        RuleKind().encode(_full_rule(), "patch")


def test_read_and_delete_support_is_explicit():
    assert not RuleKind().supports(READ)
    assert not IndexConnectorKind().supports(DELETE)
    assert RoleMappingKind().supports(READ) and RoleMappingKind().supports(DELETE)
    with pytest.raises(UnsupportedOperation) as ei:
        RuleKind().require(DELETE)
    assert "delete" in str(ei.value) and "rule" in str(ei.value)
