import textwrap

import pytest

from kbsync.core.errors import ManifestError
from kbsync.core.manifest import load_manifest, parse_manifest
from kbsync.core.models import IndexConnector, RoleMapping, Rule

MANIFEST = textwrap.dedent("""
    rules:
      - key: cpu
        name: cpu-alert
        consumer: alerts
        rule_type_id: .index-threshold
        notify_when: onActionGroupChange
        schedule: {interval: 1m}
        params:
          aggType: avg
          termSize: 6
          thresholdComparator: ">"
          threshold: [90]
          index: [.metrics]
    connectors:
      - name: idx-conn
        config: {index: .test-index, refresh: true}
    role_mappings:
      - name: admins
        roles: [superuser]
        rules: {field: {username: "*"}}
""")


def test_load_manifest_builds_typed_resources(tmp_path):
    path = tmp_path / "resources.yml"
    path.write_text(MANIFEST, encoding="utf-8")

    entries = load_manifest(str(path))

    assert [(e.kind, e.key) for e in entries] == [
        ("rule", "cpu"),
        ("connector", "idx-conn"),
        ("role_mapping", "admins"),
    ]
    rule = entries[0].resource
    assert isinstance(rule, Rule) and rule.id == ""
    assert rule.params.threshold_comparator == ">"
    assert rule.params.threshold == [90]
    assert rule.params.time_field is None
    conn = entries[1].resource
    assert isinstance(conn, IndexConnector)
    assert conn.connector_type_id == ".index"
    assert conn.config.refresh is True
    assert isinstance(entries[2].resource, RoleMapping)


def test_empty_manifest_is_empty(tmp_path):
    path = tmp_path / "empty.yml"
    path.write_text("", encoding="utf-8")
    assert load_manifest(str(path)) == []


@pytest.mark.parametrize(
    "data, where",
    [
        ({"dashboards": []}, "dashboards"),
        ({"rules": {"name": "x"}}, "rules"),
        ({"rules": ["cpu-alert"]}, "rules[0]"),
        ({"rules": [{"name": "x", "consumer": "alerts"}]}, "rule_type_id"),
        ({"rules": [{"name": "x", "consumer": "a", "rule_type_id": "t", "params": {"aggtype": "avg"}}]}, "aggtype"),
        ({"connectors": [{"name": "c", "config": {"execution_time_field": "@timestamp"}}]}, "execution_time_field"),
        ({"role_mappings": [{"name": "m", "enabled": "yes"}]}, "enabled"),
        ({"connectors": [{"name": "c"}, {"name": "c"}]}, "duplicate key 'c'"),
    ],
)
def test_invalid_manifests(data, where):
    with pytest.raises(ManifestError) as ei:
        parse_manifest(data)
    assert where in str(ei.value)


def test_same_key_allowed_across_sections():
    entries = parse_manifest({
        "connectors": [{"name": "shared"}],
        "role_mappings": [{"name": "shared"}],
    })
    assert [e.key for e in entries] == ["shared", "shared"]


def test_missing_and_broken_files(tmp_path):
    with pytest.raises(ManifestError):
        load_manifest(str(tmp_path / "nope.yml"))
    bad = tmp_path / "bad.yml"
    bad.write_text("rules: [\n", encoding="utf-8")
    with pytest.raises(ManifestError):
        load_manifest(str(bad))
