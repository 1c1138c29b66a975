"""
Manifest loader: YAML -> typed resources.

    rules:
      - key: cpu-alert            # optional, defaults to name
        name: cpu-alert
        consumer: alerts
        rule_type_id: .index-threshold
        notify_when: onActionGroupChange
        schedule: {interval: 1m}
        params: {aggType: avg, termSize: 6, index: [.metrics]}
    connectors:
      - name: idx-conn
        connector_type_id: .index
        config: {index: .test-index}
    role_mappings:
      - name: admins
        roles: [superuser]
        rules: {field: {username: "*"}}

Bag keys (params, config) use the backend's names; unknown ones are rejected.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List

import yaml

from .errors import ManifestError
from .models import (
    INDEX_CONNECTOR_CONFIG_KEYS,
    RULE_PARAM_KEYS,
    IndexConnector,
    IndexConnectorConfig,
    RoleMapping,
    Rule,
    RuleParams,
    Schedule,
    bag_from_wire,
    expect_mapping,
    get_list,
    get_str,
)

# manifest section -> resource kind name
SECTIONS: Dict[str, str] = {
    "rules": "rule",
    "connectors": "connector",
    "role_mappings": "role_mapping",
}


@dataclass
class ManifestEntry:
    kind: str
    key: str
    resource: Any


def _rule(item: Dict[str, Any]) -> Rule:
    schedule = expect_mapping(item.get("schedule") or {}, "schedule")
    return Rule(
        name=get_str(item, "name", required=True),
        consumer=get_str(item, "consumer", required=True),
        rule_type_id=get_str(item, "rule_type_id", required=True),
        notify_when=get_str(item, "notify_when"),
        schedule=Schedule(interval=get_str(schedule, "interval")),
        params=bag_from_wire(RuleParams, item.get("params") or {}, RULE_PARAM_KEYS, strict=True),
        actions=[expect_mapping(a, "action") for a in get_list(item, "actions")],
    )


def _connector(item: Dict[str, Any]) -> IndexConnector:
    return IndexConnector(
        name=get_str(item, "name", required=True),
        connector_type_id=get_str(item, "connector_type_id", default=".index"),
        config=bag_from_wire(IndexConnectorConfig, item.get("config") or {}, INDEX_CONNECTOR_CONFIG_KEYS, strict=True),
    )


def _role_mapping(item: Dict[str, Any]) -> RoleMapping:
    enabled = item.get("enabled", True)
    if not isinstance(enabled, bool):
        raise TypeError("field 'enabled' must be a boolean")
    return RoleMapping(
        name=get_str(item, "name", required=True),
        roles=[str(r) for r in get_list(item, "roles")],
        rules=expect_mapping(item.get("rules") or {}, "rules"),
        enabled=enabled,
        metadata=expect_mapping(item.get("metadata") or {}, "metadata"),
    )


_BUILDERS: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    "rule": _rule,
    "connector": _connector,
    "role_mapping": _role_mapping,
}


def parse_manifest(data: Any) -> List[ManifestEntry]:
    """Turn an already-parsed manifest mapping into entries, in section order."""
    if data is None:
        return []
    if not isinstance(data, dict):
        raise ManifestError("manifest must be a mapping with rules/connectors/role_mappings")
    unknown = sorted(set(data) - set(SECTIONS))
    if unknown:
        raise ManifestError(f"unknown manifest sections: {', '.join(unknown)}")

    entries: List[ManifestEntry] = []
    for section, kind in SECTIONS.items():
        items = data.get(section) or []
        if not isinstance(items, list):
            raise ManifestError("section must be a list", kind=section)
        seen: set = set()
        for idx, item in enumerate(items):
            if not isinstance(item, dict):
                raise ManifestError("entry must be a mapping", kind=section, index=idx)
            body = dict(item)
            key = body.pop("key", None)
            try:
                resource = _BUILDERS[kind](body)
            except (KeyError, TypeError, ValueError) as exc:
                raise ManifestError(str(exc), kind=section, index=idx) from exc
            key = str(key or resource.name)
            if key in seen:
                raise ManifestError(f"duplicate key '{key}'", kind=section, index=idx)
            seen.add(key)
            entries.append(ManifestEntry(kind=kind, key=key, resource=resource))
    return entries


def load_manifest(path: str) -> List[ManifestEntry]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise ManifestError(f"manifest not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ManifestError(f"invalid YAML in {path}: {exc}") from exc
    return parse_manifest(data)
