"""
Typed resources managed by kbsync.

Each resource carries an ``id`` that stays empty until the backend assigns one.
Parameter/config bags use Python attribute names internally; the tables below
are the single place where those names are translated to the backend's exact
keys. A key missing from a table would silently drop a parameter, so every
bag field must appear in its table (checked at import time).
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

# ---------- Wire key tables (attribute -> backend key) ----------

RULE_PARAM_KEYS: Dict[str, str] = {
    "agg_type": "aggType",
    "term_size": "termSize",
    "threshold_comparator": "thresholdComparator",
    "time_window_size": "timeWindowSize",
    "time_window_unit": "timeWindowUnit",
    "group_by": "groupBy",
    "threshold": "threshold",
    "index": "index",
    "time_field": "timeField",
    "agg_field": "aggField",
    "term_field": "termField",
}

INDEX_CONNECTOR_CONFIG_KEYS: Dict[str, str] = {
    "index": "index",
    "refresh": "refresh",
    "execution_time_field": "executionTimeField",
}


# ---------- Resources ----------

@dataclass
class Schedule:
    interval: str = ""


@dataclass
class RuleParams:
    """Index-threshold rule parameters. None means "not set" and is not sent."""
    agg_type: Optional[str] = None
    term_size: Optional[int] = None
    threshold_comparator: Optional[str] = None
    time_window_size: Optional[int] = None
    time_window_unit: Optional[str] = None
    group_by: Optional[str] = None
    threshold: Optional[List[float]] = None
    index: Optional[List[str]] = None
    time_field: Optional[str] = None
    agg_field: Optional[str] = None
    term_field: Optional[str] = None


@dataclass
class Rule:
    name: str
    consumer: str
    rule_type_id: str
    notify_when: str = ""
    schedule: Schedule = field(default_factory=Schedule)
    params: RuleParams = field(default_factory=RuleParams)
    actions: List[Dict[str, Any]] = field(default_factory=list)
    id: str = ""


@dataclass
class IndexConnectorConfig:
    index: Optional[str] = None
    refresh: Optional[bool] = None
    execution_time_field: Optional[str] = None


@dataclass
class IndexConnector:
    name: str
    config: IndexConnectorConfig = field(default_factory=IndexConnectorConfig)
    connector_type_id: str = ".index"
    id: str = ""


@dataclass
class RoleMapping:
    """Elasticsearch role mapping. The backend keys it by ``name``."""
    name: str
    roles: List[str] = field(default_factory=list)
    rules: Dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = ""


# ---------- Bag translation ----------

Bag = TypeVar("Bag")


def _check_table(cls: type, table: Mapping[str, str]) -> None:
    names = {f.name for f in fields(cls)}
    if names != set(table):
        raise RuntimeError(f"{cls.__name__} key table out of sync: {sorted(names ^ set(table))}")


_check_table(RuleParams, RULE_PARAM_KEYS)
_check_table(IndexConnectorConfig, INDEX_CONNECTOR_CONFIG_KEYS)


def bag_to_wire(bag: Any, table: Mapping[str, str]) -> Dict[str, Any]:
    """Translate a bag to backend keys, skipping unset (None) fields."""
    out: Dict[str, Any] = {}
    for attr, key in table.items():
        value = getattr(bag, attr)
        if value is not None:
            out[key] = value
    return out


def bag_from_wire(cls: Type[Bag], data: Any, table: Mapping[str, str], *, strict: bool = False) -> Bag:
    """
    Build a bag from a backend-keyed mapping.

    With ``strict`` unknown keys raise KeyError (user input); otherwise they are
    ignored (server echoes may carry extra keys).
    """
    data = expect_mapping(data, cls.__name__)
    reverse = {key: attr for attr, key in table.items()}
    unknown = [k for k in data if k not in reverse]
    if strict and unknown:
        raise KeyError(f"unknown {cls.__name__} keys: {', '.join(sorted(unknown))}")
    kwargs = {reverse[k]: v for k, v in data.items() if k in reverse}
    return cls(**kwargs)


# ---------- Shape helpers ----------

def expect_mapping(value: Any, what: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise TypeError(f"{what} must be a JSON object, got {type(value).__name__}")
    return value


def get_str(data: Mapping[str, Any], key: str, *, required: bool = False, default: str = "") -> str:
    if key not in data or data[key] is None:
        if required:
            raise KeyError(f"missing required field '{key}'")
        return default
    value = data[key]
    if not isinstance(value, str):
        raise TypeError(f"field '{key}' must be a string, got {type(value).__name__}")
    return value


def get_list(data: Mapping[str, Any], key: str) -> List[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise TypeError(f"field '{key}' must be a list, got {type(value).__name__}")
    return value


# ---------- Decoders from backend JSON ----------

def rule_from_wire(data: Any) -> Rule:
    """Decode a Kibana rule body. ``id`` is mandatory; echoed fields are optional."""
    data = expect_mapping(data, "rule")
    schedule = expect_mapping(data.get("schedule") or {}, "schedule")
    return Rule(
        id=get_str(data, "id", required=True),
        name=get_str(data, "name"),
        consumer=get_str(data, "consumer"),
        rule_type_id=get_str(data, "rule_type_id"),
        notify_when=get_str(data, "notify_when"),
        schedule=Schedule(interval=get_str(schedule, "interval")),
        params=bag_from_wire(RuleParams, data.get("params") or {}, RULE_PARAM_KEYS),
        actions=get_list(data, "actions"),
    )


def index_connector_from_wire(data: Any) -> IndexConnector:
    data = expect_mapping(data, "connector")
    return IndexConnector(
        id=get_str(data, "id", required=True),
        name=get_str(data, "name"),
        connector_type_id=get_str(data, "connector_type_id", default=".index"),
        config=bag_from_wire(IndexConnectorConfig, data.get("config") or {}, INDEX_CONNECTOR_CONFIG_KEYS),
    )


def role_mapping_from_wire(name: str, data: Any) -> RoleMapping:
    """Decode one entry of ``GET /_security/role_mapping/<name>`` (``{name: {...}}``)."""
    data = expect_mapping(data, "role mapping response")
    if name not in data:
        raise KeyError(f"role mapping '{name}' missing from response")
    body = expect_mapping(data[name], "role mapping")
    enabled = body.get("enabled", True)
    if not isinstance(enabled, bool):
        raise TypeError("field 'enabled' must be a boolean")
    return RoleMapping(
        name=name,
        roles=get_list(body, "roles"),
        rules=expect_mapping(body.get("rules") or {}, "rules"),
        enabled=enabled,
        metadata=expect_mapping(body.get("metadata") or {}, "metadata"),
        id=name,
    )
