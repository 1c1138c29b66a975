"""
Resource kinds: the per-kind half of reconciliation.

A ResourceKind knows its endpoint, how to encode a resource for create and for
update (wire encoder), and how to decode the backend's answers. The
ReconciliationClient is generic over this interface, so adding a kind means
adding a subclass here, nothing else.

Encoders are pure: they build a fresh mapping and never touch the resource.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, FrozenSet, Generic, Optional, TypeVar
from urllib.parse import quote

from .errors import EncodingError, UnsupportedOperation
from .models import (
    INDEX_CONNECTOR_CONFIG_KEYS,
    RULE_PARAM_KEYS,
    IndexConnector,
    RoleMapping,
    Rule,
    bag_to_wire,
    expect_mapping,
    index_connector_from_wire,
    role_mapping_from_wire,
    rule_from_wire,
)
from .responses import ErrorEnvelope, decode_elasticsearch_error, decode_kibana_error

R = TypeVar("R")
Payload = Dict[str, Any]

CREATE = "create"
UPDATE = "update"
READ = "read"
DELETE = "delete"


class ResourceKind(ABC, Generic[R]):
    """Capability interface implemented once per resource kind."""

    name: str = ""
    resource_type: type = object
    create_path: str = ""
    create_method: str = "POST"
    operations: FrozenSet[str] = frozenset({CREATE, UPDATE})

    # ----- encoding -----

    def encode(self, resource: R, mode: str) -> Payload:
        self._check_type(resource)
        if mode == CREATE:
            return self.encode_create(resource)
        if mode == UPDATE:
            return self.encode_update(resource)
        raise EncodingError(f"unknown encoding mode '{mode}' for {self.name}")

    @abstractmethod
    def encode_create(self, resource: R) -> Payload:
        ...

    @abstractmethod
    def encode_update(self, resource: R) -> Payload:
        ...

    def _check_type(self, resource: Any) -> None:
        if not isinstance(resource, self.resource_type):
            raise EncodingError(
                f"{self.name} expects {self.resource_type.__name__}, got {type(resource).__name__}"
            )

    # ----- endpoints -----

    def item_path(self, key: str) -> str:
        return f"{self.create_path}/{quote(key, safe='')}"

    def create_target(self, resource: R) -> str:
        return self.create_path

    def update_target(self, resource: R) -> str:
        return self.item_path(getattr(resource, "id"))

    # ----- decoding -----

    @abstractmethod
    def decode_success(self, data: Any) -> Any:
        """Decode a 200 body from create; raise ValueError/TypeError/KeyError on mismatch."""

    def identify(self, resource: R, decoded: Any) -> str:
        """Identifier to record after a successful create."""
        return decoded.id

    def decode_error(self, data: Any) -> ErrorEnvelope:
        return decode_kibana_error(data)

    # ----- optional operations -----

    def supports(self, operation: str) -> bool:
        return operation in self.operations

    def require(self, operation: str) -> None:
        if not self.supports(operation):
            raise UnsupportedOperation(self.name, operation)

    def read_target(self, resource: R) -> str:
        raise UnsupportedOperation(self.name, READ)

    def decode_read(self, resource: R, data: Any) -> R:
        raise UnsupportedOperation(self.name, READ)

    def delete_target(self, resource: R) -> str:
        raise UnsupportedOperation(self.name, DELETE)


class RuleKind(ResourceKind[Rule]):
    """Kibana alerting rule. Read/delete are not implemented for this kind."""

    name = "rule"
    resource_type = Rule
    create_path = "/api/alerting/rule"

    def encode_create(self, rule: Rule) -> Payload:
        body: Payload = {
            "name": rule.name,
            "consumer": rule.consumer,
            "rule_type_id": rule.rule_type_id,
            "schedule": {"interval": rule.schedule.interval},
            "params": bag_to_wire(rule.params, RULE_PARAM_KEYS),
            "actions": [dict(a) for a in rule.actions],
        }
        if rule.notify_when:
            body["notify_when"] = rule.notify_when
        return body

    def encode_update(self, rule: Rule) -> Payload:
        # consumer and rule_type_id are immutable on the backend
        body: Payload = {
            "name": rule.name,
            "schedule": {"interval": rule.schedule.interval},
            "params": bag_to_wire(rule.params, RULE_PARAM_KEYS),
        }
        if rule.notify_when:
            body["notify_when"] = rule.notify_when
        return body

    def decode_success(self, data: Any) -> Rule:
        return rule_from_wire(data)


class IndexConnectorKind(ResourceKind[IndexConnector]):
    """Kibana index connector. Read/delete are not implemented for this kind."""

    name = "connector"
    resource_type = IndexConnector
    create_path = "/api/actions/connector"

    def encode_create(self, connector: IndexConnector) -> Payload:
        return {
            "name": connector.name,
            "connector_type_id": connector.connector_type_id,
            "config": bag_to_wire(connector.config, INDEX_CONNECTOR_CONFIG_KEYS),
        }

    def encode_update(self, connector: IndexConnector) -> Payload:
        return {
            "name": connector.name,
            "config": bag_to_wire(connector.config, INDEX_CONNECTOR_CONFIG_KEYS),
        }

    def decode_success(self, data: Any) -> IndexConnector:
        return index_connector_from_wire(data)


class RoleMappingKind(ResourceKind[RoleMapping]):
    """
    Elasticsearch role mapping.

    The backend only offers a put-by-name upsert, so create and update both PUT
    to ``/_security/role_mapping/<name>``. The identifier is the name the
    backend accepted, optionally passed through ``id_factory`` (e.g. a
    composite cluster/name encoder owned by the caller).
    """

    name = "role_mapping"
    resource_type = RoleMapping
    create_path = "/_security/role_mapping"
    create_method = "PUT"
    operations = frozenset({CREATE, UPDATE, READ, DELETE})

    def __init__(self, id_factory: Optional[Callable[[str], str]] = None) -> None:
        self.id_factory = id_factory or (lambda name: name)

    def encode_create(self, mapping: RoleMapping) -> Payload:
        return {
            "enabled": mapping.enabled,
            "roles": list(mapping.roles),
            "rules": dict(mapping.rules),
            "metadata": dict(mapping.metadata),
        }

    encode_update = encode_create

    def create_target(self, mapping: RoleMapping) -> str:
        return self.item_path(mapping.name)

    def update_target(self, mapping: RoleMapping) -> str:
        return self.item_path(mapping.name)

    def read_target(self, mapping: RoleMapping) -> str:
        return self.item_path(mapping.name)

    def delete_target(self, mapping: RoleMapping) -> str:
        return self.item_path(mapping.name)

    def decode_success(self, data: Any) -> Dict[str, Any]:
        data = expect_mapping(data, "role mapping response")
        status = expect_mapping(data.get("role_mapping"), "role_mapping")
        if not isinstance(status.get("created"), bool):
            raise TypeError("role_mapping.created must be a boolean")
        return status

    def identify(self, mapping: RoleMapping, decoded: Any) -> str:
        return self.id_factory(mapping.name)

    def decode_read(self, mapping: RoleMapping, data: Any) -> RoleMapping:
        found = role_mapping_from_wire(mapping.name, data)
        found.id = mapping.id
        return found

    def decode_error(self, data: Any) -> ErrorEnvelope:
        return decode_elasticsearch_error(data)
