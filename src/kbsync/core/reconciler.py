"""
Reconciliation client: encode -> send -> interpret, per resource kind.

State per resource:
    Unmanaged (no id) --create ok--> Managed (id set)
    Managed           --update ok--> Managed
    Managed           --delete ok--> Unmanaged   (kinds that support delete)
Any failure leaves the resource exactly as it was.

Create is not idempotent on the backend (each call makes a new object), so
create refuses a resource that already holds an identifier.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Generic, Iterator, Optional, TypeVar

from .errors import ConfigError, IdentifierError, MalformedSuccessResponse, ReconcileError
from .kinds import CREATE, DELETE, READ, UPDATE, IndexConnectorKind, ResourceKind, RoleMappingKind, RuleKind
from .responses import interpret
from .transport import DEFAULT_TIMEOUT, KibanaTransport

R = TypeVar("R")


class ReconciliationClient(Generic[R]):
    """Create/update (and, where the kind allows, read/delete) one resource kind."""

    def __init__(
        self,
        kind: ResourceKind[R],
        transport: KibanaTransport,
        *,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.kind = kind
        self.transport = transport
        self.log = logger or logging.getLogger("kbsync.reconciler")

    @contextmanager
    def _logged(self, operation: str, resource: Any) -> Iterator[None]:
        try:
            yield
        except ReconcileError as exc:
            self.log.warning("%s %s '%s' failed: %s", operation, self.kind.name, getattr(resource, "name", "?"), exc)
            raise

    def create(self, resource: R, *, timeout: Any = DEFAULT_TIMEOUT) -> R:
        """Create the resource remotely and record the server identifier on it."""
        kind = self.kind
        with self._logged(CREATE, resource):
            kind.require(CREATE)
            if getattr(resource, "id"):
                raise IdentifierError(f"{kind.name} already has identifier '{resource.id}'; use update")  # type: ignore[attr-defined]
            payload = kind.encode(resource, CREATE)
            response = self.transport.perform(kind.create_method, kind.create_target(resource), payload, timeout=timeout)
            decoded = interpret(response, success=kind.decode_success, error=kind.decode_error)
            identifier = kind.identify(resource, decoded)
            if not identifier:
                raise MalformedSuccessResponse("", ValueError("backend returned an empty identifier"))
            setattr(resource, "id", identifier)
        self.log.info("Created %s '%s' id=%s", kind.name, getattr(resource, "name", "?"), identifier)
        return resource

    def update(self, resource: R, *, timeout: Any = DEFAULT_TIMEOUT) -> None:
        """Push the mutable fields of an already created resource."""
        kind = self.kind
        with self._logged(UPDATE, resource):
            kind.require(UPDATE)
            identifier = self._require_id(resource, UPDATE)
            payload = kind.encode(resource, UPDATE)
            response = self.transport.perform("PUT", kind.update_target(resource), payload, timeout=timeout)
            interpret(response, error=kind.decode_error)
        self.log.info("Updated %s '%s' id=%s", kind.name, getattr(resource, "name", "?"), identifier)

    def apply(self, resource: R, *, timeout: Any = DEFAULT_TIMEOUT) -> str:
        """Create when no identifier is held, update otherwise. Returns "created" or "updated"."""
        if getattr(resource, "id"):
            self.update(resource, timeout=timeout)
            return "updated"
        self.create(resource, timeout=timeout)
        return "created"

    def read(self, resource: R, *, timeout: Any = DEFAULT_TIMEOUT) -> Optional[R]:
        """Fetch the remote version of a managed resource; None when it no longer exists."""
        kind = self.kind
        with self._logged(READ, resource):
            kind.require(READ)
            self._require_id(resource, READ)
            response = self.transport.perform("GET", kind.read_target(resource), timeout=timeout)
            return interpret(
                response,
                success=lambda data: kind.decode_read(resource, data),
                error=kind.decode_error,
                allow_not_found=True,
            )

    def delete(self, resource: R, *, timeout: Any = DEFAULT_TIMEOUT) -> None:
        """Delete a managed resource and clear its identifier."""
        kind = self.kind
        with self._logged(DELETE, resource):
            kind.require(DELETE)
            identifier = self._require_id(resource, DELETE)
            response = self.transport.perform("DELETE", kind.delete_target(resource), timeout=timeout)
            interpret(response, error=kind.decode_error)
            setattr(resource, "id", "")
        self.log.info("Deleted %s '%s' id=%s", kind.name, getattr(resource, "name", "?"), identifier)

    def _require_id(self, resource: R, operation: str) -> str:
        identifier = getattr(resource, "id")
        if not identifier:
            raise IdentifierError(f"{operation} needs a {self.kind.name} with an identifier; create it first")
        return identifier


class KibanaClient:
    """
    One reconciliation client per built-in kind.

    Rules and connectors go to Kibana; role mappings go to Elasticsearch and are
    only available when an Elasticsearch transport is given.
    """

    def __init__(
        self,
        kibana: KibanaTransport,
        elasticsearch: Optional[KibanaTransport] = None,
        *,
        logger: Optional[logging.LoggerAdapter] = None,
        role_mapping_id_factory: Optional[Callable[[str], str]] = None,
    ) -> None:
        self.rules: ReconciliationClient = ReconciliationClient(RuleKind(), kibana, logger=logger)
        self.connectors: ReconciliationClient = ReconciliationClient(IndexConnectorKind(), kibana, logger=logger)
        self.role_mappings: Optional[ReconciliationClient] = None
        if elasticsearch is not None:
            self.role_mappings = ReconciliationClient(
                RoleMappingKind(role_mapping_id_factory), elasticsearch, logger=logger
            )

    @classmethod
    def from_config(cls, cfg: Any, *, logger: Optional[logging.LoggerAdapter] = None) -> "KibanaClient":
        kibana = KibanaTransport.from_settings(cfg.kibana, logger=logger)
        es = None
        if cfg.elasticsearch.base_url:
            es = KibanaTransport.from_settings(cfg.elasticsearch, logger=logger)
        return cls(kibana, es, logger=logger)

    def for_kind(self, kind: str) -> ReconciliationClient:
        clients: Dict[str, Optional[ReconciliationClient]] = {
            "rule": self.rules,
            "connector": self.connectors,
            "role_mapping": self.role_mappings,
        }
        if kind not in clients:
            raise ConfigError(f"Unknown resource kind '{kind}'")
        client = clients[kind]
        if client is None:
            raise ConfigError(f"No endpoint configured for resource kind '{kind}' (set elasticsearch.base_url)")
        return client
