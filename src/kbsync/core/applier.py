from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import ConfigError, ReconcileError
from .manifest import ManifestEntry
from .reconciler import KibanaClient, ReconciliationClient
from .state import StateStore

CREATED = "CREATED"
UPDATED = "UPDATED"
PLANNED_CREATE = "PLANNED_CREATE"
PLANNED_UPDATE = "PLANNED_UPDATE"
ERROR = "ERROR"

SUMMARY_ORDER = (CREATED, UPDATED, PLANNED_CREATE, PLANNED_UPDATE, ERROR)


@dataclass(frozen=True)
class ApplyResult:
    index: int
    kind: str
    key: str
    status: str
    identifier: str = ""
    error: str = ""


class Applier:
    """
    Drive manifest entries through the reconciliation clients.

    Create vs update is decided only by whether the state store holds an
    identifier for (kind, key). New identifiers are persisted immediately.
    """

    def __init__(
        self,
        client: Optional[KibanaClient],
        state: StateStore,
        *,
        dry_run: bool = False,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        if client is None and not dry_run:
            raise ValueError("a KibanaClient is required unless dry_run is set")
        self.client = client
        self.state = state
        self.dry_run = dry_run
        self.log = logger or logging.getLogger("kbsync.applier")

    def apply(self, entries: Iterable[ManifestEntry]) -> Tuple[List[ApplyResult], Dict[str, int]]:
        results: List[ApplyResult] = []
        counts: Dict[str, int] = {}

        for idx, entry in enumerate(entries):
            held = self.state.get(entry.kind, entry.key) or ""

            if self.dry_run:
                status = PLANNED_UPDATE if held else PLANNED_CREATE
                self.log.info("[dry-run] %s %s '%s'", status, entry.kind, entry.key)
                self._append(results, counts, ApplyResult(idx, entry.kind, entry.key, status, identifier=held))
                continue

            entry.resource.id = held
            try:
                outcome = self._client_for(entry.kind).apply(entry.resource)
            except ConfigError as exc:
                self.log.error("%s '%s' skipped: %s", entry.kind, entry.key, exc)
                self._append(results, counts, ApplyResult(idx, entry.kind, entry.key, ERROR, identifier=held, error=str(exc)))
                continue
            except ReconcileError as exc:
                # the reconciliation client has logged it
                self._append(results, counts, ApplyResult(idx, entry.kind, entry.key, ERROR, identifier=held, error=str(exc)))
                continue

            if outcome == "created":
                self.state.set(entry.kind, entry.key, entry.resource.id)
                status = CREATED
            else:
                status = UPDATED
            self._append(results, counts, ApplyResult(idx, entry.kind, entry.key, status, identifier=entry.resource.id))

        return results, counts

    def _client_for(self, kind: str) -> ReconciliationClient:
        if self.client is None:
            raise ConfigError("no KibanaClient configured for a non-dry run")
        return self.client.for_kind(kind)

    @staticmethod
    def _append(results: List[ApplyResult], counts: Dict[str, int], res: ApplyResult) -> None:
        results.append(res)
        counts[res.status] = counts.get(res.status, 0) + 1


def summarize_counts(counts: Dict[str, int]) -> str:
    return " | ".join(f"{k}={counts.get(k, 0)}" for k in SUMMARY_ORDER)


def exit_code_from_counts(counts: Dict[str, int]) -> int:
    return 2 if counts.get(ERROR, 0) else 0
