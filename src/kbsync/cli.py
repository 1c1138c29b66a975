"""
Command-line interface for kbsync.

Usage (examples):
  - Dry-run (no HTTP):
      python -m kbsync.cli apply --manifest ./resources.yml --dry-run

  - Real apply:
      python -m kbsync.cli apply --manifest ./resources.yml --state ./kbsync-state.json \
        --base-url http://127.0.0.1:5601 --username elastic --password changeme
"""

from __future__ import annotations

import argparse
import sys
from typing import Any, Dict, Iterable

from .core.applier import Applier, exit_code_from_counts, summarize_counts
from .core.config import load_config
from .core.errors import ConfigError, ManifestError
from .core.logging_setup import build_logger
from .core.manifest import load_manifest
from .core.reconciler import KibanaClient
from .core.state import StateStore


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="kbsync", description="Reconcile Kibana/Elasticsearch resources from a manifest")

    sub = p.add_subparsers(dest="cmd", required=True)

    a = sub.add_parser("apply", help="Create or update every resource in a manifest")
    a.add_argument("--manifest", default=None, help="Manifest YAML file")
    a.add_argument("--state", default=None, help="JSON file holding server-assigned identifiers")
    a.add_argument("--dry-run", action="store_true", help="Plan only, no network calls")

    # Kibana
    a.add_argument("--base-url", default=None, help="Kibana base URL")
    a.add_argument("--username", default=None, help="Basic auth user")
    a.add_argument("--password", default=None, help="Basic auth password")
    a.add_argument("--api-key", default=None, help="API key (instead of user/password)")
    a.add_argument("--verify-tls", default=None, choices=["true", "false"], help="Verify TLS (https)")
    a.add_argument("--timeout-sec", type=float, default=None, help="HTTP timeout seconds")
    a.add_argument("--retries", type=int, default=None, help="Retries for idempotent requests on network errors")

    # Elasticsearch (role mappings)
    a.add_argument("--es-url", default=None, help="Elasticsearch base URL (role mappings)")

    # Logging
    a.add_argument("--logs-dir", default=None, help="Logs base directory")
    a.add_argument("--console-level", default=None, help="Console log level (INFO..CRITICAL)")
    a.add_argument("--file-level", default=None, help="File log level (DEBUG..CRITICAL)")

    return p


def _prune(d: Dict[str, Any]) -> Dict[str, Any]:
    """Drop CLI options that were not given so lower layers keep their values."""
    out: Dict[str, Any] = {}
    for k, v in d.items():
        if isinstance(v, dict):
            v = _prune(v)
            if v:
                out[k] = v
        elif v is not None:
            out[k] = v
    return out


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    kibana = {
        "base_url": args.base_url,
        "username": args.username,
        "password": args.password,
        "api_key": args.api_key,
        "verify_tls": args.verify_tls,
        "timeout_sec": args.timeout_sec,
        "retries": args.retries,
    }
    elasticsearch: Dict[str, Any] = {"base_url": args.es_url}
    if args.es_url:
        # connection flags given on the command line apply to both backends and
        # win over elasticsearch.* values from files or the environment
        elasticsearch.update({k: v for k, v in kibana.items() if k != "base_url"})
    return _prune({
        "app": {"dry_run": True if args.dry_run else None},
        "kibana": kibana,
        "elasticsearch": elasticsearch,
        "inputs": {"manifest_path": args.manifest, "state_path": args.state},
        "logging": {
            "base_dir": args.logs_dir,
            "console_level": args.console_level,
            "file_level": args.file_level,
        },
    })


def _apply_cmd(args: argparse.Namespace) -> int:
    cfg = load_config(_cli_overrides(args))

    logger = build_logger(
        run_id=cfg.run_id,
        action="apply",
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
        extra={"manifest": cfg.inputs.manifest_path},
    )
    logger.info("Starting kbsync apply (dry_run=%s)", cfg.app.dry_run)

    entries = load_manifest(cfg.inputs.manifest_path)
    logger.info("Loaded %s resources from %s", len(entries), cfg.inputs.manifest_path)

    state = StateStore(cfg.inputs.state_path)
    client = None if cfg.app.dry_run else KibanaClient.from_config(cfg, logger=logger)
    applier = Applier(client, state, dry_run=cfg.app.dry_run, logger=logger)
    _, counts = applier.apply(entries)

    summary = summarize_counts(counts)
    logger.info("Apply summary: %s", summary)
    print(summary)
    return exit_code_from_counts(counts)


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.cmd == "apply":
        try:
            return _apply_cmd(args)
        except (ConfigError, ManifestError) as exc:
            print(f"kbsync: {exc}", file=sys.stderr)
            return 2

    parser.error("Unknown command")  # pragma: no cover
    return 2  # pragma: no cover


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
