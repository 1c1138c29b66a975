from __future__ import annotations

import os
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv

from .errors import ConfigError


# ---------- Typed sections ----------

@dataclass
class AppSection:
    run_id: Optional[str] = None
    dry_run: bool = False


@dataclass
class ConnectionSection:
    """One backend endpoint. Credentials are never defaulted."""
    base_url: str = ""
    username: str = ""
    password: str = ""       # secret – never log in clear text
    api_key: str = ""        # secret – never log in clear text
    verify_tls: bool = True
    timeout_sec: float = 30.0
    retries: int = 0

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key or (self.username and self.password))


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"   # INFO..CRITICAL
    file_level: str = "DEBUG"     # DEBUG..CRITICAL


@dataclass
class InputsSection:
    manifest_path: str = "./kbsync-manifest.yml"
    state_path: str = "./kbsync-state.json"


@dataclass
class AppConfig:
    """Typed configuration object built by `load_config`."""
    app: AppSection
    kibana: ConnectionSection
    elasticsearch: ConnectionSection
    logging: LoggingSection
    inputs: InputsSection = field(default_factory=InputsSection)

    @property
    def run_id(self) -> str:
        """Stable run identifier for this process, generated on first access."""
        if not self.app.run_id:
            self.app.run_id = uuid.uuid4().hex[:12]
        return self.app.run_id


# ---------- Defaults ----------

_DEFAULT_FILES: Tuple[str, ...] = (
    "./kbsync.yml",
    os.path.expanduser("~/.config/kbsync/config.yml"),
    "/etc/kbsync/config.yml",
)

_CONNECTION_DEFAULTS: Dict[str, Any] = {
    "base_url": "",
    "username": "",
    "password": "",
    "api_key": "",
    "verify_tls": True,
    "timeout_sec": 30.0,
    "retries": 0,
}

_DEFAULTS: Dict[str, Any] = {
    "app": {"run_id": None, "dry_run": False},
    "kibana": dict(_CONNECTION_DEFAULTS),
    "elasticsearch": dict(_CONNECTION_DEFAULTS),
    "logging": {"base_dir": "logs", "console_level": "INFO", "file_level": "DEBUG"},
    "inputs": {"manifest_path": "./kbsync-manifest.yml", "state_path": "./kbsync-state.json"},
}

_BOOL_KEYS = {"verify_tls", "dry_run"}
_INT_KEYS = {"retries"}
_FLOAT_KEYS = {"timeout_sec"}


# ---------- Utilities ----------

def _merge_layers(*layers: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Fold configuration layers left to right. Nested sections merge key by key;
    any other value from a later layer replaces the earlier one.
    """
    out: Dict[str, Any] = {}
    for layer in layers:
        for key, value in (layer or {}).items():
            current = out.get(key)
            if isinstance(value, dict) and isinstance(current, dict):
                out[key] = _merge_layers(current, value)
            elif isinstance(value, dict):
                out[key] = _merge_layers(value)
            else:
                out[key] = value
    return out


def _file_layer(files: Tuple[str, ...]) -> Dict[str, Any]:
    """Parse the first candidate file that exists; later candidates are ignored."""
    path = next((p for p in files if os.path.isfile(p)), None)
    if path is None:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML must be a mapping: {path}")
    return data


def _env_layer(prefix: str) -> Dict[str, Any]:
    """
    KBSYNC_KIBANA__BASE_URL=... -> {"kibana": {"base_url": "..."}}.
    Keys with an empty segment (KBSYNC__X, KBSYNC_A____B) are ignored.
    """
    layer: Dict[str, Any] = {}
    for name in sorted(os.environ):
        if not name.startswith(prefix):
            continue
        parts = name[len(prefix):].lower().split("__")
        if not all(parts):
            continue
        node = layer
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[parts[-1]] = os.environ[name]
    return layer


_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _interpolate_env(value: Any) -> Any:
    """Expand ${VAR} references anywhere in string values (unset -> empty)."""
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(v) for v in value]
    return value


def _coerce_types(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Type coercion for the known bool/int/float keys (env values arrive as strings).
    """
    def to_bool(x: Any) -> bool:
        return str(x).strip().lower() in {"1", "true", "yes", "y", "on"}

    def convert(key: str, value: Any, conv: Any) -> Any:
        try:
            return conv(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid value for '{key}': {value!r}") from exc

    def walk(obj: Any, key: str = "") -> Any:
        if isinstance(obj, dict):
            return {k: walk(v, k) for k, v in obj.items()}
        if key in _BOOL_KEYS:
            return to_bool(obj)
        if key in _INT_KEYS:
            return convert(key, obj, int)
        if key in _FLOAT_KEYS:
            return convert(key, obj, float)
        return obj

    return walk(cfg)


def _validate(cfg: Dict[str, Any]) -> None:
    """
    Validate required fields when not in dry_run.
    """
    if bool(cfg.get("app", {}).get("dry_run", False)):
        return
    kibana = cfg.get("kibana", {})
    missing = []
    if not kibana.get("base_url"):
        missing.append("kibana.base_url")
    if not (kibana.get("api_key") or (kibana.get("username") and kibana.get("password"))):
        missing.append("kibana.api_key or kibana.username/kibana.password")
    if missing:
        raise ConfigError(
            "Missing required configuration for non-dry run: " + ", ".join(missing)
        )


def _section(cls: type, name: str, values: Dict[str, Any]) -> Any:
    try:
        return cls(**values)
    except TypeError as exc:
        raise ConfigError(f"Invalid '{name}' section: {exc}") from exc


# ---------- Public API ----------

def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = _DEFAULT_FILES,
    env_prefix: str = "KBSYNC_",
    *,
    dotenv: bool = True,
) -> AppConfig:
    """
    Build an AppConfig from (in precedence order):
      1) CLI overrides
      2) Environment variables (prefix KBSYNC_, nested via __), after loading .env
      3) YAML file (first existing)
      4) Built-in defaults

    Also performs ${ENV_VAR} interpolation, bool/int/float coercion and
    validation of required fields when not in dry_run.
    """
    if dotenv:
        env_path = find_dotenv(usecwd=True) or ""
        if env_path:
            load_dotenv(env_path, override=False)

    merged = _merge_layers(_DEFAULTS, _file_layer(files), _env_layer(env_prefix), cli_overrides)

    merged = _interpolate_env(merged)
    merged = _coerce_types(merged)

    _validate(merged)

    return AppConfig(
        app=_section(AppSection, "app", merged.get("app", {})),
        kibana=_section(ConnectionSection, "kibana", merged.get("kibana", {})),
        elasticsearch=_section(ConnectionSection, "elasticsearch", merged.get("elasticsearch", {})),
        logging=_section(LoggingSection, "logging", merged.get("logging", {})),
        inputs=_section(InputsSection, "inputs", merged.get("inputs", {})),
    )
