"""
Identifier store: {kind: {manifest key: server identifier}} persisted as JSON.

The file is rewritten atomically (temp file + rename) on every save so a crash
mid-run never loses identifiers recorded by earlier creates.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional

from .errors import ConfigError


class StateStore:
    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._data: Dict[str, Dict[str, str]] = {}
        if self.path.exists():
            self._data = self._read()

    def _read(self) -> Dict[str, Dict[str, str]]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as exc:
            raise ConfigError(f"State file is not valid JSON: {self.path}: {exc}") from exc
        if not isinstance(data, dict) or not all(isinstance(v, dict) for v in data.values()):
            raise ConfigError(f"State file must map kind -> {{key: id}}: {self.path}")
        return {kind: {str(k): str(v) for k, v in ids.items()} for kind, ids in data.items()}

    def get(self, kind: str, key: str) -> Optional[str]:
        return self._data.get(kind, {}).get(key)

    def set(self, kind: str, key: str, identifier: str) -> None:
        self._data.setdefault(kind, {})[key] = identifier
        self.save()

    def as_dict(self) -> Dict[str, Dict[str, str]]:
        return {kind: dict(ids) for kind, ids in self._data.items()}

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".kbsync-state-", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
