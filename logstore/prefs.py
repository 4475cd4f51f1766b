"""
Tiny file-backed preference store.

One JSON file per namespace under the prefs directory. Writes go through a
temp file and os.replace so a crash never leaves a half-written file.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from logstore.logging_utils import get_logger

logger = get_logger(__name__)


class SharedPreferences:
    def __init__(self, namespace: str, prefs_dir: Path):
        self.namespace = namespace
        self.path = Path(prefs_dir) / f"{namespace}.json"

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read preferences {self.path}: {e}")
            return {}

    def _save(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, self.path)

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def put(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)

    def get_boolean(self, key: str, default: bool = False) -> bool:
        value: Optional[Any] = self.get(key)
        if value is None:
            return default
        return bool(value)

    def put_boolean(self, key: str, value: bool) -> None:
        self.put(key, bool(value))
