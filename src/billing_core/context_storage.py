from __future__ import annotations

import hashlib
import json
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from platformdirs import user_data_dir

from .config import APP_AUTHOR, APP_NAME
from .logger import get_logger

logger = get_logger(__name__)


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


@dataclass
class MemoryStorage:
    """Storage that lives exactly as long as the execution context holding it."""

    _items: dict[str, str] = field(default_factory=dict)

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()


@dataclass
class JsonFileStorage:
    """Key-value storage persisted as one small JSON file per key.

    Sessions in other threads or processes may point at the same directory.
    Writers never rewrite each other's keys, and each write lands through its
    own temp file and an atomic rename. Keys are expected to be namespaced by
    the caller (see ``counter_session.derive_key``).
    """

    directory: str | Path | None = None
    subdirectory: str = "context"

    def _base(self) -> Path:
        root = Path(self.directory) if self.directory else Path(user_data_dir(APP_NAME, APP_AUTHOR))
        base = root / self.subdirectory
        base.mkdir(parents=True, exist_ok=True)
        return base

    def path_for(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self._base() / f"{digest}.json"

    def get_item(self, key: str) -> str | None:
        path = self.path_for(key)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (ValueError, OSError):
            logger.warning("Ignoring unreadable context entry %s", path.name)
            return None
        if not isinstance(payload, dict) or payload.get("key") != key:
            return None
        value = payload.get("value")
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        path = self.path_for(key)
        with tempfile.NamedTemporaryFile(
            "w", delete=False, encoding="utf-8", dir=str(path.parent), prefix=".", suffix=".tmp"
        ) as tmp:
            tmp.write(json.dumps({"key": key, "value": value}))
            tmp_path = Path(tmp.name)
        try:
            tmp_path.replace(path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

    def remove_item(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)
