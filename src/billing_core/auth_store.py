from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from platformdirs import user_data_dir
from pydantic import ValidationError

from .config import APP_AUTHOR, APP_NAME
from .models import AuthSession


@dataclass
class AuthStore:
    app_name: str = APP_NAME
    filename: str = "auth-session.json"
    directory: str | Path | None = None

    def _path(self) -> Path:
        base = Path(self.directory) if self.directory else Path(user_data_dir(self.app_name, APP_AUTHOR))
        base.mkdir(parents=True, exist_ok=True)
        return base / self.filename

    def save(self, session: AuthSession) -> None:
        path = self._path()
        path.write_text(session.model_dump_json(indent=2))
        try:
            path.chmod(0o600)
        except OSError:
            pass

    def load(self) -> AuthSession | None:
        path = self._path()
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError:
            self.clear()
            return None
        try:
            return AuthSession.model_validate(data)
        except ValidationError:
            self.clear()
            return None

    def clear(self) -> None:
        path = self._path()
        if path.exists():
            path.unlink()
