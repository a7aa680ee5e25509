from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass

from .context_storage import KeyValueStorage

TAB_ID_KEY = "billing_tab_id"

_BASE36 = string.digits + string.ascii_lowercase


def random_suffix(length: int = 9) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def generate_tab_id() -> str:
    return f"tab_{time.time_ns()}_{random_suffix()}"


@dataclass
class TabIdentityProvider:
    storage: KeyValueStorage

    def get_tab_id(self) -> str:
        existing = self.storage.get_item(TAB_ID_KEY)
        if existing:
            return existing
        tab_id = generate_tab_id()
        self.storage.set_item(TAB_ID_KEY, tab_id)
        return tab_id
