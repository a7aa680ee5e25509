from __future__ import annotations

import time
from dataclasses import dataclass

from pydantic import ValidationError

from .context_storage import KeyValueStorage
from .logger import get_logger
from .models import CounterSession
from .tab_identity import TabIdentityProvider, random_suffix

COUNTER_SESSION_PREFIX = "billing_counter_session"

logger = get_logger(__name__)


def derive_key(tab_id: str) -> str:
    return f"{COUNTER_SESSION_PREFIX}:{tab_id}"


def generate_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{random_suffix()}"


@dataclass
class CounterSessionStore:
    """Active checkout counter for the calling tab.

    Every operation is keyed by the tab identity, so tabs sharing one storage
    backend never see each other's counter.
    """

    storage: KeyValueStorage
    tab_identity: TabIdentityProvider

    def _key(self) -> str:
        return derive_key(self.tab_identity.get_tab_id())

    def set_active_counter(self, counter_id: str, counter_name: str) -> CounterSession:
        session = CounterSession(
            counter_id=counter_id,
            counter_name=counter_name,
            session_id=generate_session_id(),
            tab_id=self.tab_identity.get_tab_id(),
            timestamp=int(time.time() * 1000),
        )
        self.storage.set_item(self._key(), session.model_dump_json())
        return session

    def get_active_counter(self) -> CounterSession | None:
        raw = self.storage.get_item(self._key())
        if not raw:
            return None
        try:
            return CounterSession.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable counter session stored under %s", self._key())
            return None

    def clear_active_counter(self) -> None:
        self.storage.remove_item(self._key())

    def has_active_counter(self) -> bool:
        return self.get_active_counter() is not None
