from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from .logger import get_logger

ConnectivityListener = Callable[[bool], None]

logger = get_logger(__name__)


@dataclass
class ConnectivityMonitor:
    """Online/offline flag fed by the host platform; it never checks the network itself."""

    online: bool = True
    _listeners: list[ConnectivityListener] = field(default_factory=list)

    @property
    def is_online(self) -> bool:
        return self.online

    def set_online(self, online: bool) -> None:
        if online == self.online:
            return
        self.online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            listener(online)

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
