from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from .connectivity import ConnectivityMonitor
from .exceptions import RemoteUnavailableError
from .local_cache import LocalCache
from .logger import get_logger
from .models import CatalogEntry
from .remote import RemoteStore

logger = get_logger(__name__)


@dataclass
class CatalogService:
    """Read-through access to the tenant catalog.

    Online reads refresh the cache from the remote store; offline reads and
    remote failures are served from whatever the cache holds.
    """

    cache: LocalCache
    remote: RemoteStore
    tenant_id: Callable[[], str]
    connectivity: ConnectivityMonitor | None = None

    def _online(self) -> bool:
        return self.connectivity is None or self.connectivity.is_online

    async def refresh(self) -> list[CatalogEntry] | None:
        """Pull the remote catalog into the cache; None when the remote is unreachable."""
        if not self._online():
            return None
        tenant_id = self.tenant_id()
        try:
            entries = await self.remote.fetch_catalog(tenant_id)
        except RemoteUnavailableError as exc:
            logger.warning("Catalog fetch failed, serving cached entries: %s", exc)
            return None
        await self.cache.replace_catalog(entries)
        return entries

    async def load_catalog(self) -> list[CatalogEntry]:
        fresh = await self.refresh()
        if fresh is not None:
            return fresh
        return await self.cache.list_catalog()

    async def find_by_barcode(self, barcode: str) -> CatalogEntry | None:
        cached = await self.cache.lookup_by_barcode(barcode)
        if cached is not None:
            return cached
        if await self.refresh() is None:
            return None
        return await self.cache.lookup_by_barcode(barcode)

    async def search(self, term: str, limit: int = 10) -> list[CatalogEntry]:
        return await self.cache.search_catalog(term, limit=limit)
