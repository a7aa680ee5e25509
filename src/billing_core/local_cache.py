from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from .exceptions import ConstraintViolationError, StorageError
from .logger import get_logger
from .models import CatalogEntry, TransactionRecord
from .storage import CacheBackend, CollectionSpec, SqliteBackend

CATALOG_COLLECTION = "catalogEntries"
TRANSACTION_COLLECTION = "transactionRecords"
BARCODE_INDEX = "by-barcode"

COLLECTIONS = [
    CollectionSpec(name=CATALOG_COLLECTION, key_field="id", unique_indexes={BARCODE_INDEX: "barcode"}),
    CollectionSpec(name=TRANSACTION_COLLECTION, key_field="id"),
]

logger = get_logger(__name__)


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class LocalCache:
    """On-device mirror of the tenant catalog plus the invoice outbox.

    The cache is not a source of truth for the catalog; it is the only copy
    of an invoice until the reconciler has pushed it.
    """

    def __init__(self, backend: CacheBackend | None = None) -> None:
        self.backend = backend or SqliteBackend()
        self._open_task: asyncio.Future[None] | None = None

    async def initialize(self) -> "LocalCache":
        if self._open_task is None:
            self._open_task = asyncio.ensure_future(self.backend.open(COLLECTIONS))
        task = self._open_task
        try:
            await asyncio.shield(task)
        except StorageError:
            if self._open_task is task:
                self._open_task = None
            raise
        return self

    async def close(self) -> None:
        if self._open_task is None:
            return
        self._open_task = None
        await self.backend.close()

    async def replace_catalog(self, entries: list[CatalogEntry]) -> None:
        await self.initialize()
        documents = [entry.model_dump(mode="json") for entry in entries]
        await self.backend.put_many(CATALOG_COLLECTION, documents)
        logger.info("Cached %s catalog entries", len(documents))

    async def put_catalog_entry(self, entry: CatalogEntry) -> None:
        await self.initialize()
        try:
            await self.backend.put(CATALOG_COLLECTION, entry.model_dump(mode="json"))
        except ConstraintViolationError as exc:
            raise ConstraintViolationError(
                f"Barcode {entry.barcode!r} already belongs to another catalog entry",
                barcode=entry.barcode,
            ) from exc

    async def lookup_by_barcode(self, barcode: str) -> CatalogEntry | None:
        await self.initialize()
        document = await self.backend.get_by_secondary_key(CATALOG_COLLECTION, BARCODE_INDEX, barcode)
        return CatalogEntry.model_validate(document) if document else None

    async def get_catalog_entry(self, entry_id: str) -> CatalogEntry | None:
        await self.initialize()
        document = await self.backend.get(CATALOG_COLLECTION, entry_id)
        return CatalogEntry.model_validate(document) if document else None

    async def list_catalog(self) -> list[CatalogEntry]:
        await self.initialize()
        return [CatalogEntry.model_validate(doc) for doc in await self.backend.scan(CATALOG_COLLECTION)]

    async def search_catalog(self, term: str, limit: int = 10) -> list[CatalogEntry]:
        needle = term.strip().lower()
        if not needle:
            return []
        matches = [
            entry
            for entry in await self.list_catalog()
            if needle in entry.name.lower() or needle in entry.barcode.lower()
        ]
        return matches[:limit]

    async def delete_catalog_entry(self, entry_id: str) -> None:
        await self.initialize()
        await self.backend.delete(CATALOG_COLLECTION, entry_id)

    async def append_transaction(self, record: TransactionRecord) -> None:
        await self.initialize()
        await self.backend.put(TRANSACTION_COLLECTION, record.model_dump(mode="json"))

    async def get_transaction(self, record_id: str) -> TransactionRecord | None:
        await self.initialize()
        document = await self.backend.get(TRANSACTION_COLLECTION, record_id)
        return TransactionRecord.model_validate(document) if document else None

    async def list_transactions(self) -> list[TransactionRecord]:
        await self.initialize()
        return [TransactionRecord.model_validate(doc) for doc in await self.backend.scan(TRANSACTION_COLLECTION)]

    async def list_unsynced_transactions(self) -> list[TransactionRecord]:
        return [record for record in await self.list_transactions() if not record.synced]

    async def mark_transaction_synced(self, record_id: str) -> None:
        await self.initialize()
        await self.backend.patch(TRANSACTION_COLLECTION, record_id, {"synced": True})

    async def count_transactions_since(self, start: datetime) -> int:
        if start.tzinfo is None:
            start = start.astimezone()
        return sum(1 for record in await self.list_transactions() if _parse_timestamp(record.created_at) >= start)
