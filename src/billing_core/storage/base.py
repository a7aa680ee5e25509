from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

Document = dict[str, Any]


@dataclass(frozen=True)
class CollectionSpec:
    name: str
    key_field: str = "id"
    # index name -> document field; every secondary index is unique.
    unique_indexes: dict[str, str] = field(default_factory=dict)

    def index_field(self, index: str) -> str:
        try:
            return self.unique_indexes[index]
        except KeyError as exc:
            raise KeyError(f"Collection {self.name} has no index {index!r}") from exc


class CacheBackend(Protocol):
    """Capabilities the local cache needs from a storage engine."""

    async def open(self, collections: list[CollectionSpec]) -> None: ...

    async def close(self) -> None: ...

    async def get(self, collection: str, key: str) -> Document | None: ...

    async def get_by_secondary_key(self, collection: str, index: str, value: str) -> Document | None: ...

    async def put(self, collection: str, document: Document) -> None: ...

    async def put_many(self, collection: str, documents: list[Document]) -> None: ...

    async def patch(self, collection: str, key: str, changes: Document) -> bool: ...

    async def delete(self, collection: str, key: str) -> None: ...

    async def scan(self, collection: str) -> list[Document]: ...
