from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from billing_core.config import ClientConfig
from billing_core.exceptions import RemoteUnavailableError
from billing_core.models import AuthSession, CatalogEntry, Principal, RoleRecord, TransactionRecord
from billing_core.remote import AuthEvent, AuthListeners, AuthStateListener, Unsubscribe


@dataclass
class FakeRemoteStore:
    session: AuthSession | None = None
    role_records: dict[str, RoleRecord] = field(default_factory=dict)
    role_error: Exception | None = None
    catalog: list[CatalogEntry] = field(default_factory=list)
    catalog_error: Exception | None = None
    rejected_invoice_ids: set[str] = field(default_factory=set)
    created_invoices: list[tuple[str, str]] = field(default_factory=list)
    role_lookups: list[str] = field(default_factory=list)
    listeners: AuthListeners = field(default_factory=AuthListeners)

    async def get_session(self) -> AuthSession | None:
        return self.session

    def on_auth_state_change(self, listener: AuthStateListener) -> Unsubscribe:
        return self.listeners.add(listener)

    async def fetch_role_record(self, principal_id: str) -> RoleRecord | None:
        self.role_lookups.append(principal_id)
        if self.role_error is not None:
            raise self.role_error
        return self.role_records.get(principal_id)

    async def fetch_catalog(self, tenant_id: str) -> list[CatalogEntry]:
        if self.catalog_error is not None:
            raise self.catalog_error
        return list(self.catalog)

    async def create_invoice(self, record: TransactionRecord, tenant_id: str) -> None:
        if record.id in self.rejected_invoice_ids:
            raise RemoteUnavailableError(f"rejected {record.id}")
        self.created_invoices.append((record.id, tenant_id))

    async def sign_in(self, principal_id: str) -> AuthSession:
        self.session = AuthSession(access_token=f"token-{principal_id}", user=Principal(id=principal_id))
        await self.listeners.emit(AuthEvent.SIGNED_IN, self.session)
        return self.session

    async def sign_out(self) -> None:
        self.session = None
        await self.listeners.emit(AuthEvent.SIGNED_OUT, None)


def make_entry(entry_id: str, barcode: str, name: str = "Item", price: float = 10.0) -> CatalogEntry:
    return CatalogEntry(
        id=entry_id,
        barcode=barcode,
        name=name,
        price=price,
        stock_quantity=5,
        tax_rate=18,
        created_at="2026-01-01T00:00:00+00:00",
        updated_at="2026-01-01T00:00:00+00:00",
    )


def make_invoice(record_id: str, bill_number: str = "010126-01", synced: bool = False) -> TransactionRecord:
    return TransactionRecord(
        id=record_id,
        bill_number=bill_number,
        total_amount=118.0,
        tax_amount=18.0,
        items_data=[{"id": "p-1", "quantity": 1}],
        created_at="2026-01-01T10:00:00+00:00",
        synced=synced,
    )


@pytest.fixture
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def entry_factory():
    return make_entry


@pytest.fixture
def invoice_factory():
    return make_invoice


@pytest.fixture
def config(tmp_path) -> ClientConfig:
    return ClientConfig(env_name="test", api_base_url="https://api.example.com", data_dir=str(tmp_path))
