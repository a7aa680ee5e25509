from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class UserRole(str, Enum):
    ADMIN = "admin"
    STAFF = "staff"
    WAITER = "waiter"


SUBORDINATE_ROLES = frozenset({UserRole.STAFF, UserRole.WAITER})


class Principal(BaseModel):
    id: str
    email: str | None = None


class AuthSession(BaseModel):
    access_token: str
    refresh_token: str | None = None
    expires_at: int | None = None
    user: Principal


class RoleRecord(BaseModel):
    role: UserRole
    parent_owner_id: str | None = Field(default=None, alias="parent_user_id")

    model_config = ConfigDict(populate_by_name=True)


class CounterSession(BaseModel):
    counter_id: str
    counter_name: str
    session_id: str
    tab_id: str
    timestamp: int


class CatalogEntry(BaseModel):
    id: str
    barcode: str
    name: str
    price: float
    stock_quantity: float = 0
    tax_rate: float = 0
    category: str | None = None
    created_at: str
    updated_at: str

    model_config = ConfigDict(extra="ignore")


class TransactionRecord(BaseModel):
    id: str
    bill_number: str
    total_amount: float
    tax_amount: float = 0
    discount_amount: float = 0
    items_data: List[Any] = Field(default_factory=list)
    created_at: str
    synced: bool = False
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_id: Optional[str] = None
    counter_id: Optional[str] = None

    def remote_payload(self, tenant_id: str) -> dict[str, Any]:
        """Row shape accepted by the remote invoices table."""
        payload = self.model_dump(mode="json", exclude={"synced"}, exclude_none=True)
        payload["created_by"] = tenant_id
        return payload


class ReconcileResult(BaseModel):
    succeeded: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
