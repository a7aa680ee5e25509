from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from .connectivity import ConnectivityMonitor
from .counter_session import CounterSessionStore
from .exceptions import NoActiveCounterError
from .local_cache import LocalCache
from .logger import get_logger, log_action
from .models import TransactionRecord
from .sync import SyncReconciler
from .telemetry import TelemetryLogger

logger = get_logger(__name__)


def local_now() -> datetime:
    return datetime.now().astimezone()


def format_bill_number(day: datetime, sequence: int) -> str:
    """``DDMMYY-NN``: day stamp plus the 1-based bill count for that day."""
    return f"{day:%d%m%y}-{sequence:02d}"


@dataclass
class CheckoutService:
    cache: LocalCache
    counters: CounterSessionStore
    reconciler: SyncReconciler
    tenant_id: Callable[[], str]
    connectivity: ConnectivityMonitor | None = None
    telemetry: TelemetryLogger | None = None
    clock: Callable[[], datetime] = field(default=local_now)

    async def next_bill_number(self, now: datetime | None = None) -> str:
        now = now or self.clock()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        issued_today = await self.cache.count_transactions_since(start_of_day)
        return format_bill_number(now, issued_today + 1)

    async def complete_sale(
        self,
        *,
        items: list[dict[str, Any]],
        total_amount: float,
        tax_amount: float = 0,
        discount_amount: float = 0,
        customer_name: str | None = None,
        customer_phone: str | None = None,
        customer_id: str | None = None,
    ) -> TransactionRecord:
        """Record a sale locally and try to push it; the sale stands even if the push fails."""
        tenant_id = self.tenant_id()
        counter = self.counters.get_active_counter()
        if counter is None:
            raise NoActiveCounterError("Select a counter before completing a sale")

        now = self.clock()
        record = TransactionRecord(
            id=str(uuid.uuid4()),
            bill_number=await self.next_bill_number(now),
            total_amount=total_amount,
            tax_amount=tax_amount,
            discount_amount=discount_amount,
            items_data=items,
            created_at=now.isoformat(),
            synced=False,
            customer_name=customer_name,
            customer_phone=customer_phone,
            customer_id=customer_id,
            counter_id=counter.counter_id,
        )
        await self.cache.append_transaction(record)

        pushed = False
        if self.connectivity is None or self.connectivity.is_online:
            pushed = await self.reconciler.push_one(record)
        if pushed:
            record = record.model_copy(update={"synced": True})

        log_action(
            logger,
            "checkout",
            "complete_sale",
            tenant_id=tenant_id,
            tab_id=counter.tab_id,
            outcome="synced" if pushed else "queued",
            bill_number=record.bill_number,
            counter_id=counter.counter_id,
        )
        if self.telemetry is not None:
            self.telemetry.sale_completed(record, tenant_id=tenant_id, tab_id=counter.tab_id)
        return record
