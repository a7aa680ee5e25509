from __future__ import annotations

import asyncio
import time
from typing import Callable

from .connectivity import ConnectivityMonitor
from .exceptions import RemoteUnavailableError, TenantResolutionError
from .local_cache import LocalCache
from .logger import get_logger, log_action
from .models import ReconcileResult, TransactionRecord
from .remote import RemoteStore
from .telemetry import TelemetryLogger

logger = get_logger(__name__)


class SyncReconciler:
    """Replays unsynced invoices from the local outbox against the remote store.

    Each run works on the snapshot of unsynced records taken when it starts;
    one failing record never stops the others. Runs never overlap.
    """

    def __init__(
        self,
        cache: LocalCache,
        remote: RemoteStore,
        tenant_id: Callable[[], str],
        connectivity: ConnectivityMonitor | None = None,
        telemetry: TelemetryLogger | None = None,
    ) -> None:
        self.cache = cache
        self.remote = remote
        self.tenant_id = tenant_id
        self.connectivity = connectivity
        self.telemetry = telemetry
        self._run_lock = asyncio.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: set[asyncio.Task[ReconcileResult]] = set()
        self._unsubscribe: Callable[[], None] | None = None

    async def reconcile(self) -> ReconcileResult:
        async with self._run_lock:
            if self.connectivity is not None and not self.connectivity.is_online:
                logger.info("Skipping reconcile while offline")
                return ReconcileResult()
            try:
                tenant_id = self.tenant_id()
            except TenantResolutionError as exc:
                logger.warning("Skipping reconcile without a tenant: %s", exc)
                return ReconcileResult()

            started = time.monotonic()
            snapshot = await self.cache.list_unsynced_transactions()
            result = ReconcileResult()
            for record in snapshot:
                if await self._push(record, tenant_id):
                    result.succeeded.append(record.id)
                else:
                    result.failed.append(record.id)

            duration_ms = int((time.monotonic() - started) * 1000)
            log_action(
                logger,
                "sync",
                "reconcile",
                tenant_id=tenant_id,
                outcome="success" if not result.failed else "partial",
                succeeded=len(result.succeeded),
                failed=len(result.failed),
                duration_ms=duration_ms,
            )
            self._emit(tenant_id, result, duration_ms)
            return result

    async def push_one(self, record: TransactionRecord) -> bool:
        """Push a single freshly created invoice; False leaves it queued."""
        try:
            tenant_id = self.tenant_id()
        except TenantResolutionError:
            return False
        async with self._run_lock:
            return await self._push(record, tenant_id)

    async def _push(self, record: TransactionRecord, tenant_id: str) -> bool:
        try:
            await self.remote.create_invoice(record, tenant_id)
        except RemoteUnavailableError as exc:
            logger.warning("Invoice %s (%s) left queued: %s", record.id, record.bill_number, exc)
            return False
        await self.cache.mark_transaction_synced(record.id)
        return True

    def attach(self) -> None:
        """Reconcile on every offline -> online transition. Call from the running loop."""
        if self.connectivity is None or self._unsubscribe is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._unsubscribe = self.connectivity.subscribe(self._on_connectivity_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def wait_pending(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending))

    async def run_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            await self.reconcile()

    def _on_connectivity_change(self, online: bool) -> None:
        if online and self._loop is not None:
            self._loop.call_soon_threadsafe(self._schedule)

    def _schedule(self) -> None:
        task = asyncio.ensure_future(self.reconcile())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _emit(self, tenant_id: str, result: ReconcileResult, duration_ms: int) -> None:
        if self.telemetry is None:
            return
        self.telemetry.sync_reconciled(tenant_id, result, duration_ms)
