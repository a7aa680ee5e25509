from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import Callable

from .auth_store import AuthStore
from .catalog import CatalogService
from .checkout import CheckoutService
from .config import ClientConfig
from .connectivity import ConnectivityMonitor
from .context_storage import KeyValueStorage, MemoryStorage
from .counter_session import CounterSessionStore
from .exceptions import StorageError, TenantResolutionError
from .http_client import HttpClient, TraceContext
from .local_cache import LocalCache
from .logger import get_logger
from .models import ReconcileResult
from .remote import RemoteStore, RestRemoteStore
from .storage import CacheBackend, SqliteBackend
from .sync import SyncReconciler
from .tab_identity import TabIdentityProvider
from .telemetry import TelemetryLogger
from .tenant import ResolutionStatus, TenantResolver, TenantState

logger = get_logger(__name__)


@dataclass
class TenantWorkspace:
    tenant_id: str
    cache: LocalCache
    reconciler: SyncReconciler
    catalog: CatalogService
    checkout: CheckoutService


class BillingSession:
    """Everything one execution context (tab, window, terminal) needs to bill.

    The session owns the tenant resolver and rebuilds the tenant workspace
    (cache, reconciler, catalog, checkout) whenever the resolved tenant
    changes. The tab id lives in ``tab_storage``, which belongs to this
    session alone. Counter selections live in ``counter_storage``, which may be
    shared between sessions because every key is derived from the tab id.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        remote: RemoteStore | None = None,
        counter_storage: KeyValueStorage | None = None,
        tab_storage: KeyValueStorage | None = None,
        connectivity: ConnectivityMonitor | None = None,
        telemetry: TelemetryLogger | None = None,
        backend: CacheBackend | None = None,
    ) -> None:
        self.config = config
        self.remote = remote or RestRemoteStore(
            http=HttpClient(config=config, trace=TraceContext()),
            auth_store=AuthStore(directory=config.resolved_data_dir()),
        )
        self.counter_storage = counter_storage or MemoryStorage()
        self.tab_storage = tab_storage or MemoryStorage()
        self.connectivity = connectivity or ConnectivityMonitor()
        self.telemetry = telemetry or TelemetryLogger.from_config(config)
        self.tab_identity = TabIdentityProvider(self.tab_storage)
        self.counters = CounterSessionStore(self.counter_storage, self.tab_identity)
        self.resolver = TenantResolver(
            self.remote,
            fail_closed=config.role_fail_closed,
            require_parent_for_subordinates=config.require_parent_owner,
        )
        self._backend_override = backend
        self._workspace: TenantWorkspace | None = None
        self._retiring: set[asyncio.Task[None]] = set()
        self._background: asyncio.Task[None] | None = None
        self._unsubscribe = self.resolver.subscribe(self._on_tenant_state)

    @property
    def tenant(self) -> TenantState:
        return self.resolver.state

    @property
    def tab_id(self) -> str:
        return self.tab_identity.get_tab_id()

    @property
    def workspace(self) -> TenantWorkspace:
        if self._workspace is None:
            raise TenantResolutionError(self.tenant.reason or "No tenant resolved for this session")
        return self._workspace

    async def start(self, *, background_sync: bool = False) -> TenantState:
        state = await self.resolver.start()
        if background_sync and self._background is None:
            self._background = asyncio.ensure_future(self._sync_loop())
        return state

    async def reconcile(self) -> ReconcileResult:
        return await self.workspace.reconciler.reconcile()

    async def close(self) -> None:
        if self._background is not None:
            self._background.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._background
            self._background = None
        self._unsubscribe()
        self.resolver.close()
        if self._workspace is not None:
            self._retire(self._workspace)
            self._workspace = None
        if self._retiring:
            await asyncio.gather(*list(self._retiring))

    def _on_tenant_state(self, state: TenantState) -> None:
        if state.status == ResolutionStatus.RESOLVING:
            return
        self.telemetry.tenant_state(state, tab_id=self.tab_id)
        tenant_id = state.tenant_id if state.status == ResolutionStatus.RESOLVED else None
        current = self._workspace
        if current is not None and current.tenant_id == tenant_id:
            return
        if current is not None:
            self._retire(current)
            self._workspace = None
        if tenant_id:
            self._workspace = self._build_workspace(tenant_id)
            logger.info("Bound local cache to tenant %s", tenant_id)

    def _build_workspace(self, tenant_id: str) -> TenantWorkspace:
        backend = self._backend_override or SqliteBackend(self.config.cache_path(tenant_id))
        cache = LocalCache(backend)
        scope = self._tenant_scope(tenant_id)
        reconciler = SyncReconciler(
            cache,
            self.remote,
            tenant_id=scope,
            connectivity=self.connectivity,
            telemetry=self.telemetry,
        )
        reconciler.attach()
        catalog = CatalogService(
            cache=cache,
            remote=self.remote,
            tenant_id=scope,
            connectivity=self.connectivity,
        )
        checkout = CheckoutService(
            cache=cache,
            counters=self.counters,
            reconciler=reconciler,
            tenant_id=scope,
            connectivity=self.connectivity,
            telemetry=self.telemetry,
        )
        return TenantWorkspace(tenant_id, cache, reconciler, catalog, checkout)

    def _retire(self, workspace: TenantWorkspace) -> None:
        workspace.reconciler.detach()
        task = asyncio.ensure_future(workspace.cache.close())
        self._retiring.add(task)
        task.add_done_callback(self._retiring.discard)

    async def _sync_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.sync_interval_seconds)
            if self._workspace is None:
                continue
            try:
                await self._workspace.reconciler.reconcile()
            except StorageError as exc:
                logger.error("Background reconcile failed: %s", exc)

    def _tenant_scope(self, tenant_id: str) -> Callable[[], str]:
        def scope() -> str:
            current = self.resolver.state.require_tenant()
            if current != tenant_id:
                raise TenantResolutionError(f"Workspace for {tenant_id} is no longer active")
            return current

        return scope
