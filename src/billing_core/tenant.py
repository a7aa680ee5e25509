from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from .exceptions import RemoteUnavailableError, TenantResolutionError
from .logger import get_logger, log_action
from .models import SUBORDINATE_ROLES, AuthSession, Principal, RoleRecord, UserRole
from .remote import AuthEvent, RemoteStore, Unsubscribe

logger = get_logger(__name__)


class ResolutionStatus(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass(frozen=True)
class TenantState:
    status: ResolutionStatus = ResolutionStatus.UNAUTHENTICATED
    principal: Principal | None = None
    role: UserRole | None = None
    parent_owner_id: str | None = None
    tenant_id: str | None = None
    fallback: bool = False
    reason: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_staff(self) -> bool:
        return self.role == UserRole.STAFF

    @property
    def is_waiter(self) -> bool:
        return self.role == UserRole.WAITER

    def require_tenant(self) -> str:
        if self.status != ResolutionStatus.RESOLVED or not self.tenant_id:
            raise TenantResolutionError(self.reason or f"Tenant not resolved (status={self.status.value})")
        return self.tenant_id


TenantListener = Callable[[TenantState], None]


def resolve_tenant_id(principal_id: str, parent_owner_id: str | None) -> str:
    return parent_owner_id or principal_id


@dataclass
class TenantResolver:
    """Maps the authenticated principal onto the owning tenant's scope.

    The resolver is an explicitly constructed session object: it follows the
    remote auth state once ``start()`` is called and notifies subscribers after
    every transition.

    By default a failed or empty role lookup resolves the principal as an admin
    owning its own tenant. ``fail_closed`` turns that into a ``FAILED`` state,
    and ``require_parent_for_subordinates`` rejects staff/waiter records that
    carry no parent owner.
    """

    remote: RemoteStore
    fail_closed: bool = False
    require_parent_for_subordinates: bool = False
    _state: TenantState = field(default_factory=TenantState)
    _listeners: list[TenantListener] = field(default_factory=list)
    _generation: int = 0
    _remote_unsubscribe: Unsubscribe | None = None

    @property
    def state(self) -> TenantState:
        return self._state

    def subscribe(self, listener: TenantListener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def start(self) -> TenantState:
        session = await self.remote.get_session()
        await self.handle_auth_event(AuthEvent.INITIAL_SESSION, session)
        if self._remote_unsubscribe is None:
            self._remote_unsubscribe = self.remote.on_auth_state_change(self.handle_auth_event)
        return self._state

    def close(self) -> None:
        if self._remote_unsubscribe is not None:
            self._remote_unsubscribe()
            self._remote_unsubscribe = None
        self._listeners.clear()

    async def handle_auth_event(self, event: AuthEvent, session: AuthSession | None) -> None:
        if event == AuthEvent.SIGNED_OUT or session is None:
            self._generation += 1
            self._set_state(TenantState())
            return
        await self._resolve(session.user)

    async def refresh_role(self) -> TenantState:
        principal = self._state.principal
        if principal is None:
            return self._state
        return await self._resolve(principal)

    async def _resolve(self, principal: Principal) -> TenantState:
        self._generation += 1
        generation = self._generation
        self._set_state(TenantState(status=ResolutionStatus.RESOLVING, principal=principal))

        record: RoleRecord | None = None
        lookup_error: str | None = None
        state: TenantState | None = None
        try:
            try:
                record = await self.remote.fetch_role_record(principal.id)
            except RemoteUnavailableError as exc:
                lookup_error = str(exc) or type(exc).__name__
            except Exception as exc:
                logger.exception("Role lookup for %s failed unexpectedly", principal.id)
                lookup_error = f"{type(exc).__name__}: {exc}"

            if generation != self._generation:
                # A sign-out or newer resolution superseded this one.
                return self._state
            state = self._state_from_lookup(principal, record, lookup_error)
        finally:
            if state is None and generation == self._generation:
                self._set_state(
                    TenantState(
                        status=ResolutionStatus.FAILED,
                        principal=principal,
                        reason="Role lookup was interrupted",
                    )
                )

        self._set_state(state)
        log_action(
            logger,
            "tenant",
            "resolve",
            role=state.role.value if state.role else None,
            tenant_id=state.tenant_id,
            outcome="fallback" if state.fallback else state.status.value,
            level=logging.INFO if state.status == ResolutionStatus.RESOLVED and not state.fallback else logging.WARNING,
            reason=state.reason,
        )
        return state

    def _state_from_lookup(
        self,
        principal: Principal,
        record: RoleRecord | None,
        lookup_error: str | None,
    ) -> TenantState:
        if record is None:
            reason = f"Role lookup failed: {lookup_error}" if lookup_error else "No role record for principal"
            if self.fail_closed:
                return TenantState(status=ResolutionStatus.FAILED, principal=principal, reason=reason)
            return TenantState(
                status=ResolutionStatus.RESOLVED,
                principal=principal,
                role=UserRole.ADMIN,
                parent_owner_id=None,
                tenant_id=principal.id,
                fallback=True,
                reason=reason,
            )

        if record.role in SUBORDINATE_ROLES and not record.parent_owner_id:
            reason = f"Role {record.role.value} has no parent owner"
            if self.require_parent_for_subordinates:
                return TenantState(
                    status=ResolutionStatus.FAILED,
                    principal=principal,
                    role=record.role,
                    reason=reason,
                )
            return TenantState(
                status=ResolutionStatus.RESOLVED,
                principal=principal,
                role=record.role,
                tenant_id=principal.id,
                fallback=True,
                reason=reason,
            )

        return TenantState(
            status=ResolutionStatus.RESOLVED,
            principal=principal,
            role=record.role,
            parent_owner_id=record.parent_owner_id,
            tenant_id=resolve_tenant_id(principal.id, record.parent_owner_id),
        )

    def _set_state(self, state: TenantState) -> None:
        self._state = state
        for listener in list(self._listeners):
            listener(state)
