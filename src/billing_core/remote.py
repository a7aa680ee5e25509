from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

from pydantic import ValidationError

from .auth_store import AuthStore
from .exceptions import RemoteUnavailableError
from .http_client import HttpClient
from .logger import get_logger
from .models import AuthSession, CatalogEntry, Principal, RoleRecord, TransactionRecord

logger = get_logger(__name__)


class AuthEvent(str, Enum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    SIGNED_OUT = "SIGNED_OUT"


AuthStateListener = Callable[[AuthEvent, "AuthSession | None"], Awaitable[None]]
Unsubscribe = Callable[[], None]


class RemoteStore(Protocol):
    async def get_session(self) -> AuthSession | None: ...

    def on_auth_state_change(self, listener: AuthStateListener) -> Unsubscribe: ...

    async def fetch_role_record(self, principal_id: str) -> RoleRecord | None: ...

    async def fetch_catalog(self, tenant_id: str) -> list[CatalogEntry]: ...

    async def create_invoice(self, record: TransactionRecord, tenant_id: str) -> None: ...


@dataclass
class AuthListeners:
    _listeners: list[AuthStateListener] = field(default_factory=list)

    def add(self, listener: AuthStateListener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def emit(self, event: AuthEvent, session: AuthSession | None) -> None:
        for listener in list(self._listeners):
            await listener(event, session)


@dataclass
class RestRemoteStore:
    """Remote store backed by a PostgREST-style HTTP API with token auth.

    Requests run on worker threads so the event loop keeps serving other
    tasks while the network is slow or down.
    """

    http: HttpClient
    auth_store: AuthStore | None = None
    _session: AuthSession | None = None
    _listeners: AuthListeners = field(default_factory=AuthListeners)

    def __post_init__(self) -> None:
        self.auth_store = self.auth_store or AuthStore()
        if self._session is None:
            self._session = self.auth_store.load()

    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = kwargs.pop("headers", {})
        if self._session:
            headers = {"Authorization": f"Bearer {self._session.access_token}", **headers}
        return await asyncio.to_thread(self.http.request, method, path, headers=headers, **kwargs)

    async def get_session(self) -> AuthSession | None:
        return self._session

    def on_auth_state_change(self, listener: AuthStateListener) -> Unsubscribe:
        return self._listeners.add(listener)

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        data = await self._call(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json_body={"email": email, "password": password},
            module="auth",
            operation="sign_in",
        )
        session = _parse_auth_session(data)
        self._establish(session)
        await self._listeners.emit(AuthEvent.SIGNED_IN, session)
        return session

    async def refresh_session(self) -> AuthSession:
        if not self._session or not self._session.refresh_token:
            raise RemoteUnavailableError("No refresh token available")
        data = await self._call(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json_body={"refresh_token": self._session.refresh_token},
            module="auth",
            operation="refresh",
        )
        session = _parse_auth_session(data)
        self._establish(session)
        await self._listeners.emit(AuthEvent.TOKEN_REFRESHED, session)
        return session

    async def sign_out(self) -> None:
        try:
            if self._session:
                await self._call("POST", "/auth/v1/logout", module="auth", operation="sign_out")
        except RemoteUnavailableError as exc:
            logger.warning("Remote sign-out failed, clearing local session anyway: %s", exc)
        finally:
            self._session = None
            if self.auth_store:
                self.auth_store.clear()
        await self._listeners.emit(AuthEvent.SIGNED_OUT, None)

    async def fetch_role_record(self, principal_id: str) -> RoleRecord | None:
        data = await self._call(
            "GET",
            "/rest/v1/user_roles",
            params={"select": "role,parent_user_id", "user_id": f"eq.{principal_id}", "limit": 1},
            module="tenant",
            operation="fetch_role",
        )
        if not isinstance(data, list):
            raise RemoteUnavailableError("Expected role lookup response to be a JSON array")
        if not data:
            return None
        try:
            return RoleRecord.model_validate(data[0])
        except ValidationError as exc:
            raise RemoteUnavailableError(f"Unreadable role record: {exc}") from exc

    async def fetch_catalog(self, tenant_id: str) -> list[CatalogEntry]:
        data = await self._call(
            "GET",
            "/rest/v1/products",
            params={
                "select": "*",
                "created_by": f"eq.{tenant_id}",
                "is_deleted": "eq.false",
                "order": "created_at.desc",
            },
            module="catalog",
            operation="fetch_catalog",
        )
        if not isinstance(data, list):
            raise RemoteUnavailableError("Expected catalog response to be a JSON array")
        try:
            return [CatalogEntry.model_validate(row) for row in data]
        except ValidationError as exc:
            raise RemoteUnavailableError(f"Unreadable catalog entry: {exc}") from exc

    async def create_invoice(self, record: TransactionRecord, tenant_id: str) -> None:
        # Upsert on id with ignore-duplicates makes a replayed invoice a no-op remotely.
        await self._call(
            "POST",
            "/rest/v1/invoices",
            params={"on_conflict": "id"},
            json_body=record.remote_payload(tenant_id),
            headers={"Prefer": "resolution=ignore-duplicates,return=minimal"},
            retry_mutation=True,
            module="sync",
            operation="create_invoice",
        )

    def _establish(self, session: AuthSession) -> None:
        self._session = session
        if self.auth_store:
            self.auth_store.save(session)


def _parse_auth_session(data: Any) -> AuthSession:
    if not isinstance(data, dict):
        raise RemoteUnavailableError("Expected auth response to be a JSON object")
    user = data.get("user") or {}
    try:
        return AuthSession(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=data.get("expires_at"),
            user=Principal(id=user["id"], email=user.get("email")),
        )
    except (KeyError, ValidationError) as exc:
        raise RemoteUnavailableError(f"Unreadable auth response: {exc}") from exc
