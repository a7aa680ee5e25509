from __future__ import annotations

import asyncio
import json

import pytest
import responses
from requests.exceptions import ConnectionError as RequestsConnectionError

from billing_core.auth_store import AuthStore
from billing_core.config import ClientConfig
from billing_core.exceptions import AuthError, RemoteUnavailableError
from billing_core.http_client import HttpClient, TraceContext
from billing_core.models import AuthSession, Principal, UserRole
from billing_core.remote import AuthEvent, RestRemoteStore

BASE = "https://api.example.com"


def _store(tmp_path, session: AuthSession | None = None) -> RestRemoteStore:
    cfg = ClientConfig(env_name="test", api_base_url=BASE, api_key="anon-key", retries=0, retry_backoff_seconds=0)
    auth_store = AuthStore(directory=tmp_path)
    if session is not None:
        auth_store.save(session)
    return RestRemoteStore(HttpClient(cfg, trace=TraceContext()), auth_store=auth_store)


def _token_payload(user_id: str = "user-1") -> dict:
    return {
        "access_token": "access-1",
        "refresh_token": "refresh-1",
        "expires_at": 1_900_000_000,
        "user": {"id": user_id, "email": "cashier@example.com"},
    }


@responses.activate
def test_sign_in_persists_session_and_notifies(tmp_path) -> None:
    responses.add(responses.POST, f"{BASE}/auth/v1/token", json=_token_payload(), status=200)
    store = _store(tmp_path)
    events = []

    async def listener(event, session):
        events.append((event, session.user.id if session else None))

    store.on_auth_state_change(listener)
    session = asyncio.run(store.sign_in_with_password("cashier@example.com", "secret"))

    assert session.user.id == "user-1"
    assert events == [(AuthEvent.SIGNED_IN, "user-1")]
    assert responses.calls[0].request.url.endswith("grant_type=password")
    assert AuthStore(directory=tmp_path).load() == session


def test_session_is_restored_from_auth_store(tmp_path) -> None:
    saved = AuthSession(access_token="stored", user=Principal(id="user-9"))
    store = _store(tmp_path, session=saved)

    assert asyncio.run(store.get_session()) == saved


@responses.activate
def test_bad_credentials_raise_auth_error(tmp_path) -> None:
    responses.add(
        responses.POST,
        f"{BASE}/auth/v1/token",
        json={"error": "invalid_grant", "error_description": "Invalid login credentials"},
        status=401,
    )
    store = _store(tmp_path)

    with pytest.raises(AuthError):
        asyncio.run(store.sign_in_with_password("cashier@example.com", "wrong"))
    assert asyncio.run(store.get_session()) is None


@responses.activate
def test_refresh_session_emits_token_refreshed(tmp_path) -> None:
    saved = AuthSession(access_token="old", refresh_token="refresh-0", user=Principal(id="user-1"))
    responses.add(responses.POST, f"{BASE}/auth/v1/token", json=_token_payload(), status=200)
    store = _store(tmp_path, session=saved)
    events = []

    async def listener(event, session):
        events.append(event)

    store.on_auth_state_change(listener)
    session = asyncio.run(store.refresh_session())

    assert session.access_token == "access-1"
    assert events == [AuthEvent.TOKEN_REFRESHED]
    assert json.loads(responses.calls[0].request.body) == {"refresh_token": "refresh-0"}


def test_refresh_without_token_fails(tmp_path) -> None:
    with pytest.raises(RemoteUnavailableError):
        asyncio.run(_store(tmp_path).refresh_session())


@responses.activate
def test_sign_out_clears_local_state_even_when_remote_fails(tmp_path) -> None:
    saved = AuthSession(access_token="stored", user=Principal(id="user-1"))
    responses.add(responses.POST, f"{BASE}/auth/v1/logout", body=RequestsConnectionError("offline"))
    store = _store(tmp_path, session=saved)
    events = []

    async def listener(event, session):
        events.append((event, session))

    store.on_auth_state_change(listener)
    asyncio.run(store.sign_out())

    assert asyncio.run(store.get_session()) is None
    assert AuthStore(directory=tmp_path).load() is None
    assert events == [(AuthEvent.SIGNED_OUT, None)]


@responses.activate
def test_fetch_role_record(tmp_path) -> None:
    saved = AuthSession(access_token="stored", user=Principal(id="user-1"))
    responses.add(
        responses.GET,
        f"{BASE}/rest/v1/user_roles",
        json=[{"role": "staff", "parent_user_id": "OWNER1"}],
        status=200,
    )
    store = _store(tmp_path, session=saved)

    record = asyncio.run(store.fetch_role_record("user-1"))

    assert record is not None
    assert record.role == UserRole.STAFF
    assert record.parent_owner_id == "OWNER1"
    request = responses.calls[0].request
    assert "user_id=eq.user-1" in request.url
    assert request.headers["Authorization"] == "Bearer stored"


@responses.activate
def test_fetch_role_record_missing_row(tmp_path) -> None:
    responses.add(responses.GET, f"{BASE}/rest/v1/user_roles", json=[], status=200)

    assert asyncio.run(_store(tmp_path).fetch_role_record("user-1")) is None


@responses.activate
def test_fetch_role_record_unreadable_row(tmp_path) -> None:
    responses.add(responses.GET, f"{BASE}/rest/v1/user_roles", json=[{"role": "owner"}], status=200)

    with pytest.raises(RemoteUnavailableError):
        asyncio.run(_store(tmp_path).fetch_role_record("user-1"))


@responses.activate
def test_fetch_catalog_filters_by_tenant(tmp_path) -> None:
    responses.add(
        responses.GET,
        f"{BASE}/rest/v1/products",
        json=[
            {
                "id": "p-1",
                "barcode": "8901234",
                "name": "Rice",
                "price": 55.5,
                "stock_quantity": 3,
                "tax_rate": 5,
                "created_by": "OWNER1",
                "is_deleted": False,
                "created_at": "2026-01-01T00:00:00Z",
                "updated_at": "2026-01-01T00:00:00Z",
            }
        ],
        status=200,
    )

    entries = asyncio.run(_store(tmp_path).fetch_catalog("OWNER1"))

    assert [entry.barcode for entry in entries] == ["8901234"]
    url = responses.calls[0].request.url
    assert "created_by=eq.OWNER1" in url
    assert "is_deleted=eq.false" in url


@responses.activate
def test_create_invoice_is_an_idempotent_upsert(tmp_path, invoice_factory) -> None:
    responses.add(responses.POST, f"{BASE}/rest/v1/invoices", body="", status=201)
    record = invoice_factory("inv-1").model_copy(update={"customer_name": "Asha"})

    asyncio.run(_store(tmp_path).create_invoice(record, "OWNER1"))

    request = responses.calls[0].request
    body = json.loads(request.body)
    assert "on_conflict=id" in request.url
    assert request.headers["Prefer"] == "resolution=ignore-duplicates,return=minimal"
    assert body["id"] == "inv-1"
    assert body["created_by"] == "OWNER1"
    assert body["customer_name"] == "Asha"
    assert "synced" not in body


@responses.activate
def test_create_invoice_failure_is_remote_unavailable(tmp_path, invoice_factory) -> None:
    responses.add(responses.POST, f"{BASE}/rest/v1/invoices", json={"message": "down"}, status=503)

    with pytest.raises(RemoteUnavailableError):
        asyncio.run(_store(tmp_path).create_invoice(invoice_factory("inv-1"), "OWNER1"))
