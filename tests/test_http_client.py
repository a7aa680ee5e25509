from __future__ import annotations

import pytest
import responses
from requests.exceptions import ConnectionError as RequestsConnectionError

from billing_core.config import ClientConfig
from billing_core.exceptions import (
    InvalidResponseError,
    NotFoundError,
    RemoteUnavailableError,
    ServerError,
    TransportError,
)
from billing_core.http_client import TRACE_HEADER, HttpClient, TraceContext


def _client(**overrides) -> HttpClient:
    cfg = ClientConfig(
        env_name="test",
        api_base_url="https://api.example.com",
        api_key="anon-key",
        retries=2,
        retry_backoff_seconds=0,
        **overrides,
    )
    return HttpClient(cfg, trace=TraceContext())


@responses.activate
def test_request_sends_api_key_and_trace_header() -> None:
    http = _client()
    responses.add(
        responses.GET,
        "https://api.example.com/rest/v1/products",
        json=[{"id": "p-1"}],
        status=200,
        headers={"X-Request-Id": "server-trace"},
    )

    data = http.request("GET", "/rest/v1/products", module="catalog", operation="fetch")

    sent = responses.calls[0].request.headers
    assert data == [{"id": "p-1"}]
    assert sent["apikey"] == "anon-key"
    assert sent[TRACE_HEADER]
    assert http.trace is not None and http.trace.trace_id == "server-trace"
    assert http.last_operation is not None
    assert http.last_operation.result == "success"
    assert http.last_operation.module == "catalog"


@responses.activate
def test_empty_success_body_returns_none() -> None:
    http = _client()
    responses.add(responses.POST, "https://api.example.com/rest/v1/invoices", body="", status=201)

    assert http.request("POST", "/rest/v1/invoices", json_body={"id": "inv-1"}) is None


@responses.activate
def test_get_retries_server_errors() -> None:
    http = _client()
    url = "https://api.example.com/rest/v1/products"
    responses.add(responses.GET, url, json={"message": "busy"}, status=503)
    responses.add(responses.GET, url, json=[], status=200)

    assert http.request("GET", "/rest/v1/products") == []
    assert len(responses.calls) == 2


@responses.activate
def test_post_is_not_retried_by_default() -> None:
    http = _client()
    responses.add(
        responses.POST,
        "https://api.example.com/rest/v1/invoices",
        json={"message": "busy"},
        status=503,
    )

    with pytest.raises(ServerError):
        http.request("POST", "/rest/v1/invoices", json_body={})
    assert len(responses.calls) == 1


@responses.activate
def test_retry_mutation_retries_post() -> None:
    http = _client()
    url = "https://api.example.com/rest/v1/invoices"
    responses.add(responses.POST, url, body=RequestsConnectionError("reset"))
    responses.add(responses.POST, url, body="", status=201)

    assert http.request("POST", "/rest/v1/invoices", json_body={}, retry_mutation=True) is None
    assert len(responses.calls) == 2


@responses.activate
def test_transport_failure_raises_transport_error() -> None:
    http = _client()
    responses.add(
        responses.GET,
        "https://api.example.com/rest/v1/products",
        body=RequestsConnectionError("offline"),
    )

    with pytest.raises(TransportError) as excinfo:
        http.request("GET", "/rest/v1/products", module="catalog", operation="fetch")

    assert excinfo.value.status_code == 0
    assert len(responses.calls) == 3
    assert http.last_operation is not None and http.last_operation.result == "error"


@responses.activate
def test_error_payload_is_mapped() -> None:
    http = _client()
    responses.add(
        responses.GET,
        "https://api.example.com/rest/v1/user_roles",
        json={"code": "PGRST116", "message": "not acceptable"},
        status=406,
    )

    with pytest.raises(NotFoundError) as excinfo:
        http.request("GET", "/rest/v1/user_roles")

    assert excinfo.value.code == "PGRST116"


@responses.activate
def test_non_json_success_body_raises_invalid_response() -> None:
    http = _client()
    responses.add(
        responses.GET,
        "https://api.example.com/rest/v1/products",
        body="<html>portal</html>",
        status=200,
        content_type="text/html",
    )

    with pytest.raises(InvalidResponseError) as excinfo:
        http.request("GET", "/rest/v1/products", module="catalog", operation="fetch")

    assert excinfo.value.code == "INVALID_JSON"
    assert excinfo.value.status_code == 200
    assert isinstance(excinfo.value, RemoteUnavailableError)
    assert http.last_operation is not None and http.last_operation.result == "error"
