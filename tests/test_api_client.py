from __future__ import annotations

import httpx
import pytest

from facturador.services.api_client import ApiClient, build_api_error, build_transport_error
from facturador.services.exceptions import ExternalApiError, RetryableApiError
from tests.conftest import api_error, no_sleep


class TestBuildApiError:
    def test_code_from_body(self):
        resp = httpx.Response(400, json=api_error("invalid_type", "Date is invalid", ["date"]))
        err = build_api_error(resp)
        assert type(err) is ExternalApiError
        assert err.status_code == 400
        assert err.error_code == "invalid_type"
        assert err.params == ["date"]
        assert str(err) == "Date is invalid"
        assert err.response == api_error("invalid_type", "Date is invalid", ["date"])

    def test_header_code_wins(self):
        resp = httpx.Response(
            400,
            json=api_error("other", "Seller required"),
            headers={"siigoapi-error-code": "parameter_required"},
        )
        assert build_api_error(resp).error_code == "parameter_required"

    def test_retryable_status(self):
        assert isinstance(build_api_error(httpx.Response(503, text="busy")), RetryableApiError)

    def test_plain_text_body(self):
        err = build_api_error(httpx.Response(500, text="Internal error"))
        assert str(err) == "Internal error"
        assert err.error_code is None
        assert err.method is None

    def test_records_request(self):
        request = httpx.Request("POST", "https://api.test/v1/invoices")
        err = build_api_error(httpx.Response(400, json={}, request=request))
        assert err.method == "POST"
        assert err.url == "https://api.test/v1/invoices"

    def test_mentions(self):
        err = build_api_error(httpx.Response(400, json=api_error("parameter_required", "x", ["Seller"])))
        assert err.mentions("seller")
        assert not err.mentions("tax")


class TestBuildTransportError:
    def test_with_request(self):
        request = httpx.Request("POST", "https://api.test/v1/invoices")
        err = build_transport_error(httpx.ReadTimeout("slow", request=request))
        assert type(err) is ExternalApiError
        assert err.status_code == 502
        assert err.error_code is None
        assert err.method == "POST"
        assert str(err) == "ReadTimeout: slow"

    def test_without_request(self):
        err = build_transport_error(httpx.ConnectError(""))
        assert str(err) == "ConnectError"
        assert err.url is None
        assert not err.is_unauthorized


class TestApiClient:
    @pytest.mark.asyncio
    async def test_get_merges_headers_and_params(self, api, fake_api, auth):
        fake_api.add("GET", "/v1/users", json_body={"results": []})
        assert await api.get("/v1/users", auth.as_dict(), {"page": 2}) == {"results": []}
        (request,) = fake_api.calls("GET", "/v1/users")
        assert str(request.url) == "https://api.test/v1/users?page=2"
        assert request.headers["Accept"] == "application/json"
        assert request.headers["Authorization"] == "Bearer tok-1"

    @pytest.mark.asyncio
    async def test_get_retries_retryable_status(self, api, fake_api, auth):
        fake_api.add("GET", "/v1/taxes", 503, {"message": "busy"})
        fake_api.add("GET", "/v1/taxes", json_body=[{"id": 7}])
        assert await api.get("/v1/taxes", auth.as_dict()) == [{"id": 7}]
        assert len(fake_api.calls("GET", "/v1/taxes")) == 2

    @pytest.mark.asyncio
    async def test_post_does_not_retry_status(self, api, fake_api, auth):
        fake_api.add("POST", "/v1/invoices", 503, {"message": "busy"})
        with pytest.raises(RetryableApiError):
            await api.post("/v1/invoices", {"a": 1}, auth.as_dict())
        assert len(fake_api.calls("POST", "/v1/invoices")) == 1

    @pytest.mark.asyncio
    async def test_post_empty_body(self, api, fake_api, auth):
        fake_api.add("POST", "/v1/customers", 204)
        assert await api.post("/v1/customers", {"a": 1}, auth.as_dict()) == {}

    @pytest.mark.asyncio
    async def test_post_retries_connect_error(self, settings, auth):
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(201, json={"id": "x"})

        client = ApiClient(settings, httpx.AsyncClient(transport=httpx.MockTransport(handler)), sleep_func=no_sleep)
        assert await client.post("/v1/invoices", {}, auth.as_dict()) == {"id": "x"}
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_error_carries_request(self, api, fake_api, auth):
        with pytest.raises(ExternalApiError) as exc_info:
            await api.get("/v1/missing", auth.as_dict())
        assert exc_info.value.status_code == 404
        assert exc_info.value.method == "GET"
        assert exc_info.value.url == "https://api.test/v1/missing"

    @pytest.mark.asyncio
    async def test_owned_client_closed(self, settings):
        client = ApiClient(settings)
        await client.aclose()
        assert client.http.is_closed

    @pytest.mark.asyncio
    async def test_injected_client_left_open(self, settings, fake_api):
        http = fake_api.client()
        await ApiClient(settings, http).aclose()
        assert not http.is_closed
