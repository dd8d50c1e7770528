from __future__ import annotations

import base64
import json
from collections import defaultdict
from typing import Any

import httpx
import pytest

from facturador.config import Settings
from facturador.models.credential import Credential
from facturador.services.api_client import ApiClient
from facturador.services.auth import AuthHeaders

API_URL = "https://api.test"


def make_token(**claims: Any) -> str:
    """Build an unsigned JWT-shaped token carrying *claims*."""

    def _seg(obj: dict) -> str:
        raw = json.dumps(obj).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    return f"{_seg({'alg': 'none', 'typ': 'JWT'})}.{_seg(claims)}.sig"


def api_error(code: str, message: str = "", params: list[str] | None = None) -> dict:
    return {"Errors": [{"Code": code, "Message": message, "Params": params or []}]}


async def no_sleep(_delay: float) -> None:
    return None


class FakeApi:
    """Scripted invoicing API served through ``httpx.MockTransport``.

    Responses are queued per (method, path); the last queued response for a
    route keeps being served once the others are used up.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], list[tuple[int, Any, dict]]] = defaultdict(list)

    def add(
        self,
        method: str,
        path: str,
        status: int = 200,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> FakeApi:
        self._routes[(method.upper(), path)].append((status, json_body, headers or {}))
        return self

    def fail(self, method: str, path: str, exc: httpx.HTTPError) -> FakeApi:
        """Queue a transport failure: the route raises *exc* instead of answering."""
        self._routes[(method.upper(), path)].append((0, exc, {}))
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self._routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json=api_error("not_found", "no route"))
        status, body, headers = queue[0] if len(queue) == 1 else queue.pop(0)
        if isinstance(body, httpx.HTTPError):
            raise body
        if body is None:
            return httpx.Response(status, headers=headers)
        return httpx.Response(status, json=body, headers=headers)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def bodies(self, method: str, path: str) -> list[Any]:
        return [json.loads(r.content) for r in self.calls(method, path)]

    def seed_catalogs(
        self,
        users: list[dict] | None = None,
        payment_types: list[dict] | None = None,
        taxes: list[dict] | None = None,
    ) -> FakeApi:
        self.add("GET", "/v1/users", json_body={"results": users or []})
        self.add("GET", "/v1/payment-types", json_body=payment_types or [])
        self.add("GET", "/v1/taxes", json_body=taxes or [])
        return self


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(api_url=API_URL)


@pytest.fixture
def api(settings: Settings, fake_api: FakeApi) -> ApiClient:
    return ApiClient(settings, fake_api.client(), sleep_func=no_sleep)


@pytest.fixture
def credential() -> Credential:
    return Credential("ana@shop.co", "ana-partner:s3cret")


@pytest.fixture
def auth() -> AuthHeaders:
    return AuthHeaders(token="tok-1", tenant_id="partner-1")


@pytest.fixture
def invoice_dict() -> dict:
    return {
        "customer": {"identification": "900123456"},
        "date": "2026-03-02",
        "items": [
            {"code": "SKU-1", "description": "Camiseta", "quantity": 2, "price": "47500"},
        ],
    }
