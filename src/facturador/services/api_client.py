from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from facturador.config import ERROR_CODE_HEADER, Settings
from facturador.services.exceptions import ExternalApiError, RetryableApiError
from facturador.services.http_retry import API_READ, API_WRITE, RetryPolicy, retry_call

logger = logging.getLogger(__name__)

_BASE_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


def _first_error(body: Any) -> dict[str, Any]:
    """Return the first entry of an ``Errors`` list, or an empty dict."""
    if isinstance(body, dict):
        errors = body.get("Errors") or body.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return errors[0]
    return {}


def _extract_reason(body: Any, fallback: str) -> str:
    """Best-effort extraction of a human-readable rejection reason."""
    first = _first_error(body)
    for key in ("Message", "message"):
        if first.get(key):
            return str(first[key])
    if isinstance(body, dict):
        for key in ("message", "error"):
            if body.get(key):
                return str(body[key])
        return json.dumps(body, ensure_ascii=False)[:200]
    return fallback[:500]


def build_api_error(resp: httpx.Response) -> ExternalApiError:
    """Turn a non-2xx response into a structured ExternalApiError."""
    try:
        body: Any = resp.json()
    except ValueError:
        body = resp.text
    first = _first_error(body)
    code = resp.headers.get(ERROR_CODE_HEADER) or first.get("Code") or first.get("code")
    params = first.get("Params") or first.get("params") or []
    if not isinstance(params, list):
        params = [str(params)]
    try:
        request: httpx.Request | None = resp.request
    except RuntimeError:
        request = None
    cls = RetryableApiError if resp.status_code in API_READ.retryable_status_codes else ExternalApiError
    return cls(
        _extract_reason(body, resp.text or ""),
        status_code=resp.status_code,
        error_code=str(code) if code else None,
        params=[str(p) for p in params],
        response=body,
        method=request.method if request else None,
        url=str(request.url) if request else None,
    )


def build_transport_error(exc: httpx.HTTPError) -> ExternalApiError:
    """Wrap a transport failure that outlived its retries as a 502 ExternalApiError."""
    try:
        request: httpx.Request | None = exc.request
    except RuntimeError:
        request = None
    return ExternalApiError(
        f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__,
        status_code=502,
        method=request.method if request else None,
        url=str(request.url) if request else None,
    )


class ApiClient:
    """Async client for the invoicing REST API.

    Owns an ``httpx.AsyncClient`` unless one is injected, in which case the
    caller is responsible for closing it.
    """

    def __init__(
        self,
        settings: Settings,
        http: httpx.AsyncClient | None = None,
        *,
        sleep_func: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self._sleep = sleep_func
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=settings.api_timeout)

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http

    def url(self, path: str) -> str:
        return f"{self.settings.api_url}{path}"

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def get(
        self,
        path: str,
        headers: dict[str, str],
        params: dict[str, Any] | None = None,
        *,
        policy: RetryPolicy = API_READ,
    ) -> Any:
        """GET *path* and return the decoded JSON body."""
        url = self.url(path)

        async def _do_get():
            resp = await self._http.get(
                url,
                params=params,
                headers={**_BASE_HEADERS, **headers},
                timeout=self.settings.api_timeout,
            )
            if not resp.is_success:
                err = build_api_error(resp)
                logger.warning("GET %s failed (%d, %s)", path, resp.status_code, err.error_code)
                raise err
            return resp.json()

        return await retry_call(_do_get, policy, sleep_func=self._sleep)

    async def post(
        self,
        path: str,
        payload: dict[str, Any],
        headers: dict[str, str],
        *,
        timeout: float | None = None,
        policy: RetryPolicy = API_WRITE,
    ) -> Any:
        """POST *payload* as JSON to *path* and return the decoded JSON body."""
        url = self.url(path)

        async def _do_post():
            resp = await self._http.post(
                url,
                json=payload,
                headers={**_BASE_HEADERS, **headers},
                timeout=timeout or self.settings.api_timeout,
            )
            if not resp.is_success:
                err = build_api_error(resp)
                logger.warning("POST %s failed (%d, %s)", path, resp.status_code, err.error_code)
                raise err
            if not resp.content:
                return {}
            return resp.json()

        return await retry_call(_do_post, policy, sleep_func=self._sleep)
