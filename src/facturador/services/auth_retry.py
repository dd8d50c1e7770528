from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from facturador.models.credential import Credential
from facturador.services.auth import AuthHeaders, AuthResolver
from facturador.services.exceptions import AuthenticationError, ExternalApiError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AuthRetryInterceptor:
    """Runs an operation with auth headers, refreshing the token once on a 401."""

    def __init__(self, resolver: AuthResolver) -> None:
        self.resolver = resolver

    async def call(
        self,
        credential: Credential,
        operation: Callable[[AuthHeaders], Awaitable[T]],
    ) -> T:
        auth = await self.resolver.get_auth_headers(credential)
        try:
            return await operation(auth)
        except ExternalApiError as exc:
            if not exc.is_unauthorized:
                raise
            logger.warning("Request unauthorized, refreshing token for %s", credential.identity)
            first = exc

        self.resolver.invalidate()
        auth = await self.resolver.get_auth_headers(credential, force_refresh=True)
        try:
            return await operation(auth)
        except ExternalApiError as exc:
            if not exc.is_unauthorized:
                raise
            raise AuthenticationError(
                f"Unauthorized after token refresh: {exc}", status_code=exc.status_code
            ) from first
