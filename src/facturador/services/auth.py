from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass

import httpx

from facturador.config import AUTH_PATH, TENANT_HEADER, Settings
from facturador.models.credential import Credential, SecretFormat
from facturador.services.exceptions import AuthenticationError
from facturador.services.http_retry import AUTH, retry_call
from facturador.services.token_cache import TokenCache
from facturador.utils.token_claims import decode_token_claims

logger = logging.getLogger(__name__)

TENANT_CLAIMS = ("api_subscription_key", "partner_id", "tenant_id")


@dataclass(frozen=True)
class AuthHeaders:
    token: str
    tenant_id: str

    def as_dict(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}", TENANT_HEADER: self.tenant_id}


def _b64decode_text(value: str) -> str | None:
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None


def normalize_access_key(secret: str, fmt: SecretFormat = SecretFormat.AUTO) -> str:
    """Return the access key in the Base64 ``id:secret`` form the API expects.

    In AUTO mode a raw value containing ":" is encoded; anything else is sent
    as-is, whether or not it decodes to an ``id:secret`` pair.
    """
    text = (secret or "").strip()
    if not text:
        return text
    if fmt is SecretFormat.PLAIN or (fmt is SecretFormat.AUTO and ":" in text):
        return base64.b64encode(text.encode("utf-8")).decode("ascii")
    return text


def plain_secret(credential: Credential) -> str | None:
    """Return the ``id:secret`` form of the credential's access key, if recognizable."""
    text = (credential.secret or "").strip()
    if credential.secret_format is SecretFormat.PLAIN:
        return text
    if credential.secret_format is SecretFormat.AUTO and ":" in text:
        return text
    decoded = _b64decode_text(text)
    if decoded and ":" in decoded:
        return decoded
    return None


def extract_tenant_id(token: str) -> str | None:
    """Read the tenant id from the unverified token claims. Hint only."""
    claims = decode_token_claims(token)
    if not claims:
        return None
    for name in TENANT_CLAIMS:
        value = claims.get(name)
        if value:
            return str(value)
    return None


def tenant_from_secret(credential: Credential) -> str | None:
    """Heuristic: the identity part of an ``id:secret`` access key."""
    plain = plain_secret(credential)
    if not plain:
        return None
    tenant = plain.split(":", 1)[0].strip()
    return tenant or None


class AuthResolver:
    """Obtains bearer tokens and the tenant header for a credential."""

    def __init__(
        self,
        settings: Settings,
        http: httpx.AsyncClient,
        token_cache: TokenCache | None = None,
    ) -> None:
        self.settings = settings
        self._http = http
        self.token_cache = token_cache or TokenCache()

    async def authenticate(self, credential: Credential) -> str:
        """Log in against the auth endpoint and return the access token.

        Raises AuthenticationError on non-2xx, transport failure or a missing token.
        """
        url = f"{self.settings.api_url}{AUTH_PATH}"
        body = {
            "username": credential.identity,
            "access_key": normalize_access_key(credential.secret, credential.secret_format),
        }

        async def _do_post():
            return await self._http.post(
                url,
                json=body,
                headers={"Content-Type": "application/json"},
                timeout=self.settings.auth_timeout,
            )

        logger.info("Authenticating %s", credential.identity)
        try:
            resp = await retry_call(_do_post, AUTH)
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"Authentication request failed: {exc}") from exc

        if not resp.is_success:
            body_text = resp.text[:200] if resp.text else ""
            raise AuthenticationError(
                f"Authentication rejected ({resp.status_code}): {body_text}",
                status_code=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError:
            data = None
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise AuthenticationError("Authentication response has no access_token")
        return str(token)

    def resolve_tenant_id(self, credential: Credential, token: str) -> str | None:
        """Tenant id priority: configured override, token claim, access-key heuristic."""
        return (
            self.settings.partner_id
            or extract_tenant_id(token)
            or tenant_from_secret(credential)
        )

    async def get_auth_headers(
        self, credential: Credential, *, force_refresh: bool = False
    ) -> AuthHeaders:
        token = None if force_refresh else self.token_cache.get(credential)
        if token is None:
            token = await self.authenticate(credential)
            self.token_cache.set(credential, token)

        tenant_id = self.resolve_tenant_id(credential, token)
        if not tenant_id:
            raise AuthenticationError("Could not resolve the tenant id for this credential")
        return AuthHeaders(token=token, tenant_id=tenant_id)

    def invalidate(self) -> None:
        self.token_cache.clear()
