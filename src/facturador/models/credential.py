from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SecretFormat(str, Enum):
    """How the access key of a Credential is written."""

    AUTO = "auto"  # probe for "id:secret", plain or Base64-encoded
    PLAIN = "plain"  # "id:secret"
    ENCODED = "encoded"  # Base64 of "id:secret"


@dataclass(frozen=True)
class Credential:
    """API user plus access key identifying a caller to the invoicing API."""

    identity: str
    secret: str
    secret_format: SecretFormat = SecretFormat.AUTO

    def __repr__(self) -> str:
        return f"Credential(identity={self.identity!r}, secret_format={self.secret_format.value!r})"
