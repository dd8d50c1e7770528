from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import platformdirs
import yaml
from dotenv import load_dotenv

KEYRING_SERVICE = "facturador"


def _resolve_config_dir_for_dotenv() -> Path | None:
    """Resolve the config dir for .env loading without depending on .env itself.

    Checks the shell env var, then the dev repo layout, then the platformdirs
    user config dir. Returns None when none of them exists yet.
    """
    from_env = os.environ.get("FACTURADOR_CONFIG_DIR")
    if from_env:
        return Path(from_env)
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / "config"
    if candidate.is_dir():
        return candidate
    pd = Path(platformdirs.user_config_dir("facturador"))
    if pd.is_dir():
        return pd
    return None


# Load .env: cwd first (highest priority), then config dir (won't override)
load_dotenv()
_cfg_dir = _resolve_config_dir_for_dotenv()
if _cfg_dir is not None:
    load_dotenv(_cfg_dir / ".env")


def get_config_dir() -> Path:
    """Config directory, re-evaluated on each call to pick up env changes.

    Priority: 1) FACTURADOR_CONFIG_DIR, 2) dev repo layout, 3) platformdirs.
    """
    from_env = os.environ.get("FACTURADOR_CONFIG_DIR")
    if from_env:
        return Path(from_env)
    candidate = Path(__file__).resolve().parent.parent.parent / "config"
    if candidate.is_dir():
        return candidate
    return Path(platformdirs.user_config_dir("facturador"))


DEFAULT_API_URL = "https://api.siigo.com"

AUTH_PATH = "/auth/user-login"
CUSTOMERS_PATH = "/v1/customers"
INVOICES_PATH = "/v1/invoices"
CREDIT_NOTES_PATH = "/v1/credit-notes"

TENANT_HEADER = "Partner-Id"
IDEMPOTENCY_HEADER = "Idempotency-Key"
ERROR_CODE_HEADER = "siigoapi-error-code"

AUTH_TIMEOUT = 10
API_TIMEOUT = 30
INVOICE_TIMEOUT = 60

TOKEN_CACHE_TTL = 15 * 60
TOKEN_SAFETY_MARGIN = 2 * 60
CATALOG_TTL = 10 * 60
IDEMPOTENCY_TTL = 10 * 60

INVOICE_DOCUMENT_TYPE = "FV"


@dataclass(frozen=True)
class Settings:
    """Runtime settings for talking to the invoicing API."""

    api_url: str = DEFAULT_API_URL
    auth_timeout: float = AUTH_TIMEOUT
    api_timeout: float = API_TIMEOUT
    invoice_timeout: float = INVOICE_TIMEOUT
    invoice_document_id: int = 28418
    credit_note_document_id: int = 28420
    default_tax_id: int | None = None
    payment_method_id: int | None = None
    seller_id: int | None = None
    fallback_seller_id: int | None = None
    partner_id: str | None = None


def _env_int(name: str) -> int | None:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name}: expected an integer, got '{raw}'") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name}: expected a number, got '{raw}'") from None


def load_settings() -> Settings:
    """Build Settings from FACTURADOR_* environment variables.

    Re-evaluated on each call to pick up env changes.
    """
    invoice_doc = _env_int("FACTURADOR_INVOICE_DOCUMENT_ID")
    credit_doc = _env_int("FACTURADOR_CREDIT_NOTE_DOCUMENT_ID")
    partner_id = os.environ.get("FACTURADOR_PARTNER_ID", "").strip()
    return Settings(
        api_url=os.environ.get("FACTURADOR_API_URL", DEFAULT_API_URL).rstrip("/"),
        auth_timeout=_env_float("FACTURADOR_AUTH_TIMEOUT", AUTH_TIMEOUT),
        api_timeout=_env_float("FACTURADOR_API_TIMEOUT", API_TIMEOUT),
        invoice_timeout=_env_float("FACTURADOR_INVOICE_TIMEOUT", INVOICE_TIMEOUT),
        invoice_document_id=invoice_doc if invoice_doc is not None else 28418,
        credit_note_document_id=credit_doc if credit_doc is not None else 28420,
        default_tax_id=_env_int("FACTURADOR_TAX_ID"),
        payment_method_id=_env_int("FACTURADOR_PAYMENT_METHOD_ID"),
        seller_id=_env_int("FACTURADOR_SELLER_ID"),
        fallback_seller_id=_env_int("FACTURADOR_FALLBACK_SELLER_ID"),
        partner_id=partner_id or None,
    )


# --- Keyring helpers ---


def _get_keyring_secret(identity: str) -> str | None:
    """Try to get the access key for *identity* from the OS keyring.

    Returns None on any failure (no backend, not stored, dbus errors, etc.).
    """
    try:
        import keyring

        return keyring.get_password(KEYRING_SERVICE, identity)
    except Exception:
        return None


def _set_keyring_secret(identity: str, secret: str) -> bool:
    """Store the access key for *identity* in the OS keyring. Returns True on success."""
    try:
        import keyring

        keyring.set_password(KEYRING_SERVICE, identity, secret)
        return True
    except Exception:
        return False


# --- Credential access ---


def get_api_username() -> str:
    """Return the API username from FACTURADOR_USERNAME.

    Raises KeyError if the variable is not set.
    """
    return os.environ["FACTURADOR_USERNAME"]


def get_api_access_key(identity: str) -> str:
    """Return the API access key.

    Priority: 1) FACTURADOR_ACCESS_KEY env var, 2) OS keyring.
    Raises KeyError if neither source has the key.
    """
    key = os.environ.get("FACTURADOR_ACCESS_KEY")
    if key is not None:
        return key
    key = _get_keyring_secret(identity)
    if key is not None:
        return key
    raise KeyError("FACTURADOR_ACCESS_KEY")


def load_yaml(path: Path) -> dict:
    """Load and parse a YAML (or JSON) file, returning the top-level mapping."""
    data = yaml.safe_load(path.read_text())
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data
