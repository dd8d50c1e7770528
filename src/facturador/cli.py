from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import os
import stat
import sys
from pathlib import Path
from typing import Any

import httpx

from facturador.config import (
    INVOICE_DOCUMENT_TYPE,
    get_api_access_key,
    get_api_username,
    get_config_dir,
    load_settings,
    load_yaml,
)
from facturador.models.credential import Credential, SecretFormat
from facturador.services.exceptions import ExternalApiError, FacturadorError


def _configure_logging() -> None:
    raw = os.environ.get("FACTURADOR_LOG_LEVEL", "WARNING").strip().upper()
    level = getattr(logging, raw, None)
    if not isinstance(level, int):
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _usable_keyring() -> str | None:
    """Name of the active keyring backend, or None when only the fail backend is present."""
    try:
        import keyring
        from keyring.backends.fail import Keyring as FailKeyring

        backend = keyring.get_keyring()
    except Exception:
        return None
    if isinstance(backend, FailKeyring):
        return None
    return getattr(backend, "name", type(backend).__name__)


def _store_env_credentials(env_file: Path, values: dict[str, str]) -> None:
    """Write *values* into *env_file*; a new file is created readable by its owner only."""
    from dotenv import set_key

    env_file.parent.mkdir(parents=True, exist_ok=True)
    if not env_file.exists():
        env_file.touch(mode=0o600)
    for key, value in values.items():
        set_key(str(env_file), key, value)


def _has_open_permissions(env_file: Path) -> bool:
    """True when group or others can read *env_file* (always False where stat fails)."""
    try:
        return bool(env_file.stat().st_mode & (stat.S_IRGRP | stat.S_IROTH))
    except OSError:
        return False


def _set_secret(identity: str | None) -> int:
    """Prompt for the access key and store it in the keyring, else in the config .env."""
    identity = identity or os.environ.get("FACTURADOR_USERNAME") or input("Usuario de la API: ").strip()
    if not identity:
        print("Error: se requiere un usuario", file=sys.stderr)
        return 1
    secret = getpass.getpass("Access key: ").strip()
    if not secret:
        print("Error: access key vacía", file=sys.stderr)
        return 1

    from facturador.config import _set_keyring_secret

    backend = _usable_keyring()
    if backend and _set_keyring_secret(identity, secret):
        print(f"Access key de {identity} guardada en el keyring ({backend}).")
        return 0

    env_file = get_config_dir() / ".env"
    _store_env_credentials(
        env_file, {"FACTURADOR_USERNAME": identity, "FACTURADOR_ACCESS_KEY": secret}
    )
    print(f"Keyring no disponible; access key guardada en {env_file}")
    if _has_open_permissions(env_file):
        print(
            f"  AVISO: otros usuarios pueden leer {env_file}. Ejecute: chmod 600 {env_file}",
            file=sys.stderr,
        )
    return 0


def load_credential() -> Credential:
    """Credential from FACTURADOR_USERNAME / FACTURADOR_ACCESS_KEY (or the keyring)."""
    identity = get_api_username()
    raw_format = os.environ.get("FACTURADOR_SECRET_FORMAT", SecretFormat.AUTO.value)
    try:
        secret_format = SecretFormat(raw_format.strip().lower())
    except ValueError:
        raise ValueError(
            f"FACTURADOR_SECRET_FORMAT: expected auto, plain or encoded, got '{raw_format}'"
        ) from None
    return Credential(identity, get_api_access_key(identity), secret_format)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="facturador", description="Relay invoices and credit notes to the invoicing API."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("payment-types", help="list payment types")
    p.add_argument("--document-type", default=INVOICE_DOCUMENT_TYPE)

    sub.add_parser("sellers", help="list users that can act as sellers")

    p = sub.add_parser("invoice", help="create an invoice from a YAML/JSON file")
    p.add_argument("file", type=Path)
    p.add_argument("--idempotency-key")
    p.add_argument("--seller-id", type=int)
    p.add_argument("--seller-email")

    p = sub.add_parser("order", help="create an invoice from an order webhook payload")
    p.add_argument("file", type=Path)
    p.add_argument("--idempotency-key")

    p = sub.add_parser("cancel", help="cancel an invoice with a credit note")
    p.add_argument("serie")
    p.add_argument("number")
    p.add_argument("--reason")

    p = sub.add_parser("set-secret", help="store the API access key")
    p.add_argument("--identity")
    return parser


async def _run(args: argparse.Namespace) -> Any:
    from facturador.services.relay import InvoiceRelay

    credential = load_credential()
    async with InvoiceRelay(load_settings()) as relay:
        if args.command == "payment-types":
            return await relay.get_payment_types(credential, args.document_type)
        if args.command == "sellers":
            return await relay.get_sellers(credential)
        if args.command == "invoice":
            return await relay.create_invoice(
                load_yaml(args.file),
                credential,
                args.idempotency_key,
                seller_id=args.seller_id,
                seller_email_hint=args.seller_email,
            )
        if args.command == "order":
            return await relay.create_invoice_from_order(
                load_yaml(args.file), credential, args.idempotency_key
            )
        if args.command == "cancel":
            return await relay.cancel_invoice(args.serie, args.number, credential, args.reason)
    raise ValueError(f"unknown command: {args.command}")


def main(argv: list[str] | None = None) -> None:
    """Entry point for the facturador CLI."""
    args = _build_parser().parse_args(argv)
    _configure_logging()

    if args.command == "set-secret":
        sys.exit(_set_secret(args.identity))

    try:
        result = asyncio.run(_run(args))
    except KeyError as e:
        print(f"Error: variable {e.args[0]} no definida", file=sys.stderr)
        sys.exit(1)
    except ExternalApiError as e:
        print(f"Error: {e} ({e.status_code}, {e.error_code})", file=sys.stderr)
        if e.payload_shape:
            print(json.dumps(e.payload_shape), file=sys.stderr)
        sys.exit(1)
    except httpx.HTTPError as e:
        print(f"Error: API no disponible ({e!r})", file=sys.stderr)
        sys.exit(1)
    except (FacturadorError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(result, ensure_ascii=False, indent=2, default=str))


if __name__ == "__main__":
    main()
