from __future__ import annotations

import re

from facturador.services.idempotency import IdempotencyStore, generate_key, normalize_key

_UUID = "3f2b8c1e-9a4d-4e6f-8b2a-1c3d5e7f9a0b"


class TestNormalizeKey:
    def test_hyphenated_and_compact_uuid_agree(self):
        assert normalize_key(_UUID) == normalize_key(_UUID.replace("-", ""))
        assert normalize_key(_UUID) == "3f2b8c1e9a4d4e6f8b2a1c3d5e7f9a0b"

    def test_safe_token_kept(self):
        assert normalize_key("order_1234-retry") == "order_1234-retry"

    def test_surrounding_whitespace_ignored(self):
        assert normalize_key(f"  {_UUID}  ") == "3f2b8c1e9a4d4e6f8b2a1c3d5e7f9a0b"

    def test_rejected(self):
        assert normalize_key(None) is None
        assert normalize_key("short") is None
        assert normalize_key("has spaces in it") is None
        assert normalize_key("x" * 65) is None
        assert normalize_key(12345678901) is None

    def test_non_v4_uuid_kept_verbatim(self):
        # not stripped: only v4 UUIDs are compacted, this one passes as a plain token
        assert normalize_key("3f2b8c1e-9a4d-1e6f-8b2a-1c3d5e7f9a0b") == (
            "3f2b8c1e-9a4d-1e6f-8b2a-1c3d5e7f9a0b"
        )


class TestGenerateKey:
    def test_compact_uuid4(self):
        key = generate_key()
        assert re.fullmatch(r"[0-9a-f]{32}", key)
        assert normalize_key(key) == key


class TestIdempotencyStore:
    def test_get_missing(self, clock):
        assert IdempotencyStore(clock=clock).get("k" * 12) is None

    def test_set_then_get(self, clock):
        store = IdempotencyStore(clock=clock)
        result = {"id": "inv-1", "name": "FV-1-10"}
        store.set("key-123456", result)
        assert store.get("key-123456") is result

    def test_expires_after_ttl(self, clock):
        store = IdempotencyStore(ttl=600, clock=clock)
        store.set("key-123456", {"id": "inv-1"})
        clock.advance(600)
        assert store.get("key-123456") == {"id": "inv-1"}
        clock.advance(1)
        assert store.get("key-123456") is None
        clock.now -= 601
        assert store.get("key-123456") is None
