"""Tests for the canonical hashing helpers used by the action log."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from approval_kernel.domain.workflow import DocumentStatus
from approval_kernel.utils.hashing import (
    GENESIS,
    canonicalize_json,
    hash_action,
    hash_payload,
    normalize_timestamp,
)

UID = UUID("12345678-1234-5678-1234-567812345678")


class TestCanonicalJson:
    def test_keys_sorted_without_whitespace(self):
        assert canonicalize_json({"b": 1, "a": 2}) == '{"a":2,"b":1}'

    def test_special_types(self):
        data = {
            "amount": Decimal("10.500"),
            "id": UID,
            "status": DocumentStatus.PENDING,
            "roles": frozenset({"b", "a"}),
        }
        assert canonicalize_json(data) == (
            '{"amount":"10.5","id":"12345678-1234-5678-1234-567812345678",'
            '"roles":["a","b"],"status":"pending"}'
        )


class TestTimestamps:
    def test_aware_and_naive_utc_match(self):
        aware = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        naive = datetime(2024, 1, 1, 12, 0)

        assert normalize_timestamp(aware) == normalize_timestamp(naive)

    def test_offsets_converted_to_utc(self):
        plus_two = datetime(2024, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))

        assert normalize_timestamp(plus_two) == "2024-01-01T12:00:00"

    def test_payload_hash_ignores_storage_offset(self):
        aware = {"created_at": datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)}
        naive = {"created_at": datetime(2024, 1, 1, 12, 0)}

        assert hash_payload(aware) == hash_payload(naive)


class TestHashAction:
    def test_deterministic(self):
        first = hash_action("invoice", str(UID), 1, "submit", "p" * 64, None)
        second = hash_action("invoice", str(UID), 1, "submit", "p" * 64, None)

        assert first == second
        assert len(first) == 64

    def test_genesis_used_for_first_row(self):
        assert hash_action("invoice", str(UID), 1, "submit", "p", None) == hash_action(
            "invoice", str(UID), 1, "submit", "p", GENESIS,
        )

    def test_every_component_matters(self):
        base = hash_action("invoice", str(UID), 2, "approve", "p", "prev")

        assert base != hash_action("payment", str(UID), 2, "approve", "p", "prev")
        assert base != hash_action("invoice", str(UID), 3, "approve", "p", "prev")
        assert base != hash_action("invoice", str(UID), 2, "reject", "p", "prev")
        assert base != hash_action("invoice", str(UID), 2, "approve", "q", "prev")
        assert base != hash_action("invoice", str(UID), 2, "approve", "p", "other")
