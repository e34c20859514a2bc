from datetime import datetime, timedelta, timezone
from dataclasses import replace

from medjournal.audit.hash_utils import (
    canonical_timestamp,
    compute_content_hash,
    is_hex_digest,
)

OWNER = "0x1111111111111111111111111111111111111111"
FIXED_TIME = datetime(2025, 1, 1, 9, 30, 0, 123456, tzinfo=timezone.utc)


def test_content_hash_is_deterministic(headache_classification):
    first = compute_content_hash("Headache again", headache_classification, FIXED_TIME, OWNER)
    second = compute_content_hash("Headache again", headache_classification, FIXED_TIME, OWNER)

    assert first == second
    assert is_hex_digest(first)


def test_content_hash_changes_with_every_bound_field(headache_classification):
    baseline = compute_content_hash("Headache again", headache_classification, FIXED_TIME, OWNER)

    variants = [
        compute_content_hash("Headache again.", headache_classification, FIXED_TIME, OWNER),
        compute_content_hash(
            "Headache again", replace(headache_classification, mood="calm"), FIXED_TIME, OWNER
        ),
        compute_content_hash(
            "Headache again", headache_classification, FIXED_TIME + timedelta(microseconds=1), OWNER
        ),
        compute_content_hash(
            "Headache again", headache_classification, FIXED_TIME, OWNER.replace("1", "2")
        ),
    ]

    for variant in variants:
        assert variant != baseline


def test_naive_timestamp_is_treated_as_utc(headache_classification):
    naive = FIXED_TIME.replace(tzinfo=None)
    offset = FIXED_TIME.astimezone(timezone(timedelta(hours=5, minutes=30)))

    assert canonical_timestamp(naive) == canonical_timestamp(FIXED_TIME)
    assert canonical_timestamp(offset) == "2025-01-01T09:30:00.123456+00:00"
    assert compute_content_hash("x", headache_classification, naive, OWNER) == \
        compute_content_hash("x", headache_classification, offset, OWNER)


def test_non_ascii_text_hashes(headache_classification):
    digest = compute_content_hash("Kopfschmerzen und Übelkeit", headache_classification, FIXED_TIME, OWNER)
    assert is_hex_digest(digest)


def test_hex_digest_format_checks():
    assert is_hex_digest("0x" + "ab" * 32)
    assert not is_hex_digest("ab" * 32)
    assert not is_hex_digest("0x" + "AB" * 32)
    assert not is_hex_digest("0x" + "a" * 63)
    assert not is_hex_digest(None)
