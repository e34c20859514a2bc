import json
import hashlib
import re
from datetime import datetime, timezone
from typing import Dict, Any

from medjournal.models.journal_entry import ClassificationResult

HEX_DIGEST_PATTERN = re.compile(r"^0x[0-9a-f]{64}$")


def canonical_timestamp(moment: datetime) -> str:
    """
    ISO-8601 in UTC with microseconds, so the same instant always
    serializes identically. Naive datetimes are taken to be UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def build_hash_payload(
    text: str,
    classification: ClassificationResult,
    submitted_at: datetime,
    owner_identity: str,
) -> Dict[str, Any]:
    return {
        "entry": text,
        "analysis": classification.to_dict(),
        "timestamp": canonical_timestamp(submitted_at),
        "account": owner_identity,
    }


def compute_content_hash(
    text: str,
    classification: ClassificationResult,
    submitted_at: datetime,
    owner_identity: str,
) -> str:
    """
    Deterministically compute a SHA-256 digest binding the entry text,
    its classification, the submission time and the owner.
    Returned as 0x-prefixed hex so it fits a bytes32 contract argument.
    """
    payload = build_hash_payload(text, classification, submitted_at, owner_identity)

    serialized = json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )

    return "0x" + hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def is_hex_digest(value: str) -> bool:
    return isinstance(value, str) and bool(HEX_DIGEST_PATTERN.match(value))
