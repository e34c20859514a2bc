from dataclasses import dataclass
from typing import Optional

from medjournal.audit.hash_utils import compute_content_hash
from medjournal.models.journal_entry import ClassificationResult, JournalEntry


@dataclass(frozen=True)
class HashVerification:
    entry_id: str
    stored_hash: str
    recomputed_hash: Optional[str]
    reason: Optional[str] = None

    @property
    def verifiable(self) -> bool:
        return self.recomputed_hash is not None

    @property
    def matches(self) -> bool:
        return self.verifiable and self.stored_hash == self.recomputed_hash

    def to_dict(self) -> dict:
        return {
            "entry_id": self.entry_id,
            "stored_hash": self.stored_hash,
            "recomputed_hash": self.recomputed_hash,
            "verifiable": self.verifiable,
            "matches": self.matches,
            "reason": self.reason,
        }


def verify_entry_hash(entry: JournalEntry) -> HashVerification:
    """
    Rebuilds the content hash from a stored entry's own fields.

    A mismatch means the text, the classification, the owner or the
    submission time was altered after the hash was signed. The signed input
    includes the classifier's confidence, so an entry stored without it
    cannot be re-derived and is reported as not verifiable.
    """
    if entry.confidence_score is None:
        return HashVerification(
            entry_id=entry.id,
            stored_hash=entry.content_hash,
            recomputed_hash=None,
            reason="confidence score not stored",
        )

    classification = ClassificationResult(
        symptoms=list(entry.symptoms),
        mood=entry.mood,
        severity=entry.severity,
        summary=entry.summary,
        confidence=entry.confidence_score,
    )

    recomputed = compute_content_hash(
        text=entry.text,
        classification=classification,
        submitted_at=entry.submitted_at,
        owner_identity=entry.owner_identity,
    )

    return HashVerification(
        entry_id=entry.id,
        stored_hash=entry.content_hash,
        recomputed_hash=recomputed,
    )
