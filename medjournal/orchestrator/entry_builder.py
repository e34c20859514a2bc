from datetime import datetime

from medjournal.audit.hash_utils import compute_content_hash
from medjournal.models.journal_entry import (
    ClassificationResult,
    JournalEntryDraft,
    SignatureReceipt,
)


def build_entry_draft(
    *,
    owner_identity: str,
    text: str,
    classification: ClassificationResult,
    content_hash: str,
    receipt: SignatureReceipt,
    submitted_at: datetime,
) -> JournalEntryDraft:
    """
    Builds the single persistable draft for a confirmed submission.
    The content hash the wallet signed must still match the draft's inputs.
    """
    if not owner_identity or not owner_identity.strip():
        raise ValueError("Entry cannot be built without an owner identity")

    if classification is None:
        raise ValueError("Entry cannot be built without a classification")

    if not isinstance(submitted_at, datetime):
        raise ValueError("Submission timestamp is required")

    recomputed = compute_content_hash(text, classification, submitted_at, owner_identity)
    if recomputed != content_hash:
        raise ValueError("Content hash does not match the entry being persisted")

    return JournalEntryDraft(
        owner_identity=owner_identity,
        text=text,
        symptoms=list(classification.symptoms),
        mood=classification.mood,
        severity=classification.severity,
        summary=classification.summary,
        confidence_score=classification.confidence,
        content_hash=content_hash,
        external_reference=receipt.external_reference,
        block_reference=receipt.block_reference,
        submitted_at=submitted_at,
    )
