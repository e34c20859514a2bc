from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


SEVERITY_VALUES = tuple(s.value for s in Severity)


@dataclass(frozen=True)
class ClassificationResult:
    """
    Validated classifier output.
    Only the decode/normalize step constructs these; raw model text never
    reaches the workflow.
    """
    symptoms: List[str]
    mood: str
    severity: Severity
    summary: str
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symptoms": list(self.symptoms),
            "mood": self.mood,
            "severity": self.severity.value,
            "summary": self.summary,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class SignatureReceipt:
    external_reference: str
    strategy: str
    block_reference: Optional[int] = None


@dataclass(frozen=True)
class JournalEntryDraft:
    """Everything about an entry except what the store assigns."""
    owner_identity: str
    text: str
    symptoms: List[str]
    mood: str
    severity: Severity
    summary: str
    content_hash: str
    external_reference: str
    submitted_at: datetime
    confidence_score: Optional[float] = None
    block_reference: Optional[int] = None


@dataclass(frozen=True)
class JournalEntry:
    id: str
    owner_identity: str
    text: str
    symptoms: List[str]
    mood: str
    severity: Severity
    summary: str
    content_hash: str
    external_reference: str
    submitted_at: datetime
    created_at: datetime
    confidence_score: Optional[float] = None
    block_reference: Optional[int] = None

    @classmethod
    def from_draft(cls, draft: JournalEntryDraft, entry_id: str, created_at: datetime):
        return cls(
            id=entry_id,
            owner_identity=draft.owner_identity,
            text=draft.text,
            symptoms=list(draft.symptoms),
            mood=draft.mood,
            severity=draft.severity,
            summary=draft.summary,
            content_hash=draft.content_hash,
            external_reference=draft.external_reference,
            submitted_at=draft.submitted_at,
            created_at=created_at,
            confidence_score=draft.confidence_score,
            block_reference=draft.block_reference,
        )

    def to_record(self) -> Dict[str, Any]:
        """Serialize using the persisted column names."""
        return {
            "id": self.id,
            "wallet_address": self.owner_identity,
            "entry_text": self.text,
            "symptoms": list(self.symptoms),
            "mood": self.mood,
            "severity": self.severity.value,
            "summary": self.summary,
            "confidence_score": self.confidence_score,
            "data_hash": self.content_hash,
            "tx_hash": self.external_reference,
            "block_number": self.block_reference,
            "submitted_at": self.submitted_at.isoformat(),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "JournalEntry":
        return cls(
            id=record["id"],
            owner_identity=record["wallet_address"],
            text=record["entry_text"],
            symptoms=list(record.get("symptoms") or []),
            mood=record["mood"],
            severity=Severity(record["severity"]),
            summary=record["summary"],
            content_hash=record["data_hash"],
            external_reference=record["tx_hash"],
            submitted_at=datetime.fromisoformat(record["submitted_at"]),
            created_at=datetime.fromisoformat(record["created_at"]),
            confidence_score=record.get("confidence_score"),
            block_reference=record.get("block_number"),
        )


@dataclass(frozen=True)
class Notification:
    """One user-visible message produced at the workflow boundary."""
    level: str  # info | warning | error
    message: str
    error_type: Optional[str] = None
    persistent: bool = False
    details: Dict[str, Any] = field(default_factory=dict)
