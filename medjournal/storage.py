import json
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, List, Optional

from azure.core.exceptions import AzureError, ResourceExistsError, ResourceNotFoundError
from azure.storage.blob import ContainerClient
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError

from medjournal.audit.hash_utils import is_hex_digest
from medjournal.config import Settings
from medjournal.errors import ConfigurationError, InvalidRecord, StoreUnavailable
from medjournal.models.database import Base, HealthEntryRow, build_engine, build_session_factory
from medjournal.models.journal_entry import (
    JournalEntry,
    JournalEntryDraft,
    Severity,
    SEVERITY_VALUES,
)

logger = logging.getLogger("medjournal.storage")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _content_id(draft: JournalEntryDraft) -> str:
    # Same signed draft, same blob name
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"medjournal:{draft.content_hash}"))


def _as_utc(moment: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def validate_draft(draft: JournalEntryDraft) -> None:
    """
    Rejects drafts the schema would refuse, before any write is attempted.
    """
    if not draft.owner_identity or not draft.owner_identity.strip():
        raise InvalidRecord("Entry has no owner identity")
    if not draft.text or not draft.text.strip():
        raise InvalidRecord("Entry text is empty")

    severity = draft.severity.value if isinstance(draft.severity, Severity) else draft.severity
    if severity not in SEVERITY_VALUES:
        raise InvalidRecord(f"Malformed severity: {draft.severity!r}")

    if not isinstance(draft.symptoms, (list, tuple)) or not all(
        isinstance(s, str) for s in draft.symptoms
    ):
        raise InvalidRecord("Symptoms must be a list of strings")

    if draft.confidence_score is not None and not 0.0 <= draft.confidence_score <= 1.0:
        raise InvalidRecord(f"Confidence score out of range: {draft.confidence_score}")

    if not is_hex_digest(draft.content_hash):
        raise InvalidRecord("Content hash is not a 0x-prefixed 64-hex digest")
    if not is_hex_digest(draft.external_reference):
        raise InvalidRecord("External reference is not a 0x-prefixed 64-hex digest")

    if draft.block_reference is not None and (
        not isinstance(draft.block_reference, int) or draft.block_reference < 0
    ):
        raise InvalidRecord(f"Malformed block reference: {draft.block_reference!r}")


class SqlEntryStore:
    """
    Append-only persistence of journal entries in the `health_entries` table.
    There is no update or delete path; the single enrichment allowed is
    filling in an unset block number.
    """

    def __init__(
        self,
        engine,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = _new_id,
    ):
        self.engine = engine
        self._session_factory = build_session_factory(engine)
        self._clock = clock
        self._id_factory = id_factory

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> "SqlEntryStore":
        return cls(build_engine(database_url), **kwargs)

    def create_schema(self):
        with self._translate_errors("create_schema"):
            Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def _translate_errors(self, operation: str):
        try:
            yield
        except (IntegrityError, DataError) as e:
            logger.error(f"Store rejected record during {operation}: {type(e).__name__}")
            raise InvalidRecord(f"Record violates store constraints ({operation})") from e
        except SQLAlchemyError as e:
            logger.error(f"Store unavailable during {operation}: {type(e).__name__}")
            raise StoreUnavailable(f"Entry store unavailable ({operation})") from e

    @staticmethod
    def _row_to_entry(row: HealthEntryRow) -> JournalEntry:
        return JournalEntry(
            id=row.id,
            owner_identity=row.wallet_address,
            text=row.entry_text,
            symptoms=list(row.symptoms or []),
            mood=row.mood,
            severity=Severity(row.severity),
            summary=row.summary,
            content_hash=row.data_hash,
            external_reference=row.tx_hash,
            submitted_at=_as_utc(row.submitted_at),
            created_at=_as_utc(row.created_at),
            confidence_score=row.confidence_score,
            block_reference=row.block_number,
        )

    def append(self, draft: JournalEntryDraft) -> JournalEntry:
        validate_draft(draft)
        entry = JournalEntry.from_draft(draft, self._id_factory(), _as_utc(self._clock()))

        row = HealthEntryRow(
            id=entry.id,
            wallet_address=entry.owner_identity,
            entry_text=entry.text,
            symptoms=list(entry.symptoms),
            mood=entry.mood,
            severity=entry.severity.value,
            summary=entry.summary,
            confidence_score=entry.confidence_score,
            data_hash=entry.content_hash,
            tx_hash=entry.external_reference,
            block_number=entry.block_reference,
            submitted_at=entry.submitted_at,
            created_at=entry.created_at,
        )

        with self._translate_errors("append"):
            with self._session_factory() as session:
                session.add(row)
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    existing = self._find_same_entry(session, entry)
                    if existing is None:
                        raise
                    logger.info(f"Entry already stored id={existing.id}")
                    return self._row_to_entry(existing)

        logger.info(f"Entry appended id={entry.id}")
        return entry

    @staticmethod
    def _find_same_entry(session, entry: JournalEntry) -> Optional[HealthEntryRow]:
        """A repeated append of one signed draft, matched on hash, reference and owner."""
        row = (
            session.query(HealthEntryRow)
            .filter(HealthEntryRow.data_hash == entry.content_hash)
            .one_or_none()
        )
        if row is None:
            return None
        if row.tx_hash != entry.external_reference or row.wallet_address != entry.owner_identity:
            return None
        return row

    def list_by_owner(self, owner_identity: str) -> List[JournalEntry]:
        with self._translate_errors("list_by_owner"):
            with self._session_factory() as session:
                rows = (
                    session.query(HealthEntryRow)
                    .filter(HealthEntryRow.wallet_address == owner_identity)
                    .order_by(HealthEntryRow.created_at.desc())
                    .all()
                )
                return [self._row_to_entry(row) for row in rows]

    def get(self, entry_id: str) -> Optional[JournalEntry]:
        with self._translate_errors("get"):
            with self._session_factory() as session:
                row = session.get(HealthEntryRow, entry_id)
                return self._row_to_entry(row) if row is not None else None

    def attach_block_reference(self, entry_id: str, block_number: int) -> JournalEntry:
        if not isinstance(block_number, int) or block_number < 0:
            raise InvalidRecord(f"Malformed block reference: {block_number!r}")

        with self._translate_errors("attach_block_reference"):
            with self._session_factory() as session:
                updated = (
                    session.query(HealthEntryRow)
                    .filter(
                        HealthEntryRow.id == entry_id,
                        HealthEntryRow.block_number.is_(None),
                    )
                    .update({HealthEntryRow.block_number: block_number}, synchronize_session=False)
                )
                session.commit()

        if updated != 1:
            raise InvalidRecord(f"Entry {entry_id} is unknown or already has a block reference")
        return self.get(entry_id)


class BlobEntryStore:
    """
    Immutable JSON blobs, one per entry, under `<wallet_address>/<id>.json`.
    The id is derived from the content hash, so repeating an append of the
    same signed draft finds the existing blob instead of writing another.
    Writes never overwrite an existing blob.
    """

    def __init__(
        self,
        container_client: ContainerClient,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[JournalEntryDraft], str] = _content_id,
    ):
        self.container = container_client
        self._clock = clock
        self._id_factory = id_factory

    @classmethod
    def from_connection_string(cls, connection_string: str, container_name: str, **kwargs):
        return cls(
            ContainerClient.from_connection_string(
                conn_str=connection_string,
                container_name=container_name,
            ),
            **kwargs,
        )

    @contextmanager
    def _translate_errors(self, operation: str):
        try:
            yield
        except ResourceExistsError as e:
            logger.error(f"Blob already exists during {operation}")
            raise InvalidRecord(f"Entry blob already exists ({operation})") from e
        except AzureError as e:
            logger.error(f"Blob store unavailable during {operation}: {type(e).__name__}")
            raise StoreUnavailable(f"Entry store unavailable ({operation})") from e

    @staticmethod
    def _blob_name(owner_identity: str, entry_id: str) -> str:
        return f"{owner_identity}/{entry_id}.json"

    def _read(self, blob_name: str) -> JournalEntry:
        data = self.container.download_blob(blob_name).readall()
        return JournalEntry.from_record(json.loads(data))

    def append(self, draft: JournalEntryDraft) -> JournalEntry:
        validate_draft(draft)
        entry = JournalEntry.from_draft(draft, self._id_factory(draft), _as_utc(self._clock()))
        blob_name = self._blob_name(entry.owner_identity, entry.id)

        with self._translate_errors("append"):
            try:
                self.container.upload_blob(
                    name=blob_name,
                    data=json.dumps(entry.to_record(), indent=2, ensure_ascii=False),
                    overwrite=False,
                )
            except ResourceExistsError:
                existing = self._read(blob_name)
                if (
                    existing.content_hash != entry.content_hash
                    or existing.external_reference != entry.external_reference
                ):
                    raise
                logger.info(f"Entry already stored id={existing.id}")
                return existing

        logger.info(f"Entry appended id={entry.id}")
        return entry

    def list_by_owner(self, owner_identity: str) -> List[JournalEntry]:
        prefix = f"{owner_identity}/"
        with self._translate_errors("list_by_owner"):
            entries = [
                self._read(props.name)
                for props in self.container.list_blobs(name_starts_with=prefix)
            ]
        # Blob content, not its path, decides ownership.
        entries = [e for e in entries if e.owner_identity == owner_identity]
        return sorted(entries, key=lambda e: e.created_at, reverse=True)

    def get(self, entry_id: str) -> Optional[JournalEntry]:
        suffix = f"/{entry_id}.json"
        with self._translate_errors("get"):
            for props in self.container.list_blobs():
                if props.name.endswith(suffix):
                    try:
                        return self._read(props.name)
                    except ResourceNotFoundError:
                        return None
        return None


def build_entry_store(settings: Settings):
    if settings.entry_store_backend == "blob":
        if not settings.azure_storage_connection_string:
            raise ConfigurationError("ENTRY_STORE_BACKEND=blob needs AZURE_STORAGE_CONNECTION_STRING")
        return BlobEntryStore.from_connection_string(
            settings.azure_storage_connection_string,
            settings.azure_storage_container,
        )

    store = SqlEntryStore.from_url(settings.database_url)
    store.create_schema()
    return store
