import concurrent.futures
import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from medjournal.audit.hash_utils import compute_content_hash
from medjournal.classifier.gateway import ClassifierGateway
from medjournal.config import Settings
from medjournal.errors import (
    CallTimeout,
    ConfigurationError,
    InvalidInput,
    InvalidRecord,
    InvalidTransition,
    MedJournalError,
    NotConnected,
    UnparsableResponse,
    UpstreamError,
    UserRejected,
    WorkflowBusy,
    WrongNetwork,
)
from medjournal.models.journal_entry import (
    ClassificationResult,
    JournalEntry,
    JournalEntryDraft,
    Notification,
)
from medjournal.orchestrator.entry_builder import build_entry_draft
from medjournal.signer.session import WalletSession
from medjournal.signer.signer import Signer
from medjournal.storage import build_entry_store
from medjournal.telemetry import emit_exception_telemetry, emit_workflow_telemetry

logger = logging.getLogger("medjournal.workflow")

GENERIC_FAILURE = "Something went wrong. Please try again."


class WorkflowState(str, Enum):
    IDLE = "IDLE"
    CLASSIFYING = "CLASSIFYING"
    CLASSIFIED = "CLASSIFIED"
    SIGNING = "SIGNING"
    PERSISTING = "PERSISTING"
    DONE = "DONE"
    ERROR = "ERROR"


class JournalWorkflow:
    """
    Sequences classify -> user confirmation -> sign -> append for one
    user session and guarantees at most one persisted record per confirmed
    submission, across retries.

    Every external failure is caught here, turned into exactly one
    Notification, and leaves the draft text and classification in place.
    Nothing is retried automatically.
    """

    def __init__(
        self,
        classifier,
        signer: Signer,
        store,
        classifier_timeout: float = 30.0,
        store_timeout: float = 10.0,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.classifier = classifier
        self.signer = signer
        self.store = store
        self.classifier_timeout = classifier_timeout
        self.store_timeout = store_timeout
        self._clock = clock

        self.state = WorkflowState.IDLE
        self.draft_text = ""
        self.classification: Optional[ClassificationResult] = None
        self.pending_reference: Optional[str] = None
        # Signed but not yet confirmed as stored; re-appended as-is on the next confirm().
        self.signed_draft: Optional[JournalEntryDraft] = None
        self.entries: List[JournalEntry] = []
        self.notifications: List[Notification] = []
        self.last_error: Optional[Exception] = None
        self.disabled_reason: Optional[ConfigurationError] = None

        self._lock = threading.Lock()
        self._listeners: List[Callable[["JournalWorkflow"], None]] = []
        # Abandoned (timed-out) calls keep their worker; spare workers keep
        # the next request from queueing behind them.
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="medjournal-call"
        )

    @classmethod
    def from_settings(cls, settings: Settings, session: Optional[WalletSession] = None):
        return cls(
            classifier=ClassifierGateway.from_settings(settings),
            signer=Signer.from_settings(settings, session=session),
            store=build_entry_store(settings),
            classifier_timeout=settings.classifier_timeout_seconds,
            store_timeout=settings.store_timeout_seconds,
        )

    # ---------------------------------------------------------
    # Session context
    # ---------------------------------------------------------
    @property
    def owner_identity(self) -> Optional[str]:
        session = self.signer.session
        if session is None or not session.is_active:
            return None
        return session.owner_identity

    def _active_owner(self) -> Optional[str]:
        """Re-reads the wallet's active account; a changed account ends the session."""
        session = self.signer.session
        if session is None:
            return None
        if not session.sync_accounts():
            self.entries = []
            return None
        return session.owner_identity

    def connect(self, session: WalletSession) -> List[JournalEntry]:
        self.signer.attach(session)
        advisory = session.network_advisory(self.signer.expected_chain_id)
        if advisory is not None:
            self._on_advisory(advisory)
        return self.refresh_entries()

    def disconnect(self):
        self.signer.detach()
        self.entries = []

    def subscribe(self, listener: Callable[["JournalWorkflow"], None]):
        self._listeners.append(listener)

    def close(self):
        self._executor.shutdown(wait=False)

    # ---------------------------------------------------------
    # Internals
    # ---------------------------------------------------------
    @contextmanager
    def _in_flight(self):
        if not self._lock.acquire(blocking=False):
            raise WorkflowBusy("A request is already in flight")
        try:
            yield
        finally:
            self._lock.release()

    def _set_state(self, state: WorkflowState):
        logger.debug(f"Workflow {self.state.value} -> {state.value}")
        self.state = state
        for listener in self._listeners:
            listener(self)

    def _notify(self, level: str, message: str, error: Optional[Exception] = None,
                persistent: bool = False, **details):
        notification = Notification(
            level=level,
            message=message,
            error_type=type(error).__name__ if error is not None else None,
            persistent=persistent,
            details=details,
        )
        self.notifications.append(notification)
        return notification

    def _timed(self, step: str, timeout: float, fn, *args):
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise CallTimeout(step, timeout)

    def _record(self, step: str, started: float, outcome: str):
        latency_ms = int((time.perf_counter() - started) * 1000)
        emit_workflow_telemetry(step=step, latency_ms=latency_ms, outcome=outcome)

    def _fail(self, step: str, error: Exception):
        """Move to ERROR with a single notification; the draft is kept."""
        self.last_error = error
        emit_exception_telemetry(error)

        if isinstance(error, ConfigurationError):
            self.disabled_reason = error
            logger.error(f"{step}: configuration error: {error}")
            self._notify("error", error.user_message, error, persistent=True)
        elif isinstance(error, (UnparsableResponse, InvalidRecord)):
            logger.error(f"{step}: upstream defect {type(error).__name__}: {error}")
            self._notify("error", GENERIC_FAILURE, error)
        elif isinstance(error, MedJournalError):
            logger.warning(f"{step}: {type(error).__name__}: {error}")
            details = {}
            if isinstance(error, UpstreamError) and error.status is not None:
                details["status"] = error.status
            self._notify("error", error.user_message, error, **details)
        else:
            logger.exception(f"{step}: unexpected failure")
            self._notify("error", GENERIC_FAILURE, error)

        self._set_state(WorkflowState.ERROR)

    def _on_submitted(self, reference: str):
        self.pending_reference = reference
        self._notify("info", "Submitted, awaiting confirmation.", reference=reference)
        for listener in self._listeners:
            listener(self)

    def _on_advisory(self, advisory: WrongNetwork):
        self._notify(
            "warning",
            advisory.user_message,
            advisory,
            expected_chain_id=advisory.expected_chain_id,
            actual_chain_id=advisory.actual_chain_id,
        )

    # ---------------------------------------------------------
    # User actions
    # ---------------------------------------------------------
    def submit(self, text: str) -> WorkflowState:
        """IDLE -> CLASSIFYING -> CLASSIFIED | ERROR."""
        with self._in_flight():
            if self.disabled_reason is not None:
                self._notify("error", self.disabled_reason.user_message,
                             self.disabled_reason, persistent=True)
                return self.state

            if self.state != WorkflowState.IDLE:
                raise InvalidTransition(f"Cannot submit from {self.state.value}")

            self.draft_text = text or ""
            if not self.draft_text.strip():
                self._notify("warning", InvalidInput.user_message, InvalidInput())
                return self.state

            self._set_state(WorkflowState.CLASSIFYING)
            started = time.perf_counter()
            try:
                result = self._timed(
                    "classify", self.classifier_timeout, self.classifier.classify, self.draft_text
                )
            except CallTimeout as e:
                self._record("classify", started, "timeout")
                self._fail("classify", e)
                return self.state
            except InvalidInput as e:
                self._record("classify", started, "failure")
                self._notify("warning", e.user_message, e)
                self._set_state(WorkflowState.IDLE)
                return self.state
            except Exception as e:
                self._record("classify", started, "failure")
                self._fail("classify", e)
                return self.state

            self._record("classify", started, "success")
            self.classification = result
            self._notify("info", "Analysis complete.")
            self._set_state(WorkflowState.CLASSIFIED)
            return self.state

    def confirm(self) -> Optional[JournalEntry]:
        """
        CLASSIFIED -> SIGNING -> PERSISTING -> DONE -> IDLE.

        A draft that was signed but whose write failed or timed out is
        appended again unchanged instead of being re-signed; the store
        treats the repeated content hash as the same entry.
        """
        with self._in_flight():
            if self.state != WorkflowState.CLASSIFIED:
                raise InvalidTransition(f"Cannot confirm from {self.state.value}")

            try:
                owner = self._active_owner()
            except MedJournalError as e:
                self._fail("sign", e)
                return None
            if owner is None:
                self._not_connected(NotConnected("Wallet not connected"))
                return None

            draft = self.signed_draft
            if draft is not None and draft.owner_identity.lower() != owner.lower():
                draft = self.signed_draft = None

            if draft is None:
                draft = self._sign_draft(owner)
                if draft is None:
                    return None
            else:
                logger.info("Re-appending previously signed entry")

            self._set_state(WorkflowState.PERSISTING)
            started = time.perf_counter()
            try:
                entry = self._timed("persist", self.store_timeout, self.store.append, draft)
            except CallTimeout as e:
                self._record("persist", started, "timeout")
                self._fail("persist", e)
                return None
            except Exception as e:
                self._record("persist", started, "failure")
                self._fail("persist", e)
                return None
            self._record("persist", started, "success")

            self._set_state(WorkflowState.DONE)
            self.entries = [entry] + [e for e in self.entries if e.id != entry.id]
            self.draft_text = ""
            self.classification = None
            self.pending_reference = None
            self.signed_draft = None
            self.last_error = None
            self._notify("info", "Entry verified and saved.", entry_id=entry.id)
            self._set_state(WorkflowState.IDLE)
            return entry

    def _not_connected(self, error: NotConnected):
        self._notify("warning", error.user_message, error)
        if self.state != WorkflowState.CLASSIFIED:
            self._set_state(WorkflowState.CLASSIFIED)

    def _sign_draft(self, owner: str) -> Optional[JournalEntryDraft]:
        submitted_at = self._clock()
        content_hash = compute_content_hash(
            self.draft_text, self.classification, submitted_at, owner
        )

        self.pending_reference = None
        self._set_state(WorkflowState.SIGNING)
        started = time.perf_counter()
        try:
            receipt = self.signer.sign(
                content_hash,
                owner,
                on_submitted=self._on_submitted,
                on_advisory=self._on_advisory,
            )
        except UserRejected as e:
            self._record("sign", started, "rejected")
            logger.info("Signing rejected by user")
            self._notify("info", e.user_message, e)
            self._set_state(WorkflowState.CLASSIFIED)
            return None
        except NotConnected as e:
            self._record("sign", started, "failure")
            if not self.owner_identity:
                self.entries = []
            self._not_connected(e)
            return None
        except Exception as e:
            self._record("sign", started, "failure")
            self._fail("sign", e)
            return None
        self._record("sign", started, "success")

        try:
            self.signed_draft = build_entry_draft(
                owner_identity=owner,
                text=self.draft_text,
                classification=self.classification,
                content_hash=content_hash,
                receipt=receipt,
                submitted_at=submitted_at,
            )
        except ValueError as e:
            self._fail("persist", e)
            return None
        return self.signed_draft

    def retry(self) -> WorkflowState:
        """
        ERROR -> CLASSIFIED when a classification survives (sign again
        without re-classifying, or re-append an already signed draft),
        otherwise ERROR -> IDLE with the text kept.
        """
        with self._in_flight():
            if self.state != WorkflowState.ERROR:
                raise InvalidTransition(f"Cannot retry from {self.state.value}")
            if self.disabled_reason is not None:
                self._notify("error", self.disabled_reason.user_message,
                             self.disabled_reason, persistent=True)
                return self.state

            self.last_error = None
            if self.classification is not None:
                self._set_state(WorkflowState.CLASSIFIED)
            else:
                self._set_state(WorkflowState.IDLE)
            return self.state

    def discard(self) -> WorkflowState:
        """Abandon the draft from CLASSIFIED or ERROR."""
        with self._in_flight():
            if self.state not in (WorkflowState.IDLE, WorkflowState.CLASSIFIED, WorkflowState.ERROR):
                raise InvalidTransition(f"Cannot discard from {self.state.value}")
            self.draft_text = ""
            self.classification = None
            self.pending_reference = None
            self.signed_draft = None
            self.last_error = None
            self._set_state(WorkflowState.IDLE)
            return self.state

    def refresh_entries(self) -> List[JournalEntry]:
        """
        Read-only; allowed while a submission is in flight. Entries already
        held for the owner are merged by id, so a listing that started
        before a concurrent append cannot drop the new entry.
        """
        owner = self.owner_identity
        if owner is None:
            self.entries = []
            return self.entries

        try:
            loaded = self._timed(
                "list", self.store_timeout, self.store.list_by_owner, owner
            )
        except MedJournalError as e:
            logger.warning(f"Loading entries failed: {type(e).__name__}")
            self._notify("error", "Failed to load your journal entries.", e)
            return self.entries

        known = {entry.id for entry in loaded}
        held = [
            entry for entry in self.entries
            if entry.id not in known and entry.owner_identity.lower() == owner.lower()
        ]
        self.entries = sorted(loaded + held, key=lambda e: e.created_at, reverse=True)
        return self.entries
