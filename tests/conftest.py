import itertools
from datetime import datetime, timedelta, timezone

import pytest
from eth_account import Account

from medjournal.models.journal_entry import (
    ClassificationResult,
    JournalEntryDraft,
    Severity,
)
from medjournal.signer.session import WalletSession
from medjournal.signer.signer import Signer
from medjournal.signer.strategies import MessageFallbackStrategy
from medjournal.storage import SqlEntryStore

# Example key from the eth-account documentation; never funded.
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"

HEADACHE_TEXT = "I have a severe headache and nausea since this morning"
HEADACHE_REFERENCE = "0xabc" + "0" * 61


class StepClock:
    """Returns strictly increasing UTC timestamps, one second apart."""

    def __init__(self, start=None):
        self.current = start or datetime(2025, 3, 1, 8, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        value = self.current
        self.current = self.current + timedelta(seconds=1)
        return value


@pytest.fixture
def headache_classification():
    return ClassificationResult(
        symptoms=["headache", "nausea"],
        mood="uncomfortable",
        severity=Severity.HIGH,
        summary="Patient reports acute headache and nausea.",
        confidence=0.9,
    )


@pytest.fixture
def local_account():
    return Account.from_key(TEST_PRIVATE_KEY)


@pytest.fixture
def owner(local_account):
    return local_account.address


@pytest.fixture
def wallet_session(local_account):
    return WalletSession(local_account.address, account=local_account)


@pytest.fixture
def message_signer(wallet_session):
    return Signer(MessageFallbackStrategy(), session=wallet_session)


@pytest.fixture
def sql_store():
    store = SqlEntryStore.from_url("sqlite://", clock=StepClock())
    store.create_schema()
    return store


@pytest.fixture
def make_draft(owner, headache_classification):
    serial = itertools.count(1)

    def _make(**overrides):
        fields = dict(
            owner_identity=owner,
            text=HEADACHE_TEXT,
            symptoms=list(headache_classification.symptoms),
            mood=headache_classification.mood,
            severity=headache_classification.severity,
            summary=headache_classification.summary,
            confidence_score=headache_classification.confidence,
            content_hash="0x" + format(next(serial), "064x"),
            external_reference=HEADACHE_REFERENCE,
            submitted_at=datetime(2025, 3, 1, 7, 59, 0, tzinfo=timezone.utc),
        )
        fields.update(overrides)
        return JournalEntryDraft(**fields)

    return _make


@pytest.fixture
def private_key():
    return TEST_PRIVATE_KEY


@pytest.fixture
def clock():
    return StepClock()
