import logging
from typing import Callable, Optional

from medjournal.audit.hash_utils import is_hex_digest
from medjournal.config import Settings
from medjournal.errors import ConfigurationError, NotConnected, WrongNetwork
from medjournal.models.journal_entry import SignatureReceipt
from medjournal.signer.session import WalletSession
from medjournal.signer.strategies import MessageFallbackStrategy, RecorderStrategy

logger = logging.getLogger("medjournal.signer")


def build_strategy(settings: Settings):
    """
    Strategy is an explicit configuration choice. A recorder setup that
    is missing its contract fails loudly instead of degrading to messages.
    """
    if settings.signer_strategy == "recorder":
        if not settings.recorder_contract_address:
            raise ConfigurationError("SIGNER_STRATEGY=recorder needs RECORDER_CONTRACT_ADDRESS")
        return RecorderStrategy(
            contract_address=settings.recorder_contract_address,
            poll_seconds=settings.confirmation_poll_seconds,
        )
    if settings.signer_strategy == "message":
        return MessageFallbackStrategy()
    raise ConfigurationError(f"Unknown signer strategy: {settings.signer_strategy}")


class Signer:
    """
    Obtains an external reference for a content hash from the wallet agent.
    Each call is one independent attempt; nothing is retried here.
    """

    def __init__(
        self,
        strategy,
        session: Optional[WalletSession] = None,
        expected_chain_id: Optional[int] = None,
    ):
        self.strategy = strategy
        self.session = session
        self.expected_chain_id = expected_chain_id

    @classmethod
    def from_settings(cls, settings: Settings, session: Optional[WalletSession] = None) -> "Signer":
        return cls(
            build_strategy(settings),
            session=session,
            expected_chain_id=settings.expected_chain_id,
        )

    def attach(self, session: WalletSession):
        self.session = session

    def detach(self):
        if self.session is not None:
            self.session.disconnect()
        self.session = None

    def sign(
        self,
        content_hash: str,
        owner_identity: str,
        on_submitted: Optional[Callable[[str], None]] = None,
        on_advisory: Optional[Callable[[WrongNetwork], None]] = None,
    ) -> SignatureReceipt:
        if self.session is None:
            raise NotConnected("Wallet not connected")
        self.session.sync_accounts()
        self.session.require_active(owner_identity)

        if not is_hex_digest(content_hash):
            raise ValueError(f"Content hash must be 0x-prefixed sha256 hex, got {content_hash!r}")

        advisory = self.session.network_advisory(self.expected_chain_id)
        if advisory is not None:
            logger.warning(f"Wallet network advisory: {advisory}")
            if on_advisory is not None:
                on_advisory(advisory)

        receipt = self.strategy.sign(self.session, content_hash, on_submitted=on_submitted)
        logger.info(f"Entry signed strategy={receipt.strategy} ref={receipt.external_reference}")
        return receipt
