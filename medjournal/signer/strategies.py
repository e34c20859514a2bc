import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Optional

import requests
from eth_account.messages import encode_defunct
from web3 import Web3
from web3.exceptions import ProviderConnectionError, TransactionNotFound, Web3RPCError

from medjournal.errors import AgentUnavailable, SignerError, TransactionReverted, UserRejected
from medjournal.models.journal_entry import SignatureReceipt
from medjournal.signer.session import WalletSession

logger = logging.getLogger("medjournal.signer")

# EIP-1193 "User Rejected Request"
USER_REJECTED_CODE = 4001

RECORDER_ABI = [
    {
        "type": "function",
        "name": "recordEntry",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "dataHash", "type": "bytes32"}],
        "outputs": [],
    },
    {
        "type": "event",
        "name": "EntryRecorded",
        "anonymous": False,
        "inputs": [
            {"name": "owner", "type": "address", "indexed": True},
            {"name": "dataHash", "type": "bytes32", "indexed": True},
        ],
    },
]


def _rpc_error_code(error: Exception) -> Optional[int]:
    response = getattr(error, "rpc_response", None)
    if isinstance(response, dict):
        payload = response.get("error")
        if isinstance(payload, dict):
            return payload.get("code")
    if error.args and isinstance(error.args[0], dict):
        return error.args[0].get("code")
    return None


def _is_rejection(error: Exception) -> bool:
    if _rpc_error_code(error) == USER_REJECTED_CODE:
        return True
    message = str(error).lower()
    return "user rejected" in message or "request denied" in message


@contextmanager
def wallet_call(action: str):
    """Translate provider failures into the signer error taxonomy."""
    try:
        yield
    except SignerError:
        raise
    except Web3RPCError as e:
        if _is_rejection(e):
            raise UserRejected(f"User rejected {action}") from e
        raise AgentUnavailable(f"Wallet agent failed during {action}") from e
    except (ProviderConnectionError, requests.exceptions.RequestException) as e:
        raise AgentUnavailable(f"Wallet agent unreachable during {action}") from e


def build_attestation_message(content_hash: str, moment: datetime) -> str:
    return f"MedJournal Entry Hash: {content_hash}\nTimestamp: {moment.isoformat()}"


class MessageFallbackStrategy:
    """
    Signs a personal message over the content hash. The external reference
    is keccak256(signature + epoch millis): a digest, not a transaction id.
    """

    name = "message"

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def sign(
        self,
        session: WalletSession,
        content_hash: str,
        on_submitted: Optional[Callable[[str], None]] = None,
    ) -> SignatureReceipt:
        moment = self._clock()
        message = build_attestation_message(content_hash, moment)

        if session.account is not None:
            signed = session.account.sign_message(encode_defunct(text=message))
            signature = signed.signature
        else:
            with wallet_call("message signature"):
                signature = session.web3.eth.sign(session.owner_identity, text=message)

        millis = int(moment.timestamp() * 1000)
        digest = Web3.keccak(text=f"{Web3.to_hex(signature)}{millis}")
        return SignatureReceipt(external_reference=Web3.to_hex(digest), strategy=self.name)


class RecorderStrategy:
    """
    Records the content hash through a contract call.

    Phase one submits the transaction and reports its hash through
    `on_submitted`. Phase two polls for the receipt with no deadline.
    """

    name = "recorder"

    def __init__(
        self,
        contract_address: str,
        poll_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.contract_address = contract_address
        self.poll_seconds = poll_seconds
        self._sleep = sleep

    def _submit(self, session: WalletSession, data_hash: bytes):
        w3 = session.web3
        contract = w3.eth.contract(
            address=Web3.to_checksum_address(self.contract_address), abi=RECORDER_ABI
        )
        call = contract.functions.recordEntry(data_hash)

        with wallet_call("transaction submission"):
            if session.account is None:
                return call.transact({"from": session.owner_identity})

            tx = call.build_transaction({
                "from": session.owner_identity,
                "nonce": w3.eth.get_transaction_count(session.owner_identity),
                "chainId": session.chain_id or w3.eth.chain_id,
            })
            signed = session.account.sign_transaction(tx)
            return w3.eth.send_raw_transaction(signed.raw_transaction)

    def _wait_for_receipt(self, w3: Web3, tx_hash):
        while True:
            with wallet_call("confirmation"):
                try:
                    return w3.eth.get_transaction_receipt(tx_hash)
                except TransactionNotFound:
                    pass
            self._sleep(self.poll_seconds)

    def sign(
        self,
        session: WalletSession,
        content_hash: str,
        on_submitted: Optional[Callable[[str], None]] = None,
    ) -> SignatureReceipt:
        if session.web3 is None:
            raise AgentUnavailable("Recorder strategy needs a wallet RPC endpoint")

        tx_hash = self._submit(session, bytes.fromhex(content_hash[2:]))
        reference = Web3.to_hex(tx_hash)
        logger.info(f"Recorder transaction submitted tx={reference}")

        if on_submitted is not None:
            on_submitted(reference)

        receipt = self._wait_for_receipt(session.web3, tx_hash)
        if receipt["status"] != 1:
            raise TransactionReverted(f"Recorder transaction {reference} reverted")

        block_number = int(receipt["blockNumber"])
        logger.info(f"Recorder transaction confirmed tx={reference} block={block_number}")
        return SignatureReceipt(
            external_reference=reference,
            strategy=self.name,
            block_reference=block_number,
        )
