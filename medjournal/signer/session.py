import logging
from typing import Optional

import requests
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import ProviderConnectionError

from medjournal.config import Settings
from medjournal.errors import AgentUnavailable, ConfigurationError, NotConnected, WrongNetwork

logger = logging.getLogger("medjournal.signer")


class WalletSession:
    """
    The connected owner identity and the agent able to sign for it.

    Created by connect(), torn down by disconnect() or when the node
    reports a different active account. Signing either happens with a
    local key or is delegated to the node behind `web3`.
    """

    def __init__(
        self,
        owner_identity: str,
        account: Optional[LocalAccount] = None,
        web3: Optional[Web3] = None,
        chain_id: Optional[int] = None,
    ):
        if account is None and web3 is None:
            raise ValueError("A session needs a local account or a web3 provider")
        self.owner_identity = owner_identity
        self.account = account
        self.web3 = web3
        self.chain_id = chain_id
        self._active = True

    @classmethod
    def connect(cls, settings: Settings, web3: Optional[Web3] = None) -> "WalletSession":
        if web3 is None and settings.wallet_rpc_url:
            web3 = Web3(
                Web3.HTTPProvider(settings.wallet_rpc_url, request_kwargs={"timeout": 30})
            )

        if web3 is None and not settings.wallet_private_key:
            raise ConfigurationError("Set WALLET_PRIVATE_KEY or WALLET_RPC_URL to connect a wallet")

        chain_id = None
        if web3 is not None:
            try:
                if not web3.is_connected():
                    raise AgentUnavailable("Wallet RPC endpoint is not reachable")
                chain_id = web3.eth.chain_id
            except (ProviderConnectionError, requests.exceptions.RequestException) as e:
                raise AgentUnavailable("Wallet RPC endpoint is not reachable") from e

        if settings.wallet_private_key:
            try:
                account = Account.from_key(settings.wallet_private_key)
            except Exception as e:
                raise ConfigurationError("WALLET_PRIVATE_KEY is not a valid private key") from e
            session = cls(account.address, account=account, web3=web3, chain_id=chain_id)
        else:
            accounts = web3.eth.accounts
            if not accounts:
                raise AgentUnavailable("Wallet agent exposes no accounts")
            session = cls(accounts[0], web3=web3, chain_id=chain_id)

        logger.info(
            f"Wallet connected owner={short_address(session.owner_identity)} "
            f"chain={chain_id} local_key={session.account is not None}"
        )
        return session

    @property
    def is_active(self) -> bool:
        return self._active

    def disconnect(self):
        if self._active:
            logger.info(f"Wallet disconnected owner={short_address(self.owner_identity)}")
        self._active = False
        self.account = None
        self.web3 = None

    def require_active(self, owner_identity: Optional[str] = None):
        if not self._active:
            raise NotConnected("Wallet not connected")
        if owner_identity is not None and owner_identity.lower() != self.owner_identity.lower():
            raise NotConnected("Signing identity does not match the connected wallet")

    def sync_accounts(self) -> bool:
        """
        Re-read the node's active account. A changed or missing account
        tears the session down. Returns whether the session is still active.
        """
        if not self._active or self.account is not None or self.web3 is None:
            return self._active

        try:
            accounts = self.web3.eth.accounts
        except (ProviderConnectionError, requests.exceptions.RequestException) as e:
            raise AgentUnavailable("Wallet RPC endpoint is not reachable") from e

        if not accounts or accounts[0].lower() != self.owner_identity.lower():
            logger.info("Active wallet account changed; ending session")
            self.disconnect()
        return self._active

    def network_advisory(self, expected_chain_id: Optional[int]) -> Optional[WrongNetwork]:
        if expected_chain_id is None or self.chain_id is None:
            return None
        if self.chain_id != expected_chain_id:
            return WrongNetwork(expected_chain_id, self.chain_id)
        return None


def short_address(address: str) -> str:
    if len(address) <= 10:
        return address
    return f"{address[:6]}...{address[-4:]}"
