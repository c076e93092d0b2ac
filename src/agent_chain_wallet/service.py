"""EVMChainService: the surface the agent layer calls into.

Composes the chain registry, the wallet provider, the token enumerator and
the transfer/bridge actions from an :class:`AppConfig`.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

from pydantic import BaseModel, Field
from web3 import AsyncWeb3, Web3

from agent_chain_wallet.actions.base import ProgressCallback, RetrySettings
from agent_chain_wallet.actions.bridge import (
    BridgeAction,
    BridgeRequest,
    BridgeResult,
    BridgeStatusReport,
)
from agent_chain_wallet.actions.transfer import TransferAction, TransferRequest, TransferResult
from agent_chain_wallet.config import AppConfig
from agent_chain_wallet.wallet.chains import ChainDescriptor, ChainRegistry
from agent_chain_wallet.wallet.client import ChainClientFactory, Web3ClientFactory
from agent_chain_wallet.wallet.detector import DetectedKey, detect_private_keys
from agent_chain_wallet.wallet.errors import ClassifiedError, ErrorHandler, ErrorKind
from agent_chain_wallet.wallet.keys import WalletRecord, generate_wallet, import_wallet, is_valid_address
from agent_chain_wallet.wallet.provider import WalletProvider
from agent_chain_wallet.wallet.routing import BridgeRouter, LiFiRouter
from agent_chain_wallet.wallet.tokens import TokenBalance, TokenEnumerator
from agent_chain_wallet.wallet.units import format_units

logger = logging.getLogger("agent_chain_wallet.service")


class TokenHolding(BaseModel):
    symbol: str
    name: str
    balance: str
    contract_address: str


class WalletBalance(BaseModel):
    address: str
    chain: str
    symbol: str
    balance: str
    tokens: list[TokenHolding] = Field(default_factory=list)


class ChainBalance(BaseModel):
    chain_name: str
    name: str
    balance: Optional[str]
    symbol: str
    chain_id: int


class WalletData(BaseModel):
    address: str
    chains: list[ChainBalance]
    timestamp: float


def _holdings(tokens: list[TokenBalance]) -> list[TokenHolding]:
    return [
        TokenHolding(
            symbol=t.symbol,
            name=t.name,
            balance=t.balance,
            contract_address=t.contract_address,
        )
        for t in tokens
    ]


class EVMChainService:
    """Entry point for wallet, balance, transfer and bridge operations.

    Key-independent helpers (wallet creation, import, key detection, chain
    listing, balance lookups for arbitrary addresses) work without a
    configured private key. Transfers and bridges need one.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        registry: ChainRegistry | None = None,
        client_factory: ChainClientFactory | None = None,
        router: BridgeRouter | None = None,
        token_enumerator: TokenEnumerator | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.registry = registry or ChainRegistry()
        self._factory = client_factory or Web3ClientFactory()
        self._retry = RetrySettings(
            self.config.retry.max_attempts, self.config.retry.base_delay
        )
        self._owns_router = router is None
        self.router: BridgeRouter = router or LiFiRouter(
            api_url=self.config.bridge.api_url,
            api_key=self.config.bridge.api_key,
            integrator=self.config.bridge.integrator,
            slippage=self.config.bridge.slippage,
            max_price_impact=self.config.bridge.max_price_impact,
            timeout=self.config.bridge.timeout,
        )
        self.tokens = token_enumerator or TokenEnumerator(
            introspection_hosts=tuple(self.config.tokens.introspection_hosts),
            timeout=self.config.tokens.timeout,
        )

        # Read clients for chains outside the wallet's own set
        self._lookup_clients: dict[str, AsyncWeb3] = {}
        self._lookup_lock = threading.Lock()

        self.provider: WalletProvider | None = None
        self._transfer: TransferAction | None = None
        self._bridge: BridgeAction | None = None
        if self.config.wallet.private_key:
            self.provider = WalletProvider(
                self.config.wallet.private_key,
                self._configured_chains(),
                registry=self.registry,
                client_factory=self._factory,
            )
            self._transfer = TransferAction(
                self.provider,
                token_router=self.router,
                retry=self._retry,
                wait_for_confirmation=self.config.wallet.wait_for_confirmation,
                confirmation_timeout=self.config.wallet.confirmation_timeout,
            )
            self._bridge = BridgeAction(
                self.provider,
                self.router,
                retry=self._retry,
                confirmation_timeout=self.config.bridge.confirmation_timeout,
            )
            logger.info(
                f"EVM wallet {self.provider.get_address()} ready on "
                f"{', '.join(self.provider.list_chains())}"
            )

    def _configured_chains(self) -> dict[str, ChainDescriptor]:
        wallet = self.config.wallet
        return {
            name: self.registry.resolve(name, wallet.rpc_urls.get(name))
            for name in wallet.effective_chains()
        }

    def _require_provider(self) -> WalletProvider:
        if self.provider is None:
            raise ErrorHandler.create(
                ErrorKind.INVALID_PRIVATE_KEY,
                "No private key configured. Set EVM_PRIVATE_KEY or wallet.private_key",
            )
        return self.provider

    @property
    def address(self) -> str | None:
        return self.provider.get_address() if self.provider else None

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def create_wallet(self, chain_name: str = "ethereum") -> WalletRecord | None:
        """Generate a new key pair, or ``None`` for an unsupported chain."""
        if not self.is_chain_supported(chain_name):
            logger.warning(f"Cannot create wallet on unsupported chain '{chain_name}'")
            return None
        return generate_wallet(chain_name.lower())

    def import_wallet(self, private_key: str, chain_name: str = "ethereum") -> WalletRecord | None:
        """Import a key pair, or ``None`` when the key or chain is invalid."""
        if not self.is_chain_supported(chain_name):
            logger.warning(f"Cannot import wallet on unsupported chain '{chain_name}'")
            return None
        try:
            return import_wallet(private_key, chain_name.lower())
        except ClassifiedError as e:
            logger.warning(f"Wallet import failed: {e.message}")
            return None

    def detect_private_keys_from_text(self, text: str) -> list[DetectedKey]:
        return detect_private_keys(text)

    # ------------------------------------------------------------------
    # Chains
    # ------------------------------------------------------------------

    def get_supported_chains(self) -> list[str]:
        return sorted(self.registry.list_names())

    def get_mainnet_chains(self) -> list[str]:
        return sorted(self.registry.list_mainnets())

    def is_chain_supported(self, chain_name: str) -> bool:
        return chain_name in self.registry or (
            self.provider is not None and self.provider.has_chain(chain_name)
        )

    def _descriptor(self, chain_name: str) -> ChainDescriptor:
        if self.provider is not None and self.provider.has_chain(chain_name):
            return self.provider.get_chain(chain_name)
        return self.registry.resolve(chain_name, self.config.wallet.rpc_urls.get(chain_name.lower()))

    def _read_client(self, chain: ChainDescriptor) -> AsyncWeb3:
        if self.provider is not None and self.provider.has_chain(chain.name):
            return self.provider.get_read_client(chain.name)
        with self._lookup_lock:
            client = self._lookup_clients.get(chain.name)
            if client is None:
                client = self._lookup_clients[chain.name] = self._factory.read_client(chain)
            return client

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    async def get_wallet_balance(self, address: str, chain_name: str) -> WalletBalance | None:
        """Native balance of any *address*, plus ERC20 holdings where the RPC
        exposes them. Returns ``None`` on any failure.
        """
        if not is_valid_address(address):
            logger.warning(f"Invalid address for balance lookup: {address}")
            return None
        try:
            chain = self._descriptor(chain_name)
            client = self._read_client(chain)
            raw = await ErrorHandler.with_retry(
                lambda: client.eth.get_balance(Web3.to_checksum_address(address)),
                max_attempts=self._retry.max_attempts,
                base_delay=self._retry.base_delay,
            )
        except ClassifiedError as e:
            logger.warning(f"Balance lookup on {chain_name} failed: {e.message}")
            return None

        tokens: list[TokenBalance] = []
        if self.config.tokens.enabled:
            try:
                tokens = await self.tokens.list_non_zero_tokens(address, chain.rpc_url, client)
            except ClassifiedError as e:
                logger.warning(f"Token enumeration on {chain.name} failed: {e.message}")

        return WalletBalance(
            address=address,
            chain=chain.name,
            symbol=chain.native_symbol,
            balance=format_units(raw, chain.native_decimals),
            tokens=_holdings(tokens),
        )

    async def list_tokens(self, chain_name: str) -> list[TokenBalance]:
        """Non-zero ERC20 balances of the configured wallet on *chain_name*."""
        provider = self._require_provider()
        chain = provider.get_chain(chain_name)
        return await self.tokens.list_non_zero_tokens(
            provider.get_address(), chain.rpc_url, provider.get_read_client(chain.name)
        )

    async def get_wallet_data(self) -> WalletData:
        """Snapshot of the wallet address and its native balance on every chain."""
        provider = self._require_provider()
        balances = await provider.get_all_balances()
        chains = []
        for chain_name, balance in balances.items():
            chain = provider.get_chain(chain_name)
            chains.append(
                ChainBalance(
                    chain_name=chain_name,
                    name=chain.display_name or chain_name,
                    balance=balance,
                    symbol=chain.native_symbol,
                    chain_id=chain.chain_id,
                )
            )
        logger.info(f"EVM wallet data refreshed for chains: {', '.join(balances)}")
        return WalletData(address=provider.get_address(), chains=chains, timestamp=time.time())

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def transfer(
        self,
        request: TransferRequest,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TransferResult:
        self._require_provider()
        return await self._transfer.transfer(request, on_progress)

    async def bridge(
        self,
        request: BridgeRequest,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BridgeResult:
        self._require_provider()
        return await self._bridge.bridge(request, on_progress)

    async def get_bridge_status(
        self,
        tx_hash: str,
        source_chain: str,
        destination_chain: str,
        tool: str | None = None,
    ) -> BridgeStatusReport:
        self._require_provider()
        return await self._bridge.get_transaction_status(
            tx_hash, source_chain, destination_chain, tool
        )

    async def aclose(self) -> None:
        if self._owns_router and isinstance(self.router, LiFiRouter):
            await self.router.aclose()
