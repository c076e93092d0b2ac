"""Multi-chain wallet provider: one signing key, cached clients per chain."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import replace
from typing import Mapping, Protocol

from eth_account import Account
from web3 import AsyncWeb3, Web3

from agent_chain_wallet.wallet.chains import ChainDescriptor, ChainRegistry
from agent_chain_wallet.wallet.client import ChainClientFactory, SigningClient, Web3ClientFactory
from agent_chain_wallet.wallet.errors import ErrorHandler, ErrorKind
from agent_chain_wallet.wallet.keys import normalize_private_key
from agent_chain_wallet.wallet.units import format_units

logger = logging.getLogger("agent_chain_wallet.wallet.provider")


class ChainClientProvider(Protocol):
    """What the transaction actions need from a wallet provider."""

    def get_address(self) -> str: ...

    def has_chain(self, chain_name: str) -> bool: ...

    def get_chain(self, chain_name: str) -> ChainDescriptor: ...

    def chain_name_for_id(self, chain_id: int) -> str | None: ...

    def get_read_client(self, chain_name: str) -> AsyncWeb3: ...

    def get_write_client(self, chain_name: str) -> SigningClient: ...


class WalletProvider:
    """Holds one private key and lazily builds read/write clients per chain.

    Clients are memoized by chain name. Re-registering a name with a
    different descriptor replaces its clients on next access; every other
    cached client is kept.

    Parameters
    ----------
    private_key:
        Hex private key, with or without ``0x``.
    chains:
        Initial chain name to descriptor mapping.
    registry:
        Registry used by :meth:`chain_from_name`. A default registry of
        known networks is created when omitted.
    client_factory:
        Builds the underlying clients. Defaults to :class:`Web3ClientFactory`.
    """

    def __init__(
        self,
        private_key: str,
        chains: Mapping[str, ChainDescriptor] | None = None,
        *,
        registry: ChainRegistry | None = None,
        client_factory: ChainClientFactory | None = None,
    ) -> None:
        try:
            self._account = Account.from_key(normalize_private_key(private_key))
        except ValueError as exc:
            raise ErrorHandler.create(
                ErrorKind.INVALID_PRIVATE_KEY,
                f"Invalid private key: {exc}",
            ) from exc
        self._address = self._account.address
        self.registry = registry or ChainRegistry()
        self._factory = client_factory or Web3ClientFactory()
        self._chains: dict[str, ChainDescriptor] = {}
        self._read_clients: dict[str, AsyncWeb3] = {}
        self._write_clients: dict[str, SigningClient] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        if chains:
            self.add_chain(chains)

    # ------------------------------------------------------------------
    # Chains
    # ------------------------------------------------------------------

    def add_chain(self, chains: Mapping[str, ChainDescriptor]) -> None:
        """Merge *chains* into the registered set.

        A name re-registered with a different descriptor loses its cached
        clients; unchanged and unmentioned names keep theirs.
        """
        for name, descriptor in chains.items():
            key = name.lower()
            if descriptor.name != key:
                descriptor = replace(descriptor, name=key)
            with self._chain_lock(key):
                previous = self._chains.get(key)
                self._chains[key] = descriptor
                if previous is not None and previous != descriptor:
                    self._read_clients.pop(key, None)
                    self._write_clients.pop(key, None)
                    logger.info(f"Chain {key} re-registered, cached clients dropped")

    def has_chain(self, chain_name: str) -> bool:
        return chain_name.lower() in self._chains

    def get_chain(self, chain_name: str) -> ChainDescriptor:
        """Return the registered descriptor, or raise ``UNREGISTERED_CHAIN``."""
        descriptor = self._chains.get(chain_name.lower())
        if descriptor is None:
            raise ErrorHandler.create(
                ErrorKind.UNREGISTERED_CHAIN,
                f"Chain '{chain_name}' is not configured. "
                f"Configured chains: {', '.join(self.list_chains()) or 'none'}",
                {"chain": chain_name},
            )
        return descriptor

    def list_chains(self) -> list[str]:
        return list(self._chains)

    def chain_name_for_id(self, chain_id: int) -> str | None:
        for name, descriptor in self._chains.items():
            if descriptor.chain_id == chain_id:
                return name
        return None

    def chain_from_name(self, name: str, rpc_url: str | None = None) -> ChainDescriptor:
        """Resolve a descriptor through the registry without registering it."""
        return self.registry.resolve(name, rpc_url)

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    def _chain_lock(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def get_read_client(self, chain_name: str) -> AsyncWeb3:
        """Return the cached read-only client for *chain_name*, building it once."""
        key = chain_name.lower()
        with self._chain_lock(key):
            client = self._read_clients.get(key)
            if client is None:
                client = self._factory.read_client(self.get_chain(key))
                self._read_clients[key] = client
                logger.debug(f"Created read client for {key}")
            return client

    def get_write_client(self, chain_name: str) -> SigningClient:
        """Return the cached signing client for *chain_name*, building it once."""
        key = chain_name.lower()
        with self._chain_lock(key):
            client = self._write_clients.get(key)
            if client is None:
                client = self._factory.write_client(self.get_chain(key), self._account)
                self._write_clients[key] = client
                logger.debug(f"Created write client for {key}")
            return client

    # ------------------------------------------------------------------
    # Identity and balances
    # ------------------------------------------------------------------

    def get_address(self) -> str:
        return self._address

    async def get_native_balance(self, address: str, chain_name: str) -> int:
        """Raw native balance of *address* in base units. Network errors propagate."""
        client = self.get_read_client(chain_name)
        return await client.eth.get_balance(Web3.to_checksum_address(address))

    async def get_balance(self, chain_name: str) -> str | None:
        """Native balance of this wallet, formatted by the chain's decimals.

        Returns ``None`` when the chain is registered but the network call
        fails.
        """
        chain = self.get_chain(chain_name)
        try:
            raw = await self.get_native_balance(self._address, chain_name)
        except Exception as e:
            logger.warning(f"Failed to get balance on {chain_name}: {e}")
            return None
        return format_units(raw, chain.native_decimals)

    async def get_all_balances(self) -> dict[str, str | None]:
        """Balances across every registered chain, fetched concurrently."""
        names = self.list_chains()
        results = await asyncio.gather(*(self.get_balance(name) for name in names))
        return dict(zip(names, results))
