"""Chain definitions and the registry of known EVM networks."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Mapping

from agent_chain_wallet.wallet.errors import ErrorHandler, ErrorKind

_CHAIN_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")
_CUSTOM_CHAIN_RE = re.compile(r"^(?:chain|eip155)[-_](\d+)$")


@dataclass(frozen=True)
class ChainDescriptor:
    """An EVM-compatible blockchain network."""

    name: str
    chain_id: int
    rpc_url: str
    native_symbol: str = "ETH"
    native_decimals: int = 18
    explorer_url: str = ""
    is_testnet: bool = False
    display_name: str = ""

    def with_rpc_url(self, rpc_url: str) -> ChainDescriptor:
        return replace(self, rpc_url=rpc_url)

    def tx_url(self, tx_hash: str) -> str:
        if not self.explorer_url:
            return tx_hash
        return f"{self.explorer_url}/tx/{tx_hash}"


KNOWN_CHAINS: dict[str, ChainDescriptor] = {
    "ethereum": ChainDescriptor(
        name="ethereum",
        chain_id=1,
        rpc_url="https://eth.llamarpc.com",
        native_symbol="ETH",
        explorer_url="https://etherscan.io",
        display_name="Ethereum",
    ),
    "base": ChainDescriptor(
        name="base",
        chain_id=8453,
        rpc_url="https://mainnet.base.org",
        native_symbol="ETH",
        explorer_url="https://basescan.org",
        display_name="Base",
    ),
    "arbitrum": ChainDescriptor(
        name="arbitrum",
        chain_id=42161,
        rpc_url="https://arb1.arbitrum.io/rpc",
        native_symbol="ETH",
        explorer_url="https://arbiscan.io",
        display_name="Arbitrum One",
    ),
    "optimism": ChainDescriptor(
        name="optimism",
        chain_id=10,
        rpc_url="https://mainnet.optimism.io",
        native_symbol="ETH",
        explorer_url="https://optimistic.etherscan.io",
        display_name="Optimism",
    ),
    "polygon": ChainDescriptor(
        name="polygon",
        chain_id=137,
        rpc_url="https://polygon-rpc.com",
        native_symbol="POL",
        explorer_url="https://polygonscan.com",
        display_name="Polygon",
    ),
    "bsc": ChainDescriptor(
        name="bsc",
        chain_id=56,
        rpc_url="https://bsc-dataseed.binance.org",
        native_symbol="BNB",
        explorer_url="https://bscscan.com",
        display_name="BNB Smart Chain",
    ),
    "avalanche": ChainDescriptor(
        name="avalanche",
        chain_id=43114,
        rpc_url="https://api.avax.network/ext/bc/C/rpc",
        native_symbol="AVAX",
        explorer_url="https://snowtrace.io",
        display_name="Avalanche C-Chain",
    ),
    "sepolia": ChainDescriptor(
        name="sepolia",
        chain_id=11155111,
        rpc_url="https://rpc.sepolia.org",
        native_symbol="ETH",
        explorer_url="https://sepolia.etherscan.io",
        is_testnet=True,
        display_name="Sepolia",
    ),
    "base-sepolia": ChainDescriptor(
        name="base-sepolia",
        chain_id=84532,
        rpc_url="https://sepolia.base.org",
        native_symbol="ETH",
        explorer_url="https://sepolia.basescan.org",
        is_testnet=True,
        display_name="Base Sepolia",
    ),
}


def is_valid_chain_name(name: str) -> bool:
    return bool(name) and _CHAIN_NAME_RE.match(name) is not None


class ChainRegistry:
    """Table of known networks, keyed by lower-cased chain name.

    Each registry is an independent instance; the component that composes
    the system owns one and hands it to whoever needs to resolve names.
    """

    def __init__(self, chains: Mapping[str, ChainDescriptor] | None = None) -> None:
        self._chains: dict[str, ChainDescriptor] = {}
        source = KNOWN_CHAINS if chains is None else chains
        for name, descriptor in source.items():
            self.register(name, descriptor)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._chains

    def __len__(self) -> int:
        return len(self._chains)

    def register(self, name: str, descriptor: ChainDescriptor) -> ChainDescriptor:
        """Insert or replace the descriptor stored under *name*.

        Raises ``ValueError`` when another name already owns the chain id.
        """
        if not is_valid_chain_name(name):
            raise ErrorHandler.create(
                ErrorKind.INVALID_CHAIN_NAME,
                f"Invalid chain name '{name}'",
                {"chain": name},
            )
        key = name.lower()
        owner = self.by_chain_id(descriptor.chain_id)
        if owner is not None and owner.name != key:
            raise ValueError(
                f"Chain id {descriptor.chain_id} is already registered as '{owner.name}'"
            )
        if descriptor.name != key:
            descriptor = replace(descriptor, name=key)
        self._chains[key] = descriptor
        return descriptor

    def get(self, name: str) -> ChainDescriptor | None:
        return self._chains.get(name.lower())

    def by_chain_id(self, chain_id: int) -> ChainDescriptor | None:
        for descriptor in self._chains.values():
            if descriptor.chain_id == chain_id:
                return descriptor
        return None

    def resolve(self, name: str, rpc_url: str | None = None) -> ChainDescriptor:
        """Build a descriptor for *name*, optionally pointing at *rpc_url*.

        Accepts a registered name (any case) or a custom identifier of the
        form ``chain-<id>`` / ``eip155-<id>``. A custom id that matches no
        registered network needs *rpc_url*.
        """
        if not is_valid_chain_name(name):
            raise ErrorHandler.create(
                ErrorKind.INVALID_CHAIN_NAME,
                f"Invalid chain name '{name}'",
                {"chain": name},
            )

        descriptor = self.get(name)
        if descriptor is None:
            descriptor = self._resolve_custom(name, rpc_url)

        if rpc_url:
            return descriptor.with_rpc_url(rpc_url)
        return descriptor

    def _resolve_custom(self, name: str, rpc_url: str | None) -> ChainDescriptor:
        match = _CUSTOM_CHAIN_RE.match(name.lower())
        if match is None:
            raise ErrorHandler.create(
                ErrorKind.UNKNOWN_CHAIN,
                f"Unknown chain '{name}'. Available: {sorted(self.list_names())}",
                {"chain": name},
            )
        chain_id = int(match.group(1))
        known = self.by_chain_id(chain_id)
        if known is not None:
            return known
        if not rpc_url:
            raise ErrorHandler.create(
                ErrorKind.UNKNOWN_CHAIN,
                f"Chain id {chain_id} is not known and no RPC URL was given",
                {"chain": name, "chain_id": chain_id},
            )
        return ChainDescriptor(
            name=name.lower(),
            chain_id=chain_id,
            rpc_url=rpc_url,
            display_name=f"Chain {chain_id}",
        )

    def list_names(self) -> set[str]:
        """Return the names of all registered chains."""
        return set(self._chains)

    def list_mainnets(self) -> set[str]:
        """Return the names of all non-testnet chains."""
        return {name for name, chain in self._chains.items() if not chain.is_testnet}

    def items(self) -> list[tuple[str, ChainDescriptor]]:
        return sorted(self._chains.items())
