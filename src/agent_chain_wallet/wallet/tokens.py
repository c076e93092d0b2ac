"""ERC20 balance enumeration on RPC endpoints with a token-balance extension."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable
from urllib.parse import urlparse

import httpx
from web3 import AsyncWeb3, Web3

from agent_chain_wallet.wallet.client import ERC20_ABI, build_web3
from agent_chain_wallet.wallet.errors import ErrorHandler, ErrorKind
from agent_chain_wallet.wallet.units import format_units

logger = logging.getLogger("agent_chain_wallet.wallet.tokens")


@dataclass(frozen=True)
class TokenBalance:
    contract_address: str
    name: str
    symbol: str
    decimals: int
    raw_balance: int

    @property
    def balance(self) -> str:
        return format_units(self.raw_balance, self.decimals)


class TokenEnumerator:
    """List the non-zero ERC20 balances of an address.

    Only endpoints whose host matches one of *introspection_hosts* are
    queried (``alchemy_getTokenBalances``); others yield an empty list.
    """

    def __init__(
        self,
        introspection_hosts: tuple[str, ...] = ("alchemy.com",),
        timeout: float = 15.0,
        web3_factory: Callable[[str], AsyncWeb3] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.introspection_hosts = tuple(h.lower() for h in introspection_hosts)
        self.timeout = timeout
        self._web3_factory = web3_factory or build_web3
        self._transport = transport
        # Metadata clients for endpoints the caller did not supply one for
        self._clients: dict[str, AsyncWeb3] = {}

    def supports(self, rpc_url: str) -> bool:
        host = (urlparse(rpc_url).hostname or "").lower()
        return any(host == h or host.endswith("." + h) for h in self.introspection_hosts)

    def _client_for(self, rpc_url: str) -> AsyncWeb3:
        client = self._clients.get(rpc_url)
        if client is None:
            client = self._clients[rpc_url] = self._web3_factory(rpc_url)
        return client

    async def list_non_zero_tokens(
        self, address: str, rpc_url: str, web3: AsyncWeb3 | None = None
    ) -> list[TokenBalance]:
        """Return every token with a positive balance, with its metadata.

        Metadata is read through *web3* when given, otherwise through a
        client cached per *rpc_url*. Tokens whose metadata cannot be read
        are skipped. A failure of the introspection request itself raises
        a ``ClassifiedError``.
        """
        if not self.supports(rpc_url):
            logger.debug(f"Token introspection not available on {urlparse(rpc_url).hostname}")
            return []

        try:
            raw_balances = await self._fetch_balances(address, rpc_url)
        except (httpx.HTTPError, ValueError, RuntimeError) as e:
            logger.error(f"Token introspection failed on {urlparse(rpc_url).hostname}: {e}")
            raise ErrorHandler.create(
                ErrorKind.NETWORK_ERROR,
                f"Token balance introspection failed: {e}",
                {"original_error": str(e), "error_type": type(e).__name__},
            ) from e

        candidates = [(addr, value) for addr, value in raw_balances if value > 0]
        if not candidates:
            return []

        w3 = web3 if web3 is not None else self._client_for(rpc_url)
        results = await asyncio.gather(
            *(self._read_metadata(w3, addr, value) for addr, value in candidates)
        )
        return [token for token in results if token is not None]

    async def _fetch_balances(self, address: str, rpc_url: str) -> list[tuple[str, int]]:
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "alchemy_getTokenBalances",
            "params": [address, "erc20"],
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.post(rpc_url, json=payload)
            resp.raise_for_status()
            data = resp.json()

        if data.get("error"):
            raise RuntimeError(f"alchemy_getTokenBalances failed: {data['error']}")

        balances: list[tuple[str, int]] = []
        for entry in data.get("result", {}).get("tokenBalances", []):
            if entry.get("error"):
                logger.warning(f"Skipping token {entry.get('contractAddress')}: {entry['error']}")
                continue
            raw = entry.get("tokenBalance") or "0x0"
            try:
                value = int(raw, 16)
            except (TypeError, ValueError):
                logger.warning(f"Skipping token {entry.get('contractAddress')}: bad balance {raw!r}")
                continue
            balances.append((entry["contractAddress"], value))
        return balances

    async def _read_metadata(
        self, w3: AsyncWeb3, contract_address: str, raw_balance: int
    ) -> TokenBalance | None:
        try:
            contract = w3.eth.contract(
                address=Web3.to_checksum_address(contract_address), abi=ERC20_ABI
            )
            name, symbol, decimals = await asyncio.gather(
                contract.functions.name().call(),
                contract.functions.symbol().call(),
                contract.functions.decimals().call(),
            )
        except Exception as e:
            logger.warning(f"Skipping token {contract_address}: metadata unavailable ({e})")
            return None
        return TokenBalance(
            contract_address=Web3.to_checksum_address(contract_address),
            name=name,
            symbol=symbol,
            decimals=int(decimals),
            raw_balance=raw_balance,
        )

