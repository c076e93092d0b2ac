"""Cross-chain route discovery over the LI.FI REST API.

LI.FI returns a route as an ordered list of steps. Each step is turned
into a signable transaction with ``/advanced/stepTransaction`` right before
it is executed, so quotes are fresh when the step is broadcast.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from agent_chain_wallet.wallet.errors import ErrorHandler, ErrorKind

logger = logging.getLogger("agent_chain_wallet.wallet.routing")

LIFI_API_URL = "https://li.quest/v1"
NATIVE_TOKEN_ADDRESS = "0x0000000000000000000000000000000000000000"


def is_native_token(address: str | None) -> bool:
    return not address or address.lower() in (
        NATIVE_TOKEN_ADDRESS,
        "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee",
    )


@dataclass(frozen=True)
class TokenInfo:
    address: str
    symbol: str
    decimals: int
    chain_id: int
    name: str = ""

    @property
    def is_native(self) -> bool:
        return is_native_token(self.address)


@dataclass(frozen=True)
class RouteQuery:
    from_chain_id: int
    to_chain_id: int
    from_token: str
    to_token: str
    from_amount: int
    from_address: str
    to_address: str


@dataclass
class RouteStep:
    id: str
    tool: str
    from_chain_id: int
    to_chain_id: int
    from_token_address: str
    from_amount: int
    approval_address: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RouteStep:
        action = data.get("action", {})
        estimate = data.get("estimate", {})
        return cls(
            id=str(data.get("id", "")),
            tool=data.get("tool", ""),
            from_chain_id=int(action.get("fromChainId", 0)),
            to_chain_id=int(action.get("toChainId", 0)),
            from_token_address=action.get("fromToken", {}).get("address", NATIVE_TOKEN_ADDRESS),
            from_amount=int(action.get("fromAmount", 0) or 0),
            approval_address=estimate.get("approvalAddress"),
            raw=data,
        )


@dataclass
class Route:
    id: str
    from_chain_id: int
    to_chain_id: int
    from_amount: int
    to_amount: int
    steps: list[RouteStep]

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Route:
        return cls(
            id=str(data.get("id", "")),
            from_chain_id=int(data.get("fromChainId", 0)),
            to_chain_id=int(data.get("toChainId", 0)),
            from_amount=int(data.get("fromAmount", 0) or 0),
            to_amount=int(data.get("toAmount", 0) or 0),
            steps=[RouteStep.from_api(s) for s in data.get("steps", [])],
        )


class BridgeRouter(Protocol):
    """Source of executable cross-chain routes."""

    async def resolve_token(self, chain_id: int, token: str) -> TokenInfo: ...

    async def get_routes(self, query: RouteQuery) -> list[Route]: ...

    async def prepare_step(self, step: RouteStep) -> dict[str, Any]: ...

    async def get_status(
        self, tx_hash: str, from_chain_id: int, to_chain_id: int, tool: str | None = None
    ) -> dict[str, Any]: ...


class LiFiRouter:
    """:class:`BridgeRouter` backed by ``li.quest``."""

    def __init__(
        self,
        api_url: str = LIFI_API_URL,
        api_key: str = "",
        integrator: str = "agent-chain-wallet",
        slippage: float = 0.005,
        max_price_impact: float = 0.4,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.integrator = integrator
        self.slippage = slippage
        self.max_price_impact = max_price_impact
        headers = {"Accept": "application/json", "x-lifi-integrator": integrator}
        if api_key:
            headers["x-lifi-api-key"] = api_key
        self._client = httpx.AsyncClient(
            base_url=self.api_url, headers=headers, timeout=timeout, transport=transport
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def resolve_token(self, chain_id: int, token: str) -> TokenInfo:
        """Look up a token by symbol or address on *chain_id*."""
        resp = await self._client.get("/token", params={"chain": chain_id, "token": token})
        if resp.status_code in (400, 404):
            raise ErrorHandler.create(
                ErrorKind.UNSUPPORTED_TOKEN,
                f"Token '{token}' is not available on chain {chain_id}",
                {"token": token, "chain_id": chain_id, "response": resp.text[:200]},
            )
        resp.raise_for_status()
        data = resp.json()
        return TokenInfo(
            address=data["address"],
            symbol=data.get("symbol", token),
            decimals=int(data.get("decimals", 18)),
            chain_id=int(data.get("chainId", chain_id)),
            name=data.get("name", ""),
        )

    async def get_routes(self, query: RouteQuery) -> list[Route]:
        payload = {
            "fromChainId": query.from_chain_id,
            "toChainId": query.to_chain_id,
            "fromTokenAddress": query.from_token,
            "toTokenAddress": query.to_token,
            "fromAmount": str(query.from_amount),
            "fromAddress": query.from_address,
            "toAddress": query.to_address,
            "options": {
                "integrator": self.integrator,
                "order": "RECOMMENDED",
                "slippage": self.slippage,
                "maxPriceImpact": self.max_price_impact,
                "allowSwitchChain": False,
            },
        }
        resp = await self._client.post("/advanced/routes", json=payload)
        resp.raise_for_status()
        routes = [Route.from_api(r) for r in resp.json().get("routes", [])]
        logger.info(
            f"LI.FI returned {len(routes)} route(s) "
            f"{query.from_chain_id} -> {query.to_chain_id}"
        )
        return [r for r in routes if r.steps]

    async def prepare_step(self, step: RouteStep) -> dict[str, Any]:
        """Return the ``transactionRequest`` for *step*."""
        resp = await self._client.post("/advanced/stepTransaction", json=step.raw)
        resp.raise_for_status()
        data = resp.json()
        request = data.get("transactionRequest")
        if not request:
            raise RuntimeError(f"Transaction failed: no transaction request for step {step.id}")
        estimate = data.get("estimate", {})
        if estimate.get("approvalAddress"):
            step.approval_address = estimate["approvalAddress"]
        return request

    async def get_status(
        self, tx_hash: str, from_chain_id: int, to_chain_id: int, tool: str | None = None
    ) -> dict[str, Any]:
        """Cross-chain status of a submitted step (``PENDING``, ``DONE``, ``FAILED``...)."""
        params: dict[str, Any] = {
            "txHash": tx_hash,
            "fromChain": from_chain_id,
            "toChain": to_chain_id,
        }
        if tool:
            params["bridge"] = tool
        resp = await self._client.get("/status", params=params)
        resp.raise_for_status()
        return resp.json()
