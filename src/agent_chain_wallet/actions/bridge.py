"""Cross-chain bridging through a route provider."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from agent_chain_wallet.actions.base import (
    ProgressCallback,
    ProgressEvent,
    RetrySettings,
    notify,
    validate_amount,
    validate_chain,
    validate_recipient,
    wrap_partial,
)
from agent_chain_wallet.wallet.chains import ChainDescriptor
from agent_chain_wallet.wallet.errors import ClassifiedError, ErrorHandler, ErrorKind
from agent_chain_wallet.wallet.provider import ChainClientProvider
from agent_chain_wallet.wallet.routing import (
    NATIVE_TOKEN_ADDRESS,
    BridgeRouter,
    Route,
    RouteQuery,
    TokenInfo,
    is_native_token,
)
from agent_chain_wallet.wallet.units import format_units, to_base_units

logger = logging.getLogger("agent_chain_wallet.actions.bridge")


class BridgeStatus(str, Enum):
    PENDING_DESTINATION = "pending_destination"
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"
    NOT_FOUND = "not_found"


class BridgeRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_chain: str
    destination_chain: str
    amount: str
    from_token: Optional[str] = None
    to_token: Optional[str] = None
    recipient_address: Optional[str] = None


class BridgeResult(BaseModel):
    transaction_hash: str
    from_address: str
    to_address: str
    amount: str
    source_chain: str
    destination_chain: str
    from_token: str
    to_token: str
    estimated_to_amount: str = ""
    route_id: str = ""
    tool: str = ""
    transaction_hashes: list[str] = Field(default_factory=list)
    progress: list[ProgressEvent] = Field(default_factory=list)
    status: BridgeStatus = BridgeStatus.PENDING_DESTINATION


class BridgeStatusReport(BaseModel):
    status: BridgeStatus
    substatus: str = ""
    receiving_transaction_hash: str = ""
    raw: dict[str, Any] = Field(default_factory=dict)


_LIFI_STATUS = {
    "DONE": BridgeStatus.DONE,
    "FAILED": BridgeStatus.FAILED,
    "INVALID": BridgeStatus.FAILED,
    "NOT_FOUND": BridgeStatus.NOT_FOUND,
    "PENDING": BridgeStatus.PENDING,
}


class BridgeAction:
    """Move value between two registered chains.

    Validation runs before any network call, in order: distinct chains,
    amount, recipient (when given), both chains registered. Steps of the
    chosen route run strictly in order; after each confirmed source
    transaction *on_progress* is called with ``(step_index, total_steps)``.
    The action returns once the source side is confirmed and does not wait
    for the destination chain.
    """

    def __init__(
        self,
        provider: ChainClientProvider,
        router: BridgeRouter,
        *,
        retry: RetrySettings | None = None,
        confirmation_timeout: float = 300,
    ) -> None:
        self.provider = provider
        self.router = router
        self.retry = retry or RetrySettings()
        self.confirmation_timeout = confirmation_timeout

    def validate(self, request: BridgeRequest) -> tuple[ChainDescriptor, ChainDescriptor]:
        if request.source_chain.lower() == request.destination_chain.lower():
            raise ErrorHandler.create(
                ErrorKind.SAME_CHAIN_BRIDGE,
                f"Source and destination chain are both '{request.source_chain}'",
                {"chain": request.source_chain},
            )
        validate_amount(request.amount)
        if request.recipient_address is not None:
            validate_recipient(request.recipient_address)
        source = validate_chain(self.provider, request.source_chain)
        destination = validate_chain(self.provider, request.destination_chain)
        return source, destination

    async def _read(self, operation):
        return await ErrorHandler.with_retry(
            operation,
            max_attempts=self.retry.max_attempts,
            base_delay=self.retry.base_delay,
        )

    async def _resolve_token(self, chain: ChainDescriptor, token: str | None) -> TokenInfo:
        if token is None or token.upper() == chain.native_symbol.upper() or (
            token.startswith("0x") and is_native_token(token)
        ):
            return TokenInfo(
                address=NATIVE_TOKEN_ADDRESS,
                symbol=chain.native_symbol,
                decimals=chain.native_decimals,
                chain_id=chain.chain_id,
            )
        return await self._read(lambda: self.router.resolve_token(chain.chain_id, token))

    async def bridge(
        self,
        request: BridgeRequest,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BridgeResult:
        source, destination = self.validate(request)
        from_address = self.provider.get_address()
        to_address = request.recipient_address or from_address

        from_info = await self._resolve_token(source, request.from_token)
        to_info = await self._resolve_token(destination, request.to_token or from_info.symbol)
        try:
            from_amount = to_base_units(request.amount, from_info.decimals)
        except ValueError as e:
            raise ErrorHandler.create(
                ErrorKind.INVALID_AMOUNT,
                f"Invalid amount '{request.amount}': {e}",
                {"amount": request.amount, "decimals": from_info.decimals},
            ) from e

        query = RouteQuery(
            from_chain_id=source.chain_id,
            to_chain_id=destination.chain_id,
            from_token=from_info.address,
            to_token=to_info.address,
            from_amount=from_amount,
            from_address=from_address,
            to_address=to_address,
        )
        routes = await self._read(lambda: self.router.get_routes(query))
        routes = [r for r in routes if r.steps]
        if not routes:
            raise ErrorHandler.create(
                ErrorKind.NO_ROUTE_AVAILABLE,
                f"No route from {from_info.symbol} on {source.name} "
                f"to {to_info.symbol} on {destination.name}",
                {"source_chain": source.name, "destination_chain": destination.name},
            )

        route = routes[0]
        logger.info(
            f"Bridging {request.amount} {from_info.symbol} {source.name} -> "
            f"{destination.name} via route {route.id} ({len(route.steps)} step(s))"
        )
        hashes, progress = await self._execute(route, from_info, on_progress)

        return BridgeResult(
            transaction_hash=hashes[-1],
            from_address=from_address,
            to_address=to_address,
            amount=request.amount,
            source_chain=source.name,
            destination_chain=destination.name,
            from_token=from_info.symbol,
            to_token=to_info.symbol,
            estimated_to_amount=format_units(route.to_amount, to_info.decimals),
            route_id=route.id,
            tool=route.steps[-1].tool,
            transaction_hashes=hashes,
            progress=progress,
        )

    async def _execute(
        self,
        route: Route,
        from_info: TokenInfo,
        on_progress: Optional[ProgressCallback],
    ) -> tuple[list[str], list[ProgressEvent]]:
        total = len(route.steps)
        completed: list[str] = []
        progress: list[ProgressEvent] = []

        for index, step in enumerate(route.steps, start=1):
            tx_hash = None
            try:
                chain_name = self.provider.chain_name_for_id(step.from_chain_id)
                if chain_name is None:
                    raise ErrorHandler.create(
                        ErrorKind.UNREGISTERED_CHAIN,
                        f"Route step {index} starts on chain id {step.from_chain_id}, "
                        f"which is not configured",
                        {"chain_id": step.from_chain_id},
                    )
                client = self.provider.get_write_client(chain_name)
                tx_request = await self._read(lambda: self.router.prepare_step(step))

                token_address = step.from_token_address or from_info.address
                if step.approval_address and not is_native_token(token_address):
                    await ErrorHandler.with_retry(
                        lambda: client.ensure_allowance(
                            token_address, step.approval_address, step.from_amount
                        ),
                        max_attempts=1,
                    )

                tx_hash = await ErrorHandler.with_retry(
                    lambda: client.send_transaction_request(tx_request),
                    max_attempts=1,
                )
                await ErrorHandler.with_retry(
                    lambda: client.wait_for_receipt(tx_hash, timeout=self.confirmation_timeout),
                    max_attempts=1,
                )
            except ClassifiedError as e:
                wrapped = wrap_partial(e, completed, total, pending_hash=tx_hash)
                if wrapped is e:
                    raise
                raise wrapped from e

            completed.append(tx_hash)
            event = ProgressEvent(index, total, "source_confirmed", tx_hash)
            progress.append(event)
            logger.info(f"Bridge step {index}/{total} confirmed: {tx_hash}")
            notify(on_progress, event)

        return completed, progress

    async def get_transaction_status(
        self,
        tx_hash: str,
        source_chain: str,
        destination_chain: str,
        tool: str | None = None,
    ) -> BridgeStatusReport:
        """Poll the route provider for the destination side of a bridge."""
        source = validate_chain(self.provider, source_chain)
        destination = validate_chain(self.provider, destination_chain)
        data = await self._read(
            lambda: self.router.get_status(tx_hash, source.chain_id, destination.chain_id, tool)
        )
        receiving = data.get("receiving") or {}
        return BridgeStatusReport(
            status=_LIFI_STATUS.get(str(data.get("status", "")).upper(), BridgeStatus.PENDING),
            substatus=data.get("substatus") or "",
            receiving_transaction_hash=receiving.get("txHash") or "",
            raw=data,
        )
