"""Single-chain transfers of the native asset or an ERC20 token."""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict
from web3 import Web3

from agent_chain_wallet.actions.base import (
    ProgressCallback,
    ProgressEvent,
    RetrySettings,
    after_broadcast,
    notify,
    validate_amount,
    validate_chain,
    validate_recipient,
)
from agent_chain_wallet.wallet.chains import ChainDescriptor
from agent_chain_wallet.wallet.client import ERC20_ABI
from agent_chain_wallet.wallet.errors import ClassifiedError, ErrorHandler, ErrorKind
from agent_chain_wallet.wallet.keys import is_valid_address
from agent_chain_wallet.wallet.provider import ChainClientProvider
from agent_chain_wallet.wallet.routing import BridgeRouter, TokenInfo, is_native_token
from agent_chain_wallet.wallet.units import to_base_units

logger = logging.getLogger("agent_chain_wallet.actions.transfer")


class TransferRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_chain: str
    amount: str
    recipient_address: str
    token: Optional[str] = None


class TransferResult(BaseModel):
    transaction_hash: str
    from_address: str
    to_address: str
    amount: str
    chain: str
    token: str
    explorer_url: str = ""
    confirmed: bool = False


class TransferAction:
    """Validate, sign and broadcast a transfer on one chain.

    Inputs are checked before any network call, in this order: amount,
    recipient, source chain. The broadcast is attempted once; a failure is
    classified and raised, never retried.
    """

    def __init__(
        self,
        provider: ChainClientProvider,
        *,
        token_router: BridgeRouter | None = None,
        retry: RetrySettings | None = None,
        wait_for_confirmation: bool = False,
        confirmation_timeout: float = 180,
    ) -> None:
        self.provider = provider
        self.token_router = token_router
        self.retry = retry or RetrySettings()
        self.wait_for_confirmation = wait_for_confirmation
        self.confirmation_timeout = confirmation_timeout

    def validate(self, request: TransferRequest) -> ChainDescriptor:
        validate_amount(request.amount)
        validate_recipient(request.recipient_address)
        return validate_chain(self.provider, request.source_chain)

    async def transfer(
        self,
        request: TransferRequest,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TransferResult:
        chain = self.validate(request)
        token = None
        if request.token and request.token.upper() != chain.native_symbol.upper():
            token = await self._resolve_token(chain, request.token)

        decimals = token.decimals if token else chain.native_decimals
        try:
            value = to_base_units(request.amount, decimals)
        except ValueError as e:
            raise ErrorHandler.create(
                ErrorKind.INVALID_AMOUNT,
                f"Invalid amount '{request.amount}': {e}",
                {"amount": request.amount, "decimals": decimals},
            ) from e

        client = self.provider.get_write_client(chain.name)
        symbol = token.symbol if token else chain.native_symbol
        total_steps = 2 if self.wait_for_confirmation else 1
        logger.info(
            f"Transferring {request.amount} {symbol} on {chain.name} "
            f"to {request.recipient_address}"
        )

        if token is None:
            tx_hash = await ErrorHandler.with_retry(
                lambda: client.send_native(request.recipient_address, value),
                max_attempts=1,
            )
        else:
            tx_hash = await ErrorHandler.with_retry(
                lambda: client.send_erc20(token.address, request.recipient_address, value),
                max_attempts=1,
            )
        notify(on_progress, ProgressEvent(1, total_steps, "submitted", tx_hash))

        confirmed = False
        if self.wait_for_confirmation:
            try:
                await ErrorHandler.with_retry(
                    lambda: client.wait_for_receipt(tx_hash, timeout=self.confirmation_timeout),
                    max_attempts=1,
                )
            except ClassifiedError as e:
                raise after_broadcast(
                    e,
                    {"transaction_hash": tx_hash, "chain": chain.name},
                    f"{e.message} (transaction {tx_hash} was broadcast on {chain.name})",
                ) from e
            confirmed = True
            notify(on_progress, ProgressEvent(2, total_steps, "confirmed", tx_hash))

        return TransferResult(
            transaction_hash=tx_hash,
            from_address=client.address,
            to_address=request.recipient_address,
            amount=request.amount,
            chain=chain.name,
            token=symbol,
            explorer_url=chain.tx_url(tx_hash) if chain.explorer_url else "",
            confirmed=confirmed,
        )

    async def _resolve_token(self, chain: ChainDescriptor, token: str) -> TokenInfo | None:
        """Map a symbol or contract address to token metadata.

        Returns ``None`` for the native asset.
        """
        if is_valid_address(token):
            if is_native_token(token):
                return None
            return await ErrorHandler.with_retry(
                lambda: self._read_token(chain, token),
                max_attempts=self.retry.max_attempts,
                base_delay=self.retry.base_delay,
            )

        if self.token_router is None:
            raise ErrorHandler.create(
                ErrorKind.UNSUPPORTED_TOKEN,
                f"Cannot resolve token symbol '{token}' on {chain.name} without a token router",
                {"token": token, "chain": chain.name},
            )
        info = await ErrorHandler.with_retry(
            lambda: self.token_router.resolve_token(chain.chain_id, token),
            max_attempts=self.retry.max_attempts,
            base_delay=self.retry.base_delay,
        )
        return None if info.is_native else info

    async def _read_token(self, chain: ChainDescriptor, address: str) -> TokenInfo:
        w3 = self.provider.get_read_client(chain.name)
        contract = w3.eth.contract(address=Web3.to_checksum_address(address), abi=ERC20_ABI)
        symbol = await contract.functions.symbol().call()
        decimals = await contract.functions.decimals().call()
        return TokenInfo(
            address=Web3.to_checksum_address(address),
            symbol=symbol,
            decimals=int(decimals),
            chain_id=chain.chain_id,
        )
