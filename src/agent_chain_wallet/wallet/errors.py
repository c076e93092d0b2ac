"""Error taxonomy, classification and bounded retry for wallet operations.

Every failure that leaves this package is a :class:`ClassifiedError`: a
closed :class:`ErrorKind`, a human-readable message and at least one
actionable suggestion. Raw transport errors are mapped by
:meth:`ErrorHandler.classify`; validation failures are built with
:meth:`ErrorHandler.create`.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from web3.exceptions import ContractLogicError, TimeExhausted

logger = logging.getLogger("agent_chain_wallet.wallet.errors")

T = TypeVar("T")


class ErrorKind(str, Enum):
    INVALID_PRIVATE_KEY = "invalid_private_key"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_RECIPIENT = "invalid_recipient"
    INVALID_CHAIN_NAME = "invalid_chain_name"
    UNREGISTERED_CHAIN = "unregistered_chain"
    UNKNOWN_CHAIN = "unknown_chain"
    SAME_CHAIN_BRIDGE = "same_chain_bridge"
    NO_ROUTE_AVAILABLE = "no_route_available"
    UNSUPPORTED_TOKEN = "unsupported_token"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    MATCHING_FAILED = "matching_failed"
    INSUFFICIENT_LIQUIDITY = "insufficient_liquidity"
    GAS_ESTIMATION_ERROR = "gas_estimation_error"
    TRANSACTION_FAILED = "transaction_failed"
    NETWORK_ERROR = "network_error"
    UNKNOWN_ERROR = "unknown_error"


RECOVERABLE_KINDS = frozenset(
    {
        ErrorKind.MATCHING_FAILED,
        ErrorKind.GAS_ESTIMATION_ERROR,
        ErrorKind.NETWORK_ERROR,
    }
)

SUGGESTIONS: dict[ErrorKind, list[str]] = {
    ErrorKind.INVALID_PRIVATE_KEY: [
        "Provide a 64-character hex private key, with or without the 0x prefix",
        "Make sure the key was copied completely",
    ],
    ErrorKind.INVALID_AMOUNT: [
        "Use a positive decimal amount such as 0.01",
        "Check that the amount does not exceed the token's decimals",
    ],
    ErrorKind.INVALID_RECIPIENT: [
        "Provide a 0x-prefixed 40-character hex address",
        "Check the address checksum (mixed case) or use all lowercase",
    ],
    ErrorKind.INVALID_CHAIN_NAME: [
        "Chain names start with a letter, e.g. 'ethereum' or 'base'",
        "Use 'chain-<id>' for a custom chain id",
    ],
    ErrorKind.UNREGISTERED_CHAIN: [
        "Add the chain to the wallet configuration",
        "Choose one of the configured chains",
    ],
    ErrorKind.UNKNOWN_CHAIN: [
        "Check the spelling of the chain name",
        "Pass an RPC URL to use a custom chain id",
    ],
    ErrorKind.SAME_CHAIN_BRIDGE: [
        "Use a transfer for movements on a single chain",
        "Pick a different destination chain",
    ],
    ErrorKind.NO_ROUTE_AVAILABLE: [
        "Verify the token exists on both chains",
        "Try a different token pair or a larger amount",
    ],
    ErrorKind.UNSUPPORTED_TOKEN: [
        "Check the token symbol",
        "Pass the token contract address instead of its symbol",
    ],
    ErrorKind.INSUFFICIENT_FUNDS: [
        "Top up the wallet on the source chain",
        "Reduce the amount to leave room for gas",
    ],
    ErrorKind.MATCHING_FAILED: [
        "Transaction will proceed with pool rates",
        "Try with a different amount",
    ],
    ErrorKind.INSUFFICIENT_LIQUIDITY: [
        "Try a smaller amount",
        "Wait for more liquidity to be added",
    ],
    ErrorKind.GAS_ESTIMATION_ERROR: [
        "Increase the gas limit",
        "Try again during lower network congestion",
    ],
    ErrorKind.TRANSACTION_FAILED: [
        "Check transaction parameters",
        "Verify token approvals",
        "Ensure sufficient balance for gas",
    ],
    ErrorKind.NETWORK_ERROR: [
        "Verify the RPC endpoint is reachable",
        "Try again in a few moments",
    ],
    ErrorKind.UNKNOWN_ERROR: [
        "Try again, and report the error if it persists",
    ],
}

# Checked in order; the first matching kind wins. Insufficient funds comes
# before gas because node messages read "insufficient funds for gas * price".
_MESSAGE_PATTERNS: list[tuple[ErrorKind, tuple[str, ...], str]] = [
    (
        ErrorKind.INSUFFICIENT_FUNDS,
        ("insufficient funds", "insufficient balance", "exceeds balance"),
        "Insufficient funds for this transaction",
    ),
    (
        ErrorKind.MATCHING_FAILED,
        ("matching failed", "p2p matching", "no match found"),
        "Peer-to-peer matching failed",
    ),
    (
        ErrorKind.INSUFFICIENT_LIQUIDITY,
        ("insufficient liquidity", "not enough liquidity", "liquidity exhausted"),
        "Insufficient liquidity for this operation",
    ),
    (
        ErrorKind.GAS_ESTIMATION_ERROR,
        ("gas estimation", "gas required exceeds", "out of gas", "intrinsic gas too low"),
        "Gas estimation failed",
    ),
    (
        ErrorKind.NO_ROUTE_AVAILABLE,
        ("no route", "no available quotes"),
        "No route available",
    ),
    (
        ErrorKind.TRANSACTION_FAILED,
        (
            "transaction failed",
            "execution reverted",
            "tx failed",
            "nonce too low",
            "replacement transaction underpriced",
        ),
        "Transaction execution failed",
    ),
    (
        ErrorKind.INVALID_AMOUNT,
        ("invalid amount",),
        "Invalid amount",
    ),
    (
        ErrorKind.INVALID_RECIPIENT,
        ("invalid address",),
        "Invalid recipient address",
    ),
    (
        ErrorKind.NETWORK_ERROR,
        (
            "network error",
            "connection failed",
            "connection refused",
            "cannot connect",
            "timeout",
            "timed out",
        ),
        "Network connection error",
    ),
]


class ClassifiedError(Exception):
    """A failure mapped onto the closed :class:`ErrorKind` taxonomy."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: dict[str, Any] | None = None,
        suggestions: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details or {}
        self.suggestions = list(suggestions or SUGGESTIONS[kind])

    @property
    def recoverable(self) -> bool:
        return self.kind in RECOVERABLE_KINDS

    def __repr__(self) -> str:
        return f"ClassifiedError(kind={self.kind.value!r}, message={self.message!r})"


class ErrorHandler:
    """Builds, classifies and retries around :class:`ClassifiedError`."""

    @staticmethod
    def create(
        kind: ErrorKind,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> ClassifiedError:
        """Build an error of a known kind, attaching the standard suggestions."""
        return ClassifiedError(kind, message, details)

    @staticmethod
    def classify(error: BaseException) -> ClassifiedError:
        """Map a raw failure onto the error taxonomy."""
        if isinstance(error, ClassifiedError):
            return error

        raw_message = str(error) or type(error).__name__
        details = {"original_error": raw_message, "error_type": type(error).__name__}

        if isinstance(error, ContractLogicError):
            classified = ClassifiedError(
                ErrorKind.TRANSACTION_FAILED,
                f"Transaction execution failed: {raw_message}",
                details,
            )
        elif isinstance(
            error, (httpx.TransportError, ConnectionError, asyncio.TimeoutError, TimeExhausted)
        ):
            classified = ClassifiedError(
                ErrorKind.NETWORK_ERROR,
                f"Network connection error: {raw_message}",
                details,
            )
        else:
            classified = _classify_message(raw_message, details)

        logger.error(f"{classified.kind.value}: {raw_message}")
        return classified

    @staticmethod
    def is_recoverable(error: ClassifiedError) -> bool:
        return error.kind in RECOVERABLE_KINDS

    @staticmethod
    def get_suggestion(error: ClassifiedError) -> str:
        """Return the first suggestion for *error*."""
        if error.suggestions:
            return error.suggestions[0]
        return SUGGESTIONS[error.kind][0]

    @staticmethod
    def to_response(error: ClassifiedError) -> dict[str, Any]:
        """Plain-dict form handed to the agent layer."""
        return {
            "kind": error.kind.value,
            "message": error.message,
            "details": error.details,
            "suggestions": error.suggestions,
            "recoverable": error.recoverable,
        }

    @staticmethod
    async def with_retry(
        operation: Callable[[], Awaitable[T]],
        max_attempts: int = 3,
        base_delay: float = 1.0,
        retry_if: Callable[[ClassifiedError], bool] | None = None,
    ) -> T:
        """Run *operation* up to *max_attempts* times.

        The delay before attempt ``n + 1`` is ``base_delay * n`` seconds.
        Raw failures are retried regardless of kind unless *retry_if* is
        given, in which case a classified failure for which it returns
        False ends the loop early. A :class:`ClassifiedError` raised by the
        operation itself that is not recoverable (a validation failure) is
        re-raised at once. When attempts run out the last error is
        classified and raised.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        last_error: BaseException | None = None
        classified: ClassifiedError | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                return await operation()
            except ClassifiedError as exc:
                if not exc.recoverable:
                    raise
                last_error = exc
            except Exception as exc:
                last_error = exc

            # classified only on demand, once per failed attempt
            classified = None
            if retry_if is not None:
                classified = ErrorHandler.classify(last_error)
                if not retry_if(classified):
                    break

            logger.warning(f"Attempt {attempt}/{max_attempts} failed: {last_error}")
            if attempt < max_attempts:
                await asyncio.sleep(base_delay * attempt)

        if classified is None:
            classified = ErrorHandler.classify(last_error)
        if classified is last_error:
            raise classified
        raise classified from last_error


def _classify_message(raw_message: str, details: dict[str, Any]) -> ClassifiedError:
    lowered = raw_message.lower()
    for kind, needles, summary in _MESSAGE_PATTERNS:
        if any(needle in lowered for needle in needles):
            return ClassifiedError(kind, f"{summary}: {raw_message}", details)
    return ClassifiedError(
        ErrorKind.UNKNOWN_ERROR,
        f"Unknown error: {raw_message}",
        details,
    )
