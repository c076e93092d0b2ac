"""Shared pieces of the transfer and bridge actions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional

from agent_chain_wallet.wallet.chains import ChainDescriptor
from agent_chain_wallet.wallet.errors import ClassifiedError, ErrorHandler, ErrorKind
from agent_chain_wallet.wallet.keys import is_valid_address
from agent_chain_wallet.wallet.provider import ChainClientProvider
from agent_chain_wallet.wallet.units import parse_amount

logger = logging.getLogger("agent_chain_wallet.actions")


@dataclass(frozen=True)
class ProgressEvent:
    """One completed step of a multi-step operation (1-based)."""

    step_index: int
    total_steps: int
    stage: str = ""
    transaction_hash: str | None = None


ProgressCallback = Callable[[ProgressEvent], None]


def notify(on_progress: Optional[ProgressCallback], event: ProgressEvent) -> None:
    if on_progress is None:
        return
    logger.debug(f"Progress {event.step_index}/{event.total_steps} {event.stage}")
    on_progress(event)


def validate_amount(amount: str) -> Decimal:
    try:
        return parse_amount(amount)
    except ValueError as e:
        raise ErrorHandler.create(
            ErrorKind.INVALID_AMOUNT,
            f"Invalid amount '{amount}': {e}",
            {"amount": amount},
        ) from e


def validate_recipient(address: str) -> str:
    if not is_valid_address(address):
        raise ErrorHandler.create(
            ErrorKind.INVALID_RECIPIENT,
            f"Invalid recipient address '{address}'",
            {"recipient": address},
        )
    return address


def validate_chain(provider: ChainClientProvider, chain_name: str) -> ChainDescriptor:
    """Return the registered descriptor; raises ``UNREGISTERED_CHAIN`` otherwise."""
    return provider.get_chain(chain_name)


class RetrySettings:
    """Bounded retry settings for read-only calls made by an action."""

    def __init__(self, max_attempts: int = 3, base_delay: float = 1.0) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay


BROADCAST_SUGGESTION = (
    "A transaction was already broadcast; check its status before trying again"
)


def after_broadcast(error: ClassifiedError, details: dict, message: str) -> ClassifiedError:
    """Rebuild *error* for a failure that happened after funds left the wallet.

    The result is never recoverable.
    """
    kind = ErrorKind.TRANSACTION_FAILED if error.recoverable else error.kind
    suggestions = [BROADCAST_SUGGESTION] + [
        s for s in error.suggestions if s != BROADCAST_SUGGESTION
    ]
    return ClassifiedError(kind, message, {**error.details, **details}, suggestions)


def wrap_partial(
    error: ClassifiedError,
    completed: list[str],
    total_steps: int,
    pending_hash: str | None = None,
) -> ClassifiedError:
    """Mark *error* as a partial execution once any step was broadcast.

    *pending_hash* is a transaction of the failing step that was sent but
    not confirmed. With nothing broadcast, *error* is returned unchanged.
    """
    if not completed and pending_hash is None:
        return error
    details = {
        "partial": True,
        "completed_steps": len(completed),
        "total_steps": total_steps,
        "transaction_hashes": list(completed),
    }
    note = f"after {len(completed)} of {total_steps} steps completed"
    if pending_hash is not None:
        details["pending_transaction_hash"] = pending_hash
        note += f", step {len(completed) + 1} broadcast as {pending_hash} but not confirmed"
    return after_broadcast(
        error, details, f"{error.message} ({note}; funds may be in transit)"
    )
