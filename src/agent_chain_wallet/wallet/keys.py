"""Private key generation, import and validation using eth-account."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum

from eth_account import Account
from eth_keys import keys
from eth_keys.constants import SECPK1_N
from pydantic import BaseModel, Field
from web3 import Web3

from agent_chain_wallet.wallet.errors import ErrorHandler, ErrorKind

_PRIVATE_KEY_RE = re.compile(r"^(?:0x)?([0-9a-fA-F]{64})$")
_ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{40}")


class WalletOrigin(str, Enum):
    GENERATED = "generated"
    IMPORTED = "imported"


class WalletRecord(BaseModel):
    """A key pair handed to the caller. Never persisted by this package."""

    private_key: str = Field(repr=False)
    public_key: str
    address: str
    chain: str
    origin: WalletOrigin
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def normalize_private_key(key: str) -> str:
    """Return *key* as a lower-case ``0x``-prefixed hex string.

    Raises
    ------
    ValueError
        If *key* is not 64 hex characters or is not a valid secp256k1
        scalar.
    """
    if not isinstance(key, str):
        raise ValueError("Private key must be a string")
    match = _PRIVATE_KEY_RE.match(key.strip())
    if match is None:
        raise ValueError("Private key must be exactly 64 hex characters")
    hex_part = match.group(1).lower()
    scalar = int(hex_part, 16)
    if not 0 < scalar < SECPK1_N:
        raise ValueError("Private key is out of range for secp256k1")
    return "0x" + hex_part


def is_valid_private_key(key: str) -> bool:
    try:
        normalize_private_key(key)
    except ValueError:
        return False
    return True


def is_valid_address(address: str) -> bool:
    """Check a 0x-prefixed address. Mixed-case input must carry a valid checksum."""
    if not isinstance(address, str) or _ADDRESS_RE.fullmatch(address) is None:
        return False
    body = address[2:]
    if body == body.lower() or body == body.upper():
        return True
    return Web3.is_checksum_address(address)


def derive_address(private_key: str) -> str:
    """Return the checksummed address for *private_key*."""
    return Account.from_key(normalize_private_key(private_key)).address


def derive_public_key(private_key: str) -> str:
    """Return the uncompressed public key (``0x04`` + X + Y)."""
    key_bytes = bytes.fromhex(normalize_private_key(private_key)[2:])
    public_key = keys.PrivateKey(key_bytes).public_key
    return "0x04" + public_key.to_bytes().hex()


def _build_record(private_key: str, chain: str, origin: WalletOrigin) -> WalletRecord:
    normalized = normalize_private_key(private_key)
    return WalletRecord(
        private_key=normalized,
        public_key=derive_public_key(normalized),
        address=derive_address(normalized),
        chain=chain,
        origin=origin,
    )


def generate_wallet(chain: str = "ethereum") -> WalletRecord:
    """Generate a fresh random key pair."""
    acct = Account.create()
    return _build_record(Web3.to_hex(acct.key), chain, WalletOrigin.GENERATED)


def import_wallet(private_key: str, chain: str = "ethereum") -> WalletRecord:
    """Import an existing key, with or without the ``0x`` prefix.

    Raises
    ------
    ClassifiedError
        ``INVALID_PRIVATE_KEY`` when the key is malformed or out of range.
    """
    try:
        return _build_record(private_key, chain, WalletOrigin.IMPORTED)
    except ValueError as exc:
        raise ErrorHandler.create(
            ErrorKind.INVALID_PRIVATE_KEY,
            f"Invalid private key: {exc}",
        ) from exc
