"""Find private keys pasted into free-form text."""

from __future__ import annotations

import re
from dataclasses import dataclass

from agent_chain_wallet.wallet.keys import is_valid_private_key

_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("hex_0x", re.compile(r"0x[a-fA-F0-9]{64}")),
    ("hex_bare", re.compile(r"\b[a-fA-F0-9]{64}\b")),
]


@dataclass(frozen=True)
class DetectedKey:
    format: str
    raw_match: str
    key: str


def detect_private_keys(text: str) -> list[DetectedKey]:
    """Return every valid private key found in *text*.

    Prefixed matches come first, then bare ones, each in text order. The
    same key may appear twice when it occurs in both forms; callers use the
    first entry.
    """
    if not text:
        return []

    found: list[DetectedKey] = []
    for fmt, pattern in _PATTERNS:
        for match in pattern.findall(text):
            key = match if match.startswith("0x") else f"0x{match}"
            if is_valid_private_key(key):
                found.append(DetectedKey(format=fmt, raw_match=match, key=key.lower()))
    return found
