"""
Pairing code handling for consent-anchor
Canonicalizes user-typed join codes so every variant matches the stored key
"""

import re

from ..constants import PairingCodeFormat
from ..utils.ids import generate_pairing_token

_NON_ALPHANUMERIC = re.compile(r"[^a-zA-Z0-9]")


def normalize_pairing_code(value: str) -> str:
    """
    Canonicalize a pairing code.

    The input is lowercased, then non-alphanumerics are stripped. If exactly 32
    characters remain they are regrouped as 8-4-4-4-12; otherwise the
    trimmed, lowercased input is returned unchanged.
    """
    lowered = value.strip().lower()
    cleaned = _NON_ALPHANUMERIC.sub("", lowered)
    if len(cleaned) != PairingCodeFormat.RAW_LENGTH:
        return lowered

    segments = []
    offset = 0
    for size in PairingCodeFormat.SEGMENTS:
        segments.append(cleaned[offset:offset + size])
        offset += size
    return PairingCodeFormat.SEPARATOR.join(segments)


def generate_pairing_code() -> str:
    """Issue a fresh pairing code in grouped form"""
    return normalize_pairing_code(generate_pairing_token())
