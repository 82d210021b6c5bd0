"""
Hashing utilities for consent-anchor
Secure digests and hash chains for tamper-evident records
"""

import hashlib
import json
from typing import Any, Dict
import structlog

logger = structlog.get_logger(__name__)


def secure_hash(data: bytes) -> str:
    """
    Create a SHA-256 hash of data

    Args:
        data: Data to hash

    Returns:
        Hex-encoded hash string
    """
    return hashlib.sha256(data).hexdigest()


def canonical_json(data: Dict[str, Any]) -> bytes:
    """Serialize a mapping deterministically for hashing"""
    return json.dumps(data, sort_keys=True, separators=(',', ':'), default=str).encode('utf-8')


class HashChain:
    """Hash chain for tamper-evident logging"""

    GENESIS = b"genesis"

    def __init__(self):
        self.current_hash = secure_hash(self.GENESIS)
        self.chain_length = 0

    def add_entry(self, data: bytes) -> str:
        """Add entry to hash chain"""
        combined = self.current_hash.encode('utf-8') + data
        self.current_hash = secure_hash(combined)
        self.chain_length += 1

        logger.debug("Added hash chain entry",
                    length=self.chain_length,
                    hash=self.current_hash[:16])

        return self.current_hash
