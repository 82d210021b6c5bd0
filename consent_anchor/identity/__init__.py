"""
Identity resolution for consent-anchor
"""

from .directory import UserRecord, UserDirectory, InMemoryUserDirectory

__all__ = [
    "UserRecord",
    "UserDirectory",
    "InMemoryUserDirectory",
]
