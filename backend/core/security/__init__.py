"""
Security utilities for authentication.
"""

from .session import SessionClaims, SessionTokenService

__all__ = [
    "SessionClaims",
    "SessionTokenService",
]
