"""
Security Module
===============

JWT validation. Tokens are issued by the account service; this service
only needs to validate them and read the user id from ``sub``.
"""

from typing import Any, Optional

from jose import JWTError, jwt

from iap.config import settings


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """
    Decode and validate a JWT token.

    Args:
        token: JWT token string

    Returns:
        Decoded payload if valid, None otherwise
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
        return payload
    except JWTError:
        return None
