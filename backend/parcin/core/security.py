"""
Bearer token verification

Drivers and operators sign in with the external auth provider, which issues
HS256 tokens with the shared SECRET_KEY. Parcin never issues tokens.
"""
from typing import Optional

from jose import JWTError, jwt

from parcin.core.config import settings

ACCESS_TOKEN_TYPE = "access"


def decode_token(token: str) -> Optional[dict]:
    """Claims of a valid token, or None when the signature or expiry check fails."""
    try:
        # `sub` arrives as an int from some clients, so its type is checked by the caller
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            options={"verify_sub": False},
        )
    except JWTError:
        return None


def access_subject(claims: Optional[dict]) -> Optional[int]:
    """User id of an access token's claims; None for refresh tokens or bad subjects."""
    if not claims or claims.get("type") != ACCESS_TOKEN_TYPE:
        return None
    try:
        return int(claims.get("sub"))
    except (TypeError, ValueError):
        return None
