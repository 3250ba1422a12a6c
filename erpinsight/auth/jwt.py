"""JWT token generation and validation for the insight engine API."""

import os
import jwt
from datetime import datetime, timedelta
from typing import Optional, Dict
from dotenv import load_dotenv

from erpinsight.models.user import Principal

load_dotenv()

# JWT configuration
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRATION_HOURS = int(os.getenv("JWT_EXPIRATION_HOURS", "24"))


def create_access_token(user_id: str, role: str) -> str:
    """Create a JWT access token carrying the caller's id and ERP role.

    Args:
        user_id: User ID to encode in token
        role: ERP role name (admin, ceo, manager, operator, user)

    Returns:
        Encoded JWT token string
    """
    now = datetime.utcnow()
    payload = {
        "sub": str(user_id),
        "role": role,
        "exp": now + timedelta(hours=JWT_EXPIRATION_HOURS),
        "iat": now,
    }
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict]:
    """Decode and validate a JWT access token.

    Returns:
        Decoded payload, or None if the token is invalid or expired
    """
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def get_principal_from_token(token: str) -> Optional[Principal]:
    """Build the caller from a token; None if the token is invalid or lacks a subject."""
    payload = decode_access_token(token)
    if not payload or not payload.get("sub"):
        return None
    # A missing role claim falls back to the least privileged role.
    return Principal(user_id=str(payload["sub"]), role=str(payload.get("role") or "user"))
