"""
JWT helpers.

Access tokens are minted by the identity service; this service only needs to
verify them. create_access_token mints tokens with the same claims for
service-to-service calls and tests.

Claims: sub, user_id, role and, for scoped roles, the scope claim below.
"""

from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from glassbox_backend.app.core.config import settings

# Claim a scoped role's token must carry to see any revenue
SCOPE_CLAIMS = {
    "MERCHANT": "merchant_id",
    "PARTNER": "partner_id",
}


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign a token for `data`.

    Example:
        create_access_token({"sub": "merchant_user", "user_id": 20,
                             "role": "MERCHANT", "merchant_id": "M-001"})
    """
    issued_at = datetime.utcnow()
    claims = dict(data)
    claims["iat"] = issued_at
    claims["exp"] = issued_at + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Verified claims of `token`, or None if it is malformed, forged or expired."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
