from datetime import datetime, timedelta, timezone

import jwt

from retail_stock.config import settings


def create_actor_token(actor_id: str, hours: int = 8) -> str:
    """Issue a token the way the identity service does. Used by tooling and tests."""
    payload = {
        "sub": actor_id,
        "exp": datetime.now(timezone.utc) + timedelta(hours=hours),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.TOKEN_ALGORITHM)


def decode_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.TOKEN_ALGORITHM])
    except (jwt.ExpiredSignatureError, jwt.InvalidTokenError):
        return None
