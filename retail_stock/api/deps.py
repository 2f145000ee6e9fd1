from fastapi import Cookie, Header, HTTPException

from retail_stock.services import actor_service


def get_actor_id(
    authorization: str | None = Header(default=None),
    token: str | None = Cookie(default=None, alias="token"),
) -> str | None:
    """Dependency: actor id from the bearer token, or None for system movements."""
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    if not token:
        return None
    payload = actor_service.decode_token(token)
    if not payload or not payload.get("sub"):
        raise HTTPException(401, "Invalid or expired token")
    return payload["sub"]
