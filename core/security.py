from jose import jwt, JWTError
from typing import Any, Dict, Optional

from core.config import Settings


class TokenError(Exception):
    pass


def decode_access_token(token: str, settings: Settings) -> Dict[str, Any]:
    """Decode a bearer token issued by the external identity service."""
    if not settings.secret_key:
        raise TokenError("SECRET_KEY is not configured")
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as e:
        raise TokenError(str(e))


def user_id_from_payload(payload: Dict[str, Any]) -> Optional[int]:
    # issuers put the numeric id in "id"; older tokens carry it in "sub"
    raw = payload.get("id", payload.get("sub"))
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None
