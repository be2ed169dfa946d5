"""Rate limiter singleton. Import from here to avoid circular deps."""
from fastapi import Request
from jose import JWTError
from slowapi import Limiter
from slowapi.util import get_remote_address

from verifier.core.security import decode_token


def reviewer_key(request: Request) -> str:
    """Limit per authenticated reviewer; anonymous callers fall back to their address."""
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        try:
            subject = decode_token(auth[7:]).get("sub")
        except JWTError:
            subject = None
        if subject:
            return f"user:{subject}"
    return get_remote_address(request)


limiter = Limiter(key_func=reviewer_key)
