from datetime import datetime, timedelta, timezone

from jose import jwt

from verifier.core.config import settings


# ─── JWT ──────────────────────────────────────────────────────────────────────

def create_access_token(
    subject: str,
    role: str,
    business_id: str | None = None,
    expires_minutes: int | None = None,
) -> str:
    """Issue a bearer token for a business user (or an ADMIN/AUDITOR operator).

    business_id is the tenant the caller acts for; operators may omit it.
    """
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
    )
    claims = {"sub": subject, "role": role, "exp": expire, "type": "access"}
    if business_id is not None:
        claims["business_id"] = str(business_id)
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Raises JWTError on invalid/expired token."""
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
