import uuid
from dataclasses import dataclass
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from verifier.core.security import decode_token

bearer_scheme = HTTPBearer(auto_error=False)

# ─── Roles ───
BUSINESS_USER = "BUSINESS_USER"
ADMIN = "ADMIN"
AUDITOR = "AUDITOR"


@dataclass(frozen=True)
class CurrentActor:
    user_id: str
    role: str
    business_id: uuid.UUID | None = None

    @property
    def is_operator(self) -> bool:
        return self.role in (ADMIN, AUDITOR)

    @property
    def scope_business_id(self) -> uuid.UUID | None:
        """Business filter for service calls; None lets operators see every tenant."""
        return None if self.is_operator else self.business_id


def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> CurrentActor:
    """Validate the bearer JWT and return who is calling, for which business."""
    credentials_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exc
    try:
        payload = decode_token(credentials.credentials)
        if payload.get("type") != "access":
            raise credentials_exc
        user_id: str | None = payload.get("sub")
        role: str | None = payload.get("role")
        if not user_id or not role:
            raise credentials_exc
        raw_business = payload.get("business_id")
        business_id = UUID(raw_business) if raw_business else None
    except (JWTError, ValueError):
        raise credentials_exc

    if role == BUSINESS_USER and business_id is None:
        raise credentials_exc
    return CurrentActor(user_id=user_id, role=role, business_id=business_id)


def require_role(*roles: str):
    """Dependency factory: raises 403 if actor role not in allowed list."""
    def check(actor: CurrentActor = Depends(get_current_actor)) -> CurrentActor:
        if actor.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{actor.role}' is not permitted for this action.",
            )
        return actor
    return check
