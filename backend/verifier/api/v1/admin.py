"""Operator endpoints for the auto-approval sweep."""
import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import sessionmaker

from verifier.core.deps import ADMIN, CurrentActor, require_role
from verifier.db.session import get_session_factory
from verifier.schemas.verification import SweepSummary
from verifier.services.sweep import run_sweep_once

logger = logging.getLogger(__name__)

router = APIRouter()


class SweepRequest(BaseModel):
    now: datetime | None = None
    grace_hours: float | None = None
    expire_unreviewed: bool | None = None


# ─── POST /admin/sweep ───


@router.post(
    "/sweep",
    response_model=SweepSummary,
    summary="Run the auto-approval sweep now",
)
def trigger_sweep(
    session_factory: Annotated[sessionmaker, Depends(get_session_factory)],
    actor: Annotated[CurrentActor, Depends(require_role(ADMIN))],
    body: SweepRequest | None = None,
):
    """Run one sweep synchronously and return its summary. ADMIN only.

    Safe to call while the scheduled sweep is running: sessions already
    resolved are reported with reason `already_completed` and left untouched.
    """
    body = body or SweepRequest()
    logger.info("Manual sweep requested by %s", actor.user_id)
    return run_sweep_once(
        session_factory,
        now=body.now,
        grace_hours=body.grace_hours,
        expire_unreviewed=body.expire_unreviewed,
    )
