"""Audit log API endpoints."""
import csv
import io
import uuid
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from verifier.core.clock import ensure_utc
from verifier.core.deps import ADMIN, AUDITOR, CurrentActor, require_role
from verifier.db.session import get_db
from verifier.services import audit as audit_svc

router = APIRouter()

EXPORT_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@router.get(
    "/export",
    summary="Export verification audit entries as CSV",
    description="Stream audit entries as a CSV file with optional filters. Requires AUDITOR or ADMIN role.",
)
def export_audit_entries(
    db: Annotated[Session, Depends(get_db)],
    actor: Annotated[CurrentActor, Depends(require_role(AUDITOR, ADMIN))],
    start_date: Annotated[datetime | None, Query(description="Filter entries from this date (ISO 8601)")] = None,
    end_date: Annotated[datetime | None, Query(description="Filter entries until this date (ISO 8601)")] = None,
    event_type: Annotated[str | None, Query(description="Filter by event type (e.g., 'transaction_rejected')")] = None,
    session_id: Annotated[uuid.UUID | None, Query(description="Filter by verification session")] = None,
):
    """Export audit entries as CSV in chronological order.

    Columns: id, occurred_at, event_type, session_id, transaction_id,
    actor_type, actor_id, before_state, after_state, metadata
    """
    if not (start_date or end_date or session_id):
        start_date = EXPORT_EPOCH
    entries = audit_svc.query(
        db,
        session_id=session_id,
        start=ensure_utc(start_date) if start_date else None,
        end=ensure_utc(end_date) if end_date else None,
        event_type=event_type,
    )

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([
        "id", "occurred_at", "event_type", "session_id", "transaction_id",
        "actor_type", "actor_id", "before_state", "after_state", "metadata",
    ])
    for entry in entries:
        writer.writerow([
            str(entry.id),
            ensure_utc(entry.occurred_at).isoformat() if entry.occurred_at else "",
            entry.event_type,
            str(entry.session_id) if entry.session_id else "",
            str(entry.transaction_id) if entry.transaction_id else "",
            entry.actor_type,
            entry.actor_id or "",
            entry.before_state or "",
            entry.after_state or "",
            entry.event_metadata or "",
        ])

    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=verification-audit.csv"},
    )
