"""Pydantic schemas for audit trail endpoints."""
import json
import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AuditEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    session_id: uuid.UUID | None
    transaction_id: uuid.UUID | None
    event_type: str
    actor_type: str
    actor_id: str | None
    before_state: Any | None
    after_state: Any | None
    metadata: Any | None = Field(default=None, validation_alias="event_metadata")
    occurred_at: datetime

    @field_validator("before_state", "after_state", "metadata", mode="before")
    @classmethod
    def _parse_json(cls, value):
        if isinstance(value, str):
            return json.loads(value)
        return value


class AuditTrailResponse(BaseModel):
    items: list[AuditEntryOut]
    total: int
