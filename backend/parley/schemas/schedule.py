from datetime import datetime

from pydantic import BaseModel, Field


class ScheduleCreate(BaseModel):
    body: str = Field(..., min_length=1, max_length=4000)
    scheduled_at: datetime


class ScheduleUpdate(BaseModel):
    body: str | None = Field(None, min_length=1, max_length=4000)
    scheduled_at: datetime | None = None


class ScheduleResponse(BaseModel):
    id: int
    chat_id: int
    sender_id: int
    body: str
    scheduled_at: datetime
    status: str
    active: bool
    retry_count: int
    last_attempt_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
