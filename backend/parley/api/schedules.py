from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from parley.api.deps import get_current_user, require_chat_member
from parley.database import get_db
from parley.models.chat import Chat
from parley.models.user import User
from parley.schemas.schedule import ScheduleCreate, ScheduleResponse, ScheduleUpdate
from parley.services import schedules as schedule_service

router = APIRouter(prefix="/chats/{chat_id}/schedules", tags=["schedules"])


@router.get("", response_model=List[ScheduleResponse])
async def list_schedules(
    chat: Chat = Depends(require_chat_member),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[ScheduleResponse]:
    rows = schedule_service.list_schedules(db, chat_id=chat.id, user_id=current_user.id)
    return [ScheduleResponse.model_validate(s) for s in rows]


@router.post("", response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED)
async def create_schedule(
    schedule_in: ScheduleCreate,
    chat: Chat = Depends(require_chat_member),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ScheduleResponse:
    schedule = schedule_service.schedule_message(
        db,
        chat_id=chat.id,
        sender_id=current_user.id,
        body=schedule_in.body,
        scheduled_at=schedule_in.scheduled_at,
    )
    return ScheduleResponse.model_validate(schedule)


@router.patch("/{schedule_id}", response_model=ScheduleResponse)
async def update_schedule(
    schedule_id: int,
    schedule_in: ScheduleUpdate,
    chat: Chat = Depends(require_chat_member),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ScheduleResponse:
    schedule = schedule_service.update_schedule(
        db,
        schedule_id=schedule_id,
        user_id=current_user.id,
        body=schedule_in.body,
        scheduled_at=schedule_in.scheduled_at,
    )
    return ScheduleResponse.model_validate(schedule)


@router.delete("/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_schedule(
    schedule_id: int,
    chat: Chat = Depends(require_chat_member),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    schedule_service.cancel_schedule(db, schedule_id=schedule_id, user_id=current_user.id)
