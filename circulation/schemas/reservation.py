from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from circulation.db.models import ReservationStatus


class ReservationCreate(BaseModel):
    member_id: int
    book_id: int
    copy_id: Optional[int] = None  # copia concreta (opcional)


class ReservationRead(BaseModel):
    id: int
    member_id: int
    book_id: int
    copy_id: Optional[int]
    held_copy_id: Optional[int]
    reserved_at: datetime
    expires_at: Optional[datetime]
    status: ReservationStatus

    class Config:
        from_attributes = True
