from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from circulation.db.models import CopyStatus


class CopyAction(BaseModel):
    staff_id: Optional[int] = None


class CopyRead(BaseModel):
    id: int
    book_id: int
    accession_no: str
    location: Optional[str]
    status: CopyStatus
    version: int
    retired_at: Optional[datetime]

    class Config:
        from_attributes = True
