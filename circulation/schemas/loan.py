from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel

from circulation.db.models import LoanStatus


class LoanCreate(BaseModel):
    copy_id: int
    member_id: int
    staff_id: Optional[int] = None


class LoanAction(BaseModel):
    staff_id: Optional[int] = None


class LoanRead(BaseModel):
    id: int
    copy_id: int
    member_id: int
    staff_issued_id: Optional[int]
    loan_date: date
    due_date: date
    return_date: Optional[date]
    status: LoanStatus
    # `overdue` derivado de la fecha aunque el barrido no haya pasado todavía
    effective_status: LoanStatus
    fine_amount: float
    # Multa proyectada a hoy para préstamos abiertos (no se guarda)
    accrued_fine: float
    renewal_count: int

    class Config:
        from_attributes = True


class MemberLoanRead(LoanRead):
    book_id: int
    title: str


class LoanStatusHistoryRead(BaseModel):
    id: int
    loan_id: int
    old_status: Optional[LoanStatus]
    new_status: LoanStatus
    changed_by_staff_id: Optional[int]
    changed_at: datetime
    note: Optional[str]

    class Config:
        from_attributes = True
