from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from circulation.db.models import PaymentMethod


class PaymentCreate(BaseModel):
    member_id: int
    amount: Decimal
    loan_id: Optional[int] = None
    method: PaymentMethod = PaymentMethod.CASH
    note: Optional[str] = None


class PaymentRead(BaseModel):
    id: int
    member_id: int
    loan_id: Optional[int]
    amount: float
    payment_date: datetime
    method: PaymentMethod
    note: Optional[str]

    class Config:
        from_attributes = True


class BalanceRead(BaseModel):
    member_id: int
    assessed: float
    paid: float
    outstanding: float
    projected: float
