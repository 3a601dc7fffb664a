from typing import List

from fastapi import APIRouter, Depends, status

from circulation.api.v1.dependencies import get_engine
from circulation.schemas.loan import (
    LoanAction,
    LoanCreate,
    LoanRead,
    LoanStatusHistoryRead,
)
from circulation.services.engine import CirculationEngine

router = APIRouter(
    prefix="/api/v1/loans",
    tags=["loans"],
)


# ---- Préstamo (checkout) ----
@router.post(
    "/",
    response_model=LoanRead,
    status_code=status.HTTP_201_CREATED,
)
def checkout(
    payload: LoanCreate,
    engine: CirculationEngine = Depends(get_engine),
):
    loan = engine.checkout(payload.copy_id, payload.member_id, staff_id=payload.staff_id)
    return engine.describe_loan(loan)


# ---- Detalle de un préstamo ----
@router.get("/{loan_id}", response_model=LoanRead)
def get_loan(
    loan_id: int,
    engine: CirculationEngine = Depends(get_engine),
):
    return engine.describe_loan(engine.get_loan(loan_id))


@router.get("/{loan_id}/history", response_model=List[LoanStatusHistoryRead])
def get_loan_history(
    loan_id: int,
    engine: CirculationEngine = Depends(get_engine),
):
    return engine.loan_history(loan_id)


# ---- Devolución ----
@router.post("/{loan_id}/return", response_model=LoanRead)
def return_loan(
    loan_id: int,
    payload: LoanAction | None = None,
    engine: CirculationEngine = Depends(get_engine),
):
    staff_id = payload.staff_id if payload else None
    return engine.describe_loan(engine.return_copy(loan_id, staff_id=staff_id))


# ---- Renovación ----
@router.post("/{loan_id}/renew", response_model=LoanRead)
def renew_loan(
    loan_id: int,
    engine: CirculationEngine = Depends(get_engine),
):
    return engine.describe_loan(engine.renew(loan_id))


# ---- Pérdida ----
@router.post("/{loan_id}/lost", response_model=LoanRead)
def mark_loan_lost(
    loan_id: int,
    payload: LoanAction | None = None,
    engine: CirculationEngine = Depends(get_engine),
):
    staff_id = payload.staff_id if payload else None
    return engine.describe_loan(engine.mark_loan_lost(loan_id, staff_id=staff_id))
