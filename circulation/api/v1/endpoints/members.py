from typing import List

from fastapi import APIRouter, Depends

from circulation.api.v1.dependencies import get_engine
from circulation.schemas.loan import MemberLoanRead
from circulation.schemas.payment import BalanceRead
from circulation.services.engine import CirculationEngine

router = APIRouter(prefix="/api/v1/members", tags=["members"])


@router.get("/{member_id}/loans", response_model=List[MemberLoanRead])
def member_loans(
    member_id: int,
    engine: CirculationEngine = Depends(get_engine),
):
    # Préstamos sin devolver, con estado vencido y multa calculados a hoy
    return engine.member_loans(member_id)


@router.get("/{member_id}/balance", response_model=BalanceRead)
def member_balance(
    member_id: int,
    engine: CirculationEngine = Depends(get_engine),
):
    return engine.member_balance(member_id)
