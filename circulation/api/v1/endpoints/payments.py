from fastapi import APIRouter, Depends, status

from circulation.api.v1.dependencies import get_engine
from circulation.schemas.payment import PaymentCreate, PaymentRead
from circulation.services.engine import CirculationEngine

router = APIRouter(tags=["payments"])


@router.post(
    "/api/v1/payments",
    response_model=PaymentRead,
    status_code=status.HTTP_201_CREATED,
)
def pay_fine(
    payload: PaymentCreate,
    engine: CirculationEngine = Depends(get_engine),
):
    return engine.pay_fine(
        payload.member_id,
        payload.amount,
        loan_id=payload.loan_id,
        method=payload.method,
        note=payload.note,
    )
