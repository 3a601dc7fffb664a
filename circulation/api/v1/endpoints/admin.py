from fastapi import APIRouter, Depends, status

from circulation.api.v1.dependencies import get_engine
from circulation.schemas.admin import SweepResult
from circulation.services.engine import CirculationEngine

router = APIRouter(
    prefix="/api/v1/admin",
    tags=["admin"],
)


# ---- Lanzar a mano los barridos que normalmente corre el scheduler ----
@router.post(
    "/sweeps/overdue",
    response_model=SweepResult,
    status_code=status.HTTP_200_OK,
)
def run_overdue_sweep(engine: CirculationEngine = Depends(get_engine)):
    """
    Ejecuta el job que:
    - Busca todos los préstamos BORROWED cuya due_date ya pasó.
    - Los marca como OVERDUE (la multa se calcula al devolver).
    """
    updated_count = engine.promote_overdue()
    return SweepResult(operation="loan_overdue_job", updated_count=updated_count)


@router.post(
    "/sweeps/reservations",
    response_model=SweepResult,
    status_code=status.HTTP_200_OK,
)
def run_reservation_sweep(engine: CirculationEngine = Depends(get_engine)):
    updated_count = engine.expire_reservations()
    return SweepResult(operation="reservation_expire_job", updated_count=updated_count)
