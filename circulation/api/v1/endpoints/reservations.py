from typing import List

from fastapi import APIRouter, Depends, Query, status

from circulation.api.v1.dependencies import get_engine
from circulation.schemas.reservation import ReservationCreate, ReservationRead
from circulation.services.engine import CirculationEngine

router = APIRouter(
    prefix="/api/v1/reservations",
    tags=["reservations"],
)


@router.post(
    "/",
    response_model=ReservationRead,
    status_code=status.HTTP_201_CREATED,
)
def create_reservation(
    payload: ReservationCreate,
    engine: CirculationEngine = Depends(get_engine),
):
    return engine.reserve(payload.member_id, payload.book_id, copy_id=payload.copy_id)


# ---- Cola de un libro, en orden FIFO ----
@router.get("/", response_model=List[ReservationRead])
def list_queue(
    book_id: int = Query(...),
    engine: CirculationEngine = Depends(get_engine),
):
    return engine.queue(book_id)


# Cancelar una reserva ya cerrada no es error: devuelve la reserva tal cual
@router.post("/{reservation_id}/cancel", response_model=ReservationRead)
def cancel_reservation(
    reservation_id: int,
    engine: CirculationEngine = Depends(get_engine),
):
    return engine.cancel_reservation(reservation_id)
