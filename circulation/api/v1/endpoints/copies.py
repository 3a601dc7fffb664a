from fastapi import APIRouter, Depends

from circulation.api.v1.dependencies import get_engine
from circulation.schemas.copy import CopyAction, CopyRead
from circulation.services.engine import CirculationEngine

router = APIRouter(
    prefix="/api/v1/copies",
    tags=["copies"],
)


def _staff(payload: CopyAction | None):
    return payload.staff_id if payload else None


@router.get("/{copy_id}", response_model=CopyRead)
def get_copy(
    copy_id: int,
    engine: CirculationEngine = Depends(get_engine),
):
    return engine.get_copy(copy_id)


@router.post("/{copy_id}/lost", response_model=CopyRead)
def mark_lost(
    copy_id: int,
    payload: CopyAction | None = None,
    engine: CirculationEngine = Depends(get_engine),
):
    return engine.mark_copy_lost(copy_id, staff_id=_staff(payload))


@router.post("/{copy_id}/maintenance", response_model=CopyRead)
def mark_maintenance(
    copy_id: int,
    payload: CopyAction | None = None,
    engine: CirculationEngine = Depends(get_engine),
):
    return engine.mark_copy_maintenance(copy_id, staff_id=_staff(payload))


@router.post("/{copy_id}/restore", response_model=CopyRead)
def restore(
    copy_id: int,
    payload: CopyAction | None = None,
    engine: CirculationEngine = Depends(get_engine),
):
    return engine.restore_copy(copy_id, staff_id=_staff(payload))


@router.post("/{copy_id}/retire", response_model=CopyRead)
def retire(
    copy_id: int,
    payload: CopyAction | None = None,
    engine: CirculationEngine = Depends(get_engine),
):
    return engine.retire_copy(copy_id, staff_id=_staff(payload))
