"""
Máquina de estados de la copia física.

Es la única que cambia `book_copies.status`, siempre con compare-and-set
sobre `version`:

    available -> on_loan -> available            (préstamo / devolución)
    available -> reserved -> on_loan             (reserva -> retirada)
    on_loan   -> reserved                        (devolución con cola)
    cualquiera menos lost -> lost
    cualquiera -> maintenance -> available

Un fallo de versión es `Conflict`: otro actor cambió la copia antes.
"""
from datetime import datetime

from circulation.core.errors import CopyUnavailable, InvalidTransition
from circulation.core.logging import get_logger
from circulation.db.models import Copy, CopyStatus, Reservation
from circulation.repositories.ledger import LedgerSession

logger = get_logger("circulation.copies")


def _transition(
    store: LedgerSession,
    copy: Copy,
    new_status: CopyStatus,
    allowed_from: set[CopyStatus],
    operation: str,
    **values,
) -> int:
    old_status = copy.status
    if old_status not in allowed_from:
        raise InvalidTransition(
            f"Invalid copy transition from {old_status.value} to {new_status.value}",
            copy_id=copy.id,
        )

    new_version = store.compare_and_set_copy(
        copy.id, copy.version, old_status, new_status, **values
    )

    logger.info(
        "Copy status changed",
        extra={
            "operation": operation,
            "resource": "copy",
            "copy_id": copy.id,
            "book_id": copy.book_id,
            "old_status": old_status.value,
            "new_status": new_status.value,
            "version": new_version,
        },
    )
    return new_version


def _ensure_no_active_loan(store: LedgerSession, copy: Copy) -> None:
    if store.active_loan_for_copy(copy.id) is not None:
        raise InvalidTransition(
            "Copy has an active loan; process the loan first",
            copy_id=copy.id,
        )


def claim(store: LedgerSession, copy_id: int, expected_version: int, member_id: int) -> int:
    """
    Pasa la copia a `on_loan` si su versión sigue siendo `expected_version`.

    - available -> on_loan
    - reserved  -> on_loan, solo si está apartada para `member_id`
    """
    copy = store.catalog.get_copy(copy_id)
    if copy.retired_at is not None:
        raise CopyUnavailable("Copy is retired", copy_id=copy_id)

    if copy.status == CopyStatus.RESERVED:
        holder = store.reservation_holding(copy.id)
        if holder is None or holder.member_id != member_id:
            raise CopyUnavailable("Copy is held for another member", copy_id=copy_id)
    elif copy.status != CopyStatus.AVAILABLE:
        raise CopyUnavailable(
            f"Copy is {copy.status.value}",
            copy_id=copy_id,
        )

    new_version = store.compare_and_set_copy(
        copy.id, expected_version, copy.status, CopyStatus.ON_LOAN
    )
    logger.info(
        "Copy claimed",
        extra={
            "operation": "copy_claim",
            "resource": "copy",
            "copy_id": copy.id,
            "member_id": member_id,
            "version": new_version,
        },
    )
    return new_version


def release(store: LedgerSession, copy_id: int, hold_for: Reservation | None = None) -> int:
    """
    Devuelve la copia a circulación.

    Si la cola de reservas entregó una reserva (`hold_for`) la copia queda
    `reserved` para ese socio; si no, `available`.
    """
    copy = store.catalog.get_copy(copy_id)
    new_status = CopyStatus.RESERVED if hold_for is not None else CopyStatus.AVAILABLE
    return _transition(store, copy, new_status, {CopyStatus.ON_LOAN}, "copy_release")


def hold(store: LedgerSession, copy_id: int) -> int:
    copy = store.catalog.get_copy(copy_id)
    if copy.retired_at is not None:
        raise InvalidTransition("Copy is retired", copy_id=copy_id)
    return _transition(store, copy, CopyStatus.RESERVED, {CopyStatus.AVAILABLE}, "copy_hold")


def rehold(store: LedgerSession, copy_id: int) -> int:
    # La copia sigue reservada pero cambia de socio: subimos la versión igual
    copy = store.catalog.get_copy(copy_id)
    return _transition(store, copy, CopyStatus.RESERVED, {CopyStatus.RESERVED}, "copy_rehold")


def unhold(store: LedgerSession, copy_id: int) -> int:
    copy = store.catalog.get_copy(copy_id)
    return _transition(store, copy, CopyStatus.AVAILABLE, {CopyStatus.RESERVED}, "copy_unhold")


def mark_lost(store: LedgerSession, copy_id: int) -> int:
    copy = store.catalog.get_copy(copy_id)
    _ensure_no_active_loan(store, copy)
    return _transition(
        store,
        copy,
        CopyStatus.LOST,
        {CopyStatus.AVAILABLE, CopyStatus.ON_LOAN, CopyStatus.RESERVED, CopyStatus.MAINTENANCE},
        "copy_mark_lost",
    )


def mark_maintenance(store: LedgerSession, copy_id: int) -> int:
    copy = store.catalog.get_copy(copy_id)
    _ensure_no_active_loan(store, copy)
    return _transition(
        store,
        copy,
        CopyStatus.MAINTENANCE,
        {CopyStatus.AVAILABLE, CopyStatus.ON_LOAN, CopyStatus.RESERVED, CopyStatus.LOST},
        "copy_mark_maintenance",
    )


def restore(store: LedgerSession, copy_id: int) -> int:
    copy = store.catalog.get_copy(copy_id)
    if copy.retired_at is not None:
        raise InvalidTransition("Copy is retired", copy_id=copy_id)
    return _transition(
        store,
        copy,
        CopyStatus.AVAILABLE,
        {CopyStatus.MAINTENANCE, CopyStatus.LOST},
        "copy_restore",
    )


def retire(store: LedgerSession, copy_id: int, now: datetime) -> int:
    """Baja lógica: la copia nunca se borra mientras tenga historial."""
    copy = store.catalog.get_copy(copy_id)
    if copy.retired_at is not None:
        raise InvalidTransition("Copy is already retired", copy_id=copy_id)
    return _transition(
        store,
        copy,
        copy.status,
        {CopyStatus.AVAILABLE, CopyStatus.MAINTENANCE, CopyStatus.LOST},
        "copy_retire",
        retired_at=now,
    )
