"""
Cola de reservas por libro.

La cola no es una tabla aparte: son las reservas `active` del libro
ordenadas por (reserved_at, id). El id desempata, así que el orden es total.

Cuando una copia queda libre y hay cola, la copia pasa a `reserved` y se
aparta para la primera reserva durante `hold_window_days`. Si el socio no la
retira a tiempo, el barrido de expiración se la pasa al siguiente (o la deja
`available` si no hay nadie).
"""
from datetime import datetime, timedelta

from circulation.core.errors import CirculationError, DuplicateReservation, NotFound
from circulation.core.logging import get_logger
from circulation.core.policy import LendingPolicy
from circulation.db.models import ActorType, CopyStatus, Reservation, ReservationStatus
from circulation.repositories.ledger import LedgerSession, LedgerStore
from circulation.services import copy_state

logger = get_logger("circulation.reservations")


def _log_fallback(reservation_id: int, copy_id: int) -> None:
    logger.info(
        "Requested copy withdrawn, reservation falls back to any copy",
        extra={
            "operation": "reservation_fallback",
            "resource": "reservation",
            "reservation_id": reservation_id,
            "copy_id": copy_id,
        },
    )


def enqueue(
    store: LedgerSession,
    member_id: int,
    book_id: int,
    now: datetime,
    copy_id: int | None = None,
) -> Reservation:
    store.catalog.get_member(member_id)
    store.catalog.get_book(book_id)
    requested_copy_id = copy_id
    if copy_id is not None:
        copy = store.catalog.get_copy(copy_id)
        if copy.book_id != book_id:
            raise NotFound("Copy does not belong to this book", copy_id=copy_id, book_id=book_id)
        # Una copia perdida o dada de baja no vuelve sola: se acepta cualquiera
        if copy.status == CopyStatus.LOST or copy.retired_at is not None:
            copy_id = None

    if store.active_reservation_for(member_id, book_id) is not None:
        raise DuplicateReservation(member_id=member_id, book_id=book_id)

    # Reservar un libro con copias libres está permitido: se encola igual
    reservation = Reservation(
        member_id=member_id,
        book_id=book_id,
        copy_id=copy_id,
        reserved_at=now,
        status=ReservationStatus.ACTIVE,
    )
    store.save(reservation)
    if requested_copy_id is not None and copy_id is None:
        _log_fallback(reservation.id, requested_copy_id)
    store.record_activity(
        "reservation_create",
        now,
        actor_type=ActorType.MEMBER,
        actor_id=member_id,
        details=f"reservation={reservation.id} book={book_id}",
    )

    logger.info(
        "Reservation queued",
        extra={
            "operation": "reservation_create",
            "resource": "reservation",
            "reservation_id": reservation.id,
            "member_id": member_id,
            "book_id": book_id,
            "copy_id": copy_id,
        },
    )
    return reservation


def dequeue_next(store: LedgerSession, book_id: int, copy_id: int | None = None) -> Reservation | None:
    """
    Primera reserva activa del libro que puede quedarse con `copy_id`.

    Se saltan las que ya tienen una copia apartada y las que piden otra
    copia concreta.
    """
    for reservation in store.active_reservations(book_id):
        if reservation.held_copy_id is not None:
            continue
        if reservation.copy_id is None or reservation.copy_id == copy_id:
            return reservation
    return None


def bind(
    store: LedgerSession,
    reservation: Reservation,
    copy_id: int,
    now: datetime,
    policy: LendingPolicy,
) -> None:
    reservation.held_copy_id = copy_id
    reservation.expires_at = now + timedelta(days=policy.hold_window_days)
    store.save(reservation)

    logger.info(
        "Copy held for reservation",
        extra={
            "operation": "reservation_hold",
            "resource": "reservation",
            "reservation_id": reservation.id,
            "member_id": reservation.member_id,
            "copy_id": copy_id,
            "expires_at": reservation.expires_at,
        },
    )


def on_copy_returned(
    store: LedgerSession,
    copy_id: int,
    now: datetime,
    policy: LendingPolicy,
) -> Reservation | None:
    """Libera una copia prestada y, si hay cola, la aparta para el primero."""
    copy = store.catalog.get_copy(copy_id)
    head = dequeue_next(store, copy.book_id, copy.id)
    copy_state.release(store, copy.id, hold_for=head)
    if head is not None:
        bind(store, head, copy.id, now, policy)
    return head


def offer(
    store: LedgerSession,
    copy_id: int,
    now: datetime,
    policy: LendingPolicy,
) -> Reservation | None:
    """Ofrece una copia `available` al primero de la cola, si lo hay."""
    copy = store.catalog.get_copy(copy_id)
    if copy.status != CopyStatus.AVAILABLE or copy.retired_at is not None:
        return None

    head = dequeue_next(store, copy.book_id, copy.id)
    if head is None:
        return None

    copy_state.hold(store, copy.id)
    bind(store, head, copy.id, now, policy)
    return head


def offer_any_available(
    store: LedgerSession,
    book_id: int,
    now: datetime,
    policy: LendingPolicy,
) -> None:
    for copy in store.catalog.list_copies(book_id):
        if copy.status == CopyStatus.AVAILABLE and copy.retired_at is None:
            if offer(store, copy.id, now, policy) is None:
                return


def pass_on(
    store: LedgerSession,
    copy_id: int,
    now: datetime,
    policy: LendingPolicy,
) -> Reservation | None:
    """
    Una copia apartada se queda sin dueño (expiró, se canceló o el socio se
    llevó otra): pasa al siguiente de la cola o vuelve a `available`.
    """
    copy = store.catalog.get_copy(copy_id)
    if copy.status != CopyStatus.RESERVED:
        return None

    head = dequeue_next(store, copy.book_id, copy.id)
    if head is None:
        copy_state.unhold(store, copy.id)
        return None

    copy_state.rehold(store, copy.id)
    bind(store, head, copy.id, now, policy)
    return head


def fulfil(
    store: LedgerSession,
    reservation: Reservation,
    copy_id: int,
    now: datetime,
    policy: LendingPolicy,
) -> None:
    previous_hold = reservation.held_copy_id

    reservation.status = ReservationStatus.FULFILLED
    reservation.held_copy_id = copy_id
    store.save(reservation)

    # Se llevó otra copia: la que tenía apartada vuelve a la cola
    if previous_hold is not None and previous_hold != copy_id:
        pass_on(store, previous_hold, now, policy)

    logger.info(
        "Reservation fulfilled",
        extra={
            "operation": "reservation_fulfil",
            "resource": "reservation",
            "reservation_id": reservation.id,
            "member_id": reservation.member_id,
            "copy_id": copy_id,
        },
    )


def cancel(
    store: LedgerSession,
    reservation_id: int,
    now: datetime,
    policy: LendingPolicy,
) -> Reservation:
    reservation = store.get_reservation(reservation_id)
    if reservation.status != ReservationStatus.ACTIVE:
        # Estado terminal: cancelar otra vez no hace nada
        return reservation

    reservation.status = ReservationStatus.CANCELLED
    store.save(reservation)
    if reservation.held_copy_id is not None:
        pass_on(store, reservation.held_copy_id, now, policy)

    store.record_activity(
        "reservation_cancel",
        now,
        actor_type=ActorType.MEMBER,
        actor_id=reservation.member_id,
        details=f"reservation={reservation.id}",
    )
    logger.info(
        "Reservation cancelled",
        extra={
            "operation": "reservation_cancel",
            "resource": "reservation",
            "reservation_id": reservation.id,
            "member_id": reservation.member_id,
            "book_id": reservation.book_id,
        },
    )
    return reservation


def on_copy_withdrawn(
    store: LedgerSession,
    copy_id: int,
    now: datetime,
    policy: LendingPolicy,
) -> None:
    """
    La copia salió de circulación (perdida, mantenimiento, baja).

    - La reserva que la tenía apartada conserva su puesto en la cola y se le
      ofrece otra copia libre si la hay.
    - Las reservas que pedían esa copia concreta pasan a aceptar cualquiera
      del mismo libro.
    """
    holder = store.reservation_holding(copy_id)
    if holder is not None:
        holder.held_copy_id = None
        holder.expires_at = None
        store.save(holder)

    for reservation in store.reservations_requesting(copy_id):
        reservation.copy_id = None
        store.save(reservation)
        _log_fallback(reservation.id, copy_id)

    if holder is not None:
        offer_any_available(store, holder.book_id, now, policy)


def expire_one(
    store: LedgerSession,
    reservation_id: int,
    now: datetime,
    policy: LendingPolicy,
) -> bool:
    reservation = store.get_reservation(reservation_id)
    if (
        reservation.status != ReservationStatus.ACTIVE
        or reservation.expires_at is None
        or reservation.expires_at >= now
    ):
        return False

    reservation.status = ReservationStatus.EXPIRED
    store.save(reservation)
    if reservation.held_copy_id is not None:
        pass_on(store, reservation.held_copy_id, now, policy)

    store.record_activity(
        "reservation_expire",
        now,
        details=f"reservation={reservation.id}",
    )
    return True


def expire_older_than(ledger: LedgerStore, now: datetime, policy: LendingPolicy) -> int:
    """
    Barrido periódico: marca `expired` las reservas activas vencidas.

    Una transacción por fila; si una falla se loguea y se sigue con el resto.
    """
    with ledger.transaction() as store:
        reservation_ids = store.reservation_ids_expiring_before(now)

    expired = 0
    for reservation_id in reservation_ids:
        try:
            with ledger.transaction() as store:
                if expire_one(store, reservation_id, now, policy):
                    expired += 1
        except CirculationError as exc:
            logger.warning(
                "Reservation expiry failed, skipping",
                extra={
                    "operation": "reservation_expire_job",
                    "resource": "reservation",
                    "reservation_id": reservation_id,
                    "error": exc.kind,
                },
                exc_info=True,
            )

    logger.info(
        "Reservation expiry job executed",
        extra={
            "operation": "reservation_expire_job",
            "resource": "reservation",
            "candidates": len(reservation_ids),
            "updated_count": expired,
        },
    )
    return expired
