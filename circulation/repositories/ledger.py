"""
Ledger store: acceso transaccional a préstamos, reservas, pagos y al estado
versionado de las copias.

Todo lo que se llama desde dentro de `LedgerStore.transaction()` comparte la
misma sesión, así que el compare-and-set de la copia, el alta del préstamo y
la actualización de la reserva se confirman juntos o no se confirman.
"""
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Iterator, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    OperationalError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from circulation.core.errors import Conflict, NotFound, StoreUnavailable
from circulation.core.logging import get_logger
from circulation.db.models import (
    ACTIVE_LOAN_STATUSES,
    ActivityLog,
    ActorType,
    Book,
    Copy,
    CopyStatus,
    Loan,
    LoanStatus,
    LoanStatusHistory,
    Payment,
    Reservation,
    ReservationStatus,
)
from circulation.repositories.catalog import CatalogStore

logger = get_logger("circulation.ledger")

T = TypeVar("T")


class LedgerSession:
    """Repositorio ligado a una transacción abierta."""

    def __init__(self, session: Session):
        self.session = session
        self.catalog = CatalogStore(session)

    # ---- genérico ----
    def save(self, *records) -> None:
        # Flush inmediato: las consultas siguientes deben ver el cambio y
        # los errores de versión salen dentro de la operación.
        self.session.add_all(records)
        self.session.flush()

    # ---- copias ----
    def compare_and_set_copy(
        self,
        copy_id: int,
        expected_version: int,
        expected_status: CopyStatus,
        new_status: CopyStatus,
        **values,
    ) -> int:
        stmt = (
            update(Copy)
            .where(
                Copy.id == copy_id,
                Copy.version == expected_version,
                Copy.status == expected_status,
            )
            .values(status=new_status, version=Copy.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if result.rowcount != 1:
            raise Conflict(
                "Copy was modified by another request",
                copy_id=copy_id,
                expected_version=expected_version,
            )
        return expected_version + 1

    # ---- préstamos ----
    def get_loan(self, loan_id: int) -> Loan:
        loan = self.session.get(Loan, loan_id)
        if loan is None:
            raise NotFound("Loan not found", loan_id=loan_id)
        return loan

    def active_loan_for_copy(self, copy_id: int) -> Loan | None:
        return self.session.execute(
            select(Loan).where(
                Loan.copy_id == copy_id,
                Loan.status.in_(ACTIVE_LOAN_STATUSES),
            )
        ).scalar_one_or_none()

    def count_active_loans(self, member_id: int) -> int:
        return self.session.execute(
            select(func.count(Loan.id)).where(
                Loan.member_id == member_id,
                Loan.status.in_(ACTIVE_LOAN_STATUSES),
            )
        ).scalar_one()

    def unreturned_loans(self, member_id: int) -> list[Loan]:
        return list(
            self.session.execute(
                select(Loan)
                .where(
                    Loan.member_id == member_id,
                    Loan.status.in_(ACTIVE_LOAN_STATUSES),
                )
                .order_by(Loan.id)
            ).scalars()
        )

    def current_loans(self, member_id: int) -> list[tuple[Loan, int, str]]:
        """Préstamos no devueltos del socio (también los perdidos) con su libro."""
        rows = self.session.execute(
            select(Loan, Book.id, Book.title)
            .join(Copy, Copy.id == Loan.copy_id)
            .join(Book, Book.id == Copy.book_id)
            .where(Loan.member_id == member_id, Loan.status != LoanStatus.RETURNED)
            .order_by(Loan.due_date, Loan.id)
        ).all()
        return [(loan, book_id, title) for loan, book_id, title in rows]

    def borrowed_loan_ids_due_before(self, today: date) -> list[int]:
        return list(
            self.session.execute(
                select(Loan.id)
                .where(Loan.status == LoanStatus.BORROWED, Loan.due_date < today)
                .order_by(Loan.id)
            ).scalars()
        )

    def add_loan_history(
        self,
        loan: Loan,
        old_status: LoanStatus | None,
        new_status: LoanStatus,
        at: datetime,
        staff_id: int | None = None,
        note: str | None = None,
    ) -> None:
        self.save(
            LoanStatusHistory(
                loan_id=loan.id,
                old_status=old_status,
                new_status=new_status,
                changed_by_staff_id=staff_id,
                changed_at=at,
                note=note,
            )
        )

    # ---- multas y pagos ----
    def assessed_fines(self, member_id: int) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(Loan.fine_amount), 0)).where(
                Loan.member_id == member_id
            )
        ).scalar_one()
        return Decimal(str(total))

    def paid_total(self, member_id: int) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(
                Payment.member_id == member_id
            )
        ).scalar_one()
        return Decimal(str(total))

    # ---- reservas ----
    def get_reservation(self, reservation_id: int) -> Reservation:
        reservation = self.session.get(Reservation, reservation_id)
        if reservation is None:
            raise NotFound("Reservation not found", reservation_id=reservation_id)
        return reservation

    def active_reservations(self, book_id: int) -> list[Reservation]:
        """Cola FIFO del libro: activas ordenadas por (reserved_at, id)."""
        return list(
            self.session.execute(
                select(Reservation)
                .where(
                    Reservation.book_id == book_id,
                    Reservation.status == ReservationStatus.ACTIVE,
                )
                .order_by(Reservation.reserved_at, Reservation.id)
            ).scalars()
        )

    def active_reservation_for(self, member_id: int, book_id: int) -> Reservation | None:
        return self.session.execute(
            select(Reservation).where(
                Reservation.member_id == member_id,
                Reservation.book_id == book_id,
                Reservation.status == ReservationStatus.ACTIVE,
            )
        ).scalar_one_or_none()

    def reservation_holding(self, copy_id: int) -> Reservation | None:
        return self.session.execute(
            select(Reservation).where(
                Reservation.held_copy_id == copy_id,
                Reservation.status == ReservationStatus.ACTIVE,
            )
        ).scalar_one_or_none()

    def reservations_requesting(self, copy_id: int) -> list[Reservation]:
        return list(
            self.session.execute(
                select(Reservation).where(
                    Reservation.copy_id == copy_id,
                    Reservation.status == ReservationStatus.ACTIVE,
                )
            ).scalars()
        )

    def reservation_ids_expiring_before(self, now: datetime) -> list[int]:
        return list(
            self.session.execute(
                select(Reservation.id)
                .where(
                    Reservation.status == ReservationStatus.ACTIVE,
                    Reservation.expires_at.is_not(None),
                    Reservation.expires_at < now,
                )
                .order_by(Reservation.expires_at, Reservation.id)
            ).scalars()
        )

    # ---- auditoría ----
    def record_activity(
        self,
        action: str,
        at: datetime,
        actor_type: ActorType = ActorType.SYSTEM,
        actor_id: int | None = None,
        details: str | None = None,
    ) -> None:
        self.save(
            ActivityLog(
                actor_type=actor_type,
                actor_id=actor_id,
                action=action,
                details=details,
                created_at=at,
            )
        )


class LedgerStore:
    """
    Punto de entrada transaccional.

    Traduce los fallos de la base a errores del motor:
    - StaleDataError / IntegrityError -> Conflict (se perdió una carrera)
    - OperationalError / timeout del pool -> StoreUnavailable
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def transaction(self) -> Iterator[LedgerSession]:
        session = self.session_factory()
        try:
            with session.begin():
                yield LedgerSession(session)
        except StaleDataError as exc:
            raise Conflict("Record was modified by another request") from exc
        except IntegrityError as exc:
            raise Conflict("Concurrent write violated a uniqueness rule") from exc
        except (OperationalError, PoolTimeoutError, DisconnectionError) as exc:
            logger.warning(
                "Ledger store unavailable",
                extra={"operation": "ledger_transaction", "error": str(exc)},
            )
            raise StoreUnavailable() from exc
        finally:
            session.close()

    def with_transaction(self, fn: Callable[[LedgerSession], T]) -> T:
        with self.transaction() as store:
            return fn(store)
