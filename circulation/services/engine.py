"""
Fachada del motor de préstamos y reservas.

Cada operación pública abre una sola transacción del ledger: el claim de la
copia, el préstamo y la reserva se confirman juntos. `Conflict` y
`StoreUnavailable` se pueden reintentar tal cual; el resto de errores son
definitivos para esa petición.
"""
from decimal import Decimal

from circulation.core.clock import Clock, utc_now
from circulation.core.policy import LendingPolicy
from circulation.db.models import (
    ActorType,
    Copy,
    Loan,
    LoanStatusHistory,
    Payment,
    PaymentMethod,
    Reservation,
)
from circulation.repositories.ledger import LedgerStore
from circulation.services import copy_state, loans, payments, reservations


class CirculationEngine:
    def __init__(self, ledger: LedgerStore, policy: LendingPolicy, clock: Clock = utc_now):
        self.ledger = ledger
        self.policy = policy
        self.clock = clock

    # ---- préstamos ----
    def checkout(self, copy_id: int, member_id: int, staff_id: int | None = None) -> Loan:
        now = self.clock()
        with self.ledger.transaction() as store:
            return loans.checkout(store, copy_id, member_id, now, self.policy, staff_id=staff_id)

    def return_copy(self, loan_id: int, staff_id: int | None = None) -> Loan:
        now = self.clock()
        with self.ledger.transaction() as store:
            return loans.return_copy(store, loan_id, now, self.policy, staff_id=staff_id)

    def renew(self, loan_id: int) -> Loan:
        now = self.clock()
        with self.ledger.transaction() as store:
            return loans.renew(store, loan_id, now, self.policy)

    def mark_loan_lost(self, loan_id: int, staff_id: int | None = None) -> Loan:
        now = self.clock()
        with self.ledger.transaction() as store:
            return loans.mark_lost(store, loan_id, now, self.policy, staff_id=staff_id)

    def get_loan(self, loan_id: int) -> Loan:
        with self.ledger.transaction() as store:
            return store.get_loan(loan_id)

    def loan_history(self, loan_id: int) -> list[LoanStatusHistory]:
        with self.ledger.transaction() as store:
            return list(store.get_loan(loan_id).history)

    def describe_loan(self, loan: Loan) -> dict:
        return loans.describe(loan, self.clock().date(), self.policy)

    def member_loans(self, member_id: int) -> list[dict]:
        today = self.clock().date()
        with self.ledger.transaction() as store:
            return loans.current_loans(store, member_id, today, self.policy)

    # ---- reservas ----
    def reserve(self, member_id: int, book_id: int, copy_id: int | None = None) -> Reservation:
        now = self.clock()
        with self.ledger.transaction() as store:
            return reservations.enqueue(store, member_id, book_id, now, copy_id=copy_id)

    def cancel_reservation(self, reservation_id: int) -> Reservation:
        now = self.clock()
        with self.ledger.transaction() as store:
            return reservations.cancel(store, reservation_id, now, self.policy)

    def queue(self, book_id: int) -> list[Reservation]:
        with self.ledger.transaction() as store:
            store.catalog.get_book(book_id)
            return store.active_reservations(book_id)

    # ---- multas ----
    def pay_fine(
        self,
        member_id: int,
        amount: Decimal,
        loan_id: int | None = None,
        method: PaymentMethod = PaymentMethod.CASH,
        note: str | None = None,
    ) -> Payment:
        now = self.clock()
        with self.ledger.transaction() as store:
            return payments.pay_fine(
                store, member_id, amount, now, loan_id=loan_id, method=method, note=note
            )

    def member_balance(self, member_id: int) -> dict:
        today = self.clock().date()
        with self.ledger.transaction() as store:
            return payments.balance(store, member_id, today, self.policy)

    # ---- copias (administración) ----
    def get_copy(self, copy_id: int) -> Copy:
        with self.ledger.transaction() as store:
            return store.catalog.get_copy(copy_id)

    def mark_copy_lost(self, copy_id: int, staff_id: int | None = None) -> Copy:
        return self._withdraw(copy_id, copy_state.mark_lost, "copy_mark_lost", staff_id)

    def mark_copy_maintenance(self, copy_id: int, staff_id: int | None = None) -> Copy:
        return self._withdraw(copy_id, copy_state.mark_maintenance, "copy_mark_maintenance", staff_id)

    def retire_copy(self, copy_id: int, staff_id: int | None = None) -> Copy:
        now = self.clock()
        return self._withdraw(
            copy_id,
            lambda store, cid: copy_state.retire(store, cid, now),
            "copy_retire",
            staff_id,
        )

    def restore_copy(self, copy_id: int, staff_id: int | None = None) -> Copy:
        now = self.clock()
        with self.ledger.transaction() as store:
            copy_state.restore(store, copy_id)
            reservations.offer(store, copy_id, now, self.policy)
            self._audit(store, "copy_restore", copy_id, staff_id, now)
            return store.catalog.get_copy(copy_id)

    def _withdraw(self, copy_id, transition, action: str, staff_id: int | None) -> Copy:
        now = self.clock()
        with self.ledger.transaction() as store:
            transition(store, copy_id)
            reservations.on_copy_withdrawn(store, copy_id, now, self.policy)
            self._audit(store, action, copy_id, staff_id, now)
            return store.catalog.get_copy(copy_id)

    @staticmethod
    def _audit(store, action: str, copy_id: int, staff_id: int | None, now) -> None:
        store.record_activity(
            action,
            now,
            actor_type=ActorType.STAFF if staff_id is not None else ActorType.SYSTEM,
            actor_id=staff_id,
            details=f"copy={copy_id}",
        )

    # ---- barridos periódicos ----
    def promote_overdue(self) -> int:
        return loans.promote_overdue(self.ledger, self.clock())

    def expire_reservations(self) -> int:
        return reservations.expire_older_than(self.ledger, self.clock(), self.policy)
