import threading
from datetime import timedelta
from decimal import Decimal

import pytest

from circulation.core.errors import (
    CopyUnavailable,
    MemberIneligible,
    NotBorrowed,
    NotFound,
    RenewalNotAllowed,
)
from circulation.db.models import CopyStatus, Loan, LoanStatus, MemberStatus


def test_checkout_sets_due_date_and_lends_copy(engine, clock, make_book, make_member):
    _, (copy_id,) = make_book(copies=1)
    member_id = make_member()

    loan = engine.checkout(copy_id, member_id)

    assert loan.status == LoanStatus.BORROWED
    assert loan.loan_date == clock().date()
    assert loan.due_date == clock().date() + timedelta(days=14)
    assert loan.renewal_count == 0
    assert engine.get_copy(copy_id).status == CopyStatus.ON_LOAN

    history = engine.loan_history(loan.id)
    assert [(h.old_status, h.new_status) for h in history] == [(None, LoanStatus.BORROWED)]


def test_checkout_of_lent_copy_is_unavailable(engine, make_book, make_member):
    _, (copy_id,) = make_book(copies=1)
    first, second = make_member(), make_member()
    engine.checkout(copy_id, first)

    with pytest.raises(CopyUnavailable):
        engine.checkout(copy_id, second)


def test_checkout_unknown_copy_or_member(engine, make_book, make_member):
    _, (copy_id,) = make_book(copies=1)
    member_id = make_member()

    with pytest.raises(NotFound):
        engine.checkout(9999, member_id)
    with pytest.raises(NotFound):
        engine.checkout(copy_id, 9999)


def test_member_at_loan_limit_is_ineligible(engine, make_book, make_member):
    """
    Edge case: el socio ya tiene max_active_loans préstamos abiertos.
    El sexto préstamo falla y la copia sigue disponible.
    """
    member_id = make_member()
    for _ in range(5):
        _, (copy_id,) = make_book(copies=1)
        engine.checkout(copy_id, member_id)

    _, (extra_copy,) = make_book(copies=1)
    with pytest.raises(MemberIneligible):
        engine.checkout(extra_copy, member_id)

    assert engine.get_copy(extra_copy).status == CopyStatus.AVAILABLE


@pytest.mark.parametrize("status", [MemberStatus.SUSPENDED, MemberStatus.CANCELLED])
def test_inactive_member_is_ineligible(engine, make_book, make_member, status):
    _, (copy_id,) = make_book(copies=1)
    member_id = make_member(status=status)

    with pytest.raises(MemberIneligible):
        engine.checkout(copy_id, member_id)


def test_unpaid_fines_above_threshold_block_checkout(engine, clock, make_book, make_member):
    """
    Edge case: 25 días de retraso = 12.50 de multa > umbral de 10.00.
    """
    _, (first_copy, second_copy) = make_book(copies=2)
    member_id = make_member()

    loan = engine.checkout(first_copy, member_id)
    clock.set_day(14 + 25)
    returned = engine.return_copy(loan.id)
    assert returned.fine_amount == Decimal("12.50")

    with pytest.raises(MemberIneligible):
        engine.checkout(second_copy, member_id)

    engine.pay_fine(member_id, Decimal("3.00"))
    assert engine.checkout(second_copy, member_id).status == LoanStatus.BORROWED


def test_fine_exactly_at_threshold_still_eligible(engine, clock, make_book, make_member):
    _, (first_copy, second_copy) = make_book(copies=2)
    member_id = make_member()

    loan = engine.checkout(first_copy, member_id)
    clock.set_day(14 + 20)
    assert engine.return_copy(loan.id).fine_amount == Decimal("10.00")

    assert engine.checkout(second_copy, member_id).status == LoanStatus.BORROWED


def test_late_return_assesses_fine(engine, clock, make_book, make_member):
    """Préstamo el día 0, vence el día 14, se devuelve el día 20: 6 x 0.50."""
    _, (copy_id,) = make_book(copies=1)
    start = clock().date()
    loan = engine.checkout(copy_id, make_member())

    clock.set_day(20)
    returned = engine.return_copy(loan.id)

    assert returned.status == LoanStatus.RETURNED
    assert returned.return_date == start + timedelta(days=20)
    assert returned.fine_amount == Decimal("3.00")
    assert engine.get_copy(copy_id).status == CopyStatus.AVAILABLE


def test_on_time_return_has_no_fine(engine, clock, make_book, make_member):
    _, (copy_id,) = make_book(copies=1)
    loan = engine.checkout(copy_id, make_member())

    clock.set_day(14)
    assert engine.return_copy(loan.id).fine_amount == Decimal("0.00")


def test_second_return_is_not_borrowed(engine, make_book, make_member):
    _, (copy_id,) = make_book(copies=1)
    loan = engine.checkout(copy_id, make_member())
    engine.return_copy(loan.id)

    with pytest.raises(NotBorrowed):
        engine.return_copy(loan.id)

    assert len(engine.loan_history(loan.id)) == 2


def test_renew_extends_due_date(engine, clock, make_book, make_member):
    _, (copy_id,) = make_book(copies=1)
    loan = engine.checkout(copy_id, make_member())

    clock.set_day(5)
    renewed = engine.renew(loan.id)

    assert renewed.due_date == loan.due_date + timedelta(days=14)
    assert renewed.renewal_count == 1


def test_renew_limit(engine, make_book, make_member):
    _, (copy_id,) = make_book(copies=1)
    loan = engine.checkout(copy_id, make_member())

    engine.renew(loan.id)
    engine.renew(loan.id)
    with pytest.raises(RenewalNotAllowed):
        engine.renew(loan.id)

    assert engine.get_loan(loan.id).renewal_count == 2


def test_overdue_loan_cannot_be_renewed(engine, clock, make_book, make_member):
    _, (copy_id,) = make_book(copies=1)
    loan = engine.checkout(copy_id, make_member())

    # el barrido todavía no corrió: el vencimiento se deriva de la fecha
    clock.set_day(15)
    with pytest.raises(RenewalNotAllowed):
        engine.renew(loan.id)


def test_renew_blocked_while_others_wait(engine, make_book, make_member):
    book_id, (copy_id,) = make_book(copies=1)
    borrower, waiting = make_member(), make_member()
    loan = engine.checkout(copy_id, borrower)
    engine.reserve(waiting, book_id)

    with pytest.raises(RenewalNotAllowed):
        engine.renew(loan.id)


def test_renew_returned_loan_is_not_borrowed(engine, make_book, make_member):
    _, (copy_id,) = make_book(copies=1)
    loan = engine.checkout(copy_id, make_member())
    engine.return_copy(loan.id)

    with pytest.raises(NotBorrowed):
        engine.renew(loan.id)


def test_mark_lost_charges_replacement_cost(engine, make_book, make_member):
    _, (copy_id,) = make_book(copies=1)
    member_id = make_member()
    loan = engine.checkout(copy_id, member_id)

    lost = engine.mark_loan_lost(loan.id)

    assert lost.status == LoanStatus.LOST
    assert lost.fine_amount == Decimal("25.00")
    assert engine.get_copy(copy_id).status == CopyStatus.LOST
    assert engine.member_balance(member_id)["outstanding"] == Decimal("25.00")

    with pytest.raises(NotBorrowed):
        engine.return_copy(loan.id)


def test_lazy_overdue_matches_sweep(engine, clock, make_book, make_member):
    _, (copy_id,) = make_book(copies=1)
    loan = engine.checkout(copy_id, make_member())

    clock.set_day(14)
    assert engine.promote_overdue() == 0

    clock.set_day(15)
    before = engine.describe_loan(engine.get_loan(loan.id))
    assert before["status"] == LoanStatus.BORROWED
    assert before["effective_status"] == LoanStatus.OVERDUE
    assert before["accrued_fine"] == Decimal("0.50")

    assert engine.promote_overdue() == 1
    after = engine.describe_loan(engine.get_loan(loan.id))
    assert after["status"] == after["effective_status"] == LoanStatus.OVERDUE

    # idempotente
    assert engine.promote_overdue() == 0


def test_overdue_loan_can_still_be_returned(engine, clock, make_book, make_member):
    _, (copy_id,) = make_book(copies=1)
    loan = engine.checkout(copy_id, make_member())

    clock.set_day(18)
    engine.promote_overdue()
    returned = engine.return_copy(loan.id)

    assert returned.status == LoanStatus.RETURNED
    assert returned.fine_amount == Decimal("2.00")
    statuses = [h.new_status for h in engine.loan_history(loan.id)]
    assert statuses == [LoanStatus.BORROWED, LoanStatus.OVERDUE, LoanStatus.RETURNED]


def test_concurrent_checkouts_single_winner(engine, ledger, make_book, make_member):
    """
    Varios socios piden la misma copia a la vez: exactamente uno gana y el
    resto recibe CopyUnavailable (o Conflict, que es reintentable).
    """
    _, (copy_id,) = make_book(copies=1)
    members = [make_member() for _ in range(6)]
    barrier = threading.Barrier(len(members))
    results: dict[int, object] = {}

    def worker(member_id: int) -> None:
        barrier.wait()
        try:
            results[member_id] = engine.checkout(copy_id, member_id)
        except Exception as exc:
            results[member_id] = exc

    threads = [threading.Thread(target=worker, args=(m,)) for m in members]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    winners = [r for r in results.values() if isinstance(r, Loan)]
    losers = [r for r in results.values() if not isinstance(r, Loan)]
    assert len(winners) == 1
    assert all(getattr(r, "kind", None) in ("copy_unavailable", "conflict") for r in losers)

    with ledger.transaction() as store:
        active = store.session.query(Loan).filter(
            Loan.copy_id == copy_id,
            Loan.status.in_([LoanStatus.BORROWED, LoanStatus.OVERDUE]),
        ).count()
    assert active == 1
    assert engine.get_copy(copy_id).status == CopyStatus.ON_LOAN
