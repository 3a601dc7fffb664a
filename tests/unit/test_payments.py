from decimal import Decimal

import pytest

from circulation.core.errors import InvalidPayment, NotFound
from circulation.db.models import PaymentMethod


@pytest.fixture
def fined_member(engine, clock, make_book, make_member):
    """Socio con una devolución tardía (día 20): multa de 3.00."""
    _, (copy_id,) = make_book(copies=1)
    member_id = make_member()
    loan = engine.checkout(copy_id, member_id)
    clock.set_day(20)
    engine.return_copy(loan.id)
    return member_id, loan


def test_balance_after_late_return(engine, fined_member):
    member_id, _ = fined_member

    balance = engine.member_balance(member_id)

    assert balance["assessed"] == Decimal("3.00")
    assert balance["paid"] == Decimal("0.00")
    assert balance["outstanding"] == Decimal("3.00")
    assert balance["projected"] == Decimal("0.00")


def test_projected_fine_of_open_overdue_loan(engine, clock, make_book, make_member):
    _, (copy_id,) = make_book(copies=1)
    member_id = make_member()
    engine.checkout(copy_id, member_id)

    clock.set_day(24)
    balance = engine.member_balance(member_id)

    # la multa proyectada no cuenta como deuda hasta la devolución
    assert balance["projected"] == Decimal("5.00")
    assert balance["outstanding"] == Decimal("0.00")


def test_partial_payment_reduces_outstanding(engine, fined_member):
    member_id, loan = fined_member

    payment = engine.pay_fine(member_id, Decimal("1.25"), loan_id=loan.id, method=PaymentMethod.CARD)

    assert payment.amount == Decimal("1.25")
    assert payment.loan_id == loan.id
    balance = engine.member_balance(member_id)
    assert balance["paid"] == Decimal("1.25")
    assert balance["outstanding"] == Decimal("1.75")


@pytest.mark.parametrize("amount", ["0", "-1.00", "3.01"])
def test_invalid_amounts_are_rejected(engine, fined_member, amount):
    member_id, _ = fined_member

    with pytest.raises(InvalidPayment):
        engine.pay_fine(member_id, Decimal(amount))

    assert engine.member_balance(member_id)["paid"] == Decimal("0.00")


def test_payment_against_another_members_loan(engine, fined_member, make_member):
    _, loan = fined_member
    other = make_member()

    with pytest.raises(InvalidPayment):
        engine.pay_fine(other, Decimal("1.00"), loan_id=loan.id)


def test_balance_of_unknown_member(engine):
    with pytest.raises(NotFound):
        engine.member_balance(9999)


def test_full_payment_clears_balance(engine, fined_member):
    member_id, _ = fined_member

    engine.pay_fine(member_id, Decimal("3.00"))

    assert engine.member_balance(member_id)["outstanding"] == Decimal("0.00")
    with pytest.raises(InvalidPayment):
        engine.pay_fine(member_id, Decimal("0.01"))
