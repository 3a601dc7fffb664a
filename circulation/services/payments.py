from datetime import date, datetime
from decimal import Decimal

from circulation.core.errors import InvalidPayment
from circulation.core.logging import get_logger
from circulation.core.policy import LendingPolicy
from circulation.db.models import ActorType, LoanStatus, Payment, PaymentMethod
from circulation.repositories.ledger import LedgerSession
from circulation.services.fines import outstanding_balance, to_money
from circulation.services.loans import accrued_fine, effective_status

logger = get_logger("circulation.payments")


def balance(store: LedgerSession, member_id: int, today: date, policy: LendingPolicy) -> dict:
    """
    Saldo del socio.

    `outstanding` solo cuenta multas ya liquidadas (devoluciones, pérdidas);
    `projected` suma lo que van acumulando los préstamos vencidos sin devolver.
    """
    store.catalog.get_member(member_id)
    assessed = to_money(store.assessed_fines(member_id))
    paid = to_money(store.paid_total(member_id))

    projected = Decimal("0.00")
    for loan in store.unreturned_loans(member_id):
        if effective_status(loan, today) == LoanStatus.OVERDUE:
            projected += accrued_fine(loan, today, policy)

    return {
        "member_id": member_id,
        "assessed": assessed,
        "paid": paid,
        "outstanding": outstanding_balance(assessed, paid),
        "projected": to_money(projected),
    }


def pay_fine(
    store: LedgerSession,
    member_id: int,
    amount: Decimal,
    now: datetime,
    loan_id: int | None = None,
    method: PaymentMethod = PaymentMethod.CASH,
    note: str | None = None,
) -> Payment:
    store.catalog.get_member(member_id, for_update=True)
    amount = to_money(amount)
    if amount <= 0:
        raise InvalidPayment("Payment amount must be positive", member_id=member_id)

    if loan_id is not None:
        loan = store.get_loan(loan_id)
        if loan.member_id != member_id:
            raise InvalidPayment("Loan belongs to another member", loan_id=loan_id)

    outstanding = outstanding_balance(store.assessed_fines(member_id), store.paid_total(member_id))
    if amount > outstanding:
        raise InvalidPayment(
            f"Payment exceeds outstanding balance of {outstanding}",
            member_id=member_id,
        )

    payment = Payment(
        member_id=member_id,
        loan_id=loan_id,
        amount=amount,
        payment_date=now,
        method=method,
        note=note,
    )
    store.save(payment)
    store.record_activity(
        "fine_payment",
        now,
        actor_type=ActorType.MEMBER,
        actor_id=member_id,
        details=f"payment={payment.id} amount={amount}",
    )

    logger.info(
        "Fine payment recorded",
        extra={
            "operation": "fine_payment",
            "resource": "payment",
            "payment_id": payment.id,
            "member_id": member_id,
            "loan_id": loan_id,
            "amount": amount,
            "method": method.value,
        },
    )
    return payment
