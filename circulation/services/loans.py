from datetime import date, datetime, timedelta

from circulation.core.errors import (
    CirculationError,
    MemberIneligible,
    NotBorrowed,
    RenewalNotAllowed,
)
from circulation.core.logging import get_logger
from circulation.core.policy import LendingPolicy
from circulation.db.models import (
    ACTIVE_LOAN_STATUSES,
    ActorType,
    Loan,
    LoanStatus,
    Member,
    MemberStatus,
)
from circulation.repositories.ledger import LedgerSession, LedgerStore
from circulation.services import copy_state, reservations
from circulation.services.fines import calculate_fine, outstanding_balance, to_money

logger = get_logger("circulation.loans")


def _actor(member_id: int, staff_id: int | None) -> tuple[ActorType, int]:
    if staff_id is not None:
        return ActorType.STAFF, staff_id
    return ActorType.MEMBER, member_id


def _ensure_active(loan: Loan) -> None:
    if loan.status not in ACTIVE_LOAN_STATUSES:
        raise NotBorrowed(
            f"Loan is {loan.status.value}",
            loan_id=loan.id,
        )


def effective_status(loan: Loan, today: date) -> LoanStatus:
    """
    `overdue` se deriva del tiempo: un préstamo `borrowed` vencido se lee
    como `overdue` aunque el barrido todavía no lo haya guardado.
    """
    if loan.status == LoanStatus.BORROWED and loan.due_date < today:
        return LoanStatus.OVERDUE
    return loan.status


def accrued_fine(loan: Loan, today: date, policy: LendingPolicy):
    # Préstamos abiertos: multa proyectada a hoy (no se guarda)
    if loan.status in ACTIVE_LOAN_STATUSES:
        return calculate_fine(
            loan.due_date,
            today,
            policy.daily_fine_rate,
            policy.grace_period_days,
            policy.fine_cap,
        )
    return to_money(loan.fine_amount)


def describe(loan: Loan, today: date, policy: LendingPolicy) -> dict:
    return {
        "id": loan.id,
        "copy_id": loan.copy_id,
        "member_id": loan.member_id,
        "staff_issued_id": loan.staff_issued_id,
        "loan_date": loan.loan_date,
        "due_date": loan.due_date,
        "return_date": loan.return_date,
        "status": loan.status,
        "effective_status": effective_status(loan, today),
        "fine_amount": to_money(loan.fine_amount),
        "accrued_fine": accrued_fine(loan, today, policy),
        "renewal_count": loan.renewal_count,
    }


def current_loans(
    store: LedgerSession,
    member_id: int,
    today: date,
    policy: LendingPolicy,
) -> list[dict]:
    store.catalog.get_member(member_id)
    rows = []
    for loan, book_id, title in store.current_loans(member_id):
        row = describe(loan, today, policy)
        row.update(book_id=book_id, title=title)
        rows.append(row)
    return rows


def ensure_eligible(store: LedgerSession, member: Member, policy: LendingPolicy) -> None:
    if member.status != MemberStatus.ACTIVE:
        raise MemberIneligible(
            f"Member is {member.status.value}",
            member_id=member.id,
        )

    balance = outstanding_balance(store.assessed_fines(member.id), store.paid_total(member.id))
    if balance > policy.unpaid_fine_threshold:
        raise MemberIneligible(
            "Member has unpaid fines above the allowed threshold",
            member_id=member.id,
            balance=str(balance),
        )

    if store.count_active_loans(member.id) >= policy.max_active_loans:
        raise MemberIneligible(
            "Member already has the maximum number of active loans",
            member_id=member.id,
        )


def checkout(
    store: LedgerSession,
    copy_id: int,
    member_id: int,
    now: datetime,
    policy: LendingPolicy,
    staff_id: int | None = None,
) -> Loan:
    # FOR UPDATE sobre el socio: dos préstamos simultáneos del mismo socio
    # no pueden saltarse el límite
    member = store.catalog.get_member(member_id, for_update=True)
    copy = store.catalog.get_copy(copy_id)
    ensure_eligible(store, member, policy)

    copy_state.claim(store, copy.id, copy.version, member.id)

    today = now.date()
    loan = Loan(
        copy_id=copy.id,
        member_id=member.id,
        staff_issued_id=staff_id,
        loan_date=today,
        due_date=today + timedelta(days=policy.loan_period_days),
        status=LoanStatus.BORROWED,
        fine_amount=to_money(0),
        renewal_count=0,
    )
    store.save(loan)
    store.add_loan_history(loan, None, LoanStatus.BORROWED, now, staff_id, note="checkout")

    reservation = store.active_reservation_for(member.id, copy.book_id)
    if reservation is not None:
        reservations.fulfil(store, reservation, copy.id, now, policy)

    actor_type, actor_id = _actor(member.id, staff_id)
    store.record_activity(
        "loan_checkout",
        now,
        actor_type=actor_type,
        actor_id=actor_id,
        details=f"loan={loan.id} copy={copy.id} member={member.id}",
    )

    logger.info(
        "Loan created",
        extra={
            "operation": "loan_checkout",
            "resource": "loan",
            "loan_id": loan.id,
            "copy_id": copy.id,
            "member_id": member.id,
            "due_date": loan.due_date,
            "reservation_id": reservation.id if reservation else None,
            "old_status": None,
            "new_status": loan.status.value,
        },
    )
    return loan


def return_copy(
    store: LedgerSession,
    loan_id: int,
    now: datetime,
    policy: LendingPolicy,
    staff_id: int | None = None,
) -> Loan:
    loan = store.get_loan(loan_id)
    _ensure_active(loan)

    old_status = loan.status
    today = now.date()
    loan.return_date = today
    loan.status = LoanStatus.RETURNED
    loan.fine_amount = calculate_fine(
        loan.due_date,
        today,
        policy.daily_fine_rate,
        policy.grace_period_days,
        policy.fine_cap,
    )
    store.save(loan)
    store.add_loan_history(loan, old_status, LoanStatus.RETURNED, now, staff_id)

    # La copia vuelve a circulación; si hay cola se aparta para el primero
    held_for = reservations.on_copy_returned(store, loan.copy_id, now, policy)

    actor_type, actor_id = _actor(loan.member_id, staff_id)
    store.record_activity(
        "loan_return",
        now,
        actor_type=actor_type,
        actor_id=actor_id,
        details=f"loan={loan.id} fine={loan.fine_amount}",
    )

    logger.info(
        "Loan returned",
        extra={
            "operation": "loan_return",
            "resource": "loan",
            "loan_id": loan.id,
            "copy_id": loan.copy_id,
            "member_id": loan.member_id,
            "fine_amount": loan.fine_amount,
            "held_for_reservation_id": held_for.id if held_for else None,
            "old_status": old_status.value,
            "new_status": loan.status.value,
        },
    )
    return loan


def renew(
    store: LedgerSession,
    loan_id: int,
    now: datetime,
    policy: LendingPolicy,
) -> Loan:
    loan = store.get_loan(loan_id)
    _ensure_active(loan)

    if effective_status(loan, now.date()) == LoanStatus.OVERDUE:
        raise RenewalNotAllowed("Overdue loans cannot be renewed", loan_id=loan.id)

    copy = store.catalog.get_copy(loan.copy_id)
    if store.active_reservations(copy.book_id):
        raise RenewalNotAllowed("Other members are waiting for this book", loan_id=loan.id)

    if loan.renewal_count >= policy.renewal_limit:
        raise RenewalNotAllowed("Renewal limit reached", loan_id=loan.id)

    old_due = loan.due_date
    loan.due_date = old_due + timedelta(days=policy.loan_period_days)
    loan.renewal_count += 1
    store.save(loan)

    store.record_activity(
        "loan_renew",
        now,
        actor_type=ActorType.MEMBER,
        actor_id=loan.member_id,
        details=f"loan={loan.id} due={loan.due_date}",
    )
    logger.info(
        "Loan renewed",
        extra={
            "operation": "loan_renew",
            "resource": "loan",
            "loan_id": loan.id,
            "old_due_date": old_due,
            "new_due_date": loan.due_date,
            "renewal_count": loan.renewal_count,
        },
    )
    return loan


def mark_lost(
    store: LedgerSession,
    loan_id: int,
    now: datetime,
    policy: LendingPolicy,
    staff_id: int | None = None,
) -> Loan:
    loan = store.get_loan(loan_id)
    _ensure_active(loan)

    old_status = loan.status
    loan.status = LoanStatus.LOST
    loan.fine_amount = to_money(policy.replacement_cost)
    store.save(loan)
    store.add_loan_history(loan, old_status, LoanStatus.LOST, now, staff_id)

    # El préstamo ya no está activo, así que la copia puede pasar a `lost`
    copy_state.mark_lost(store, loan.copy_id)
    reservations.on_copy_withdrawn(store, loan.copy_id, now, policy)

    actor_type, actor_id = _actor(loan.member_id, staff_id)
    store.record_activity(
        "loan_lost",
        now,
        actor_type=actor_type,
        actor_id=actor_id,
        details=f"loan={loan.id} copy={loan.copy_id}",
    )
    logger.info(
        "Loan marked as lost",
        extra={
            "operation": "loan_lost",
            "resource": "loan",
            "loan_id": loan.id,
            "copy_id": loan.copy_id,
            "fine_amount": loan.fine_amount,
            "old_status": old_status.value,
            "new_status": loan.status.value,
        },
    )
    return loan


def promote_one(store: LedgerSession, loan_id: int, now: datetime) -> bool:
    loan = store.get_loan(loan_id)
    # Misma regla que la lectura perezosa: los dos caminos deben coincidir
    if loan.status != LoanStatus.BORROWED or effective_status(loan, now.date()) != LoanStatus.OVERDUE:
        return False

    loan.status = LoanStatus.OVERDUE
    store.save(loan)
    store.add_loan_history(loan, LoanStatus.BORROWED, LoanStatus.OVERDUE, now, note="Automatic overdue job")
    return True


def promote_overdue(ledger: LedgerStore, now: datetime) -> int:
    """
    Marca como OVERDUE todos los préstamos BORROWED cuya due_date ya pasó.

    Devuelve el número de préstamos actualizados. Se puede relanzar sin
    efecto: un préstamo ya vencido no vuelve a cambiar.
    """
    with ledger.transaction() as store:
        loan_ids = store.borrowed_loan_ids_due_before(now.date())

    updated_count = 0
    for loan_id in loan_ids:
        try:
            with ledger.transaction() as store:
                if promote_one(store, loan_id, now):
                    updated_count += 1
        except CirculationError as exc:
            logger.warning(
                "Overdue promotion failed, skipping",
                extra={
                    "operation": "loan_overdue_job",
                    "resource": "loan",
                    "loan_id": loan_id,
                    "error": exc.kind,
                },
                exc_info=True,
            )

    logger.info(
        "Overdue job executed",
        extra={
            "operation": "loan_overdue_job",
            "resource": "loan",
            "candidates": len(loan_ids),
            "updated_count": updated_count,
        },
    )
    return updated_count
