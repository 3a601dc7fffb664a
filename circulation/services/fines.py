from datetime import date
from decimal import Decimal, ROUND_HALF_UP

CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def days_late(due_date: date, returned_on: date) -> int:
    """Días naturales de retraso; 0 si se devolvió a tiempo."""
    return max(0, (returned_on - due_date).days)


def calculate_fine(
    due_date: date,
    returned_on: date,
    daily_rate: Decimal,
    grace_period_days: int,
    cap: Decimal,
) -> Decimal:
    """
    Multa por retraso.

    min(cap, max(0, (días_de_retraso - gracia) * tarifa_diaria))

    Función pura: se usa al devolver (multa final) y para mostrar la multa
    que va acumulando un préstamo vencido (proyectada, no se guarda).
    """
    chargeable_days = max(0, days_late(due_date, returned_on) - grace_period_days)
    amount = to_money(chargeable_days * Decimal(str(daily_rate)))
    return min(amount, to_money(cap))


def outstanding_balance(assessed: Decimal, paid: Decimal) -> Decimal:
    return max(Decimal("0.00"), to_money(assessed) - to_money(paid))
