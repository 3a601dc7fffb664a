from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from circulation.core.config import Settings, settings as default_settings


class LendingPolicy(BaseModel):
    """Reglas de la biblioteca que el motor recibe inyectadas."""

    model_config = ConfigDict(frozen=True)

    loan_period_days: int = Field(14, gt=0)
    renewal_limit: int = Field(2, ge=0)
    max_active_loans: int = Field(5, gt=0)
    daily_fine_rate: Decimal = Field(Decimal("0.50"), ge=0)
    grace_period_days: int = Field(0, ge=0)
    fine_cap: Decimal = Field(Decimal("20.00"), ge=0)
    replacement_cost: Decimal = Field(Decimal("25.00"), ge=0)
    hold_window_days: int = Field(3, gt=0)
    unpaid_fine_threshold: Decimal = Field(Decimal("10.00"), ge=0)

    @classmethod
    def from_settings(cls, cfg: Settings | None = None) -> "LendingPolicy":
        cfg = cfg or default_settings
        return cls(
            loan_period_days=cfg.LOAN_PERIOD_DAYS,
            renewal_limit=cfg.RENEWAL_LIMIT,
            max_active_loans=cfg.MAX_ACTIVE_LOANS,
            daily_fine_rate=cfg.DAILY_FINE_RATE,
            grace_period_days=cfg.GRACE_PERIOD_DAYS,
            fine_cap=cfg.FINE_CAP,
            replacement_cost=cfg.REPLACEMENT_COST,
            hold_window_days=cfg.HOLD_WINDOW_DAYS,
            unpaid_fine_threshold=cfg.UNPAID_FINE_THRESHOLD,
        )
