from decimal import Decimal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./circulation.db"
    LOG_LEVEL: str = "INFO"
    SLOW_REQUEST_THRESHOLD_MS: int = 1000  # 1 segundo

    # Barridos periódicos (0 = scheduler desactivado)
    SWEEP_INTERVAL_MINUTES: int = 5

    # Política de préstamos (la decide la biblioteca, no el motor)
    LOAN_PERIOD_DAYS: int = 14
    RENEWAL_LIMIT: int = 2
    MAX_ACTIVE_LOANS: int = 5
    DAILY_FINE_RATE: Decimal = Decimal("0.50")
    GRACE_PERIOD_DAYS: int = 0
    FINE_CAP: Decimal = Decimal("20.00")
    REPLACEMENT_COST: Decimal = Decimal("25.00")
    HOLD_WINDOW_DAYS: int = 3
    UNPAID_FINE_THRESHOLD: Decimal = Decimal("10.00")

    class Config:
        env_file = ".env"


settings = Settings()
