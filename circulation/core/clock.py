from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    # Naive UTC: SQLite devuelve DateTime sin zona y las comparaciones deben cuadrar
    return datetime.now(timezone.utc).replace(tzinfo=None)
