from functools import lru_cache
from typing import Generator

from sqlalchemy.orm import Session

from circulation.core.policy import LendingPolicy
from circulation.db.session import SessionLocal
from circulation.repositories.ledger import LedgerStore
from circulation.services.engine import CirculationEngine


def get_db() -> Generator[Session, None, None]:
    """
    Dependencia para obtener una sesión de base de datos por request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@lru_cache
def get_engine() -> CirculationEngine:
    """
    Motor compartido por todos los requests. Cada operación abre su propia
    transacción, así que no guarda estado entre llamadas.
    """
    return CirculationEngine(LedgerStore(SessionLocal), LendingPolicy.from_settings())
