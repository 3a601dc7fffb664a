#configuracion de los test
import os
import sys
import tempfile
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# ======================================================
# Base de datos temporal: se fija ANTES de importar la app
# ======================================================
_DB_DIR = tempfile.mkdtemp(prefix="circulation-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{Path(_DB_DIR) / 'circulation.db'}"
os.environ["SWEEP_INTERVAL_MINUTES"] = "0"

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

# ======================================================
# Imports de la aplicación
# ======================================================
from circulation.core.policy import LendingPolicy
from circulation.db.models import Book, Copy, Member, MemberStatus, Staff
from circulation.db.session import Base, SessionLocal, engine as db_engine
from circulation.repositories.ledger import LedgerStore
from circulation.services.engine import CirculationEngine
from circulation.api.v1.dependencies import get_engine
from circulation.main import app

DAY_ZERO = datetime(2026, 1, 5, 10, 0, 0)


class FakeClock:
    """Reloj movible: los tests avanzan días sin esperar."""

    def __init__(self, start: datetime = DAY_ZERO):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now

    def set_day(self, day: int) -> datetime:
        self.now = DAY_ZERO + timedelta(days=day)
        return self.now


# ======================================================
# DB FIXTURES
# ======================================================
@pytest.fixture(autouse=True)
def clean_db():
    """Esquema limpio para cada test."""
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)
    yield


# ======================================================
# ENGINE FIXTURES
# ======================================================
@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def policy():
    return LendingPolicy(
        loan_period_days=14,
        renewal_limit=2,
        max_active_loans=5,
        daily_fine_rate="0.50",
        grace_period_days=0,
        fine_cap="20.00",
        replacement_cost="25.00",
        hold_window_days=3,
        unpaid_fine_threshold="10.00",
    )


@pytest.fixture
def ledger():
    return LedgerStore(SessionLocal)


@pytest.fixture
def engine(ledger, policy, clock):
    return CirculationEngine(ledger, policy, clock=clock)


# ======================================================
# CATALOG FIXTURES
# ======================================================
_counter = {"n": 0}


def _next() -> int:
    _counter["n"] += 1
    return _counter["n"]


def create_book(copies: int = 1, title: str = "Libro de Pruebas") -> tuple[int, list[int]]:
    """Crea un libro con `copies` copias disponibles. Devuelve (book_id, [copy_ids])."""
    n = _next()
    with SessionLocal() as db:
        book = Book(isbn=f"TEST-{n:08d}", title=title)
        db.add(book)
        db.flush()
        copy_rows = [
            Copy(book_id=book.id, accession_no=f"ACC-{n}-{i}", location="Shelf A")
            for i in range(copies)
        ]
        db.add_all(copy_rows)
        db.commit()
        return book.id, [c.id for c in copy_rows]


def create_member(status: MemberStatus = MemberStatus.ACTIVE) -> int:
    n = _next()
    with SessionLocal() as db:
        member = Member(
            membership_no=f"M-{n:06d}",
            first_name="Member",
            last_name=f"Test {n}",
            email=f"member{n}@library.local",
            status=status,
        )
        db.add(member)
        db.commit()
        return member.id


def create_staff() -> int:
    n = _next()
    with SessionLocal() as db:
        staff = Staff(staff_no=f"S-{n:05d}", first_name="Staff", last_name=f"Test {n}")
        db.add(staff)
        db.commit()
        return staff.id


@pytest.fixture
def make_book():
    return create_book


@pytest.fixture
def make_member():
    return create_member


@pytest.fixture
def make_staff():
    return create_staff


# ======================================================
# CLIENT FIXTURE
# ======================================================
@pytest.fixture
def client(engine):
    """
    TestClient de FastAPI con el motor del test (reloj falso incluido).
    """
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
