from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from circulation.core.config import settings


def _install_sqlite_locking(engine: Engine) -> None:
    """
    SQLite no tiene bloqueo por fila: cada transacción arranca con
    BEGIN IMMEDIATE para que los escritores queden serializados
    (equivale al mutex por copia cuando el store no da aislamiento real).
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        # pysqlite emite su propio BEGIN diferido; lo apagamos
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        new_engine = create_engine(
            url,
            future=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        _install_sqlite_locking(new_engine)
        return new_engine

    return create_engine(
        url,
        future=True,
        pool_pre_ping=True,
    )


engine = build_engine(settings.DATABASE_URL)

# SessionLocal: una sesión por transacción del ledger.
# expire_on_commit=False para poder devolver los registros ya confirmados.
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
    future=True,
)

# Base: clase base para los modelos SQLAlchemy
Base = declarative_base()
