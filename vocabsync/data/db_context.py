from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

MEMORY_DB = ":memory:"


def _apply_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    # --- CRÍTICO: Otimizações de Performance ---
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA synchronous=NORMAL;")
    cursor.execute("PRAGMA temp_store=MEMORY;")

    # Habilitar chaves estrangeiras
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def create_db_engine(db_path: str, echo: bool = False) -> Engine:
    """
    Cria o Engine com otimizações para concorrência e UI fluida.
    ':memory:' usa um pool estático para que todas as sessões vejam o mesmo banco.
    """
    if db_path == MEMORY_DB:
        engine = create_engine(
            "sqlite://",
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(
            f"sqlite:///{db_path}",
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 10.0},
        )
    event.listen(engine, "connect", _apply_pragmas)
    return engine
