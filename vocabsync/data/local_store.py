import logging
import os
import threading
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from vocabsync.errors import PersistenceError
from vocabsync.models.book import CachedBook
from vocabsync.models.pending_change import PendingChange
from vocabsync.models.vocab_word import CachedVocabWord

logger = logging.getLogger("LocalStore")

T = TypeVar("T", bound=SQLModel)


class LocalStore:
    """
    Armazenamento durável das três coleções locais (livros, palavras e fila de sync).
    Só guarda e consulta: nenhuma regra de negócio e nenhuma chamada de rede.

    Toda falha do SQLAlchemy vira PersistenceError. Cada escrita é atômica
    (uma transação) e as escritas são serializadas por um lock.
    """
    COLLECTIONS = (CachedBook, CachedVocabWord, PendingChange)

    def __init__(self, engine: Engine):
        self.engine = engine
        self._write_lock = threading.RLock()
        self._init_tables()

    def _init_tables(self):
        tables = [model.__table__ for model in self.COLLECTIONS]
        try:
            SQLModel.metadata.create_all(self.engine, tables=tables)
        except SQLAlchemyError as e:
            raise PersistenceError("create_tables", str(e)) from e

    @property
    def db_path(self) -> Optional[str]:
        return self.engine.url.database

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Abre uma sessão de escrita; commit no final ou rollback em qualquer erro."""
        with self._write_lock:
            session = Session(self.engine, expire_on_commit=False)
            try:
                yield session
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Transação revertida: {e}")
                raise PersistenceError("transaction", str(e)) from e
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    @contextmanager
    def _read_session(self, operation: str) -> Iterator[Session]:
        try:
            with Session(self.engine, expire_on_commit=False) as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Falha de leitura em '{operation}': {e}")
            raise PersistenceError(operation, str(e)) from e

    # --- ESCRITA ---

    def upsert(self, record: T) -> T:
        """Insere ou substitui pela chave primária 'id'."""
        return self.upsert_all([record])[0]

    def upsert_all(self, records: Sequence[Any]) -> List[Any]:
        """Grava vários registros (de coleções diferentes, se preciso) numa única transação."""
        with self.transaction() as session:
            merged = [session.merge(record) for record in records]
        return merged

    def delete(self, model_type: Type[T], record_id: str) -> bool:
        """Remoção física."""
        with self.transaction() as session:
            record = session.get(model_type, record_id)
            if record is None:
                return False
            session.delete(record)
        return True

    def clear_all(self):
        """Apaga as três coleções. Só para reset explícito do cache."""
        with self.transaction() as session:
            for model_type in self.COLLECTIONS:
                session.execute(sa_delete(model_type))
        logger.warning("Cache local apagado por completo")

    # --- LEITURA ---

    def get(self, model_type: Type[T], record_id: str) -> Optional[T]:
        """Busca bruta por id (inclui tombstones)."""
        with self._read_session("get") as session:
            return session.get(model_type, record_id)

    def find(self, model_type: Type[T], *criteria, order_by: Sequence[Any] = ()) -> List[T]:
        with self._read_session("find") as session:
            statement = select(model_type)
            if criteria:
                statement = statement.where(*criteria)
            if order_by:
                statement = statement.order_by(*order_by)
            return list(session.exec(statement).all())

    def count(self, model_type: Type[T], *criteria) -> int:
        with self._read_session("count") as session:
            statement = select(func.count()).select_from(model_type)
            if criteria:
                statement = statement.where(*criteria)
            return session.exec(statement).one()

    def size_on_disk(self) -> int:
        """Tamanho aproximado do banco em bytes (arquivo principal + WAL)."""
        path = self.db_path
        if not path or path == ":memory:":
            return 0
        total = 0
        for candidate in (path, f"{path}-wal"):
            if os.path.exists(candidate):
                total += os.path.getsize(candidate)
        return total
