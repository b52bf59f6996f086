from datetime import datetime
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from vocabsync.errors import PersistenceError
from vocabsync.models.base import ensure_utc

LAST_SYNC_KEY = "last_sync_date"
EPOCH = "1970-01-01T00:00:00+00:00"


class KVStore:
    """Gerencia persistência de metadados simples (Chave-Valor)"""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._init_table()

    def _init_table(self):
        self._execute("""
            CREATE TABLE IF NOT EXISTS sys_meta (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)

    def _execute(self, sql: str, params: tuple = ()):
        try:
            with self.engine.connect() as conn:
                result = conn.exec_driver_sql(sql, params)
                rows = result.fetchall() if result.returns_rows else None
                conn.commit()
                return rows
        except SQLAlchemyError as e:
            raise PersistenceError("sys_meta", str(e)) from e

    def get(self, key: str) -> Optional[str]:
        rows = self._execute("SELECT value FROM sys_meta WHERE key = ?", (key,))
        return rows[0][0] if rows else None

    def set(self, key: str, value: str):
        self._execute(
            "INSERT OR REPLACE INTO sys_meta (key, value) VALUES (?, ?)",
            (key, value),
        )

    def clear(self):
        self._execute("DELETE FROM sys_meta")

    # --- Datas de sincronização ---

    def get_last_sync(self) -> Optional[datetime]:
        value = self.get(LAST_SYNC_KEY)
        return ensure_utc(datetime.fromisoformat(value)) if value else None

    def set_last_sync(self, timestamp: datetime):
        self.set(LAST_SYNC_KEY, ensure_utc(timestamp).isoformat())

    def get_pull_cursor(self, resource: str) -> datetime:
        """Retorna o cursor por recurso, ou a época se nunca sincronizou (baixa tudo)"""
        value = self.get(f"pull_cursor:{resource}") or EPOCH
        return ensure_utc(datetime.fromisoformat(value))

    def set_pull_cursor(self, resource: str, timestamp: datetime):
        self.set(f"pull_cursor:{resource}", ensure_utc(timestamp).isoformat())
