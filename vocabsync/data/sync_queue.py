from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from vocabsync.data.local_store import LocalStore
from vocabsync.models.pending_change import EntityType, PendingChange


class SyncQueue:
    """Consultas sobre a fila de PendingChanges (ordem de replay: mais antiga primeiro)."""

    def __init__(self, store: LocalStore):
        self.store = store

    def pending(self) -> List[PendingChange]:
        return self.store.find(
            PendingChange,
            order_by=[PendingChange.created_at.asc()],
        )

    def count(self) -> int:
        return self.store.count(PendingChange)

    def record_failure(self, change_id: str) -> Optional[PendingChange]:
        """Incrementa retry_count. O item continua na fila."""
        with self.store.transaction() as session:
            change = session.get(PendingChange, change_id)
            if change is None:
                return None
            change.retry_count += 1
            session.add(change)
        return change

    # --- Helpers usados dentro de transações do CacheManager ---

    @staticmethod
    def last_created_at(session: Session) -> Optional[datetime]:
        return session.exec(select(func.max(PendingChange.created_at))).one()

    @staticmethod
    def remaining_for(session: Session, entity_type: EntityType, entity_id: str) -> int:
        statement = (
            select(func.count())
            .select_from(PendingChange)
            .where(PendingChange.entity_type == entity_type, PendingChange.entity_id == entity_id)
        )
        return session.exec(statement).one()
