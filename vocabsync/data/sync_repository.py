from typing import Generic, List, Optional, Type, TypeVar

from sqlalchemy import delete as sa_delete

from vocabsync.data.local_store import LocalStore
from vocabsync.models.base import CachedRecord, RecordState, is_visible

T = TypeVar("T", bound=CachedRecord)


class SyncRepository(Generic[T]):
    """
    Classe base para repositórios de registros sincronizáveis.
    Centraliza o filtro de tombstone: toda consulta "normal" passa por visible_clause().
    """
    def __init__(self, store: LocalStore, model_type: Type[T]):
        self.store = store
        self.model_type = model_type

    def visible_clause(self):
        return self.model_type.state == RecordState.ACTIVE

    def list_visible(self, *criteria) -> List[T]:
        """Registros não excluídos, mais novos primeiro."""
        return self.store.find(
            self.model_type,
            self.visible_clause(),
            *criteria,
            order_by=[self.model_type.created_at.desc()],
        )

    def get_visible(self, entity_id: str) -> Optional[T]:
        record = self.store.get(self.model_type, entity_id)
        return record if is_visible(record) else None

    def get_raw(self, entity_id: str) -> Optional[T]:
        """Inclui tombstones. Uso exclusivo do sync e dos testes."""
        return self.store.get(self.model_type, entity_id)

    def sweep_gone(self) -> int:
        """Remove fisicamente os registros cujo delete já foi confirmado pelo servidor."""
        with self.store.transaction() as session:
            result = session.execute(
                sa_delete(self.model_type).where(self.model_type.state == RecordState.GONE)
            )
            return result.rowcount or 0
