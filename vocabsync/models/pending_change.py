from datetime import datetime
from enum import Enum
from typing import Optional
from sqlmodel import Field, SQLModel
from .base import UTCDateTime, new_id, utc_now


class EntityType(str, Enum):
    BOOK = "book"
    VOCAB_WORD = "vocabWord"


class ChangeAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class PendingChange(SQLModel, table=True):
    """
    Fila de alterações locais aguardando confirmação do servidor.
    A ordem de replay é created_at ascendente (mais antiga primeiro).
    Uma entrada só sai da fila quando o servidor confirma.
    """
    __tablename__ = "sync_queue"

    id: str = Field(default_factory=new_id, primary_key=True)
    entity_type: EntityType = Field(index=True)
    entity_id: str = Field(index=True)
    action: ChangeAction

    # Snapshot JSON do registro no momento da alteração (None para delete)
    payload: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime, index=True)
    retry_count: int = Field(default=0)
