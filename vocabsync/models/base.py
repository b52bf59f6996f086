import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import field_validator
from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel


# Função auxiliar para timestamps UTC
def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Datas sem fuso (vindas de JSON ou do SQLite) são tratadas como UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def next_timestamp(previous: Optional[datetime]) -> datetime:
    """
    Retorna 'agora', garantindo que o valor seja estritamente maior que o anterior.
    O updated_at é a única entrada da resolução de conflitos, então nunca pode regredir.
    """
    now = utc_now()
    if previous is not None and now <= ensure_utc(previous):
        return ensure_utc(previous) + timedelta(microseconds=1)
    return now


def new_id() -> str:
    # Identificador UUID v4 gerado no cliente (NUNCA usar Autoincrement)
    return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
    """
    O SQLite não guarda fuso horário: gravamos UTC "ingênuo" e devolvemos
    sempre datetime com tzinfo=UTC, para que comparações nunca misturem os dois.
    """
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return ensure_utc(value).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class RecordState(str, Enum):
    """Ciclo de vida do registro local (tombstone em duas fases)."""
    ACTIVE = "active"
    PENDING_DELETE = "pending_delete"  # Soft delete aguardando confirmação do servidor
    GONE = "gone"                      # Delete confirmado, aguardando a varredura


class DomainModel(SQLModel):
    """
    Classe base dos objetos de domínio (o que a UI e o backend enxergam).
    Não é tabela: a persistência local fica nos modelos Cached*.
    """
    id: str = Field(default_factory=new_id)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class CachedRecord(SQLModel):
    """
    Classe Base para todos os registros do cache local.
    Implementa UUID, Soft Delete (tombstone) e flag de sincronização.
    """
    id: str = Field(default_factory=new_id, primary_key=True)

    # Metadados de Auditoria
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime, index=True)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)

    # True enquanto houver PendingChange não confirmada para este registro
    needs_sync: bool = Field(default=False, index=True)

    # Tombstone para Soft Delete
    state: RecordState = Field(default=RecordState.ACTIVE, index=True)

    @property
    def marked_for_deletion(self) -> bool:
        return self.state != RecordState.ACTIVE


def is_visible(record: Optional[CachedRecord]) -> bool:
    """Único ponto de decisão sobre o que a leitura normal pode enxergar."""
    return record is not None and record.state == RecordState.ACTIVE
