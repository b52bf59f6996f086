import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Tuple, Type

from fastapi import Depends, FastAPI, HTTPException
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession

# --- IMPORTAÇÃO DOS MODELOS ---
from vocabsync.models.base import DomainModel, ensure_utc, utc_now
from vocabsync.models.book import Book
from vocabsync.models.vocab_word import VocabWord

# --- IMPORTAÇÕES DO BACKEND ---
from backend.database import get_session, init_db
from backend.models import RemoteBook, RemoteVocabWord

logger = logging.getLogger("Backend")

# --- MAPEAMENTO DE ROTAS ---
# Conecta o "nome na URL" à tabela do servidor e ao modelo que valida o payload
MODELS_MAP: Dict[str, Tuple[Type[SQLModel], Type[DomainModel]]] = {
    "books": (RemoteBook, Book),
    "vocab_words": (RemoteVocabWord, VocabWord),
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield


app = FastAPI(title="BookVocab - Servidor de Sync", lifespan=lifespan)


def _resolve(resource_name: str) -> Tuple[Type[SQLModel], Type[DomainModel]]:
    if resource_name not in MODELS_MAP:
        raise HTTPException(status_code=404, detail=f"Recurso '{resource_name}' desconhecido.")
    return MODELS_MAP[resource_name]


async def _upsert(resource_name: str, payload: Dict[str, Any], session: AsyncSession) -> DomainModel:
    """
    Insere ou atualiza pelo id. Create e update são idempotentes: um replay
    depois de um timeout do cliente não pode falhar nem duplicar.
    """
    ModelClass, DomainClass = _resolve(resource_name)
    try:
        entity = DomainClass.model_validate(payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    data = entity.model_dump()
    try:
        existing_record = await session.get(ModelClass, entity.id)
        if existing_record:
            for key, value in data.items():
                if hasattr(existing_record, key) and key != "id":
                    setattr(existing_record, key, value)
            session.add(existing_record)
        else:
            session.add(ModelClass(**data))
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"ERRO NO UPSERT ({resource_name}): {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return entity


@app.get("/")
async def root():
    return {
        "status": "online",
        "resources": list(MODELS_MAP.keys()),
        "time": utc_now().isoformat(),
    }


@app.post("/api/{resource_name}")
async def create_generic(
    resource_name: str,
    payload: Dict[str, Any],
    session: AsyncSession = Depends(get_session),
):
    entity = await _upsert(resource_name, payload, session)
    return {"id": entity.id, "status": "success", "resource": resource_name}


@app.put("/api/{resource_name}/{entity_id}")
async def update_generic(
    resource_name: str,
    entity_id: str,
    payload: Dict[str, Any],
    session: AsyncSession = Depends(get_session),
):
    # O id da URL manda
    entity = await _upsert(resource_name, {**payload, "id": entity_id}, session)
    return {"id": entity.id, "status": "success", "resource": resource_name}


@app.delete("/api/{resource_name}/{entity_id}")
async def delete_generic(
    resource_name: str,
    entity_id: str,
    session: AsyncSession = Depends(get_session),
):
    """Apagar algo que já não existe também é sucesso (replay idempotente)."""
    ModelClass, _ = _resolve(resource_name)
    try:
        existing_record = await session.get(ModelClass, entity_id)
        if existing_record:
            await session.delete(existing_record)
            await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"ERRO NO DELETE ({resource_name}): {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return {"id": entity_id, "deleted": existing_record is not None, "resource": resource_name}


@app.get("/sync/pull/{resource_name}")
async def pull_generic(
    resource_name: str,
    since: str,
    session: AsyncSession = Depends(get_session),
):
    """
    Retorna deltas de QUALQUER recurso definido em MODELS_MAP.
    Ex: GET /sync/pull/books?since=...
    """
    ModelClass, _ = _resolve(resource_name)

    try:
        since_dt = ensure_utc(datetime.fromisoformat(since))
    except ValueError:
        since_dt = datetime(1970, 1, 1, tzinfo=timezone.utc)

    try:
        statement = (
            select(ModelClass)
            .where(ModelClass.updated_at > since_dt)
            .order_by(ModelClass.updated_at)
        )
        result = await session.exec(statement)
        changes = result.all()
    except SQLAlchemyError as e:
        logger.error(f"ERRO NO PULL ({resource_name}): {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "resource": resource_name,
        "changes": [record.model_dump(mode="json") for record in changes],
        "current_server_time": utc_now().isoformat(),
    }
