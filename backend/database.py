import os
from typing import AsyncIterator, Optional
from dotenv import load_dotenv
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import sessionmaker

from backend.models import RemoteBook, RemoteVocabWord

# Carrega as variáveis do arquivo .env
load_dotenv()

engine: Optional[AsyncEngine] = None


def init_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Cria o Engine assíncrono. Em produção a URL vem de DATABASE_URL
    (ex: postgresql+asyncpg://...); nos testes, sqlite+aiosqlite.
    """
    global engine
    url = database_url or os.getenv("DATABASE_URL")
    if not url:
        raise ValueError("A variável de ambiente DATABASE_URL não está definida!")

    engine = create_async_engine(
        url,
        echo=os.getenv("DATABASE_ECHO", "").lower() in ("1", "true"),
        future=True,
    )
    return engine


async def init_db():
    """
    Cria as tabelas na inicialização.
    Só as tabelas do servidor: as tabelas de cache do cliente não pertencem a este banco.
    """
    if engine is None:
        init_engine()
    async with engine.begin() as conn:
        await conn.run_sync(
            SQLModel.metadata.create_all,
            tables=[RemoteBook.__table__, RemoteVocabWord.__table__],
        )


async def get_session() -> AsyncIterator[AsyncSession]:
    """Injeção de dependência para rotas FastAPI"""
    if engine is None:
        init_engine()
    async_session = sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )
    async with async_session() as session:
        yield session
