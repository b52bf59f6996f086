import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

DATABASE_NAME = "vocabsync.db"
ANDROID_STORAGE_PATH = "/data/data/com.bookvocab.app/files"


def default_db_path() -> str:
    """
    Define o caminho correto do banco de dados dependendo do OS.
    No Android, usamos o armazenamento interno gravável do app.
    """
    if "ANDROID_ARGUMENT" in os.environ:
        return os.path.join(ANDROID_STORAGE_PATH, DATABASE_NAME)

    # Desenvolvimento Desktop
    return DATABASE_NAME


class Settings(BaseModel):
    api_base_url: str = "http://localhost:8000"
    timeout_seconds: float = 10.0
    db_path: str = DATABASE_NAME
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """Carrega as variáveis do arquivo .env (se existir) e do ambiente."""
        load_dotenv(env_file)
        return cls(
            api_base_url=os.getenv("VOCABSYNC_API_BASE_URL", cls.model_fields["api_base_url"].default),
            timeout_seconds=float(os.getenv("VOCABSYNC_TIMEOUT_SECONDS", "10")),
            db_path=os.getenv("VOCABSYNC_DB_PATH") or default_db_path(),
            log_level=os.getenv("VOCABSYNC_LOG_LEVEL", "INFO").upper(),
        )
