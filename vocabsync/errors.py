"""
Taxonomia de erros do núcleo de sincronização.

- PersistenceError: falha do banco local. Fatal para a operação, sempre propagada.
- NetworkError (e subclasses): falha transitória do backend. O item fica na fila.
- RecordNotFoundError: operação local sobre um registro inexistente ou excluído.
"""
from typing import Optional

__all__ = [
    "VocabSyncError",
    "PersistenceError",
    "NetworkError",
    "AuthError",
    "VerificationError",
    "RecordNotFoundError",
]


class VocabSyncError(Exception):
    """Classe base para todos os erros do vocabsync."""


class PersistenceError(VocabSyncError):
    """Falha de disco/banco no Local Store. A escrita NÃO aconteceu."""
    def __init__(self, operation: str, detail: Optional[str] = None):
        self.operation = operation
        self.detail = detail
        message = f"Falha de persistência em '{operation}'"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class NetworkError(VocabSyncError):
    """Timeout, host inacessível ou status não-2xx. Recuperado no próximo sync."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class AuthError(NetworkError):
    """401/403 do backend. Para a fila é só mais uma falha transitória."""


class VerificationError(NetworkError):
    """Payload rejeitado pelo backend (ex: 422)."""


class RecordNotFoundError(VocabSyncError):
    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} '{entity_id}' não encontrado no cache")
