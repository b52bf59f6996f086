import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from vocabsync.errors import AuthError, NetworkError, VerificationError
from vocabsync.models.base import ensure_utc
from vocabsync.models.pending_change import EntityType

logger = logging.getLogger("HttpBackend")

API_BASE_URL = "http://localhost:8000"
TIMEOUT_SECONDS = 10

# Nome do recurso na URL para cada tipo de entidade
RESOURCE_PATHS = {
    EntityType.BOOK: "books",
    EntityType.VOCAB_WORD: "vocab_words",
}


class RemoteBackend(ABC):
    """
    Contrato mínimo que o SyncEngine consome. Qualquer binding (REST, RPC...)
    que cumpra estas quatro chamadas serve. Falhas sobem como NetworkError.
    """

    @abstractmethod
    async def create_remote(self, entity_type: EntityType, record: Dict[str, Any]) -> str:
        """Cria o registro e devolve o id remoto."""

    @abstractmethod
    async def update_remote(self, entity_type: EntityType, entity_id: str, record: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def delete_remote(self, entity_type: EntityType, entity_id: str) -> None:
        ...

    @abstractmethod
    async def fetch_updated_since(self, entity_type: EntityType, since: datetime) -> List[Dict[str, Any]]:
        """Registros com updated_at posterior a 'since'."""


class HttpBackend(RemoteBackend):
    def __init__(
        self,
        base_url: str = API_BASE_URL,
        timeout: float = TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self):
        await self.client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Timeout em {method} {url}") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Falha de rede em {method} {url}: {e}") from e

        if response.status_code in (401, 403):
            raise AuthError(f"Acesso negado em {method} {url}", response.status_code)
        if response.status_code == 422:
            raise VerificationError(f"Payload rejeitado em {method} {url}: {response.text}", 422)
        if response.is_error:
            raise NetworkError(f"{method} {url} retornou {response.status_code}", response.status_code)
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise NetworkError(f"Resposta inválida do servidor: {e}", response.status_code) from e
        if not isinstance(body, dict):
            raise NetworkError(
                f"Resposta inesperada do servidor: esperado objeto JSON, veio {type(body).__name__}",
                response.status_code,
            )
        return body

    async def create_remote(self, entity_type: EntityType, record: Dict[str, Any]) -> str:
        resource = RESOURCE_PATHS[entity_type]
        response = await self._request("POST", f"/api/{resource}", json=record)
        remote_id = self._json(response).get("id", record.get("id"))
        logger.debug(f"Criado em /{resource}: {remote_id}")
        return remote_id

    async def update_remote(self, entity_type: EntityType, entity_id: str, record: Dict[str, Any]) -> None:
        resource = RESOURCE_PATHS[entity_type]
        await self._request("PUT", f"/api/{resource}/{entity_id}", json=record)
        logger.debug(f"Atualizado em /{resource}: {entity_id}")

    async def delete_remote(self, entity_type: EntityType, entity_id: str) -> None:
        resource = RESOURCE_PATHS[entity_type]
        await self._request("DELETE", f"/api/{resource}/{entity_id}")
        logger.debug(f"Removido de /{resource}: {entity_id}")

    async def fetch_updated_since(self, entity_type: EntityType, since: datetime) -> List[Dict[str, Any]]:
        resource = RESOURCE_PATHS[entity_type]
        # Endpoint ex: /sync/pull/books?since=...
        response = await self._request(
            "GET", f"/sync/pull/{resource}", params={"since": ensure_utc(since).isoformat()}
        )
        changes = self._json(response).get("changes", [])
        logger.debug(f"{len(changes)} alterações remotas em /{resource}")
        return changes
