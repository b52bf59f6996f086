import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set

from pydantic import ValidationError

from vocabsync.data.kv_store import KVStore
from vocabsync.errors import NetworkError, PersistenceError
from vocabsync.models.base import ensure_utc, utc_now
from vocabsync.models.book import Book
from vocabsync.models.pending_change import ChangeAction, EntityType, PendingChange
from vocabsync.models.vocab_word import VocabWord
from vocabsync.services.backend_client import TIMEOUT_SECONDS, RemoteBackend
from vocabsync.services.cache_manager import CacheManager
from vocabsync.services.connectivity import BECAME_AVAILABLE, ConnectivityMonitor
from vocabsync.services.events import EventEmitter

logger = logging.getLogger("SyncEngine")

STATUS_CHANGED = "status_changed"

# Ordem de pull: pai antes de filho (palavras referenciam livros)
PULL_ORDER = (EntityType.BOOK, EntityType.VOCAB_WORD)


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class SyncStatus:
    state: SyncState
    synced_count: int = 0
    reason: Optional[str] = None

    @classmethod
    def idle(cls) -> "SyncStatus":
        return cls(SyncState.IDLE)

    @classmethod
    def syncing(cls) -> "SyncStatus":
        return cls(SyncState.SYNCING)

    @classmethod
    def completed(cls, synced_count: int) -> "SyncStatus":
        return cls(SyncState.COMPLETED, synced_count)

    @classmethod
    def failed(cls, reason: str, synced_count: int = 0) -> "SyncStatus":
        return cls(SyncState.FAILED, synced_count, reason)

    @property
    def description(self) -> str:
        if self.state == SyncState.SYNCING:
            return "Sincronizando..."
        if self.state == SyncState.COMPLETED:
            return f"{self.synced_count} itens sincronizados"
        if self.state == SyncState.FAILED:
            return f"Falha no sync: {self.reason}"
        return "Ocioso"


class SyncEngine:
    """
    Reconcilia a fila local com o servidor e traz os deltas remotos.

    Fluxo de sync_all():
      1. PUSH: replay da fila, estritamente da mais antiga para a mais nova.
         Falha de um item não bloqueia os demais; ele fica na fila com retry_count+1.
      2. PULL: busca, por recurso, o que mudou desde o último pull bem-sucedido.
      3. Conflitos: last-writer-wins pelo updated_at; empate fica com o local.

    No máximo um sync em andamento: a flag é testada e marcada sem nenhum
    'await' no meio, o que basta num event loop único.
    """

    def __init__(
        self,
        cache: CacheManager,
        backend: RemoteBackend,
        connectivity: ConnectivityMonitor,
        kv_store: KVStore,
        request_timeout: float = TIMEOUT_SECONDS,
    ):
        self.cache = cache
        self.backend = backend
        self.connectivity = connectivity
        self.kv_store = kv_store
        self.request_timeout = request_timeout
        self.events = EventEmitter()

        self.last_sync_date: Optional[datetime] = kv_store.get_last_sync()
        self.auto_sync_task: Optional[asyncio.Task] = None

        self._status = SyncStatus.idle()
        self._is_syncing = False
        self._run_id = 0
        self._synced_count = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._background_tasks: Set[asyncio.Task] = set()
        logger.info("SyncEngine inicializado")

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    # --- GATILHOS ---

    def attach(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """Dispara sync_all() sempre que a rede voltar. Não existe timer periódico."""
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
        self._loop = loop
        if self._unsubscribe is None:
            self._unsubscribe = self.connectivity.events.subscribe(BECAME_AVAILABLE, self._on_network_available)

    def detach(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_network_available(self):
        logger.info("Rede disponível - disparando sync")
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None and (self._loop is None or running is self._loop):
            task = running.create_task(self.sync_all())
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)
            self.auto_sync_task = task
        elif self._loop is not None and self._loop.is_running():
            # Callback vindo da thread da plataforma
            asyncio.run_coroutine_threadsafe(self.sync_all(), self._loop)
        else:
            logger.warning("Nenhum event loop ativo - sync automático ignorado")

    async def manual_sync(self) -> SyncStatus:
        """Pull-to-refresh ou botão de sincronizar."""
        logger.info("Sync manual disparado")
        return await self.sync_all()

    def cancel_sync(self):
        """
        Cancelamento consultivo: a chamada de rede em andamento termina (e sua
        confirmação na fila acontece), mas a execução para antes do próximo item.
        """
        self._run_id += 1
        self._is_syncing = False
        self._set_status(SyncStatus.idle())
        logger.info("Sync cancelado")

    # --- SYNC ---

    async def sync_all(self) -> SyncStatus:
        if self._is_syncing:
            logger.debug("Sync já em andamento")
            return self._status

        if not self.connectivity.connected:
            logger.warning("Não é possível sincronizar - offline")
            self._set_status(SyncStatus.failed("offline"))
            return self._status

        self._is_syncing = True
        self._run_id += 1
        run_id = self._run_id
        self._set_status(SyncStatus.syncing())
        logger.info("Iniciando sync completo")

        try:
            outcome = await self._run(run_id)
        except PersistenceError as e:
            logger.error(f"Sync interrompido por falha no cache local: {e}")
            outcome = SyncStatus.failed("persistence", self._synced_count)
        except asyncio.CancelledError:
            if not self._is_cancelled(run_id):
                self._is_syncing = False
                self._set_status(SyncStatus.idle())
            raise
        except Exception as e:
            logger.error(f"Sync Error: {e}")
            outcome = SyncStatus.failed("error", self._synced_count)

        if self._is_cancelled(run_id):
            return self._status

        self._is_syncing = False
        self._set_status(outcome)
        if outcome.state == SyncState.COMPLETED:
            logger.info(f"Sync concluído: {outcome.synced_count} itens sincronizados")
        else:
            logger.warning(f"Sync concluído com erros: {outcome.synced_count} itens sincronizados")
        return outcome

    async def _run(self, run_id: int) -> Optional[SyncStatus]:
        # Contador na instância: uma falha fatal no meio ainda reporta o que subiu
        self._synced_count = 0
        has_errors = False

        # 1. PUSH
        queue = self.cache.fetch_sync_queue()
        logger.debug(f"Processando {len(queue)} itens da fila")
        for change in queue:
            if self._is_cancelled(run_id):
                return None
            if await self._push_change(change):
                self.cache.confirm_change(change)
                self._synced_count += 1
            else:
                has_errors = True
                retries = self.cache.record_failure(change)
                logger.debug(f"Item {change.id} continua na fila (tentativas: {retries})")

        if self._is_cancelled(run_id):
            return None

        # 2. PULL + resolução de conflitos
        if not await self._pull_remote_changes():
            has_errors = True

        if self._is_cancelled(run_id):
            return None

        self.last_sync_date = utc_now()
        self.kv_store.set_last_sync(self.last_sync_date)
        self.cache.sweep_deleted()

        if has_errors:
            return SyncStatus.failed("partial", self._synced_count)
        return SyncStatus.completed(self._synced_count)

    async def _push_change(self, change: PendingChange) -> bool:
        entity_type = EntityType(change.entity_type)
        action = ChangeAction(change.action)
        logger.debug(f"Sincronizando {entity_type.value} {change.entity_id} - {action.value}")

        try:
            if action == ChangeAction.DELETE:
                call = self.backend.delete_remote(entity_type, change.entity_id)
            else:
                record = self._payload_for(change)
                if record is None:
                    logger.error(f"Sem dados para enviar: {entity_type.value} {change.entity_id}")
                    return False
                if action == ChangeAction.CREATE:
                    call = self.backend.create_remote(entity_type, record)
                else:
                    call = self.backend.update_remote(entity_type, change.entity_id, record)
            await asyncio.wait_for(call, timeout=self.request_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Timeout ao sincronizar {entity_type.value} {change.entity_id}")
            return False
        except NetworkError as e:
            logger.warning(f"Falha ao sincronizar {entity_type.value} {change.entity_id}: {e}")
            return False
        except PersistenceError:
            raise
        except Exception as e:
            # Falha inesperada de um item não pode travar o resto da fila
            logger.error(f"Sync Error em {entity_type.value} {change.entity_id}: {e!r}")
            return False
        return True

    def _payload_for(self, change: PendingChange) -> Optional[Dict[str, Any]]:
        if change.payload:
            return json.loads(change.payload)
        # Entradas sem snapshot: usa o estado atual do registro
        if change.entity_type == EntityType.BOOK:
            cached = self.cache.books.get_raw(change.entity_id)
            return cached.to_book().model_dump(mode="json") if cached else None
        cached = self.cache.words.get_raw(change.entity_id)
        return cached.to_vocab_word().model_dump(mode="json") if cached else None

    async def _pull_remote_changes(self) -> bool:
        ok = True
        for entity_type in PULL_ORDER:
            since = self.kv_store.get_pull_cursor(entity_type.value)
            started_at = utc_now()
            try:
                records = await asyncio.wait_for(
                    self.backend.fetch_updated_since(entity_type, since),
                    timeout=self.request_timeout,
                )
            except (NetworkError, asyncio.TimeoutError) as e:
                logger.warning(f"Falha ao buscar alterações remotas de {entity_type.value}: {e}")
                ok = False
                continue

            for raw in records:
                try:
                    self._reconcile(entity_type, raw)
                except ValidationError as e:
                    logger.warning(f"Registro remoto inválido ignorado ({entity_type.value}): {e}")

            # Cursor só avança quando o pull deste recurso deu certo
            self.kv_store.set_pull_cursor(entity_type.value, started_at)
            logger.debug(f"{len(records)} registros remotos de {entity_type.value} processados")
        return ok

    def _reconcile(self, entity_type: EntityType, raw: Dict[str, Any]) -> bool:
        """Aplica um registro remoto. Retorna True se a versão remota foi gravada."""
        if entity_type == EntityType.BOOK:
            remote = Book.model_validate(raw)
        else:
            remote = VocabWord.model_validate(raw)
        return self.cache.apply_remote(entity_type, remote, self.resolve_conflict)

    def resolve_conflict(self, local_updated_at: datetime, remote_updated_at: datetime) -> bool:
        """True se o local vence. Só um updated_at estritamente maior vence; empate fica com o local."""
        local_wins = ensure_utc(local_updated_at) >= ensure_utc(remote_updated_at)
        logger.debug(f"Conflito resolvido: {'local' if local_wins else 'remoto'} vence")
        return local_wins

    # --- INTERNOS ---

    def _is_cancelled(self, run_id: int) -> bool:
        return run_id != self._run_id

    def _set_status(self, status: SyncStatus):
        self._status = status
        self.events.emit(STATUS_CHANGED, status)
