import asyncio
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

from vocabsync.data.db_context import MEMORY_DB, create_db_engine
from vocabsync.data.kv_store import KVStore
from vocabsync.data.local_store import LocalStore
from vocabsync.errors import NetworkError
from vocabsync.models.book import Book
from vocabsync.models.pending_change import EntityType
from vocabsync.models.vocab_word import VocabWord
from vocabsync.services.backend_client import RemoteBackend
from vocabsync.services.cache_manager import CacheManager
from vocabsync.services.connectivity import ConnectivityMonitor, InterfaceType, NetworkPath
from vocabsync.services.sync_engine import SyncEngine

ONLINE = NetworkPath(satisfied=True, interfaces=frozenset({InterfaceType.WIFI}))
OFFLINE = NetworkPath(satisfied=False)


class FakeBackend(RemoteBackend):
    """Servidor em memória que registra cada chamada recebida, na ordem."""

    def __init__(self):
        self.calls: List[Tuple[str, EntityType, str]] = []
        self.remote: Dict[EntityType, Dict[str, Dict[str, Any]]] = {
            EntityType.BOOK: {},
            EntityType.VOCAB_WORD: {},
        }
        self.remote_changes: Dict[EntityType, List[Dict[str, Any]]] = {
            EntityType.BOOK: [],
            EntityType.VOCAB_WORD: [],
        }
        self.fail_ids: Set[str] = set()
        # Falhas fora da hierarquia NetworkError (ex: erro de socket cru)
        self.crash_ids: Set[str] = set()
        self.fail_fetch = False
        self.delay = 0.0
        self.fetch_calls = 0

    async def _maybe_fail(self, entity_id: str):
        if self.delay:
            await asyncio.sleep(self.delay)
        if entity_id in self.fail_ids:
            raise NetworkError(f"falha simulada para {entity_id}", 503)
        if entity_id in self.crash_ids:
            raise OSError("host unreachable")

    async def create_remote(self, entity_type, record):
        await self._maybe_fail(record["id"])
        self.calls.append(("create", entity_type, record["id"]))
        self.remote[entity_type][record["id"]] = dict(record)
        return record["id"]

    async def update_remote(self, entity_type, entity_id, record):
        await self._maybe_fail(entity_id)
        self.calls.append(("update", entity_type, entity_id))
        self.remote[entity_type][entity_id] = dict(record)

    async def delete_remote(self, entity_type, entity_id):
        await self._maybe_fail(entity_id)
        self.calls.append(("delete", entity_type, entity_id))
        self.remote[entity_type].pop(entity_id, None)

    async def fetch_updated_since(self, entity_type, since):
        self.fetch_calls += 1
        if self.fail_fetch:
            raise NetworkError("pull indisponível", 503)
        return list(self.remote_changes[entity_type])


class FakeReachability:
    def __init__(self):
        self.handler = None
        self.stopped = False

    def start(self, handler):
        self.handler = handler

    def stop(self):
        self.stopped = True

    def push(self, path: NetworkPath):
        self.handler(path)


@pytest.fixture
def db_engine():
    engine = create_db_engine(MEMORY_DB)
    yield engine
    engine.dispose()


@pytest.fixture
def store(db_engine):
    return LocalStore(db_engine)


@pytest.fixture
def kv_store(db_engine):
    return KVStore(db_engine)


@pytest.fixture
def cache(store, kv_store):
    return CacheManager(store, kv_store)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def reachability():
    return FakeReachability()


@pytest.fixture
def monitor(reachability):
    monitor = ConnectivityMonitor(reachability)
    monitor.start_monitoring()
    return monitor


@pytest.fixture
def online(monitor, reachability):
    reachability.push(ONLINE)
    return monitor


@pytest.fixture
def sync_engine(cache, backend, monitor, kv_store):
    return SyncEngine(cache, backend, monitor, kv_store, request_timeout=1.0)


def owner() -> str:
    return "0b7e5c1e-4d1f-4a8e-9a57-3d1c2f0e9a11"


def remote_record(entity, **overrides) -> Dict[str, Any]:
    data = entity.model_dump(mode="json")
    data.update(overrides)
    return data


def make_book(title: str = "1984", author: str = "George Orwell", owner_id: Optional[str] = None):
    return Book(owner_id=owner_id or owner(), title=title, author=author)


def make_word(word: str = "ephemeral", book_id: Optional[str] = None, **kwargs):
    return VocabWord(
        book_id=book_id,
        word=word,
        definition=kwargs.pop("definition", "Lasting for a very short time"),
        synonyms=kwargs.pop("synonyms", ["fleeting", "transient"]),
        antonyms=kwargs.pop("antonyms", ["permanent"]),
        example_sentence=kwargs.pop("example_sentence", "The ephemeral beauty of the sunset."),
        **kwargs,
    )
