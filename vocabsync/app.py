import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from vocabsync.config import Settings
from vocabsync.data.db_context import create_db_engine
from vocabsync.data.kv_store import KVStore
from vocabsync.data.local_store import LocalStore
from vocabsync.services.backend_client import HttpBackend, RemoteBackend
from vocabsync.services.cache_manager import CacheManager
from vocabsync.services.connectivity import ConnectivityMonitor, ReachabilitySource
from vocabsync.services.sync_engine import SyncEngine


@dataclass
class AppServices:
    """Instâncias únicas criadas no startup e repassadas para quem precisa delas."""
    settings: Settings
    engine: Engine
    store: LocalStore
    kv_store: KVStore
    cache: CacheManager
    connectivity: ConnectivityMonitor
    backend: RemoteBackend
    sync_engine: SyncEngine

    async def aclose(self):
        self.sync_engine.detach()
        if self.connectivity.is_monitoring:
            self.connectivity.stop_monitoring()
        if isinstance(self.backend, HttpBackend):
            await self.backend.aclose()
        self.engine.dispose()


def configure_logging(settings: Settings):
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))


def build_services(
    settings: Optional[Settings] = None,
    backend: Optional[RemoteBackend] = None,
    reachability: Optional[ReachabilitySource] = None,
) -> AppServices:
    """
    Monta o grafo de serviços. O backend e a fonte de reachability podem ser
    injetados (dublês nos testes, binding da plataforma em produção).
    """
    settings = settings or Settings.from_env()

    engine = create_db_engine(settings.db_path)
    store = LocalStore(engine)
    kv_store = KVStore(engine)
    cache = CacheManager(store, kv_store)
    connectivity = ConnectivityMonitor(reachability)
    backend = backend or HttpBackend(settings.api_base_url, settings.timeout_seconds)
    sync_engine = SyncEngine(
        cache,
        backend,
        connectivity,
        kv_store,
        request_timeout=settings.timeout_seconds,
    )
    return AppServices(
        settings=settings,
        engine=engine,
        store=store,
        kv_store=kv_store,
        cache=cache,
        connectivity=connectivity,
        backend=backend,
        sync_engine=sync_engine,
    )


async def start(services: AppServices) -> AppServices:
    """Liga o sync automático e começa a ouvir a rede. Chamar de dentro do event loop."""
    configure_logging(services.settings)
    services.sync_engine.attach()
    if services.connectivity.source is not None:
        services.connectivity.start_monitoring()
    return services
