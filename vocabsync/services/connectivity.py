import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, FrozenSet, Optional, Protocol

from vocabsync.services.events import EventEmitter

logger = logging.getLogger("NetworkMonitor")

BECAME_AVAILABLE = "became_available"
BECAME_UNAVAILABLE = "became_unavailable"
PATH_CHANGED = "path_changed"


class ConnectionQuality(str, Enum):
    WIFI = "wifi"
    CELLULAR = "cellular"
    OTHER = "other"
    NONE = "none"


class InterfaceType(str, Enum):
    WIFI = "wifi"
    CELLULAR = "cellular"
    WIRED = "wired"
    OTHER = "other"


@dataclass(frozen=True)
class NetworkPath:
    """Snapshot entregue pela primitiva de reachability da plataforma."""
    satisfied: bool
    interfaces: FrozenSet[InterfaceType] = field(default_factory=frozenset)
    is_expensive: bool = False
    is_constrained: bool = False


PathHandler = Callable[[NetworkPath], None]


class ReachabilitySource(Protocol):
    """Adaptador da plataforma: chama o handler a cada mudança de rede (push, sem polling)."""

    def start(self, handler: PathHandler) -> None: ...

    def stop(self) -> None: ...


class ConnectivityMonitor:
    """
    Diz ao resto do sistema se chamadas de rede devem funcionar agora.
    Emite 'became_available' / 'became_unavailable' apenas nas transições.
    Não faz retry nem backoff: isso é responsabilidade do SyncEngine.
    """

    def __init__(self, source: Optional[ReachabilitySource] = None):
        self.source = source
        self.events = EventEmitter()
        self.connected = False
        self.connection_quality = ConnectionQuality.NONE
        self.is_expensive = False
        self.is_constrained = False
        self._is_monitoring = False

    def start_monitoring(self):
        if self._is_monitoring:
            logger.debug("Monitoramento de rede já está ativo")
            return
        if self.source is None:
            raise RuntimeError("Nenhuma fonte de reachability configurada")
        logger.info("Iniciando monitoramento de rede")
        self.source.start(self.handle_path_update)
        self._is_monitoring = True

    def stop_monitoring(self):
        if not self._is_monitoring:
            return
        logger.info("Parando monitoramento de rede")
        self.source.stop()
        self._is_monitoring = False

    @property
    def is_monitoring(self) -> bool:
        return self._is_monitoring

    def handle_path_update(self, path: NetworkPath):
        was_connected = self.connected

        self.connected = path.satisfied
        self.is_expensive = path.is_expensive
        self.is_constrained = path.is_constrained
        self.connection_quality = self._quality_for(path)

        logger.debug(
            f"Status de rede: {'Online' if self.connected else 'Offline'}, "
            f"Tipo: {self.connection_quality.value}, Caro: {self.is_expensive}, "
            f"Restrito: {self.is_constrained}"
        )
        self.events.emit(PATH_CHANGED, path)

        if was_connected != self.connected:
            if self.connected:
                logger.info(f"Rede CONECTADA via {self.connection_quality.value}")
                self.events.emit(BECAME_AVAILABLE)
            else:
                logger.warning("Rede DESCONECTADA - modo offline")
                self.events.emit(BECAME_UNAVAILABLE)

    @staticmethod
    def _quality_for(path: NetworkPath) -> ConnectionQuality:
        if not path.satisfied:
            return ConnectionQuality.NONE
        if InterfaceType.WIFI in path.interfaces:
            return ConnectionQuality.WIFI
        if InterfaceType.CELLULAR in path.interfaces:
            return ConnectionQuality.CELLULAR
        return ConnectionQuality.OTHER

    @property
    def is_suitable_for_large_downloads(self) -> bool:
        return self.connected and not self.is_expensive and not self.is_constrained

    @property
    def status_description(self) -> str:
        if not self.connected:
            return "Offline"
        status = f"Online ({self.connection_quality.value})"
        if self.is_expensive:
            status += " - dados móveis"
        return status
