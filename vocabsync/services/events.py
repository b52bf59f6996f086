import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger("Events")

Handler = Callable[..., None]


class EventEmitter:
    """
    Pub/sub em processo. Os serviços emitem eventos; quem renderiza (UI)
    decide o que fazer com eles. Falha de um handler não afeta os demais.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, event: str, handler: Handler) -> Callable[[], None]:
        """Registra o handler e devolve uma função para cancelar a inscrição."""
        with self._lock:
            self._handlers[event].append(handler)

        def unsubscribe():
            self.unsubscribe(event, handler)

        return unsubscribe

    def unsubscribe(self, event: str, handler: Handler):
        with self._lock:
            if handler in self._handlers.get(event, []):
                self._handlers[event].remove(handler)

    def emit(self, event: str, *args: Any):
        with self._lock:
            handlers = list(self._handlers.get(event, []))
        for handler in handlers:
            try:
                handler(*args)
            except Exception as e:
                logger.error(f"Handler de '{event}' falhou: {e}")
