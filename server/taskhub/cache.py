from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from .models import Task


logger = logging.getLogger(__name__)


class TaskCache:
    """Snapshot de curta duracao de todas as tarefas + indice por id.

    Nao conhece tenants: quem filtra por tenant e o TaskService. Qualquer
    escrita bem-sucedida chama invalidate(), que descarta snapshot e indice
    juntos. Snapshot e indice sao sempre trocados juntos, sob o mesmo lock.
    """

    def __init__(
        self,
        loader: Callable[[], List[Task]],
        *,
        ttl_seconds: float = 8.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._lock = threading.RLock()
        self._loaded_at: Optional[float] = None
        self._data: Optional[List[Task]] = None
        self._index: Optional[Dict[str, Task]] = None
        self.loads = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def _is_fresh(self) -> bool:
        if self._data is None or self._loaded_at is None:
            return False
        return (self._clock() - self._loaded_at) < self._ttl

    def _snapshot(self) -> Tuple[List[Task], Dict[str, Task]]:
        with self._lock:
            if not self._is_fresh() or self._index is None:
                data = list(self._loader())
                self._data = data
                self._index = {str(t.id): t for t in data}
                self._loaded_at = self._clock()
                self.loads += 1
                logger.debug("Cache de tarefas recarregado (%d registros)", len(data))
            return self._data or [], self._index

    def all(self) -> List[Task]:
        data, _ = self._snapshot()
        return list(data)

    def get(self, task_id: str) -> Optional[Task]:
        _, index = self._snapshot()
        return index.get(str(task_id))

    def invalidate(self) -> None:
        with self._lock:
            self._data = None
            self._index = None
            self._loaded_at = None
