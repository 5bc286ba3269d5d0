"""Depo cephesi (Repository Facade).

Uzak belge deposuna okuma/yazma yapmaya yetkili tek bileşen. Kural motoru
buradan aldığı anlık görüntüler üzerinde çalışır ve sonuçlarını tek bir
``transactional_update`` çağrısıyla kalıcı hale getirir.
"""

from __future__ import annotations

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from libraryau.errors import ConcurrentModification
from libraryau.models import ENTITY_TYPES, Document, EntityKind

logger = logging.getLogger(__name__)

DocKey = Tuple[EntityKind, str]
Predicate = Callable[[Document], bool]
Listener = Callable[[List[Document]], None]


def new_id() -> str:
    return uuid.uuid4().hex[:20]


def read_set(*entities: Optional[Document]) -> Dict[DocKey, int]:
    """Verilen varlıkların (tür, kimlik) -> görülen sürüm eşlemesi."""
    return {(e.kind, e.id): e.version for e in entities if e is not None and e.id is not None}


class Repository(ABC):
    def __init__(self) -> None:
        self._listeners: List[Listener] = []
        self._listeners_lock = threading.Lock()

    @abstractmethod
    def get(self, kind: EntityKind, entity_id: str) -> Optional[Document]:
        ...

    @abstractmethod
    def query(self, kind: EntityKind, predicate: Optional[Predicate] = None) -> List[Document]:
        ...

    @abstractmethod
    def create(self, entity: Document) -> str:
        ...

    @abstractmethod
    def transactional_update(self, reads: Mapping[DocKey, int], writes: Iterable[Document]) -> List[Document]:
        """Okunan sürümler değişmediyse tüm yazmaları birlikte uygula.

        Herhangi bir sürüm farklıysa hiçbir şey yazılmaz ve
        ``ConcurrentModification`` yükseltilir.
        """

    # ------------------------- Değişiklik bildirimi ------------------------- #
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, changed: List[Document]) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(changed)
            except Exception:
                logger.exception("Change listener failed")


class InMemoryRepository(Repository):
    """Kilit korumalı, bellek içi belge deposu (testler ve gömülü kullanım için)."""

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.RLock()
        self._docs: Dict[EntityKind, Dict[str, dict]] = {kind: {} for kind in EntityKind}

    def get(self, kind: EntityKind, entity_id: str) -> Optional[Document]:
        with self._lock:
            body = self._docs[kind].get(entity_id)
            return ENTITY_TYPES[kind].from_dict(body) if body is not None else None

    def query(self, kind: EntityKind, predicate: Optional[Predicate] = None) -> List[Document]:
        with self._lock:
            items = [ENTITY_TYPES[kind].from_dict(body) for body in self._docs[kind].values()]
        if predicate is None:
            return items
        return [item for item in items if predicate(item)]

    def create(self, entity: Document) -> str:
        with self._lock:
            stored = self._store(entity)
        self._notify([stored])
        return stored.id

    def transactional_update(self, reads: Mapping[DocKey, int], writes: Iterable[Document]) -> List[Document]:
        writes = list(writes)
        with self._lock:
            for (kind, entity_id), seen in reads.items():
                body = self._docs[kind].get(entity_id)
                current = body["version"] if body is not None else 0
                if current != seen:
                    logger.debug("Version mismatch on %s/%s: %s != %s", kind.value, entity_id, current, seen)
                    raise ConcurrentModification("stale snapshot", entity_id)
            stored = [self._store(entity) for entity in writes]
        self._notify(stored)
        return stored

    def _store(self, entity: Document) -> Document:
        bucket = self._docs[entity.kind]
        entity_id = entity.id or new_id()
        previous = bucket.get(entity_id)
        version = (previous["version"] if previous is not None else 0) + 1
        stored = replace(entity, id=entity_id, version=version)
        bucket[entity_id] = stored.to_dict()
        return stored
