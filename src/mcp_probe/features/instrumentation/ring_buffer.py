"""
Tampon circulaire thread-safe: capacité fixe, le plus ancien est évincé.
"""
from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Generic, List, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("capacity doit être strictement positive")
        self._capacity = capacity
        self._items: Deque[T] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._evicted = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def evicted(self) -> int:
        """Nombre d'entrées évincées depuis la création (ou le dernier clear)."""
        with self._lock:
            return self._evicted

    def append(self, item: T) -> None:
        with self._lock:
            if len(self._items) == self._capacity:
                self._evicted += 1
            self._items.append(item)

    def snapshot(self) -> List[T]:
        """Copie ordonnée (plus ancien en premier)."""
        with self._lock:
            return list(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self._evicted = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
