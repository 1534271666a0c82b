"""
Statistiques cumulées des erreurs de connexion et d'opérations.
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional

from ...core.constants import ERROR_HISTORY_MAX, ERROR_RECENT_COUNT
from ...core.exceptions import McpProbeError, StartupFailureError
from ...core.models import ErrorStatistics

logger = logging.getLogger(__name__)


def _category_of(error: BaseException) -> str:
    if isinstance(error, StartupFailureError):
        return f"startup_failure:{error.startup_category.value}"
    if isinstance(error, McpProbeError):
        return error.category
    return "internal_error"


class ErrorTracker:
    """Compteurs par catégorie + historique borné (50, les 10 derniers exposés)."""

    def __init__(self, history_max: int = ERROR_HISTORY_MAX, recent_count: int = ERROR_RECENT_COUNT):
        self._lock = threading.Lock()
        self._history_max = history_max
        self._recent_count = recent_count
        self._reset_locked()

    def _reset_locked(self) -> None:
        self._total = 0
        self._by_category: Dict[str, int] = {}
        self._recoverable = 0
        self._history: Deque[Dict[str, Any]] = deque(maxlen=self._history_max)
        self._started_at = datetime.now(timezone.utc)

    def record(self, error: BaseException, operation: str) -> Dict[str, Any]:
        category = _category_of(error)
        recoverable = bool(getattr(error, "recoverable", False))
        if isinstance(error, McpProbeError):
            entry = error.to_dict()
        else:
            entry = {"category": category, "message": str(error) or type(error).__name__}
        entry.update(
            {
                "category": category,
                "operation": operation,
                "recoverable": recoverable,
                "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            }
        )

        with self._lock:
            self._total += 1
            self._by_category[category] = self._by_category.get(category, 0) + 1
            if recoverable:
                self._recoverable += 1
            self._history.append(entry)

        logger.warning(f"❌ Erreur [{category}] pendant {operation}: {entry.get('message')}")
        return entry

    @property
    def last_error(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            return dict(self._history[-1]) if self._history else None

    def counts(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._by_category)

    def statistics(self) -> ErrorStatistics:
        with self._lock:
            history = list(self._history)
            return ErrorStatistics(
                total_errors=self._total,
                by_category=dict(self._by_category),
                recoverable_errors=self._recoverable,
                last_error=dict(history[-1]) if history else None,
                recent_errors=[dict(e) for e in history[-self._recent_count:]],
                started_at=self._started_at,
            )

    def reset(self) -> None:
        with self._lock:
            self._reset_locked()
