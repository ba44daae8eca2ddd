"""
dashboard/store.py

Holds the loaded table set for the presentation layer.

Every reload runs the loader from scratch and swaps in a new immutable
snapshot. Loads are tagged with a monotonic token; a load that finishes after
a newer one has started is discarded, so the last requested load wins.
"""

from __future__ import annotations

import enum
import itertools
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from dashboard.models import SalesData

logger = logging.getLogger(__name__)

Loader = Callable[[], SalesData]


class LoadStatus(str, enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ERRORED = "errored"


@dataclass(frozen=True)
class LoadSnapshot:
    status: LoadStatus = LoadStatus.IDLE
    data: Optional[SalesData] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    token: int = 0
    loaded_at: Optional[datetime] = None

    @property
    def ready(self) -> bool:
        return self.status is LoadStatus.LOADED and self.data is not None


class SalesDataStore:
    def __init__(self, loader: Loader) -> None:
        self._loader = loader
        self._lock = threading.Lock()
        self._tokens = itertools.count(1)
        self._latest_token = 0
        self._snapshot = LoadSnapshot()

    @property
    def snapshot(self) -> LoadSnapshot:
        return self._snapshot

    def begin(self) -> int:
        """Start a load: issue a new token and move to the loading state."""
        with self._lock:
            token = next(self._tokens)
            self._latest_token = token
            self._snapshot = LoadSnapshot(status=LoadStatus.LOADING, token=token)
        return token

    def complete(self, token: int, data: SalesData) -> bool:
        with self._lock:
            if token != self._latest_token:
                logger.info("Discarding superseded load token=%s latest=%s", token, self._latest_token)
                return False
            self._snapshot = LoadSnapshot(
                status=LoadStatus.LOADED,
                data=data,
                token=token,
                loaded_at=datetime.now(timezone.utc),
            )
        return True

    def fail(self, token: int, exc: BaseException) -> bool:
        with self._lock:
            if token != self._latest_token:
                logger.info("Discarding superseded load failure token=%s latest=%s", token, self._latest_token)
                return False
            self._snapshot = LoadSnapshot(
                status=LoadStatus.ERRORED,
                error=str(exc),
                error_type=type(exc).__name__,
                token=token,
                loaded_at=datetime.now(timezone.utc),
            )
        return True

    def reload(self) -> LoadSnapshot:
        """Run the loader synchronously and return the resulting snapshot."""
        token = self.begin()
        try:
            data = self._loader()
        except Exception as exc:
            logger.error("Sales data load failed token=%s error=%s", token, exc)
            self.fail(token, exc)
        else:
            self.complete(token, data)
        return self._snapshot

    def ensure_loaded(self) -> LoadSnapshot:
        """Load on first use; later calls return the current snapshot."""
        if self._snapshot.status is LoadStatus.IDLE:
            return self.reload()
        return self._snapshot
