"""Failure-isolated base for search sources."""

import asyncio
import time
from typing import List, Optional

from loguru import logger

from ..health import HealthRegistry
from ..models import PRIORITIES, ResultKind, SearchResult


class SourceProvider:
    """
    One independently failing data source.

    Subclasses implement ``_fetch``. Callers only ever use ``fetch``, which
    never raises: timeouts, spawn errors and parse errors all become an
    empty list and are recorded against the source's circuit breaker.
    """

    name: str = "source"
    kind: ResultKind = ResultKind.APPLICATION

    def __init__(self, timeout: float = 4.5, health: Optional[HealthRegistry] = None):
        self.timeout = timeout
        self.health = health
        self.last_latency_ms = 0.0

    @property
    def priority(self) -> float:
        return PRIORITIES[self.kind]

    async def _fetch(self, query: str) -> List[SearchResult]:
        raise NotImplementedError

    async def fetch(self, query: str) -> List[SearchResult]:
        breaker = self.health.breaker(self.name) if self.health else None
        if breaker is not None and not breaker.allow():
            logger.debug(f"Source {self.name} skipped, circuit open")
            return []

        start = time.time()
        try:
            results = await asyncio.wait_for(self._fetch(query), timeout=self.timeout)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError as e:
            logger.warning(f"Source {self.name} timed out after {self.timeout:.1f}s")
            self._record_failure(e, query)
            return []
        except Exception as e:
            logger.warning(f"Source {self.name} failed: {e}")
            self._record_failure(e, query)
            return []
        finally:
            self.last_latency_ms = (time.time() - start) * 1000

        if self.health is not None:
            self.health.record_success(self.name)
        return results

    def _record_failure(self, error: BaseException, query: str) -> None:
        if self.health is not None:
            self.health.record_failure(self.name, error, query_length=len(query))
