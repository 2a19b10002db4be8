"""Per-caller request sequencing.

A fast typist issues many searches; a slow response to an early keystroke
must never replace the response to a later one. Each caller (one per UI
surface) has a high-water mark of accepted request ordinals: older
requests are rejected before any work happens, and a request whose results
arrive after a newer one was accepted is discarded.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, List, Optional

from loguru import logger

from .models import SearchResult
from .search import SearchFilters, SearchOrchestrator


def _is_numeric(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


class RequestSequencer:
    """Last accepted request ordinal per caller."""

    def __init__(self):
        self._latest: Dict[Hashable, float] = {}

    def accept(self, caller_id: Hashable, request_id: Any) -> bool:
        """
        Record a request if it is not older than the last accepted one.

        Non-numeric ids are always accepted and never recorded.
        """
        if not _is_numeric(request_id):
            return True

        last = self._latest.get(caller_id)
        if last is not None and request_id < last:
            return False

        self._latest[caller_id] = request_id
        return True

    def is_current(self, caller_id: Hashable, request_id: Any) -> bool:
        """Whether no newer request has been accepted for this caller."""
        if not _is_numeric(request_id):
            return True
        last = self._latest.get(caller_id)
        return last is None or request_id >= last

    def last_accepted(self, caller_id: Hashable) -> Optional[float]:
        return self._latest.get(caller_id)

    def __len__(self) -> int:
        return len(self._latest)


@dataclass
class SearchResponse:
    results: List[SearchResult] = field(default_factory=list)
    accepted: bool = True
    superseded: bool = False
    request_id: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'results': [r.to_dict() for r in self.results],
            'accepted': self.accepted,
            'superseded': self.superseded,
            'requestId': self.request_id,
        }


class RequestCoordinator:
    """Fences stale requests in front of the orchestrator."""

    def __init__(self,
                 orchestrator: SearchOrchestrator,
                 sequencer: Optional[RequestSequencer] = None):
        self.orchestrator = orchestrator
        self.sequencer = sequencer or RequestSequencer()
        self.rejected = 0
        self.superseded = 0

    async def submit(self,
                     caller_id: Hashable,
                     request_id: Any,
                     query: str,
                     filters: Optional[SearchFilters] = None) -> SearchResponse:
        if not self.sequencer.accept(caller_id, request_id):
            self.rejected += 1
            logger.debug(
                f"Rejected stale request {request_id} from {caller_id} "
                f"(latest {self.sequencer.last_accepted(caller_id)})"
            )
            return SearchResponse(accepted=False, request_id=request_id)

        outcome = await self.orchestrator.search(query, filters)

        if not self.sequencer.is_current(caller_id, request_id):
            self.superseded += 1
            logger.debug(f"Discarding superseded request {request_id} from {caller_id}")
            return SearchResponse(superseded=True, request_id=request_id)

        return SearchResponse(results=outcome.results, request_id=request_id)

    async def search(self,
                     caller_id: Hashable,
                     request_id: Any,
                     query: str,
                     filters: Optional[SearchFilters] = None) -> List[SearchResult]:
        response = await self.submit(caller_id, request_id, query, filters)
        return response.results

    def stats(self) -> Dict[str, int]:
        return {
            'callers': len(self.sequencer),
            'rejected': self.rejected,
            'superseded': self.superseded,
        }
