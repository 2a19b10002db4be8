"""Search orchestrator: fan out to every enabled source, race a deadline, merge.

Sources run concurrently. Whatever has finished when the deadline passes
is merged; the rest count as empty and are left to finish in the
background so their caches are warm for the next keystroke.
"""

import asyncio
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field, fields as dataclass_fields
from datetime import datetime
from typing import Any, Deque, Dict, List, Mapping, Optional, Set

from loguru import logger

from .config import Config
from .models import SearchResult
from .ranking import Ranker
from .sources.base import SourceProvider
from .sources.commands import match_commands


@dataclass
class SearchFilters:
    """Per-request source toggles. Every source is on unless switched off."""
    apps: bool = True
    tabs: bool = True
    files: bool = True
    commands: bool = True
    shortcuts: bool = True
    plugins: bool = True

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "SearchFilters":
        if not data:
            return cls()
        known = {f.name for f in dataclass_fields(cls)}
        return cls(**{k: bool(v) for k, v in data.items() if k in known})

    def to_dict(self) -> Dict[str, bool]:
        return {f.name: getattr(self, f.name) for f in dataclass_fields(self)}


@dataclass
class SearchOutcome:
    """Results of one search plus how they were produced."""
    results: List[SearchResult]
    latency_ms: float = 0.0
    timed_out: List[str] = field(default_factory=list)
    sources: Dict[str, int] = field(default_factory=dict)
    short_circuit: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'results': [r.to_dict() for r in self.results],
            'latency_ms': round(self.latency_ms, 2),
            'timed_out': self.timed_out,
            'sources': self.sources,
        }


# Source name -> (filter attribute, settings flag)
SOURCE_SWITCHES = {
    'apps': ('apps', 'search_apps'),
    'tabs': ('tabs', 'search_tabs'),
    'files': ('files', 'search_files'),
    'shortcuts': ('shortcuts', 'search_shortcuts'),
    'plugins': ('plugins', 'search_plugins'),
}


class SearchOrchestrator:
    """Runs sources in parallel against a per-request deadline."""

    def __init__(self,
                 config: Config,
                 sources: List[SourceProvider],
                 ranker: Optional[Ranker] = None):
        """
        Initialize search orchestrator.

        Args:
            config: Daemon configuration (settings flags, timeouts, ranking)
            sources: Fuzzy-scored sources; commands are matched in-memory
            ranker: Merge and ordering policy
        """
        self.config = config
        self.sources = {source.name: source for source in sources}
        self.ranker = ranker or Ranker(config.ranking, config.search.web_bangs)

        # Late sources keep running here after the deadline
        self._background: Set[asyncio.Task] = set()

        self.metrics: Deque[Dict[str, Any]] = deque(maxlen=1000)
        self.source_metrics: Dict[str, Deque[Dict[str, float]]] = defaultdict(lambda: deque(maxlen=1000))

    def enabled_sources(self, filters: SearchFilters) -> List[SourceProvider]:
        enabled = []
        for name, source in self.sources.items():
            switch = SOURCE_SWITCHES.get(name)
            if switch is not None:
                filter_attr, setting = switch
                if not getattr(filters, filter_attr) or not getattr(self.config.search, setting):
                    continue
            enabled.append(source)
        return enabled

    def commands_enabled(self, filters: SearchFilters) -> bool:
        return filters.commands and self.config.search.search_commands

    async def search(self, query: str, filters: Optional[SearchFilters] = None) -> SearchOutcome:
        """
        Execute a search.

        Args:
            query: Raw query text
            filters: Per-request source toggles

        Returns:
            Outcome with at most ``max_results`` results
        """
        filters = filters or SearchFilters()
        start_time = time.time()

        trimmed = (query or '').strip()
        if len(trimmed) < self.config.ranking.min_query_length:
            return SearchOutcome(results=[])

        shortcut = self.ranker.short_circuit(trimmed)
        if shortcut is not None:
            outcome = SearchOutcome(
                results=[shortcut],
                latency_ms=(time.time() - start_time) * 1000,
                short_circuit=True
            )
            self._track_metrics(trimmed, outcome)
            return outcome

        sources = self.enabled_sources(filters)
        results_by_source, timed_out = await self._gather(sources, trimmed)

        commands = match_commands(trimmed, self.config.ranking.min_query_length) \
            if self.commands_enabled(filters) else []

        candidates: List[SearchResult] = []
        for name in self.sources:
            candidates.extend(results_by_source.get(name, []))

        merged = self.ranker.merge(trimmed, candidates, commands)

        outcome = SearchOutcome(
            results=merged,
            latency_ms=(time.time() - start_time) * 1000,
            timed_out=timed_out,
            sources={name: len(items) for name, items in results_by_source.items()}
        )
        if commands:
            outcome.sources['commands'] = len(commands)

        self._track_metrics(trimmed, outcome)
        logger.debug(
            f"Search '{trimmed}': {len(merged)} results in {outcome.latency_ms:.0f}ms"
            + (f", timed out: {', '.join(timed_out)}" if timed_out else "")
        )
        return outcome

    async def _gather(self,
                      sources: List[SourceProvider],
                      query: str) -> tuple:
        """Start every source, wait until all finish or the deadline passes."""
        if not sources:
            return {}, []

        tasks: Dict[asyncio.Task, str] = {}
        for source in sources:
            task = asyncio.ensure_future(source.fetch(query))
            tasks[task] = source.name

        try:
            done, pending = await asyncio.wait(
                list(tasks),
                timeout=self.config.timeouts.search
            )
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        results: Dict[str, List[SearchResult]] = {}
        for task in done:
            name = tasks[task]
            try:
                results[name] = task.result()
            except Exception as e:
                logger.error(f"Source {name} raised unexpectedly: {e}")
                results[name] = []

        timed_out = sorted(tasks[task] for task in pending)
        for task in pending:
            logger.warning(f"Source {tasks[task]} missed the search deadline, continuing in background")
            self._background.add(task)
            task.add_done_callback(self._background.discard)

        return results, timed_out

    def _track_metrics(self, query: str, outcome: SearchOutcome) -> None:
        """Track performance metrics."""
        self.metrics.append({
            'timestamp': datetime.now(),
            'query_length': len(query),
            'results_found': len(outcome.results),
            'total_latency': outcome.latency_ms,
            'short_circuit': outcome.short_circuit,
            'timed_out': list(outcome.timed_out),
        })

        for name, count in outcome.sources.items():
            source = self.sources.get(name)
            self.source_metrics[name].append({
                'latency_ms': source.last_latency_ms if source else 0.0,
                'results': count,
            })

    @property
    def background_tasks(self) -> int:
        return len(self._background)

    async def drain(self) -> None:
        """Wait for sources still running past their deadline."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def get_statistics(self) -> Dict[str, Any]:
        """Get search orchestrator statistics."""
        searches = list(self.metrics)
        stats = {
            'total_searches': len(searches),
            'short_circuits': sum(1 for m in searches if m['short_circuit']),
            'timeouts': sum(1 for m in searches if m['timed_out']),
            'average_latency_ms': 0.0,
            'background_tasks': self.background_tasks,
            'sources': {},
        }

        if searches:
            stats['average_latency_ms'] = sum(m['total_latency'] for m in searches) / len(searches)

        for name, samples in self.source_metrics.items():
            samples = list(samples)
            if not samples:
                continue
            stats['sources'][name] = {
                'calls': len(samples),
                'average_latency_ms': sum(s['latency_ms'] for s in samples) / len(samples),
                'average_results': sum(s['results'] for s in samples) / len(samples),
            }

        return stats
