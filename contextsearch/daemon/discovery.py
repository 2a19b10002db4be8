"""Live window/tab discovery and its per-selection TTL cache.

Discovery shells out to the automation layer and is by far the slowest
thing a keystroke can trigger, so results are cached per app selection
with a freshness window chosen by the categories of the selected apps.
Concurrent lookups for the same selection share one in-flight fetch.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from loguru import logger

from .automation import (
    DEDICATED_TAB_APPS,
    PermissionDenied,
    parse_discovery_records,
    run_osascript,
    tab_script_for,
    window_enumeration_script,
)
from .capabilities import (
    build_selection_key,
    canonical_app_name,
    category_ttl,
    get_capability,
    is_system_process,
)
from .models import RawWindow


DiscoverFn = Callable[[List[str]], Awaitable[List[RawWindow]]]


@dataclass
class DiscoveryCacheEntry:
    items: List[RawWindow]
    captured_at: float
    selection_key: str


class DiscoveryCache:
    """
    TTL cache in front of live window discovery.

    Entry lifecycle per selection key: empty -> populated -> stale ->
    populated again on the next lookup. A failed refresh keeps serving the
    previous entry (or nothing) and records a sticky permission flag when
    the OS refused automation access.
    """

    def __init__(self,
                 discover: DiscoverFn,
                 category_ttls: Optional[Dict[str, float]] = None,
                 clock: Callable[[], float] = time.monotonic):
        self._discover = discover
        self._ttls = dict(category_ttls or {'universal': 15.0})
        self._clock = clock

        self._entries: Dict[str, DiscoveryCacheEntry] = {}
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._permission_error: Optional[str] = None

        self.hits = 0
        self.misses = 0
        self.coalesced = 0
        self.failures = 0

    def ttl_for(self, selected_apps: Optional[Sequence[str]] = None) -> float:
        return category_ttl(selected_apps, self._ttls)

    def _fresh_entry(self, key: str, ttl: float) -> Optional[DiscoveryCacheEntry]:
        entry = self._entries.get(key)
        if entry is None or not entry.items or entry.selection_key != key:
            return None
        if self._clock() - entry.captured_at >= ttl:
            return None
        return entry

    async def get(self, selected_apps: Optional[Sequence[str]] = None) -> List[RawWindow]:
        """
        Windows and tabs for an app selection.

        Args:
            selected_apps: App-name allow-list; empty or None means all apps

        Returns:
            Cached items when fresh, else the result of a (possibly shared)
            live discovery. Never raises for discovery failures.
        """
        selection = [a for a in (selected_apps or []) if a and a.strip()]
        key = build_selection_key(selection)

        entry = self._fresh_entry(key, self.ttl_for(selection))
        if entry is not None:
            self.hits += 1
            logger.debug(f"Discovery cache hit for '{key}' ({len(entry.items)} items)")
            return list(entry.items)

        task = self._in_flight.get(key)
        if task is None:
            self.misses += 1
            task = asyncio.ensure_future(self._refresh(key, selection))
            self._in_flight[key] = task
            task.add_done_callback(lambda t, key=key: self._forget(key, t))
        else:
            self.coalesced += 1
            logger.debug(f"Joining in-flight discovery for '{key}'")

        return list(await asyncio.shield(task))

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def _refresh(self, key: str, selection: List[str]) -> List[RawWindow]:
        previous = self._entries.get(key)
        fallback = list(previous.items) if previous else []
        start = time.time()

        try:
            raw = await self._discover(selection)
        except PermissionDenied as e:
            self.failures += 1
            self._permission_error = str(e) or "automation permission denied"
            logger.warning(f"Window discovery not permitted: {self._permission_error}")
            return fallback
        except Exception as e:
            self.failures += 1
            logger.warning(f"Window discovery failed for '{key}': {e}")
            return fallback

        if self._permission_error is not None:
            logger.info("Window discovery permission restored")
        self._permission_error = None

        items = self._sanitize(raw)
        self._entries[key] = DiscoveryCacheEntry(
            items=items,
            captured_at=self._clock(),
            selection_key=key
        )
        logger.info(
            f"Discovered {len(items)} windows/tabs for '{key}' "
            f"in {(time.time() - start) * 1000:.0f}ms"
        )
        return list(items)

    @staticmethod
    def _sanitize(raw: List[RawWindow]) -> List[RawWindow]:
        items = []
        for window in raw:
            title = (window.title or '').strip()
            if not title or not window.owner_app or is_system_process(window.owner_app):
                continue
            window.title = title
            window.capability = get_capability(window.owner_app)
            items.append(window)
        return items

    def invalidate(self, selected_apps: Optional[Sequence[str]] = None) -> None:
        """Drop one selection's entry, or every entry when called without one."""
        if selected_apps is None:
            self._entries.clear()
            logger.info("Discovery cache cleared")
        else:
            self._entries.pop(build_selection_key(selected_apps), None)

    def permission_status(self) -> Dict[str, Optional[object]]:
        return {
            'granted': self._permission_error is None,
            'error': self._permission_error,
        }

    def stats(self) -> Dict[str, int]:
        return {
            'entries': len(self._entries),
            'in_flight': len(self._in_flight),
            'hits': self.hits,
            'misses': self.misses,
            'coalesced': self.coalesced,
            'failures': self.failures,
        }


class AutomationDiscoverer:
    """Enumerates windows via System Events and tabs via per-app scripts."""

    def __init__(self,
                 runner: Callable[..., Awaitable[str]] = run_osascript,
                 enumeration_timeout: float = 5.0,
                 tab_timeout: float = 15.0):
        self._runner = runner
        self.enumeration_timeout = enumeration_timeout
        self.tab_timeout = tab_timeout

    @staticmethod
    def tab_apps(selected_apps: Sequence[str]) -> List[str]:
        """Apps with a dedicated tab script that the selection covers."""
        if not selected_apps:
            return list(DEDICATED_TAB_APPS)
        apps = []
        for name in selected_apps:
            canonical = canonical_app_name(name)
            for dedicated in DEDICATED_TAB_APPS:
                if dedicated.lower() == canonical.lower() and dedicated not in apps:
                    apps.append(dedicated)
        return apps

    async def _enumerate_windows(self) -> List[RawWindow]:
        output = await self._runner(window_enumeration_script(), timeout=self.enumeration_timeout)
        return parse_discovery_records(output, kind="window")

    async def _fetch_tabs(self, app_name: str) -> Optional[List[RawWindow]]:
        try:
            output = await self._runner(tab_script_for(app_name), timeout=self.tab_timeout)
        except Exception as e:
            logger.debug(f"Tab listing for {app_name} unavailable: {e}")
            return None
        return parse_discovery_records(output, default_owner=app_name, kind="tab")

    async def __call__(self, selected_apps: List[str]) -> List[RawWindow]:
        tab_apps = self.tab_apps(selected_apps)
        results = await asyncio.gather(
            self._enumerate_windows(),
            *[self._fetch_tabs(app) for app in tab_apps],
            return_exceptions=True
        )

        windows = results[0]
        if isinstance(windows, BaseException):
            raise windows

        tabs: List[RawWindow] = []
        covered = set()
        for app_name, records in zip(tab_apps, results[1:]):
            if isinstance(records, BaseException) or records is None:
                continue
            covered.add(app_name.lower())
            tabs.extend(records)

        merged: List[RawWindow] = []
        seen = set()
        for item in tabs + [w for w in windows if w.owner_app.lower() not in covered]:
            if is_system_process(item.owner_app) or not item.title:
                continue
            if item.dedup_key in seen:
                continue
            seen.add(item.dedup_key)
            item.capability = get_capability(item.owner_app)
            merged.append(item)

        return merged
