"""Installed applications source."""

import asyncio
import time
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Callable, List, Optional

from loguru import logger

from ..automation import run_process
from ..models import ApplicationResult, PRIORITIES, ResultKind, SearchResult
from .base import SourceProvider


APPS_QUERY = 'kMDItemKind == "Application"'

# Always listed, even from CoreServices
SYSTEM_APPS_TO_INCLUDE = (
    'Finder.app', 'System Preferences.app', 'System Settings.app',
    'Activity Monitor.app', 'Terminal.app', 'Console.app', 'Disk Utility.app',
    'Safari.app', 'Mail.app', 'Calendar.app', 'Contacts.app', 'Notes.app',
    'Reminders.app', 'Photos.app', 'Music.app', 'TV.app', 'Podcasts.app',
    'FaceTime.app', 'Messages.app', 'Maps.app', 'Weather.app', 'Stocks.app',
    'Home.app', 'News.app', 'Voice Memos.app', 'Calculator.app', 'Preview.app',
    'TextEdit.app', 'QuickTime Player.app', 'Image Capture.app',
    'ColorSync Utility.app', 'Digital Color Meter.app', 'Grapher.app',
    'Keychain Access.app', 'Script Editor.app', 'System Information.app',
    'AirPort Utility.app', 'Bluetooth File Exchange.app',
    'Migration Assistant.app', 'Boot Camp Assistant.app',
)

EXCLUDE_KEYWORDS = (
    'helper', 'service', 'daemon', 'agent', 'plugin', 'updater',
    'installer', 'uninstaller', 'crashreporter', 'renderer', 'gpu process',
)

EXCLUDE_PATH_PATTERNS = (
    '/System/Library/CoreServices/',
    '/System/Library/PrivateFrameworks/',
    '/System/Library/Services/',
    '/System/Library/Assistant/',
    '/usr/libexec/',
    '/Library/Application Support/',
    '/Library/Printers/',
    '/Library/QuickLook/',
    '/Library/Spotlight/',
    '/Library/Caches/',
    '/Library/Frameworks/',
)

INCLUDE_PATH_PATTERNS = ('/Applications/', '/System/Applications/', '/Users/')


@dataclass(frozen=True)
class InstalledApp:
    name: str
    path: str


def is_runnable_app(app_path: str) -> bool:
    """Whether a bundle found by the indexer is something a user would launch."""
    for app in SYSTEM_APPS_TO_INCLUDE:
        if f"/{app}" in app_path:
            return True

    name = PurePosixPath(app_path).name
    if name.endswith('.app'):
        name = name[:-4]
    lowered = name.lower()
    for keyword in EXCLUDE_KEYWORDS:
        if keyword in lowered:
            logger.debug(f"Filtered out app '{name}' (matched: {keyword})")
            return False

    # Bundles nested inside another app (helpers, frameworks)
    if '.app/Contents/' in app_path:
        return False

    if any(pattern in app_path for pattern in EXCLUDE_PATH_PATTERNS):
        return False

    return any(pattern in app_path for pattern in INCLUDE_PATH_PATTERNS)


class ApplicationCatalog:
    """
    Process-wide list of installed applications with a fixed TTL.

    A failed refresh serves the stale list when there is one.
    """

    def __init__(self,
                 runner: Callable = run_process,
                 ttl: float = 600.0,
                 timeout: float = 1.0,
                 clock: Callable[[], float] = time.monotonic):
        self._runner = runner
        self.ttl = ttl
        self.timeout = timeout
        self._clock = clock

        self._apps: Optional[List[InstalledApp]] = None
        self._loaded_at = 0.0
        self._in_flight: Optional[asyncio.Task] = None

    @property
    def cached(self) -> Optional[List[InstalledApp]]:
        return self._apps

    def is_fresh(self) -> bool:
        return self._apps is not None and self._clock() - self._loaded_at < self.ttl

    async def get(self) -> List[InstalledApp]:
        if self.is_fresh():
            return list(self._apps)

        if self._in_flight is None or self._in_flight.done():
            self._in_flight = asyncio.ensure_future(self._load())
        return list(await asyncio.shield(self._in_flight))

    async def _load(self) -> List[InstalledApp]:
        try:
            output = await self._runner(["mdfind", APPS_QUERY], timeout=self.timeout)
        except Exception as e:
            logger.warning(f"Application query failed: {e}")
            return list(self._apps or [])

        paths = [line.strip() for line in output.stdout.split('\n') if line.strip()]
        runnable = [p for p in paths if is_runnable_app(p)]

        apps = []
        seen = set()
        for path in runnable:
            if path in seen:
                continue
            seen.add(path)
            name = PurePosixPath(path).name
            if name.endswith('.app'):
                name = name[:-4]
            apps.append(InstalledApp(name=name, path=path))

        self._apps = apps
        self._loaded_at = self._clock()
        logger.info(
            f"Cached {len(apps)} applications "
            f"(filtered out {len(paths) - len(runnable)} non-runnable)"
        )
        return list(apps)

    def invalidate(self) -> None:
        self._loaded_at = 0.0
        logger.info("Application catalog invalidated")


class ApplicationsSource(SourceProvider):
    name = "apps"
    kind = ResultKind.APPLICATION

    def __init__(self, catalog: ApplicationCatalog, **kwargs):
        super().__init__(**kwargs)
        self.catalog = catalog

    async def _fetch(self, query: str) -> List[SearchResult]:
        apps = await self.catalog.get()
        return [
            ApplicationResult(
                kind=ResultKind.APPLICATION,
                display_name=app.name,
                priority=PRIORITIES[ResultKind.APPLICATION],
                path=app.path
            )
            for app in apps
        ]
