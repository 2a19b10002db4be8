"""User Shortcuts and AppleScript plugins.

Both services are optional: they are created on first use, and if that
fails the source quietly falls back to a stub that never returns anything.
"""

import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional

from loguru import logger

from ..automation import ProcessFailed, run_process
from ..models import AutomationResult, PRIORITIES, ResultKind, SearchResult
from .base import SourceProvider


_METADATA_LINE = re.compile(r'^--\s*@(\w+):\s*(.+)$')
_METADATA_KEYS = ('name', 'description', 'icon')


@dataclass
class PluginInfo:
    file_name: str
    name: str
    description: str
    path: str
    icon: Optional[str] = None


def parse_plugin_metadata(content: str) -> dict:
    """Read ``-- @key: value`` header lines (name, description, icon)."""
    metadata = {key: None for key in _METADATA_KEYS}
    for line in content.split('\n'):
        match = _METADATA_LINE.match(line.strip())
        if match and match.group(1) in metadata:
            metadata[match.group(1)] = match.group(2).strip()
    return metadata


class ShortcutsService:
    """Lists the user's Shortcuts via the ``shortcuts`` CLI."""

    def __init__(self,
                 runner: Callable = run_process,
                 ttl: float = 60.0,
                 timeout: float = 5.0,
                 clock: Callable[[], float] = time.monotonic):
        self._runner = runner
        self.ttl = ttl
        self.timeout = timeout
        self._clock = clock
        self._cached: Optional[List[str]] = None
        self._fetched_at = 0.0

    async def list(self) -> List[str]:
        if self._cached is not None and self._clock() - self._fetched_at < self.ttl:
            return list(self._cached)

        try:
            output = await self._runner(["shortcuts", "list"], timeout=self.timeout)
        except ProcessFailed as e:
            if e.returncode == 127:
                logger.warning("Shortcuts CLI not found (requires macOS 12+)")
                self._cached = []
                self._fetched_at = self._clock()
            else:
                logger.error(f"Failed to list shortcuts: {e}")
            return []

        shortcuts = [line.strip() for line in output.stdout.split('\n') if line.strip()]
        self._cached = shortcuts
        self._fetched_at = self._clock()
        logger.info(f"Found {len(shortcuts)} shortcuts")
        return list(shortcuts)


class PluginService:
    """Discovers ``.applescript`` plugins in the plugins directory."""

    def __init__(self,
                 plugins_dir: Path,
                 ttl: float = 5.0,
                 clock: Callable[[], float] = time.monotonic):
        self.plugins_dir = Path(plugins_dir)
        self.ttl = ttl
        self._clock = clock
        self._cached: Optional[List[PluginInfo]] = None
        self._fetched_at = 0.0

    def ensure_dir(self) -> None:
        if not self.plugins_dir.exists():
            try:
                self.plugins_dir.mkdir(parents=True, exist_ok=True)
                logger.info(f"Created plugins directory at {self.plugins_dir}")
            except OSError as e:
                logger.error(f"Failed to create plugins directory: {e}")

    async def list(self) -> List[PluginInfo]:
        if self._cached is not None and self._clock() - self._fetched_at < self.ttl:
            return list(self._cached)

        self.ensure_dir()
        try:
            files = sorted(self.plugins_dir.glob("*.applescript"))
        except OSError as e:
            logger.error(f"Failed to list plugins: {e}")
            return []

        plugins = []
        for file_path in files:
            try:
                content = file_path.read_text(encoding='utf-8')
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Failed to load plugin {file_path.name}: {e}")
                continue

            meta = parse_plugin_metadata(content)
            plugins.append(PluginInfo(
                file_name=file_path.name,
                name=meta['name'] or file_path.stem,
                description=meta['description'] or "Custom AppleScript Plugin",
                path=str(file_path),
                icon=meta['icon']
            ))

        self._cached = plugins
        self._fetched_at = self._clock()
        logger.debug(f"Loaded {len(plugins)} plugins")
        return list(plugins)


class NullAutomationService:
    """Stand-in for a service that could not be created."""

    async def list(self) -> List[Any]:
        return []


class LazyService:
    """Creates the wrapped service on first use; falls back to a stub if that fails."""

    def __init__(self, factory: Callable[[], Any], name: str, stub: Any = None):
        self._factory = factory
        self.name = name
        self._stub = stub if stub is not None else NullAutomationService()
        self._service: Any = None
        self.available: Optional[bool] = None

    def resolve(self) -> Any:
        if self._service is None:
            try:
                self._service = self._factory()
                self.available = True
            except Exception as e:
                logger.warning(f"{self.name} service unavailable, using stub: {e}")
                self._service = self._stub
                self.available = False
        return self._service

    async def list(self) -> List[Any]:
        return await self.resolve().list()


class ShortcutsSource(SourceProvider):
    name = "shortcuts"
    kind = ResultKind.SHORTCUT

    def __init__(self, service: LazyService, **kwargs):
        super().__init__(**kwargs)
        self.service = service

    async def _fetch(self, query: str) -> List[SearchResult]:
        names = await self.service.list()
        return [
            AutomationResult(
                kind=ResultKind.SHORTCUT,
                display_name=name,
                priority=PRIORITIES[ResultKind.SHORTCUT],
                icon="⚡",
                invocation_name=name,
                description="Run Shortcut"
            )
            for name in names
        ]


class PluginsSource(SourceProvider):
    name = "plugins"
    kind = ResultKind.PLUGIN

    def __init__(self, service: LazyService, **kwargs):
        super().__init__(**kwargs)
        self.service = service

    async def _fetch(self, query: str) -> List[SearchResult]:
        plugins = await self.service.list()
        return [
            AutomationResult(
                kind=ResultKind.PLUGIN,
                display_name=plugin.name,
                priority=PRIORITIES[ResultKind.PLUGIN],
                icon=plugin.icon or "🧩",
                invocation_name=plugin.file_name,
                description=plugin.description,
                path=plugin.path
            )
            for plugin in plugins
        ]
