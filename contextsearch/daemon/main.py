"""Main daemon process for ContextSearch."""

import asyncio
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Set

import psutil
import yaml
from aiohttp import web
from loguru import logger

from .api import create_api_app
from .automation import run_process
from .config import Config
from .coordinator import RequestCoordinator
from .discovery import AutomationDiscoverer, DiscoveryCache
from .health import HealthRegistry
from .ranking import Ranker
from .search import SearchOrchestrator
from .sources.apps import ApplicationCatalog, ApplicationsSource
from .sources.automation import (
    LazyService,
    PluginService,
    PluginsSource,
    ShortcutsService,
    ShortcutsSource,
)
from .sources.files import FileSearchSource
from .sources.tabs import TabsSource


VERSION = "0.1.0"


class SearchDaemon:
    """Main daemon wiring caches, sources and the search pipeline."""

    def __init__(self,
                 config: Config,
                 runner=run_process,
                 discover=None):
        """
        Args:
            config: Daemon configuration
            runner: Process runner shared by every source
            discover: Live window discovery coroutine (defaults to automation scripts)
        """
        self.config = config
        self.start_time = datetime.utcnow()

        self.health = HealthRegistry(
            failure_threshold=config.health.failure_threshold,
            recovery_timeout=config.health.recovery_timeout
        )

        self.app_catalog = ApplicationCatalog(
            runner=runner,
            ttl=config.cache.apps_ttl,
            timeout=config.timeouts.apps_query
        )
        self.discovery_cache = DiscoveryCache(
            discover or AutomationDiscoverer(
                enumeration_timeout=config.timeouts.window_discovery,
                tab_timeout=config.timeouts.tab_script
            ),
            category_ttls=config.cache.category_ttls
        )

        self.shortcuts = LazyService(
            lambda: ShortcutsService(
                runner=runner,
                ttl=config.cache.shortcuts_ttl,
                timeout=config.timeouts.shortcuts
            ),
            name="Shortcuts"
        )
        self.plugins = LazyService(
            lambda: PluginService(config.resolved_plugins_dir, ttl=config.cache.plugins_ttl),
            name="Plugins"
        )

        source_options = {'timeout': config.timeouts.provider, 'health': self.health}
        sources = [
            ApplicationsSource(self.app_catalog, **source_options),
            TabsSource(
                self.discovery_cache,
                selected_apps=lambda: self.config.search.selected_apps,
                **source_options
            ),
            FileSearchSource(
                runner=runner,
                exclusions=lambda: self.config.search.file_exclusions,
                query_timeout=config.timeouts.file_query,
                result_cap=config.files.result_cap,
                max_output_bytes=config.files.max_output_bytes,
                max_query_length=config.files.max_query_length,
                **source_options
            ),
            ShortcutsSource(self.shortcuts, **source_options),
            PluginsSource(self.plugins, **source_options),
        ]

        self.ranker = Ranker(config.ranking, config.search.web_bangs)
        self.orchestrator = SearchOrchestrator(config, sources, self.ranker)
        self.coordinator = RequestCoordinator(self.orchestrator)

        self.stats = {"search_count": 0}

        self._prewarm_tasks: Set[asyncio.Task] = set()
        self._shutdown: Optional[asyncio.Event] = None

        # HTTP API
        self.api_app = None
        self.api_runner = None
        self.api_site = None

    async def start(self, serve_api: bool = True) -> None:
        """Start all daemon services."""
        logger.info("Starting ContextSearch daemon...")
        self._shutdown = asyncio.Event()

        self._prewarm()

        if serve_api:
            await self._start_api()

        logger.info("ContextSearch daemon started successfully")

    def _prewarm(self) -> None:
        """Fill the application and window caches before the first keystroke."""
        for coro in (self.app_catalog.get(),
                     self.discovery_cache.get(self.config.search.selected_apps)):
            task = asyncio.ensure_future(coro)
            self._prewarm_tasks.add(task)
            task.add_done_callback(self._prewarm_tasks.discard)

    async def stop(self) -> None:
        """Stop all daemon services."""
        logger.info("Stopping ContextSearch daemon...")

        for task in list(self._prewarm_tasks):
            task.cancel()

        if self.api_site:
            await self.api_site.stop()
            self.api_site = None
        if self.api_runner:
            await self.api_runner.cleanup()
            self.api_runner = None

        logger.info("ContextSearch daemon stopped")

    async def _start_api(self) -> None:
        """Start the HTTP API server."""
        self.api_app = create_api_app(self)
        self.api_runner = web.AppRunner(self.api_app)
        await self.api_runner.setup()

        host, port = self.config.api.host, self.config.api.port
        self.api_site = web.TCPSite(self.api_runner, host, port)
        await self.api_site.start()

        logger.info(f"API server started on http://{host}:{port}")

    def request_shutdown(self) -> None:
        if self._shutdown is not None:
            self._shutdown.set()

    async def wait_for_shutdown(self) -> None:
        if self._shutdown is None:
            self._shutdown = asyncio.Event()
        await self._shutdown.wait()

    def invalidate(self, target: str) -> None:
        if target in ('apps', 'all'):
            self.app_catalog.invalidate()
        if target in ('windows', 'all'):
            self.discovery_cache.invalidate()

    def get_diagnostics(self) -> dict:
        return {
            "permissions": {"automation": self.discovery_cache.permission_status()},
            "health": self.health.summary(),
            "caches": {
                "windows": self.discovery_cache.stats(),
                "apps": {
                    "count": len(self.app_catalog.cached or []),
                    "fresh": self.app_catalog.is_fresh(),
                },
            },
            "services": {
                "shortcuts": self.shortcuts.available,
                "plugins": self.plugins.available,
            },
            "requests": self.coordinator.stats(),
            "search": self.orchestrator.get_statistics(),
        }

    def get_status(self) -> dict:
        """Get daemon status and statistics."""
        process = psutil.Process()
        uptime = (datetime.utcnow() - self.start_time).total_seconds()

        return {
            "status": "running",
            "version": VERSION,
            "uptime": f"{uptime:.0f}s",
            "stats": {
                "search_count": self.stats["search_count"],
                "memory_mb": process.memory_info().rss / 1024 / 1024,
                "cpu_percent": process.cpu_percent()
            },
            "config": {
                "api": f"{self.config.api.host}:{self.config.api.port}",
                "plugins_dir": str(self.config.resolved_plugins_dir),
                "selected_apps": self.config.search.selected_apps,
            }
        }


def setup_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=level
    )

    log_dir = Path.home() / ".local" / "share" / "contextsearch" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_dir / "daemon.log",
        rotation="1 day",
        retention="7 days",
        level="DEBUG"
    )


async def main(config_path: Optional[str] = None, log_level: str = "INFO"):
    """Main entry point for the daemon."""
    setup_logging(log_level)

    try:
        config = Config.load(Path(config_path) if config_path else None)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    daemon = SearchDaemon(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, daemon.request_shutdown)

    try:
        await daemon.start()
        await daemon.wait_for_shutdown()
    except Exception as e:
        logger.exception(f"Daemon error: {e}")
    finally:
        await daemon.stop()


def run():
    """Console entry point: optional config path as the only argument."""
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))


if __name__ == "__main__":
    run()
