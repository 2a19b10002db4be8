"""Tests for the search orchestrator."""

import asyncio

import pytest

from contextsearch.daemon.config import Config, TimeoutConfig
from contextsearch.daemon.models import (
    ApplicationResult,
    FileResult,
    PRIORITIES,
    ResultKind,
    WindowResult,
)
from contextsearch.daemon.search import SearchFilters, SearchOrchestrator
from contextsearch.daemon.sources.base import SourceProvider


class StaticSource(SourceProvider):
    """Returns a fixed list, optionally after a delay or with an error."""

    def __init__(self, name, kind, results, delay=0.0, error=None, **kwargs):
        super().__init__(**kwargs)
        self.name = name
        self.kind = kind
        self.results = results
        self.delay = delay
        self.error = error
        self.calls = 0

    async def _fetch(self, query):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.results)


def apps_source(names=("Safari", "Notes"), **kwargs):
    return StaticSource("apps", ResultKind.APPLICATION, [
        ApplicationResult(kind=ResultKind.APPLICATION, display_name=n,
                          priority=PRIORITIES[ResultKind.APPLICATION], path=f"/Applications/{n}.app")
        for n in names
    ], **kwargs)


def tabs_source(**kwargs):
    return StaticSource("tabs", ResultKind.TAB, [
        WindowResult(kind=ResultKind.TAB, display_name="Safari Tips", priority=2,
                     url="https://support.apple.com", owner_app="Safari"),
    ], **kwargs)


def files_source(**kwargs):
    return StaticSource("files", ResultKind.FILE, [
        FileResult(kind=ResultKind.FILE, display_name="safari-notes.txt", priority=1,
                   path="/Users/me/safari-notes.txt"),
    ], **kwargs)


@pytest.fixture
def config(tmp_path):
    return Config(plugins_dir=tmp_path / "plugins", timeouts=TimeoutConfig(search=0.1))


class TestSearchOrchestrator:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "a", "  a  "])
    async def test_short_queries_return_nothing(self, config, query):
        apps = apps_source()
        orchestrator = SearchOrchestrator(config, [apps])

        outcome = await orchestrator.search(query)

        assert outcome.results == []
        assert apps.calls == 0

    @pytest.mark.asyncio
    async def test_merges_all_sources_with_tie_bands(self, config):
        orchestrator = SearchOrchestrator(config, [files_source(), tabs_source(), apps_source()])

        outcome = await orchestrator.search("safari")

        assert [r.kind for r in outcome.results] == [
            ResultKind.APPLICATION,
            ResultKind.TAB,
            ResultKind.FILE,
        ]
        assert outcome.sources == {'apps': 2, 'tabs': 1, 'files': 1}
        assert outcome.timed_out == []

    @pytest.mark.asyncio
    async def test_calculator_skips_sources(self, config):
        apps = apps_source()
        orchestrator = SearchOrchestrator(config, [apps])

        outcome = await orchestrator.search("2+2")

        assert [r.display_name for r in outcome.results] == ["= 4"]
        assert outcome.short_circuit is True
        assert apps.calls == 0

    @pytest.mark.asyncio
    async def test_bang_skips_sources(self, config):
        apps = apps_source()
        orchestrator = SearchOrchestrator(config, [apps])

        outcome = await orchestrator.search("w python")

        assert outcome.results[0].kind == ResultKind.WEB_SEARCH
        assert outcome.results[0].engine_name == "Wikipedia"
        assert apps.calls == 0

    @pytest.mark.asyncio
    async def test_slow_source_does_not_block_results(self, config):
        slow = tabs_source(delay=0.3)
        orchestrator = SearchOrchestrator(config, [apps_source(), slow])

        outcome = await orchestrator.search("safari")

        assert [r.display_name for r in outcome.results] == ["Safari"]
        assert outcome.timed_out == ["tabs"]
        assert orchestrator.background_tasks == 1

        await orchestrator.drain()
        assert orchestrator.background_tasks == 0
        assert slow.calls == 1

    @pytest.mark.asyncio
    async def test_failing_source_is_isolated(self, config):
        broken = files_source(error=RuntimeError("mdfind exploded"))
        orchestrator = SearchOrchestrator(config, [apps_source(), broken])

        outcome = await orchestrator.search("safari")

        assert [r.display_name for r in outcome.results] == ["Safari"]
        assert outcome.sources['files'] == 0

    @pytest.mark.asyncio
    async def test_filters_disable_sources(self, config):
        apps, tabs = apps_source(), tabs_source()
        orchestrator = SearchOrchestrator(config, [apps, tabs])

        outcome = await orchestrator.search("safari", SearchFilters(apps=False))

        assert apps.calls == 0
        assert tabs.calls == 1
        assert [r.kind for r in outcome.results] == [ResultKind.TAB]

    @pytest.mark.asyncio
    async def test_settings_disable_sources(self, config):
        config.search.search_files = False
        files = files_source()
        orchestrator = SearchOrchestrator(config, [apps_source(), files])

        await orchestrator.search("safari")

        assert files.calls == 0

    @pytest.mark.asyncio
    async def test_commands_are_prepended(self, config):
        orchestrator = SearchOrchestrator(config, [apps_source(names=("Lockdown",))])

        outcome = await orchestrator.search("lock")
        assert [r.display_name for r in outcome.results] == ["Lock Screen", "Lockdown"]

        outcome = await orchestrator.search("lock", SearchFilters(commands=False))
        assert [r.display_name for r in outcome.results] == ["Lockdown"]

    @pytest.mark.asyncio
    async def test_fallback_web_search(self, config):
        orchestrator = SearchOrchestrator(config, [apps_source()])

        outcome = await orchestrator.search("zzqqxx")

        assert len(outcome.results) == 1
        assert outcome.results[0].kind == ResultKind.WEB_SEARCH
        assert outcome.results[0].score == 1.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["+".join(["1"] * 3000), "-" * 3000 + "1"])
    async def test_long_operator_chain_falls_back(self, config, query):
        orchestrator = SearchOrchestrator(config, [apps_source()])

        outcome = await orchestrator.search(query)

        assert len(outcome.results) == 1
        assert outcome.results[0].kind == ResultKind.WEB_SEARCH

    @pytest.mark.asyncio
    async def test_results_are_bounded(self, config):
        names = [f"Safari Extension {i}" for i in range(40)]
        orchestrator = SearchOrchestrator(config, [apps_source(names=names)])

        outcome = await orchestrator.search("safari")

        assert len(outcome.results) <= config.ranking.max_results
        assert all(0.0 <= r.score <= 1.0 for r in outcome.results)

    @pytest.mark.asyncio
    async def test_statistics(self, config):
        orchestrator = SearchOrchestrator(config, [apps_source()])

        await orchestrator.search("safari")
        await orchestrator.search("2*3")
        stats = orchestrator.get_statistics()

        assert stats['total_searches'] == 2
        assert stats['short_circuits'] == 1
        assert stats['timeouts'] == 0
        assert stats['sources']['apps']['calls'] == 1


class TestSearchFilters:

    def test_from_mapping_ignores_unknown_keys(self):
        filters = SearchFilters.from_mapping({"apps": False, "bogus": True})

        assert filters.apps is False
        assert filters.tabs is True

    def test_empty_mapping(self):
        assert SearchFilters.from_mapping(None) == SearchFilters()
        assert SearchFilters().to_dict()['plugins'] is True
