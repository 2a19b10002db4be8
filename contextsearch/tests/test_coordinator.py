"""Tests for per-caller request sequencing."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from contextsearch.daemon.coordinator import RequestCoordinator, RequestSequencer, SearchResponse
from contextsearch.daemon.models import ApplicationResult, ResultKind
from contextsearch.daemon.search import SearchOutcome


def outcome(name):
    return SearchOutcome(results=[
        ApplicationResult(kind=ResultKind.APPLICATION, display_name=name, priority=3,
                          path=f"/Applications/{name}.app")
    ])


class TestRequestSequencer:

    def test_older_request_is_rejected(self):
        sequencer = RequestSequencer()

        assert sequencer.accept("ui", 2)
        assert not sequencer.accept("ui", 1)
        assert sequencer.last_accepted("ui") == 2

    def test_equal_request_is_accepted(self):
        sequencer = RequestSequencer()

        assert sequencer.accept("ui", 3)
        assert sequencer.accept("ui", 3)

    def test_callers_are_independent(self):
        sequencer = RequestSequencer()

        sequencer.accept("main-window", 10)
        assert sequencer.accept("quick-panel", 1)
        assert len(sequencer) == 2

    @pytest.mark.parametrize("request_id", [None, "abc", True, float("nan"), float("inf")])
    def test_non_numeric_ids_are_accepted_and_not_recorded(self, request_id):
        sequencer = RequestSequencer()
        sequencer.accept("ui", 5)

        assert sequencer.accept("ui", request_id)
        assert sequencer.last_accepted("ui") == 5

    def test_float_ids(self):
        sequencer = RequestSequencer()

        assert sequencer.accept("ui", 1.5)
        assert not sequencer.accept("ui", 1)
        assert sequencer.accept("ui", 2)


class TestRequestCoordinator:

    @pytest.mark.asyncio
    async def test_stale_request_never_reaches_orchestrator(self):
        orchestrator = Mock()
        orchestrator.search = AsyncMock(return_value=outcome("Safari"))
        coordinator = RequestCoordinator(orchestrator)

        fresh = await coordinator.submit("ui", 2, "saf")
        stale = await coordinator.submit("ui", 1, "sa")

        assert [r.display_name for r in fresh.results] == ["Safari"]
        assert stale.accepted is False
        assert stale.results == []
        assert orchestrator.search.await_count == 1
        assert coordinator.stats()['rejected'] == 1

    @pytest.mark.asyncio
    async def test_slow_response_is_superseded(self):
        gate = asyncio.Event()

        async def search(query, filters=None):
            if query == "slow":
                await gate.wait()
            return outcome(query)

        orchestrator = Mock()
        orchestrator.search = search
        coordinator = RequestCoordinator(orchestrator)

        slow = asyncio.ensure_future(coordinator.submit("ui", 1, "slow"))
        await asyncio.sleep(0)
        fast = await coordinator.submit("ui", 2, "fast")
        gate.set()
        stale = await slow

        assert [r.display_name for r in fast.results] == ["fast"]
        assert stale.superseded is True
        assert stale.results == []
        assert coordinator.stats()['superseded'] == 1

    @pytest.mark.asyncio
    async def test_search_returns_result_list(self):
        orchestrator = Mock()
        orchestrator.search = AsyncMock(return_value=outcome("Notes"))
        coordinator = RequestCoordinator(orchestrator)

        results = await coordinator.search("ui", None, "notes")

        assert [r.display_name for r in results] == ["Notes"]

    def test_response_to_dict(self):
        data = SearchResponse(results=outcome("Mail").results, request_id=7).to_dict()

        assert data['requestId'] == 7
        assert data['accepted'] is True
        assert data['results'][0]['name'] == "Mail"
