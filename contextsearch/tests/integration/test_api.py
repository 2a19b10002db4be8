"""
End-to-end tests through the HTTP API.

The daemon is wired exactly as in production except for the process runner
and window discovery, which are replaced by in-memory fakes.
"""

import asyncio

import pytest
from aiohttp.test_utils import TestClient, TestServer

from contextsearch.daemon.api import create_api_app
from contextsearch.daemon.automation import PermissionDenied
from contextsearch.daemon.main import SearchDaemon
from contextsearch.daemon.models import RawWindow
from contextsearch.daemon.sources.apps import APPS_QUERY


APP_PATHS = "/Applications/Safari.app\n/Applications/Notes.app\n"
FILE_PATHS = "/Users/me/docs/safari-notes.txt\n/Users/me/project/node_modules/safari/index.js\n"


class FakeDiscover:
    def __init__(self):
        self.error = None
        self.calls = 0

    async def __call__(self, selected_apps):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [
            RawWindow(title="Safari Tips", owner_app="Safari", url="https://support.apple.com",
                      kind="tab"),
            RawWindow(title="Safari Tips", owner_app="Safari", url="https://support.apple.com",
                      tab_index=2, kind="tab"),
        ]


@pytest.fixture
def discover():
    return FakeDiscover()


@pytest.fixture
def daemon(config, make_runner, discover):
    runner = make_runner({
        f"mdfind {APPS_QUERY}": APP_PATHS,
        "mdfind -name": FILE_PATHS,
        "shortcuts list": "Safari Reading List\n",
    })
    return SearchDaemon(config, runner=runner, discover=discover)


@pytest.fixture
async def client(daemon):
    async with TestClient(TestServer(create_api_app(daemon))) as client:
        yield client


class TestSearchEndpoint:

    @pytest.mark.asyncio
    async def test_search_returns_ranked_results(self, client, daemon):
        resp = await client.post("/search", json={"query": "safari", "requestId": 1, "callerId": "ui"})
        assert resp.status == 200
        data = await resp.json()

        assert data['accepted'] is True
        assert data['requestId'] == 1
        assert data['results'][0]['name'] == "Safari"
        assert data['results'][0]['type'] == "app"
        types = {r['type'] for r in data['results']}
        assert {"app", "tab", "file", "shortcut"} <= types
        assert all("node_modules" not in (r.get('path') or '') for r in data['results'])
        assert daemon.stats['search_count'] == 1
        assert resp.headers['Access-Control-Allow-Origin'] == '*'

    @pytest.mark.asyncio
    async def test_stale_request_is_rejected(self, client):
        await client.post("/search", json={"query": "safari", "requestId": 5, "callerId": "ui"})
        resp = await client.post("/search", json={"query": "saf", "requestId": 3, "callerId": "ui"})
        data = await resp.json()

        assert resp.status == 200
        assert data['accepted'] is False
        assert data['results'] == []

    @pytest.mark.asyncio
    async def test_filters(self, client):
        resp = await client.post("/search", json={
            "query": "safari",
            "filters": {"apps": False, "files": False, "shortcuts": False},
        })
        data = await resp.json()

        assert {r['type'] for r in data['results']} == {"tab"}

    @pytest.mark.asyncio
    async def test_calculator(self, client):
        resp = await client.post("/search", json={"query": "128 * 1.08"})
        data = await resp.json()

        assert data['results'][0]['type'] == "calculator"
        assert data['results'][0]['name'] == "= 138.24"

    @pytest.mark.asyncio
    async def test_organized_results(self, client):
        resp = await client.post("/search?organize=true", json={"query": "safari"})
        data = await resp.json()

        tabs = [r for r in data['results'] if r['type'] == "tab"]
        assert tabs[0]['group']['name'] == "Safari"
        assert tabs[0]['isGroupStart'] is True
        assert 'group' not in data['results'][0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        {"filters": {}},
        {"query": 42},
        {"query": "safari", "filters": ["apps"]},
        ["query"],
        {"query": "safari", "callerId": ["ui"]},
        {"query": "safari", "callerId": {"window": 1}},
    ])
    async def test_invalid_body(self, client, body):
        resp = await client.post("/search", json=body)
        data = await resp.json()

        assert resp.status == 400
        assert data['error']['code'] == "invalid_request"

    @pytest.mark.asyncio
    async def test_malformed_json(self, client):
        resp = await client.post("/search", data="{not json",
                                 headers={"Content-Type": "application/json"})
        assert resp.status == 400


class TestDiagnostics:

    @pytest.mark.asyncio
    async def test_permission_denied_is_reported(self, client, discover):
        discover.error = PermissionDenied("Not authorized to send Apple events (-1743)")

        await client.post("/search", json={"query": "safari"})
        resp = await client.get("/diagnostics")
        data = await resp.json()

        assert resp.status == 200
        automation = data['permissions']['automation']
        assert automation['granted'] is False
        assert "-1743" in automation['error']
        assert data['search']['total_searches'] == 1
        assert data['caches']['apps']['count'] == 2

    @pytest.mark.asyncio
    async def test_invalidate(self, client, daemon, discover):
        await client.post("/search", json={"query": "safari"})
        resp = await client.post("/cache/invalidate", json={"target": "windows"})

        assert resp.status == 200
        assert (await resp.json()) == {'invalidated': "windows"}
        assert daemon.discovery_cache.stats()['entries'] == 0

        await client.post("/search", json={"query": "safari"})
        assert discover.calls == 2

    @pytest.mark.asyncio
    async def test_invalidate_rejects_unknown_target(self, client):
        resp = await client.post("/cache/invalidate", json={"target": "everything"})
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_status(self, client):
        resp = await client.get("/status")
        data = await resp.json()

        assert resp.status == 200
        assert data['status'] == "running"
        assert data['stats']['memory_mb'] > 0

    @pytest.mark.asyncio
    async def test_shutdown(self, client, daemon):
        waiter = asyncio.ensure_future(daemon.wait_for_shutdown())
        await asyncio.sleep(0)

        resp = await client.post("/shutdown")

        assert resp.status == 200
        await asyncio.wait_for(waiter, timeout=1.0)
