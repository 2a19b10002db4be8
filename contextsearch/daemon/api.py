"""HTTP API for the ContextSearch daemon."""

import json

from aiohttp import web
from loguru import logger

from .organizer import organize
from .search import SearchFilters


DEFAULT_CALLER = "default"
INVALIDATE_TARGETS = ('apps', 'windows', 'all')


def _error(code: str, message: str, status: int) -> web.Response:
    return web.json_response({'error': {'code': code, 'message': message}}, status=status)


@web.middleware
async def cors_middleware(request: web.Request, handler):
    response = await handler(request)
    response.headers['Access-Control-Allow-Origin'] = '*'
    response.headers['Access-Control-Allow-Methods'] = 'GET, POST, OPTIONS'
    response.headers['Access-Control-Allow-Headers'] = 'Content-Type'
    return response


def create_api_app(daemon) -> web.Application:
    """Create the aiohttp application with routes."""
    app = web.Application(middlewares=[cors_middleware])
    app['daemon'] = daemon

    app.router.add_post('/search', handle_search)
    app.router.add_get('/diagnostics', handle_diagnostics)
    app.router.add_post('/cache/invalidate', handle_invalidate)
    app.router.add_get('/status', handle_status)
    app.router.add_post('/shutdown', handle_shutdown)

    return app


async def _read_json(request: web.Request):
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


async def handle_search(request: web.Request) -> web.Response:
    """Run a search for one caller."""
    daemon = request.app['daemon']

    data = await _read_json(request)
    if data is None:
        return _error('invalid_request', 'body must be a JSON object', 400)

    query = data.get('query')
    if not isinstance(query, str):
        return _error('invalid_request', 'query is required', 400)

    filters = data.get('filters')
    if filters is not None and not isinstance(filters, dict):
        return _error('invalid_request', 'filters must be an object', 400)

    caller_id = data.get('callerId') or DEFAULT_CALLER
    if not isinstance(caller_id, (str, int)):
        return _error('invalid_request', 'callerId must be a string or integer', 400)

    try:
        response = await daemon.coordinator.submit(
            caller_id=caller_id,
            request_id=data.get('requestId'),
            query=query,
            filters=SearchFilters.from_mapping(filters)
        )
        daemon.stats['search_count'] += 1

        body = response.to_dict()
        if request.query.get('organize', '').lower() == 'true':
            body['results'] = [item.to_dict() for item in organize(response.results)]
        return web.json_response(body)

    except Exception as e:
        logger.exception(f"Search error: {e}")
        return _error('internal_error', str(e), 500)


async def handle_diagnostics(request: web.Request) -> web.Response:
    """Permission status, source health, cache and search statistics."""
    daemon = request.app['daemon']

    try:
        return web.json_response(daemon.get_diagnostics())
    except Exception as e:
        logger.error(f"Diagnostics error: {e}")
        return _error('internal_error', str(e), 500)


async def handle_invalidate(request: web.Request) -> web.Response:
    """Drop cached applications and/or windows."""
    daemon = request.app['daemon']

    data = await _read_json(request)
    if data is None:
        data = {}
    target = data.get('target', 'all')
    if target not in INVALIDATE_TARGETS:
        return _error('invalid_request', f"target must be one of {', '.join(INVALIDATE_TARGETS)}", 400)

    daemon.invalidate(target)
    return web.json_response({'invalidated': target})


async def handle_status(request: web.Request) -> web.Response:
    """Get daemon status."""
    daemon = request.app['daemon']

    try:
        return web.json_response(daemon.get_status())
    except Exception as e:
        logger.error(f"Status error: {e}")
        return _error('internal_error', str(e), 500)


async def handle_shutdown(request: web.Request) -> web.Response:
    """Shutdown the daemon."""
    daemon = request.app['daemon']

    logger.info("Shutdown requested via API")
    daemon.request_shutdown()
    return web.json_response({'status': 'shutting down'})
