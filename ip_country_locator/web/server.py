import logging
import time

from aiohttp import web

from ip_country_locator.common.constants import UNKNOWN_COUNTRY
from ip_country_locator.common.models import ErrorResponse
from ip_country_locator.common.range_store import RangeStore
from ip_country_locator.common.refresh import RefreshCoordinator
from ip_country_locator.common.resolution_cache import ResolutionCache
from ip_country_locator.common.resolver import InvalidAddressError, Resolver
from ip_country_locator.web.log_sampler import LogSampler

logger = logging.getLogger(__name__)

_RESOLVER_KEY: web.AppKey["Resolver"] = web.AppKey("resolver")
_COORDINATOR_KEY: web.AppKey["RefreshCoordinator | None"] = web.AppKey("coordinator")


def _error(message: str, status: int) -> web.Response:
    return web.json_response(ErrorResponse(message=message).model_dump(), status=status)


def _make_recover_middleware():
    @web.middleware
    async def middleware(request: web.Request, handler):
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except Exception:
            logger.exception("web: unhandled error for %s %s", request.method, request.path)
            return _error("Internal server error", 500)

    return middleware


def _make_logging_middleware(sampler: LogSampler, slow_request_ms: float):
    @web.middleware
    async def middleware(request: web.Request, handler):
        started = time.monotonic()
        try:
            response = await handler(request)
        except web.HTTPException as e:
            logger.info(
                "request status=%d latency=%.1fms method=%s path=%s",
                e.status,
                (time.monotonic() - started) * 1000,
                request.method,
                request.path,
            )
            raise
        latency_ms = (time.monotonic() - started) * 1000

        if response.status != 200 or latency_ms > slow_request_ms:
            logger.info(
                "request status=%d latency=%.1fms method=%s path=%s",
                response.status,
                latency_ms,
                request.method,
                request.path,
            )
        elif sampler.should_log():
            logger.info(
                "sampled_request status=%d latency=%.1fms method=%s path=%s",
                response.status,
                latency_ms,
                request.method,
                request.path,
            )
        return response

    return middleware


async def _handle_lookup(request: web.Request) -> web.Response:
    resolver = request.app[_RESOLVER_KEY]
    address = request.match_info.get("address", "").strip()
    if not address:
        return _error("IP address is required", 400)

    try:
        result = await resolver.lookup(address)
    except InvalidAddressError:
        return _error(f"Invalid IP address format: {address}", 400)
    except Exception:
        logger.exception("IP lookup failed for %s", address)
        return _error("Failed to lookup IP address", 500)

    if result.country_code == UNKNOWN_COUNTRY:
        return _error("No country information found for this IP", 404)
    return web.json_response(result.model_dump())


async def _handle_health(request: web.Request) -> web.Response:
    return web.json_response({"status": "healthy"})


async def _handle_status(request: web.Request) -> web.Response:
    resolver = request.app[_RESOLVER_KEY]
    coordinator = request.app[_COORDINATOR_KEY]
    status: dict = {"refresh": coordinator.get_status() if coordinator else None}
    if isinstance(resolver.store, RangeStore):
        status["store"] = {
            "ranges": await resolver.store.count(),
            "last_replaced": resolver.store.last_replaced.isoformat() if resolver.store.last_replaced else None,
        }
    if isinstance(resolver.cache, ResolutionCache):
        status["cache"] = {
            "hot_entries": resolver.cache.hot_size,
            "range_entries": resolver.cache.range_index_size,
        }
    return web.json_response(status)


def create_app(
    resolver: Resolver,
    coordinator: RefreshCoordinator | None = None,
    sampler: LogSampler | None = None,
    slow_request_ms: float = 100.0,
) -> web.Application:
    app = web.Application(
        middlewares=[
            _make_logging_middleware(sampler or LogSampler(), slow_request_ms),
            _make_recover_middleware(),
        ]
    )
    app[_RESOLVER_KEY] = resolver
    app[_COORDINATOR_KEY] = coordinator
    for prefix in ("", "/api/v1"):
        app.router.add_get(f"{prefix}/lookup/{{address}}", _handle_lookup)
        app.router.add_get(f"{prefix}/health", _handle_health)
    app.router.add_get("/api/v1/status", _handle_status)
    return app


async def run_server(app: web.Application, host: str, port: int) -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("web: listening on http://%s:%d", host, port)
    return runner
