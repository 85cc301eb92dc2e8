import asyncio
import logging
import signal

from ip_country_locator.common.config import load_config
from ip_country_locator.common.range_store import RangeStore
from ip_country_locator.common.refresh import RefreshCoordinator
from ip_country_locator.common.resolution_cache import ResolutionCache
from ip_country_locator.common.resolver import Resolver
from ip_country_locator.common.rir_fetcher import RIRFetcher
from ip_country_locator.web.log_sampler import LogSampler
from ip_country_locator.web.server import create_app, run_server

logger = logging.getLogger(__name__)


async def _main() -> None:
    config = load_config()

    fetcher = RIRFetcher(
        timeout=config.fetch_timeout,
        max_retries=config.fetch_max_retries,
        retry_delay=config.fetch_retry_delay,
        max_line_bytes=config.max_line_bytes,
    )
    store = RangeStore(config.snapshot_path or None)
    cache = ResolutionCache(ttl_seconds=config.cache_ttl_seconds, hot_max_len=config.hot_cache_max_len)
    resolver = Resolver(store, cache)
    coordinator = RefreshCoordinator(
        config.sources, fetcher, store, cache, interval_seconds=config.refresh_interval_seconds
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info("Starting up server...")
    await store.load()
    await coordinator.start()

    app = create_app(
        resolver,
        coordinator,
        sampler=LogSampler(config.log_sample_interval),
        slow_request_ms=config.slow_request_ms,
    )
    runner = await run_server(app, config.server_host, config.server_port)

    try:
        await stop.wait()
    finally:
        logger.info("Shutting down server...")
        await coordinator.stop()
        await runner.cleanup()
        await fetcher.close()


def run_async_main() -> None:
    asyncio.run(_main())


if __name__ == "__main__":
    run_async_main()
