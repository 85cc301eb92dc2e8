"""Periodic full refresh of the range dataset from every configured RIR."""

import asyncio
import contextlib
import logging
import time
from datetime import datetime, timezone
from enum import StrEnum

from ip_country_locator.common.config import RIRSource
from ip_country_locator.common.constants import DAY_SECONDS
from ip_country_locator.common.interfaces import Cache, Fetcher, Store
from ip_country_locator.common.models import FeedResult, FeedStats, Range, RangeSet
from ip_country_locator.common.rir_fetcher import FeedFetchError

logger = logging.getLogger(__name__)


class RefreshState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"


class RefreshError(RuntimeError):
    """A refresh cycle produced no data; the previous dataset was kept."""


class RefreshCoordinator:
    """Runs refresh cycles: at startup when the store is empty, then on a fixed schedule.

    At most one cycle runs at a time. A scheduled tick that fires while a
    cycle is still in progress is dropped rather than queued.
    """

    def __init__(
        self,
        sources: tuple[RIRSource, ...] | list[RIRSource],
        fetcher: Fetcher,
        store: Store,
        cache: Cache,
        interval_seconds: float = DAY_SECONDS,
    ):
        self.sources = tuple(sources)
        self.fetcher = fetcher
        self.store = store
        self.cache = cache
        self.interval_seconds = interval_seconds
        self.state = RefreshState.IDLE
        self.last_result: RangeSet | None = None
        self.last_success: datetime | None = None
        self.last_error: str | None = None
        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        """Load data if the store is empty, then schedule the periodic refresh."""
        if await self.store.count() == 0:
            logger.info("No IP ranges found in store, performing initial load")
            try:
                await self.refresh()
            except Exception:
                logger.exception("Initial IP ranges load failed, serving without data until next refresh")
        else:
            logger.info("Existing IP ranges found in store, skipping initial load")

        self._stop_event.clear()
        self._task = asyncio.create_task(self._schedule_loop(), name="rir-refresh")

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _schedule_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
                return
            except asyncio.TimeoutError:
                pass

            if self._lock.locked():
                logger.info("Refresh still running, dropping scheduled tick")
                continue
            try:
                await self.refresh()
            except Exception:
                logger.exception("Scheduled IP ranges update failed")

    async def refresh(self) -> RangeSet:
        """Run one full cycle: fetch every source, replace the store, rebuild the range cache."""
        async with self._lock:
            self.state = RefreshState.RUNNING
            try:
                return await self._run_cycle()
            except Exception as e:
                self.last_error = str(e)
                raise
            finally:
                self.state = RefreshState.IDLE

    async def _run_cycle(self) -> RangeSet:
        started = time.monotonic()
        logger.info("Starting IP ranges update from %d source(s)", len(self.sources))

        results = await asyncio.gather(*(self._fetch_source(s) for s in self.sources))

        ranges: list[Range] = []
        source_stats: dict[str, FeedStats] = {}
        failed: list[str] = []
        errors: list[str] = []
        for source, result in zip(self.sources, results):
            if isinstance(result, Exception):
                failed.append(source.name)
                errors.append(f"{source.name}: {result}")
                continue
            ranges.extend(result.ranges)
            source_stats[source.name] = result.stats

        if not source_stats:
            raise RefreshError(f"no IP ranges fetched: {'; '.join(errors)}")
        if not ranges:
            raise RefreshError("sources answered but yielded no IP ranges, keeping current data")

        range_set = RangeSet(ranges=tuple(ranges), source_stats=source_stats, failed_sources=tuple(failed))
        totals = range_set.totals
        logger.info(
            "Total statistics: total=%d ipv4=%d ipv6=%d skipped=%d parse_errors=%d failed_sources=%s",
            len(range_set),
            totals.ipv4_count,
            totals.ipv6_count,
            totals.skipped_count,
            totals.parse_errors,
            ",".join(failed) or "-",
        )

        await self.store.replace_all(range_set)

        try:
            await self.cache.rebuild_range_index(range_set.ranges)
        except Exception:
            # The store is already correct; lookups fall back to it until the next rebuild.
            logger.exception("Failed to rebuild range cache")

        self.last_result = range_set
        self.last_success = datetime.now(timezone.utc)
        self.last_error = None
        logger.info("IP ranges update finished in %.1fs", time.monotonic() - started)
        return range_set

    async def _fetch_source(self, source: RIRSource) -> FeedResult | Exception:
        log = logger.getChild(source.name)
        try:
            result = await self.fetcher.fetch(source.url)
        except FeedFetchError as e:
            log.error("failed to fetch IP ranges: %s", e)
            return e
        except Exception as e:
            log.exception("unexpected error while fetching IP ranges")
            return e
        log.info(
            "Fetched IP ranges: total=%d ipv4=%d ipv6=%d skipped=%d parse_errors=%d",
            len(result.ranges),
            result.stats.ipv4_count,
            result.stats.ipv6_count,
            result.stats.skipped_count,
            result.stats.parse_errors,
        )
        return result

    def get_status(self) -> dict:
        return {
            "state": str(self.state),
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_error": self.last_error,
            "last_cycle": self.last_result.to_dict() if self.last_result else None,
        }
