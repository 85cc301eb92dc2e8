import asyncio
import logging
import time

import aiohttp

from ip_country_locator.common.constants import USER_AGENT
from ip_country_locator.common.models import FeedResult, FeedStats, Range
from ip_country_locator.common.rir_parser import RangeParseError, parse_line

logger = logging.getLogger(__name__)


class FeedStreamError(RuntimeError):
    """The feed body could not be read as a sequence of bounded lines."""


class FeedStatusError(RuntimeError):
    """The feed server answered with a non-2xx status."""

    def __init__(self, url: str, status: int):
        self.url = url
        self.status = status
        super().__init__(f"unexpected status code {status} from {url}")


class FeedFetchError(RuntimeError):
    """All attempts to download and parse a feed failed."""

    def __init__(self, url: str, attempts: int, last_error: BaseException | None):
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"failed to fetch {url} after {attempts} attempt(s): {last_error}")


class _FeedAccumulator:
    """Per-attempt parse state; discarded entirely when the attempt fails."""

    def __init__(self, url: str):
        self.url = url
        self.ranges: list[Range] = []
        self.ipv4 = 0
        self.ipv6 = 0
        self.skipped = 0
        self.parse_errors = 0
        self.lines = 0

    def feed(self, raw: bytes) -> None:
        self.lines += 1
        line = raw.decode("utf-8", errors="replace")
        try:
            rng = parse_line(line)
        except RangeParseError as e:
            self.parse_errors += 1
            logger.debug("failed to parse IP range %r from %s: %s", line, self.url, e)
            return
        if rng is None:
            self.skipped += 1
            return
        if rng.version == 4:
            self.ipv4 += 1
        else:
            self.ipv6 += 1
        self.ranges.append(rng)

    @property
    def stats(self) -> FeedStats:
        return FeedStats(
            ipv4_count=self.ipv4,
            ipv6_count=self.ipv6,
            skipped_count=self.skipped,
            parse_errors=self.parse_errors,
        )


class RIRFetcher:
    """Downloads RIR delegation feeds with bounded retries and parses them into ranges.

    A single instance should be shared across refresh cycles to reuse TCP connections.
    """

    def __init__(
        self,
        timeout: float = 60.0,
        max_retries: int = 3,
        retry_delay: float = 5.0,
        max_line_bytes: int = 1024 * 1024,
    ):
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_line_bytes = max_line_bytes

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={"User-Agent": USER_AGENT},
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def fetch(self, url: str) -> FeedResult:
        """Fetch and parse one feed, retrying with a linearly growing delay.

        Raises FeedFetchError once every attempt has failed. Cancelling the
        calling task interrupts both the download and the retry sleep.
        """
        last_error: BaseException | None = None
        for attempt in range(self.max_retries):
            if attempt > 0:
                await asyncio.sleep(attempt * self.retry_delay)
            try:
                ranges, stats = await self._fetch_once(url)
            except (aiohttp.ClientError, asyncio.TimeoutError, FeedStatusError, FeedStreamError) as e:
                last_error = e
                logger.warning(
                    "Failed to fetch RIR data from %s (attempt %d/%d): %s",
                    url,
                    attempt + 1,
                    self.max_retries,
                    e,
                )
                continue
            return FeedResult(source=url, ranges=tuple(ranges), stats=stats, attempts=attempt + 1)

        raise FeedFetchError(url, self.max_retries, last_error)

    async def _fetch_once(self, url: str) -> tuple[list[Range], FeedStats]:
        started = time.monotonic()
        logger.info("Starting RIR data fetch from %s", url)
        session = await self._get_session()
        acc = _FeedAccumulator(url)

        async with session.get(url) as resp:
            if resp.status // 100 != 2:
                raise FeedStatusError(url, resp.status)
            buffer = b""
            async for chunk in resp.content.iter_any():
                buffer += chunk
                *complete, buffer = buffer.split(b"\n")
                for raw in complete:
                    self._check_line_length(raw, url)
                    acc.feed(raw)
                self._check_line_length(buffer, url)
            if buffer:
                acc.feed(buffer)

        stats = acc.stats
        logger.info(
            "Finished parsing RIR data from %s: lines=%d ipv4=%d ipv6=%d skipped=%d parse_errors=%d in %.1fs",
            url,
            acc.lines,
            stats.ipv4_count,
            stats.ipv6_count,
            stats.skipped_count,
            stats.parse_errors,
            time.monotonic() - started,
        )
        return acc.ranges, stats

    def _check_line_length(self, raw: bytes, url: str) -> None:
        if len(raw) > self.max_line_bytes:
            raise FeedStreamError(f"line longer than {self.max_line_bytes} bytes in {url}")
