"""Tests for RIRFetcher against a local aiohttp server serving fake RIR feeds."""

import asyncio
from ipaddress import IPv4Network, IPv6Network

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from ip_country_locator.common.rir_fetcher import FeedFetchError, FeedStatusError, FeedStreamError, RIRFetcher

FEED = """\
2|test|20240101|4|19830101|20240101|+0000
test|*|ipv4|*|2|summary
# a comment
test|US|ipv4|192.168.0.0|65536|20100101|allocated
test|CA|ipv6|2001:db8::|32|20100101|allocated
test|US|ipv4|10.0.0.0|300|20100101|allocated
test|ZZ|ipv4|172.16.0.0|4096|20100101|reserved
test|DE|ipv4|5.0.0.0|256|20100101|assigned"""


class FeedServer:
    """Serves scripted responses, one per request, repeating the last one."""

    def __init__(self, responses: list[tuple[int, str]]):
        self.responses = responses
        self.hits = 0

    async def handle(self, request: web.Request) -> web.Response:
        status, body = self.responses[min(self.hits, len(self.responses) - 1)]
        self.hits += 1
        return web.Response(status=status, text=body)

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/feed", self.handle)
        return app


@pytest_asyncio.fixture
async def fetcher():
    f = RIRFetcher(timeout=5, max_retries=3, retry_delay=0)
    yield f
    await f.close()


async def _serve(feed_server: FeedServer) -> TestServer:
    server = TestServer(feed_server.app())
    await server.start_server()
    return server


@pytest.mark.asyncio
async def test_fetch_parses_ranges_and_counts_stats(fetcher):
    feed = FeedServer([(200, FEED)])
    server = await _serve(feed)
    try:
        result = await fetcher.fetch(str(server.make_url("/feed")))
    finally:
        await server.close()

    networks = {r.network for r in result.ranges}
    assert networks == {
        IPv4Network("192.168.0.0/16"),
        IPv6Network("2001:db8::/32"),
        IPv4Network("5.0.0.0/24"),
    }
    assert result.stats.ipv4_count == 2
    assert result.stats.ipv6_count == 1
    assert result.stats.parse_errors == 1
    # version header, summary, comment, reserved
    assert result.stats.skipped_count == 4
    assert result.attempts == 1


@pytest.mark.asyncio
async def test_server_error_exhausts_retries(fetcher):
    feed = FeedServer([(500, "boom")])
    server = await _serve(feed)
    url = str(server.make_url("/feed"))
    try:
        with pytest.raises(FeedFetchError) as exc_info:
            await fetcher.fetch(url)
    finally:
        await server.close()

    assert feed.hits == 3
    assert exc_info.value.url == url
    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.last_error, FeedStatusError)
    assert url in str(exc_info.value)


@pytest.mark.asyncio
async def test_recovers_after_transient_failure(fetcher):
    feed = FeedServer([(503, ""), (200, FEED)])
    server = await _serve(feed)
    try:
        result = await fetcher.fetch(str(server.make_url("/feed")))
    finally:
        await server.close()

    assert feed.hits == 2
    assert result.attempts == 2
    # Only the successful attempt's data is returned.
    assert len(result.ranges) == 3


@pytest.mark.asyncio
async def test_overlong_line_fails_the_attempt():
    fetcher = RIRFetcher(timeout=5, max_retries=1, retry_delay=0, max_line_bytes=64)
    feed = FeedServer([(200, "test|US|ipv4|192.168.0.0|65536|20100101|allocated\n" + "x" * 200 + "\n")])
    server = await _serve(feed)
    try:
        with pytest.raises(FeedFetchError) as exc_info:
            await fetcher.fetch(str(server.make_url("/feed")))
    finally:
        await server.close()
        await fetcher.close()

    assert isinstance(exc_info.value.last_error, FeedStreamError)


@pytest.mark.asyncio
async def test_connection_refused_is_retried(unused_tcp_port):
    fetcher = RIRFetcher(timeout=2, max_retries=2, retry_delay=0)
    try:
        with pytest.raises(FeedFetchError) as exc_info:
            await fetcher.fetch(f"http://127.0.0.1:{unused_tcp_port}/feed")
    finally:
        await fetcher.close()
    assert exc_info.value.attempts == 2


@pytest.mark.asyncio
async def test_retry_delay_grows_linearly(mocker):
    fetcher = RIRFetcher(max_retries=3, retry_delay=5)
    mocker.patch.object(fetcher, "_fetch_once", side_effect=FeedStreamError("bad"))
    sleep_mock = mocker.patch("ip_country_locator.common.rir_fetcher.asyncio.sleep", new=mocker.AsyncMock())

    with pytest.raises(FeedFetchError):
        await fetcher.fetch("http://example.invalid/feed")

    assert [c.args[0] for c in sleep_mock.await_args_list] == [5, 10]


@pytest.mark.asyncio
async def test_cancellation_aborts_retry_sleep(mocker):
    fetcher = RIRFetcher(max_retries=3, retry_delay=60)
    mocker.patch.object(fetcher, "_fetch_once", side_effect=FeedStreamError("bad"))

    task = asyncio.create_task(fetcher.fetch("http://example.invalid/feed"))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
