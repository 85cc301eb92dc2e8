"""Capability sets the resolver and the refresh coordinator depend on.

The production implementations live in ``range_store``, ``resolution_cache``
and ``rir_fetcher``; tests substitute in-memory fakes.
"""

from ipaddress import IPv4Address, IPv6Address
from typing import Iterable, Protocol

from ip_country_locator.common.models import FeedResult, Range, RangeSet


class Store(Protocol):
    async def replace_all(self, range_set: RangeSet) -> None: ...

    async def find_owner(self, address: IPv4Address | IPv6Address) -> str: ...

    async def count(self) -> int: ...


class Cache(Protocol):
    async def get_hot(self, address: str) -> str | None: ...

    async def set_hot(self, address: str, country_code: str) -> None: ...

    async def rebuild_range_index(self, ranges: Iterable[Range]) -> None: ...

    async def lookup_range_index(self, address: IPv4Address | IPv6Address) -> str | None: ...


class Fetcher(Protocol):
    async def fetch(self, url: str) -> FeedResult: ...
