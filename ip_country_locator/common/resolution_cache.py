"""Two-tier read-through cache in front of the range store.

Tier 1 maps a literal address string to a country and is filled lazily by the
resolver. Tier 2 is a sorted index of range start values per address family,
rebuilt wholesale after every refresh; a lookup takes the greatest start not
above the address and then checks the address really falls inside that range.
IPv6 starts are kept as full 128-bit integers, so both families are indexed the
same way.
"""

import asyncio
import logging
import time
from bisect import bisect_right
from ipaddress import IPv4Address, IPv4Network, IPv6Address, IPv6Network
from typing import Iterable

from expiringdict import ExpiringDict  # type: ignore

from ip_country_locator.common.constants import DAY_SECONDS, UNKNOWN_COUNTRY
from ip_country_locator.common.models import Range

logger = logging.getLogger(__name__)


class _StartIndex:
    """Sorted range starts of one family with parallel (country, prefixlen) entries."""

    __slots__ = ("starts", "entries", "network_cls")

    def __init__(self, starts: list[int], entries: list[tuple[str, int]], network_cls):
        self.starts = starts
        self.entries = entries
        self.network_cls = network_cls

    @classmethod
    def build(cls, ranges: Iterable[Range], network_cls) -> "_StartIndex":
        by_start: dict[int, tuple[str, int]] = {}
        for rng in ranges:
            current = by_start.get(rng.start)
            # Keep the most specific block for a shared start; equal prefixes: later record wins.
            if current is None or rng.prefixlen >= current[1]:
                by_start[rng.start] = (rng.country_code, rng.prefixlen)
        starts = sorted(by_start)
        return cls(starts, [by_start[s] for s in starts], network_cls)

    def lookup(self, address: IPv4Address | IPv6Address) -> str | None:
        pos = bisect_right(self.starts, int(address)) - 1
        if pos < 0:
            return None
        country, prefixlen = self.entries[pos]
        network = self.network_cls((self.starts[pos], prefixlen))
        if address in network:
            return country
        return None

    def __len__(self) -> int:
        return len(self.starts)


class _RangeIndex:
    __slots__ = ("v4", "v6", "expires_at")

    def __init__(self, v4: _StartIndex, v6: _StartIndex, expires_at: float):
        self.v4 = v4
        self.v6 = v6
        self.expires_at = expires_at

    @classmethod
    def build(cls, ranges: Iterable[Range], expires_at: float) -> "_RangeIndex":
        ranges = list(ranges)
        return cls(
            _StartIndex.build((r for r in ranges if r.version == 4), IPv4Network),
            _StartIndex.build((r for r in ranges if r.version == 6), IPv6Network),
            expires_at,
        )

    @classmethod
    def empty(cls) -> "_RangeIndex":
        return cls(_StartIndex([], [], IPv4Network), _StartIndex([], [], IPv6Network), 0.0)


class ResolutionCache:
    """Hot-IP cache (tier 1) plus the refresh-owned range index (tier 2)."""

    def __init__(
        self,
        ttl_seconds: float = DAY_SECONDS,
        hot_max_len: int = 100_000,
        clock=time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._hot = ExpiringDict(max_len=hot_max_len, max_age_seconds=ttl_seconds)
        self._ranges = _RangeIndex.empty()

    # ------------------------------------------------------------------
    # Tier 1
    # ------------------------------------------------------------------

    async def get_hot(self, address: str) -> str | None:
        return self._hot.get(address)

    async def set_hot(self, address: str, country_code: str) -> None:
        if country_code == UNKNOWN_COUNTRY:
            return
        self._hot[address] = country_code

    # ------------------------------------------------------------------
    # Tier 2
    # ------------------------------------------------------------------

    async def rebuild_range_index(self, ranges: Iterable[Range]) -> None:
        """Replace the whole range index; one TTL covers every entry."""
        expires_at = self._clock() + self.ttl_seconds
        index = await asyncio.to_thread(_RangeIndex.build, ranges, expires_at)
        self._ranges = index
        logger.info("Range cache rebuilt: ipv4=%d ipv6=%d", len(index.v4), len(index.v6))

    async def lookup_range_index(self, address: IPv4Address | IPv6Address) -> str | None:
        index = self._ranges
        if self._clock() >= index.expires_at:
            return None
        family = index.v4 if address.version == 4 else index.v6
        return family.lookup(address)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def hot_size(self) -> int:
        return len(self._hot)

    @property
    def range_index_size(self) -> int:
        index = self._ranges
        if self._clock() >= index.expires_at:
            return 0
        return len(index.v4) + len(index.v6)
