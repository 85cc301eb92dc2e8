"""Authoritative store of the current RIR ranges.

Ranges are held in a longest-prefix-match index: for every address family a
map ``prefixlen -> {network base as int: country}``. A lookup masks the address
with each known prefix length, longest first, so at most 33 (IPv4) or 129
(IPv6) dictionary lookups answer "most specific range containing X".

The whole index is replaced by a single reference assignment; a reader takes
the reference once per query and therefore never sees a half-installed set.
The index can be mirrored to a JSON snapshot so a restart does not have to
download every feed again.
"""

import asyncio
import contextlib
import json
import logging
from datetime import datetime, timezone
from ipaddress import IPv4Address, IPv4Network, IPv6Address, IPv6Network, ip_network
from pathlib import Path
from typing import Iterable

import aiofiles
import aiofiles.os

from ip_country_locator.common.constants import UNKNOWN_COUNTRY
from ip_country_locator.common.models import Range, RangeSet

logger = logging.getLogger(__name__)

_MAX_BITS = {4: 32, 6: 128}


class RangeStoreError(RuntimeError):
    """The store could not install or persist a range set."""


class _FamilyIndex:
    __slots__ = ("by_prefix", "prefixes")

    def __init__(self, by_prefix: dict[int, dict[int, str]]):
        self.by_prefix = by_prefix
        self.prefixes = sorted(by_prefix, reverse=True)


class _RangeIndex:
    __slots__ = ("families", "size")

    def __init__(self, families: dict[int, _FamilyIndex], size: int):
        self.families = families
        self.size = size

    @classmethod
    def build(cls, ranges: Iterable[Range]) -> "_RangeIndex":
        tables: dict[int, dict[int, dict[int, str]]] = {4: {}, 6: {}}
        for rng in ranges:
            # Same network seen twice: the later record wins.
            tables[rng.version].setdefault(rng.prefixlen, {})[rng.start] = rng.country_code
        size = sum(len(t) for family in tables.values() for t in family.values())
        return cls({version: _FamilyIndex(t) for version, t in tables.items()}, size)

    def find(self, version: int, value: int) -> str | None:
        family = self.families[version]
        bits = _MAX_BITS[version]
        for prefixlen in family.prefixes:
            mask = ((1 << prefixlen) - 1) << (bits - prefixlen)
            country = family.by_prefix[prefixlen].get(value & mask)
            if country is not None:
                return country
        return None

    def rows(self) -> list[list]:
        result = []
        for version, family in self.families.items():
            network_cls = IPv4Network if version == 4 else IPv6Network
            for prefixlen, table in family.by_prefix.items():
                for start, country in table.items():
                    network = network_cls((start, prefixlen))
                    result.append([str(network), country])
        return result


class RangeStore:
    """In-process range store with an optional JSON snapshot on disk.

    Call ``load()`` once at startup to restore the last saved snapshot.
    """

    def __init__(self, snapshot_path: str | Path | None = None):
        self._snapshot_path = Path(snapshot_path) if snapshot_path else None
        self._index = _RangeIndex.build(())
        self._last_replaced: datetime | None = None

    async def load(self) -> None:
        """Restore the index from the snapshot file if one exists."""
        path = self._snapshot_path
        if path is None:
            return
        if not await aiofiles.os.path.exists(path):
            logger.info(f"Range snapshot {path} not found, store starts empty")
            return
        try:
            async with aiofiles.open(path) as f:
                payload = await f.read()
            index, saved_at = await asyncio.to_thread(_parse_snapshot, payload)
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.warning(f"Corrupt range snapshot {path}, store starts empty", exc_info=True)
            return
        self._index = index
        self._last_replaced = saved_at
        logger.info(f"Loaded {index.size} ranges from snapshot (saved {saved_at})")

    async def _save(self, path: Path, index: _RangeIndex, saved_at: datetime) -> None:
        payload = await asyncio.to_thread(_dump_snapshot, index, saved_at)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            async with aiofiles.open(tmp_path, "w") as f:
                await f.write(payload)
            await aiofiles.os.replace(tmp_path, path)
        except OSError as e:
            with contextlib.suppress(OSError):
                await aiofiles.os.remove(tmp_path)
            raise RangeStoreError(f"failed to write range snapshot {path}: {e}") from e
        logger.debug(f"Saved {index.size} ranges to snapshot")

    async def replace_all(self, range_set: RangeSet) -> None:
        """Install *range_set* as the complete dataset, discarding the previous one.

        The previous dataset stays in place if building or persisting the new one fails.
        """
        index = await asyncio.to_thread(_RangeIndex.build, range_set.ranges)
        saved_at = datetime.now(timezone.utc)
        if self._snapshot_path is not None:
            await self._save(self._snapshot_path, index, saved_at)
        self._index = index
        self._last_replaced = saved_at
        logger.info(f"Range store now holds {index.size} ranges")

    async def find_owner(self, address: IPv4Address | IPv6Address) -> str:
        """Return the country of the most specific range containing *address*, or UNKNOWN_COUNTRY."""
        index = self._index
        country = index.find(address.version, int(address))
        return country if country is not None else UNKNOWN_COUNTRY

    async def count(self) -> int:
        return self._index.size

    @property
    def last_replaced(self) -> datetime | None:
        return self._last_replaced


def _range_from_row(row: list) -> Range:
    network_str, country = row
    network = ip_network(network_str)
    return Range(network=network, country_code=country, version=network.version)


def _dump_snapshot(index: _RangeIndex, saved_at: datetime) -> str:
    return json.dumps({"saved_at": saved_at.isoformat(), "ranges": index.rows()})


def _parse_snapshot(payload: str) -> tuple[_RangeIndex, datetime | None]:
    data = json.loads(payload)
    ranges = [_range_from_row(row) for row in data["ranges"]]
    raw = data.get("saved_at")
    return _RangeIndex.build(ranges), datetime.fromisoformat(raw) if raw else None
