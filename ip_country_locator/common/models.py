from dataclasses import dataclass, field
from ipaddress import IPv4Network, IPv6Network

from pydantic import BaseModel


@dataclass(frozen=True)
class Range:
    """One allocation record: a canonical CIDR network owned by a country."""

    network: IPv4Network | IPv6Network
    country_code: str
    version: int

    @property
    def start(self) -> int:
        return int(self.network.network_address)

    @property
    def prefixlen(self) -> int:
        return self.network.prefixlen


@dataclass(frozen=True)
class FeedStats:
    ipv4_count: int = 0
    ipv6_count: int = 0
    skipped_count: int = 0
    parse_errors: int = 0

    def __add__(self, other: "FeedStats") -> "FeedStats":
        return FeedStats(
            ipv4_count=self.ipv4_count + other.ipv4_count,
            ipv6_count=self.ipv6_count + other.ipv6_count,
            skipped_count=self.skipped_count + other.skipped_count,
            parse_errors=self.parse_errors + other.parse_errors,
        )

    def to_dict(self) -> dict:
        return {
            "ipv4_ranges": self.ipv4_count,
            "ipv6_ranges": self.ipv6_count,
            "skipped_lines": self.skipped_count,
            "parse_errors": self.parse_errors,
        }


@dataclass(frozen=True)
class FeedResult:
    source: str
    ranges: tuple[Range, ...]
    stats: FeedStats
    attempts: int = 1


@dataclass(frozen=True)
class RangeSet:
    """All ranges produced by one refresh cycle, tagged with per-source statistics."""

    ranges: tuple[Range, ...]
    source_stats: dict[str, FeedStats] = field(default_factory=dict)
    failed_sources: tuple[str, ...] = ()

    @property
    def totals(self) -> FeedStats:
        total = FeedStats()
        for stats in self.source_stats.values():
            total = total + stats
        return total

    def __len__(self) -> int:
        return len(self.ranges)

    def to_dict(self) -> dict:
        return {
            "total_ranges": len(self.ranges),
            **self.totals.to_dict(),
            "sources": {name: stats.to_dict() for name, stats in self.source_stats.items()},
            "failed_sources": list(self.failed_sources),
        }


class IPResponse(BaseModel):
    ip: str
    country_code: str


class ErrorResponse(BaseModel):
    message: str
