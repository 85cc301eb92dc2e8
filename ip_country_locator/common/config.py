import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path

from ip_country_locator.common.constants import (
    DAY_SECONDS,
    IPLOC_CACHE_TTL,
    IPLOC_CONFIG,
    IPLOC_FETCH_RETRIES,
    IPLOC_FETCH_RETRY_DELAY,
    IPLOC_FETCH_TIMEOUT,
    IPLOC_HOST,
    IPLOC_HOT_CACHE_SIZE,
    IPLOC_LOG_SAMPLE_INTERVAL,
    IPLOC_PORT,
    IPLOC_REFRESH_INTERVAL,
    IPLOC_SNAPSHOT_PATH,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RIRSource:
    name: str
    url: str


DEFAULT_SOURCES: tuple[RIRSource, ...] = (
    RIRSource("ARIN", "https://ftp.arin.net/pub/stats/arin/delegated-arin-extended-latest"),
    RIRSource("RIPE", "https://ftp.ripe.net/pub/stats/ripencc/delegated-ripencc-latest"),
    RIRSource("APNIC", "https://ftp.apnic.net/stats/apnic/delegated-apnic-latest"),
    RIRSource("LACNIC", "https://ftp.lacnic.net/pub/stats/lacnic/delegated-lacnic-latest"),
    RIRSource("AFRINIC", "https://ftp.afrinic.net/stats/afrinic/delegated-afrinic-latest"),
)


@dataclass(frozen=True)
class AppConfig:
    sources: tuple[RIRSource, ...] = field(default_factory=lambda: DEFAULT_SOURCES)
    server_host: str = "0.0.0.0"
    server_port: int = 8080
    snapshot_path: str = "ip_ranges.json"
    refresh_interval_seconds: float = DAY_SECONDS
    fetch_timeout: float = 60.0
    fetch_max_retries: int = 3
    fetch_retry_delay: float = 5.0
    max_line_bytes: int = 1024 * 1024
    cache_ttl_seconds: float = DAY_SECONDS
    hot_cache_max_len: int = 100_000
    log_sample_interval: float = 10.0
    slow_request_ms: float = 100.0


def load_config() -> AppConfig:
    """Load configuration from the IPLOC_CONFIG json file, or fall back to environment variables."""
    config_path = os.environ.get(IPLOC_CONFIG)
    if config_path and Path(config_path).exists():
        return _load_from_json(config_path)
    return _load_from_env()


def _load_from_env() -> AppConfig:
    config = AppConfig(
        server_host=os.environ.get(IPLOC_HOST, "0.0.0.0"),
        server_port=int(os.environ.get(IPLOC_PORT, "8080")),
        snapshot_path=os.environ.get(IPLOC_SNAPSHOT_PATH, "ip_ranges.json"),
        refresh_interval_seconds=float(os.environ.get(IPLOC_REFRESH_INTERVAL, str(DAY_SECONDS))),
        fetch_timeout=float(os.environ.get(IPLOC_FETCH_TIMEOUT, "60")),
        fetch_max_retries=int(os.environ.get(IPLOC_FETCH_RETRIES, "3")),
        fetch_retry_delay=float(os.environ.get(IPLOC_FETCH_RETRY_DELAY, "5")),
        cache_ttl_seconds=float(os.environ.get(IPLOC_CACHE_TTL, str(DAY_SECONDS))),
        hot_cache_max_len=int(os.environ.get(IPLOC_HOT_CACHE_SIZE, "100000")),
        log_sample_interval=float(os.environ.get(IPLOC_LOG_SAMPLE_INTERVAL, "10")),
    )
    logger.info(f"Loaded configuration from environment ({len(config.sources)} RIR source(s))")
    return config


def _load_from_json(path: str) -> AppConfig:
    with open(path) as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"{path} contains invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level value must be an object")

    known = {f.name for f in fields(AppConfig)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"{path}: unknown configuration key(s): {', '.join(sorted(unknown))}")

    kwargs = dict(data)
    if "sources" in kwargs:
        kwargs["sources"] = _parse_sources(path, kwargs["sources"])

    config = AppConfig(**kwargs)
    logger.info(f"Loaded configuration from {path} ({len(config.sources)} RIR source(s))")
    return config


def _parse_sources(path: str, raw) -> tuple[RIRSource, ...]:
    if not isinstance(raw, list) or not raw:
        raise ValueError(f"{path}: 'sources' must be a non-empty list")
    sources = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict) or "name" not in item or "url" not in item:
            raise ValueError(f"{path}: sources[{i}] must have 'name' and 'url' fields")
        sources.append(RIRSource(name=str(item["name"]), url=str(item["url"])))
    return tuple(sources)
