import logging
from ipaddress import ip_address

from ip_country_locator.common.constants import UNKNOWN_COUNTRY
from ip_country_locator.common.interfaces import Cache, Store
from ip_country_locator.common.models import IPResponse

logger = logging.getLogger(__name__)


class InvalidAddressError(ValueError):
    def __init__(self, address: str):
        self.address = address
        super().__init__(f"invalid IP address: {address}")


class Resolver:
    """Answers address -> country via hot cache, range cache, then the store.

    Cache failures only cost latency: they are logged and treated as misses.
    Only a malformed address or a store failure reaches the caller.
    """

    def __init__(self, store: Store, cache: Cache):
        self.store = store
        self.cache = cache

    async def lookup(self, address: str) -> IPResponse:
        country = await self._cached_hot(address)
        if country:
            return IPResponse(ip=address, country_code=country)

        try:
            parsed = ip_address(address)
        except ValueError:
            raise InvalidAddressError(address) from None
        # IPv4-mapped IPv6 addresses are owned by the IPv4 block they embed.
        if parsed.version == 6 and parsed.ipv4_mapped is not None:
            parsed = parsed.ipv4_mapped

        country = await self._cached_range(parsed)
        if country:
            await self._remember(address, country)
            return IPResponse(ip=address, country_code=country)

        country = await self.store.find_owner(parsed)
        # Unknown is never cached so a later refresh can still resolve the address.
        if country != UNKNOWN_COUNTRY:
            await self._remember(address, country)
        return IPResponse(ip=address, country_code=country)

    async def _cached_hot(self, address: str) -> str | None:
        try:
            return await self.cache.get_hot(address)
        except Exception:
            logger.warning("hot cache read failed for %s", address, exc_info=True)
            return None

    async def _cached_range(self, parsed) -> str | None:
        try:
            return await self.cache.lookup_range_index(parsed)
        except Exception:
            logger.warning("range cache read failed for %s", parsed, exc_info=True)
            return None

    async def _remember(self, address: str, country: str) -> None:
        try:
            await self.cache.set_hot(address, country)
        except Exception:
            logger.warning("failed to cache IP lookup result for %s", address, exc_info=True)
