"""Parser for the RIR "delegated extended" statistics format.

Each record line looks like::

    registry|cc|type|start|value|date|status[|opaque-id|...]

Only ``ipv4``/``ipv6`` records with an ``allocated`` or ``assigned`` status are
turned into ranges. Version, summary and comment lines are skipped.
"""

from ipaddress import IPv4Network, IPv6Network

from ip_country_locator.common.models import Range

_MIN_FIELDS = 7
_ACCEPTED_STATUSES = frozenset({"allocated", "assigned"})


class RangeParseError(ValueError):
    """A record line that looks like a range but cannot be turned into a valid CIDR."""


def parse_line(line: str) -> Range | None:
    """Parse one feed line.

    Returns ``None`` when the line is skipped (comment, header, reserved or
    non-IP record) and raises :class:`RangeParseError` for a malformed range.
    """
    line = line.strip()
    if not line or line.startswith("#"):
        return None

    parts = [p.strip() for p in line.split("|")]
    if len(parts) < _MIN_FIELDS:
        return None

    country, kind, start, value, status = parts[1], parts[2], parts[3], parts[4], parts[6]
    if country == "*" or status not in _ACCEPTED_STATUSES:
        return None
    if kind not in ("ipv4", "ipv6"):
        return None

    if kind == "ipv4":
        prefixlen = _ipv4_prefix_from_count(value)
        network_cls, version = IPv4Network, 4
    else:
        prefixlen = _int_field(value, "prefix length")
        if not 0 <= prefixlen <= 128:
            raise RangeParseError(f"IPv6 prefix length out of range: {prefixlen}")
        network_cls, version = IPv6Network, 6

    try:
        network = network_cls(f"{start}/{prefixlen}")
    except ValueError as e:
        raise RangeParseError(f"invalid network {start}/{prefixlen}: {e}") from e

    return Range(network=network, country_code=country, version=version)


def _ipv4_prefix_from_count(value: str) -> int:
    count = _int_field(value, "address count")
    # A block must be an exact power of two; anything else has no CIDR form.
    if count <= 0 or count > 2**32 or count & (count - 1):
        raise RangeParseError(f"IPv4 address count is not a power of two: {count}")
    return 32 - (count.bit_length() - 1)


def _int_field(value: str, what: str) -> int:
    try:
        return int(value, 10)
    except ValueError as e:
        raise RangeParseError(f"invalid {what}: {value!r}") from e
