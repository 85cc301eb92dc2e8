from ipaddress import IPv4Network, IPv6Network

import pytest

from ip_country_locator.common.rir_parser import RangeParseError, parse_line


def test_parse_ipv4_allocation() -> None:
    rng = parse_line("2|US|ipv4|192.168.0.0|65536|20100101|allocated")
    assert rng is not None
    assert rng.network == IPv4Network("192.168.0.0/16")
    assert rng.country_code == "US"
    assert rng.version == 4


def test_parse_ipv6_allocation() -> None:
    rng = parse_line("2|CA|ipv6|2001:db8::|32|20100101|allocated")
    assert rng is not None
    assert rng.network == IPv6Network("2001:db8::/32")
    assert rng.country_code == "CA"
    assert rng.version == 6


def test_assigned_status_and_extra_fields_accepted() -> None:
    rng = parse_line("ripencc|DE|ipv4|2.16.0.0|8192|20100712|assigned|e5d8c5fe-1a2b")
    assert rng is not None
    assert rng.network == IPv4Network("2.16.0.0/19")


def test_crlf_line_endings_are_tolerated() -> None:
    rng = parse_line("apnic|JP|ipv4|1.0.16.0|4096|20110412|allocated\r\n")
    assert rng is not None
    assert rng.network == IPv4Network("1.0.16.0/20")


def test_single_address_block() -> None:
    rng = parse_line("arin|US|ipv4|8.8.8.8|1|20100101|assigned")
    assert rng is not None
    assert rng.network.prefixlen == 32


def test_country_code_is_kept_as_published() -> None:
    rng = parse_line("lacnic|br|ipv4|200.0.0.0|65536|20100101|allocated")
    assert rng is not None
    assert rng.country_code == "br"


@pytest.mark.parametrize(
    "line",
    [
        "",
        "   ",
        "# comment line",
        "2|apnic|20240101|12345|19830613|20240101|+1000",
        "apnic|*|ipv4|*|50000|summary",
        "arin|*|ipv4|0.0.0.0|256|20100101|reserved",
        "arin|US|ipv4|10.0.0.0|256|20100101|reserved",
        "arin|US|ipv4|10.0.0.0|256|20100101|available",
        "arin|US|asn|15169|1|20000330|assigned",
    ],
)
def test_skipped_lines(line: str) -> None:
    assert parse_line(line) is None


@pytest.mark.parametrize(
    "line",
    [
        "arin|US|ipv4|10.0.0.0|300|20100101|allocated",
        "arin|US|ipv4|10.0.0.0|0|20100101|allocated",
        "arin|US|ipv4|10.0.0.0|abc|20100101|allocated",
        "arin|US|ipv4|10.0.0.999|256|20100101|allocated",
        "arin|US|ipv4|10.0.0.1|256|20100101|allocated",
        "ripencc|NL|ipv6|2001:db8::|129|20100101|allocated",
        "ripencc|NL|ipv6|2001:zz8::|32|20100101|allocated",
        "ripencc|NL|ipv6|2001:db8::|x|20100101|allocated",
    ],
)
def test_parse_errors(line: str) -> None:
    with pytest.raises(RangeParseError):
        parse_line(line)


def test_non_power_of_two_count_is_not_rounded() -> None:
    # 768 addresses would silently become a /23 or /22 if log2 were truncated.
    with pytest.raises(RangeParseError, match="power of two"):
        parse_line("lacnic|BR|ipv4|200.0.0.0|768|20100101|allocated")


@pytest.mark.parametrize("count", [2**k for k in range(0, 33)])
def test_ipv4_prefix_within_family_bounds(count: int) -> None:
    rng = parse_line(f"arin|US|ipv4|0.0.0.0|{count}|20100101|allocated")
    assert rng is not None
    assert 0 <= rng.network.prefixlen <= 32
    assert rng.network.num_addresses == count
