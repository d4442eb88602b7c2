# ipledger/core/address.py
import ipaddress
from typing import Optional, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def parse_address(value: Union[str, bytes, IPAddress]) -> IPAddress:
    """
    Parse an address given as text, ASCII bytes or an ipaddress object.

    IPv4-mapped IPv6 addresses (::ffff:a.b.c.d) collapse to plain IPv4 so that
    both spellings land on the same reservation record. Zoned IPv6 addresses
    are rejected. Raises ValueError on anything else that is not an address.
    """
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        addr = value
    elif isinstance(value, (str, bytes)):
        text = value.decode("ascii") if isinstance(value, bytes) else value
        # ip_address() would also take ints and packed bytes; records are text only
        addr = ipaddress.ip_address(text)
    else:
        raise ValueError(f"Not an IP address: {value!r}")

    if isinstance(addr, ipaddress.IPv6Address):
        if addr.scope_id:
            raise ValueError(f"Zoned IPv6 addresses are not supported: {value!r}")
        if addr.ipv4_mapped is not None:
            return addr.ipv4_mapped
    return addr


def try_parse_address(value: Union[str, bytes, IPAddress]) -> Optional[IPAddress]:
    """Like parse_address(), but returns None instead of raising."""
    try:
        return parse_address(value)
    except ValueError:
        return None


def canonical_address(value: Union[str, bytes, IPAddress]) -> str:
    """Canonical text form used as the record file name."""
    return str(parse_address(value))
