"""SOCKS5 wire format (RFC 1928, RFC 1929)."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable, Optional, Union

VERSION = 5
AUTH_VERSION = 0x01
AUTH_SUCCESS = 0x00
AUTH_FAILURE = 0x01

UDP_HEADER_SIZE = 4


class Method(IntEnum):
    NO_AUTH = 0x00
    GSSAPI = 0x01
    USER_PASS = 0x02
    NO_ACCEPTABLE = 0xFF


class Command(IntEnum):
    CONNECT = 0x01
    BIND = 0x02
    UDP_ASSOCIATE = 0x03


class AddressType(IntEnum):
    IPV4 = 0x01
    DOMAIN = 0x03
    IPV6 = 0x04


class Reply(IntEnum):
    SUCCESS = 0x00
    SERVER_FAILURE = 0x01
    CONNECTION_NOT_ALLOWED = 0x02
    NETWORK_UNREACHABLE = 0x03
    HOST_UNREACHABLE = 0x04
    CONNECTION_REFUSED = 0x05
    TTL_EXPIRED = 0x06
    COMMAND_NOT_SUPPORTED = 0x07
    ADDRESS_TYPE_NOT_SUPPORTED = 0x08


class SocksError(Exception):
    """A protocol violation, optionally carrying the reply code to send."""

    def __init__(self, message: str, reply: Optional[Reply] = None) -> None:
        super().__init__(message)
        self.reply = reply


@dataclass(frozen=True)
class Datagram:
    """A decoded UDP relay datagram."""

    host: str
    port: int
    payload: bytes


def select_method(offered: Iterable[int], auth_enabled: bool) -> Method:
    """Pick the authentication method the server accepts from those offered."""
    wanted = Method.USER_PASS if auth_enabled else Method.NO_AUTH
    return wanted if wanted in set(offered) else Method.NO_ACCEPTABLE


def build_reply(
    reply: int,
    host: Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address, None] = None,
    port: int = 0,
) -> bytes:
    """Encode a reply; without a host the bound address is all zeros."""
    header = bytes((VERSION, int(reply), 0x00))
    if host is None:
        return header + bytes((AddressType.IPV4,)) + bytes(6)

    ip = ipaddress.ip_address(host)
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    address_type = AddressType.IPV4 if ip.version == 4 else AddressType.IPV6
    return header + bytes((address_type,)) + ip.packed + (port & 0xFFFF).to_bytes(2, "big")


def format_ip(raw: bytes) -> str:
    """Render a packed 4- or 16-byte address as text."""
    if len(raw) == 4:
        return str(ipaddress.IPv4Address(bytes(raw)))
    if len(raw) == 16:
        ip = ipaddress.IPv6Address(bytes(raw))
        mapped = ip.ipv4_mapped
        return str(mapped) if mapped is not None else str(ip)
    raise ValueError(f"invalid IP address length: {len(raw)}")


def parse_udp_datagram(data: bytes) -> Datagram:
    """Decode RSV, FRAG, ATYP, DST.ADDR, DST.PORT and the payload."""
    size = len(data)
    if size < UDP_HEADER_SIZE:
        raise SocksError("datagram shorter than its header")

    address_type = data[3]
    offset = UDP_HEADER_SIZE
    if address_type == AddressType.IPV4:
        end = offset + 4
        if size < end + 2:
            raise SocksError("truncated IPv4 datagram")
        host = format_ip(data[offset:end])
    elif address_type == AddressType.DOMAIN:
        if size < offset + 1:
            raise SocksError("truncated domain datagram")
        start = offset + 1
        end = start + data[offset]
        if size < end + 2:
            raise SocksError("truncated domain datagram")
        host = bytes(data[start:end]).decode("utf-8", "replace")
    elif address_type == AddressType.IPV6:
        end = offset + 16
        if size < end + 2:
            raise SocksError("truncated IPv6 datagram")
        host = format_ip(data[offset:end])
    else:
        raise SocksError(
            f"unsupported address type: {address_type}",
            Reply.ADDRESS_TYPE_NOT_SUPPORTED,
        )

    port = int.from_bytes(data[end:end + 2], "big")
    return Datagram(host=host, port=port, payload=bytes(data[end + 2:]))


def build_udp_response(payload: bytes) -> bytes:
    """Prefix a payload returned by a target with the relay header."""
    return bytes((0x00, 0x00, 0x00, AddressType.IPV4)) + bytes(payload)