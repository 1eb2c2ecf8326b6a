import asyncio
import ipaddress

import pytest

from socks5d.config import Config, UDPSettings
from socks5d.udp import UDPHandler

LOOPBACK = "127.0.0.1"


class _Collector(asyncio.DatagramProtocol):
    def __init__(self):
        self.received = asyncio.Queue()

    def datagram_received(self, data, addr):
        self.received.put_nowait((data, addr))


async def _endpoint():
    loop = asyncio.get_running_loop()
    return await loop.create_datagram_endpoint(_Collector, local_addr=(LOOPBACK, 0))


def _config(buffer_size=65535, timeout=30):
    return Config(
        address=f"{LOOPBACK}:0",
        udp=UDPSettings(enable=True, address="", buffer_size=buffer_size, timeout=timeout),
    )


def _request(port, payload):
    return b"\x00\x00\x00\x01" + ipaddress.ip_address(LOOPBACK).packed + port.to_bytes(2, "big") + payload


async def _receive(protocol):
    return await asyncio.wait_for(protocol.received.get(), 5)


@pytest.mark.asyncio
async def test_relay_round_trip_and_session_reuse():
    handler = UDPHandler(_config())
    await handler.start()
    target_transport, target = await _endpoint()
    client_transport, client = await _endpoint()
    try:
        target_port = target_transport.get_extra_info("sockname")[1]
        client_transport.sendto(_request(target_port, b"ping"), handler.local_address())
        data, source = await _receive(target)
        assert data == b"ping"

        target_transport.sendto(b"pong", source)
        reply, _ = await _receive(client)
        assert reply == b"\x00\x00\x00\x01pong"

        # Later datagrams go to the session's first target whatever they name.
        client_transport.sendto(_request(1, b"again"), handler.local_address())
        data, _ = await _receive(target)
        assert data == b"again"
        assert len(handler.sessions) == 1
    finally:
        handler.stop()
        target_transport.close()
        client_transport.close()


@pytest.mark.asyncio
async def test_payload_truncated_to_buffer_size():
    header_size = len(_request(0, b""))
    handler = UDPHandler(_config(buffer_size=header_size + 4))
    target_transport, target = await _endpoint()
    try:
        target_port = target_transport.get_extra_info("sockname")[1]
        session = await handler.handle_datagram(_request(target_port, b"abcdefgh"), (LOOPBACK, 40000))
        assert handler.sessions == {"127.0.0.1:40000": session}
        data, _ = await _receive(target)
        assert data == b"abcd"
    finally:
        handler.stop()
        target_transport.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("data", [b"", b"\x00\x00\x00", b"\x00\x00\x00\x09" + bytes(8), b"\x00\x00\x00\x01\x7f"])
async def test_malformed_datagrams_are_dropped(data):
    handler = UDPHandler(_config())
    assert await handler.handle_datagram(data, (LOOPBACK, 40000)) is None
    assert handler.sessions == {}


@pytest.mark.asyncio
async def test_expire_sessions():
    handler = UDPHandler(_config(timeout=30))
    try:
        session = await handler.handle_datagram(_request(9, b"x"), (LOOPBACK, 40000))
        assert list(handler.sessions) == ["127.0.0.1:40000"]
        assert handler.expire_sessions(session.last_active + 1) == []
        assert len(handler.sessions) == 1
        assert handler.expire_sessions(session.last_active + 31) == ["127.0.0.1:40000"]
        assert handler.sessions == {}
        assert session.transport.is_closing()
    finally:
        handler.stop()


@pytest.mark.asyncio
async def test_stop_closes_sessions():
    handler = UDPHandler(_config())
    await handler.start()
    session = await handler.handle_datagram(_request(9, b"x"), (LOOPBACK, 40001))
    handler.stop()
    assert handler.sessions == {}
    assert session.transport.is_closing()
    with pytest.raises(RuntimeError):
        handler.local_address()


def test_local_address_before_start():
    with pytest.raises(RuntimeError):
        UDPHandler(_config()).local_address()


@pytest.mark.asyncio
async def test_start_requires_positive_timeout():
    with pytest.raises(ValueError):
        await UDPHandler(_config(timeout=0)).start()


@pytest.mark.asyncio
@pytest.mark.parametrize("address", ["nonsense", "127.0.0.1:port", "127.0.0.1:70000"])
async def test_start_rejects_bad_address(address):
    config = _config()
    config.udp.address = address
    with pytest.raises(ValueError):
        await UDPHandler(config).start()


@pytest.mark.asyncio
async def test_udp_address_falls_back_to_tcp_address():
    handler = UDPHandler(_config())
    await handler.start()
    try:
        host, port = handler.local_address()
        assert host == LOOPBACK
        assert 0 < port <= 65535
    finally:
        handler.stop()