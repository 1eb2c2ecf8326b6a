"""UDP relay for the UDP ASSOCIATE command."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from .config import Config
from .protocol import Datagram, SocksError, build_udp_response, parse_udp_datagram

log = logging.getLogger(__name__)


def _split_host_port(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        number = int(port)
    except ValueError:
        raise ValueError(f"invalid port in address {address!r}") from None
    if not 0 <= number <= 0xFFFF:
        raise ValueError(f"port out of range in address {address!r}")
    return host, number


def _format_addr(addr: tuple) -> str:
    host, port = addr[0], addr[1]
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


@dataclass
class UDPSession:
    """One client's association with the target it first addressed."""

    client_addr: Any
    transport: asyncio.DatagramTransport
    last_active: float

    def close(self) -> None:
        self.transport.close()


class _ListenerProtocol(asyncio.DatagramProtocol):
    def __init__(self, queue: asyncio.Queue) -> None:
        self._queue = queue

    def datagram_received(self, data: bytes, addr: Any) -> None:
        self._queue.put_nowait((data, addr))

    def error_received(self, exc: Exception) -> None:
        log.warning("failed to read UDP data: %s", exc)


class _TargetProtocol(asyncio.DatagramProtocol):
    def __init__(self, handler: "UDPHandler") -> None:
        self._handler = handler
        self.session: Optional[UDPSession] = None

    def datagram_received(self, data: bytes, addr: Any) -> None:
        if self.session is not None:
            self._handler._relay_to_client(self.session, data)


class UDPHandler:
    """Relays SOCKS5 UDP datagrams between clients and their targets."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self.sessions: dict[str, UDPSession] = {}
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Bind the relay socket and start relaying and session expiry."""
        settings = self.config.udp
        if settings.timeout <= 0:
            raise ValueError("UDP session timeout must be positive")
        address = settings.address or self.config.address
        host, port = _split_host_port(address)

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _ListenerProtocol(queue), local_addr=(host or "0.0.0.0", port)
        )
        self._transport = transport
        log.info("UDP server listening on %s", address)
        self._tasks = [
            loop.create_task(self._expire_periodically()),
            loop.create_task(self._process(queue)),
        ]

    def stop(self) -> None:
        """Close the relay socket and every session."""
        if self._transport is not None:
            self._transport.close()
            self._transport = None
        for task in self._tasks:
            task.cancel()
        self._tasks = []
        for session in self.sessions.values():
            session.close()
        self.sessions = {}

    def local_address(self) -> tuple[str, int]:
        """Return the host and port the relay socket is bound to."""
        if self._transport is None:
            raise RuntimeError("UDP handler is not running")
        sockname = self._transport.get_extra_info("sockname")
        return sockname[0], sockname[1]

    def expire_sessions(self, now: Optional[float] = None) -> list[str]:
        """Close sessions idle longer than the timeout; return their keys."""
        if now is None:
            now = time.monotonic()
        timeout = self.config.udp.timeout
        expired = [key for key, s in self.sessions.items() if now - s.last_active > timeout]
        for key in expired:
            self.sessions.pop(key).close()
            log.info("expired UDP session %s", key)
        return expired

    async def handle_datagram(self, data: bytes, client_addr: Any) -> Optional[UDPSession]:
        """Forward one client datagram; return its session, or None if dropped."""
        data = data[: max(self.config.udp.buffer_size, 0)]
        try:
            datagram = parse_udp_datagram(data)
        except SocksError:
            return None

        key = _format_addr(client_addr)
        session = self.sessions.get(key)
        if session is None:
            session = await self._open_session(client_addr, datagram)
            if session is None:
                return None
            self.sessions[key] = session
        session.last_active = time.monotonic()

        try:
            session.transport.sendto(datagram.payload)
        except OSError as exc:
            log.warning("failed to forward UDP data: %s", exc)
        return session

    async def _open_session(self, client_addr: Any, datagram: Datagram) -> Optional[UDPSession]:
        loop = asyncio.get_running_loop()
        protocol = _TargetProtocol(self)
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: protocol, remote_addr=(datagram.host, datagram.port)
            )
        except OSError as exc:
            log.debug("cannot reach %s:%d: %s", datagram.host, datagram.port, exc)
            return None
        session = UDPSession(client_addr, transport, time.monotonic())
        protocol.session = session
        return session

    def _relay_to_client(self, session: UDPSession, data: bytes) -> None:
        if self._transport is None or self._transport.is_closing():
            return
        limit = max(self.config.udp.buffer_size - 4, 0)
        self._transport.sendto(build_udp_response(data[:limit]), session.client_addr)
        session.last_active = time.monotonic()

    async def _process(self, queue: asyncio.Queue) -> None:
        while True:
            data, addr = await queue.get()
            try:
                await self.handle_datagram(data, addr)
            except Exception:
                log.exception("error relaying UDP datagram from %s", addr)

    async def _expire_periodically(self) -> None:
        while True:
            await asyncio.sleep(self.config.udp.timeout)
            self.expire_sessions(time.monotonic())