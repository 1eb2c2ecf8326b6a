"""SOCKS5 TCP server: handshake, authentication, CONNECT and UDP ASSOCIATE."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import ssl
from typing import Optional

from .config import Config
from .protocol import (
    AUTH_FAILURE,
    AUTH_SUCCESS,
    AUTH_VERSION,
    VERSION,
    AddressType,
    Command,
    Method,
    Reply,
    SocksError,
    build_reply,
    format_ip,
    select_method,
)
from .udp import UDPHandler

log = logging.getLogger(__name__)

_CHUNK = 64 * 1024
_FAILURES = (SocksError, asyncio.IncompleteReadError, OSError)


async def read_address(reader: asyncio.StreamReader, address_type: int) -> str:
    """Read a DST.ADDR field of the given type and return it as text."""
    if address_type == AddressType.IPV4:
        return format_ip(await reader.readexactly(4))
    if address_type == AddressType.IPV6:
        return format_ip(await reader.readexactly(16))
    if address_type == AddressType.DOMAIN:
        length = (await reader.readexactly(1))[0]
        return (await reader.readexactly(length)).decode("utf-8", "replace")
    raise SocksError(f"unsupported address type: {address_type}", Reply.ADDRESS_TYPE_NOT_SUPPORTED)


async def _send(writer: asyncio.StreamWriter, data: bytes) -> None:
    writer.write(data)
    await writer.drain()


async def _pipe(src: asyncio.StreamReader, dst: asyncio.StreamWriter) -> None:
    while data := await src.read(_CHUNK):
        await _send(dst, data)


async def _close(writer: asyncio.StreamWriter) -> None:
    writer.close()
    with contextlib.suppress(Exception):
        await writer.wait_closed()


class Server:
    """A SOCKS5 server with optional user/password authentication and TLS."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self.addr = config.address
        self.credentials = config.users
        self.auth_enabled = bool(config.users)
        self.tls_context: Optional[ssl.SSLContext] = None
        self.udp_handler = UDPHandler(config) if config.udp.enable else None
        self._server: Optional[asyncio.base_events.Server] = None

        if config.tls.enable:
            try:
                context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
                context.minimum_version = ssl.TLSVersion.TLSv1_2
                context.load_cert_chain(config.tls.cert_file, config.tls.key_file)
                self.tls_context = context
            except (OSError, ssl.SSLError) as exc:
                log.warning("failed to load TLS certificate: %s; running without TLS", exc)
        self.use_tls = self.tls_context is not None

    async def start(self) -> None:
        """Start the UDP relay, if enabled, and bind the TCP listener."""
        if self._server is not None:
            raise RuntimeError("server is already running")
        if self.udp_handler is not None:
            try:
                await self.udp_handler.start()
            except (OSError, ValueError) as exc:
                raise RuntimeError(f"failed to start UDP service: {exc}") from exc
        try:
            host, sep, port = self.addr.rpartition(":")
            if not sep:
                raise ValueError(f"missing port in address {self.addr!r}")
            self._server = await asyncio.start_server(
                self.handle_connection, host.strip("[]") or None, int(port), ssl=self.tls_context
            )
        except (OSError, ValueError) as exc:
            self.stop()
            raise RuntimeError(f"failed to start server: {exc}") from exc
        log.info("SOCKS5 server listening on %s (TLS: %s, authentication: %s)",
                 self.addr, self.use_tls, self.auth_enabled)

    async def serve_forever(self) -> None:
        """Start if needed and accept connections until stopped."""
        if self._server is None:
            await self.start()
        try:
            await self._server.serve_forever()
        finally:
            self.stop()

    def stop(self) -> None:
        """Close the TCP listener and the UDP relay."""
        if self._server is not None:
            self._server.close()
            self._server = None
        if self.udp_handler is not None:
            self.udp_handler.stop()

    def address(self) -> tuple[str, int]:
        """Return the host and port the TCP listener is bound to."""
        if self._server is None or not self._server.sockets:
            raise RuntimeError("server is not running")
        sockname = self._server.sockets[0].getsockname()
        return sockname[0], sockname[1]

    def verify_credentials(self, username: str, password: str) -> bool:
        """Check a username and password against the configured users."""
        return username in self.credentials and self.credentials[username] == password

    async def handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Serve one client from handshake to the end of its request."""
        stage = "handshake"
        try:
            await self._handshake(reader, writer)
            stage = "request"
            await self._request(reader, writer)
        except _FAILURES as exc:
            log.info("%s failed: %s", stage, exc)
        finally:
            await _close(writer)

    async def _handshake(self, reader, writer) -> None:
        version, count = await reader.readexactly(2)
        if version != VERSION:
            raise SocksError(f"unsupported SOCKS version: {version}")
        method = select_method(await reader.readexactly(count), self.auth_enabled)
        await _send(writer, bytes((VERSION, method)))
        if method == Method.NO_ACCEPTABLE:
            raise SocksError("no supported authentication methods")
        if method == Method.USER_PASS:
            await self._user_pass_auth(reader, writer)

    async def _user_pass_auth(self, reader, writer) -> None:
        version, user_len = await reader.readexactly(2)
        if version != AUTH_VERSION:
            raise SocksError(f"unsupported auth version: {version}")
        username = await reader.readexactly(user_len)
        secret = await reader.readexactly((await reader.readexactly(1))[0])
        if self.verify_credentials(
            username.decode("utf-8", "surrogateescape"),
            secret.decode("utf-8", "surrogateescape"),
        ):
            await _send(writer, bytes((AUTH_VERSION, AUTH_SUCCESS)))
            return
        with contextlib.suppress(OSError):
            await _send(writer, bytes((AUTH_VERSION, AUTH_FAILURE)))
        raise SocksError("invalid credentials")

    async def _request(self, reader, writer) -> None:
        version, command, _, address_type = await reader.readexactly(4)
        if version != VERSION:
            raise SocksError(f"unsupported version: {version}")
        try:
            host = await read_address(reader, address_type)
            port = int.from_bytes(await reader.readexactly(2), "big")
        except SocksError as exc:
            await _send(writer, build_reply(exc.reply or Reply.SERVER_FAILURE, None, 0))
            raise
        except asyncio.IncompleteReadError as exc:
            await _send(writer, build_reply(Reply.SERVER_FAILURE, None, 0))
            raise SocksError(f"failed to read address: {exc}") from exc

        if command == Command.CONNECT:
            await self._connect(reader, writer, host, port)
        elif command == Command.UDP_ASSOCIATE:
            await self._udp_associate(reader, writer)
        else:
            await _send(writer, build_reply(Reply.COMMAND_NOT_SUPPORTED, None, 0))
            raise SocksError(f"unsupported command: {command}")

    async def _connect(self, reader, writer, host: str, port: int) -> None:
        try:
            dest_reader, dest_writer = await asyncio.open_connection(host, port)
        except OSError as exc:
            await _send(writer, build_reply(Reply.CONNECTION_REFUSED, None, 0))
            raise SocksError(f"failed to connect to target {host}:{port}: {exc}") from exc
        try:
            local = dest_writer.get_extra_info("sockname")
            await _send(writer, build_reply(Reply.SUCCESS, local[0], local[1]))
            tasks = {
                asyncio.ensure_future(_pipe(reader, dest_writer)),
                asyncio.ensure_future(_pipe(dest_reader, writer)),
            }
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            error = next(iter(done)).exception()
            if error is not None:
                raise error
        finally:
            await _close(dest_writer)

    async def _udp_associate(self, reader, writer) -> None:
        if self.udp_handler is None:
            await _send(writer, build_reply(Reply.COMMAND_NOT_SUPPORTED, None, 0))
            raise SocksError("UDP support is not enabled")
        host, port = self.udp_handler.local_address()
        await _send(writer, build_reply(Reply.SUCCESS, host, port))
        # The association lives as long as the control connection.
        with contextlib.suppress(OSError):
            while await reader.read(_CHUNK):
                pass