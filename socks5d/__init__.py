"""Asyncio SOCKS5 proxy server with optional authentication, TLS and a UDP relay."""

__version__ = "0.1.0"
__all__ = ["config", "protocol", "udp", "server", "cli"]