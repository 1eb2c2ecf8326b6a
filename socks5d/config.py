"""Server configuration loaded from a JSON file."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from os import PathLike
from typing import Any, Union

DEFAULT_ADDRESS = ":1080"


def _typed(data: dict, key: str, kind: type, default: Any) -> Any:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise ValueError(f"configuration field {key!r} must be of type {kind.__name__}")
    return value


def _build(cls: type, data: dict) -> Any:
    return cls(**{f.name: _typed(data, f.name, type(f.default), f.default) for f in fields(cls)})


@dataclass
class TLSSettings:
    """TLS listener settings."""

    enable: bool = False
    cert_file: str = ""
    key_file: str = ""


@dataclass
class UDPSettings:
    """UDP relay settings; an empty address means the TCP address."""

    enable: bool = False
    address: str = ""
    buffer_size: int = 0
    timeout: int = 0


@dataclass
class Config:
    """Complete server configuration."""

    address: str = DEFAULT_ADDRESS
    users: dict[str, str] = field(default_factory=dict)
    tls: TLSSettings = field(default_factory=TLSSettings)
    udp: UDPSettings = field(default_factory=UDPSettings)

    @classmethod
    def from_dict(cls, data: Any) -> "Config":
        """Build a configuration from decoded JSON, applying defaults."""
        data = {} if data is None else data
        if not isinstance(data, dict):
            raise ValueError("configuration must be a JSON object")
        users = _typed(data, "users", dict, {})
        if not all(isinstance(secret, str) for secret in users.values()):
            raise ValueError("user passwords must be strings")
        return cls(
            address=_typed(data, "address", str, "") or DEFAULT_ADDRESS,
            users=dict(users),
            tls=_build(TLSSettings, _typed(data, "tls", dict, {})),
            udp=_build(UDPSettings, _typed(data, "udp", dict, {})),
        )


def load_config(path: Union[str, PathLike]) -> Config:
    """Read and decode the JSON configuration file at *path*."""
    with open(path, "rb") as handle:
        return Config.from_dict(json.loads(handle.read()))