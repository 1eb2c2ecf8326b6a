# socks5d

A small asyncio SOCKS5 proxy server (RFC 1928). It offers optional
username/password authentication (RFC 1929), optional TLS on the control
connection, and an optional UDP relay for `UDP ASSOCIATE`.

The server handles the `CONNECT` and `UDP ASSOCIATE` commands. Any other
command gets a "command not supported" reply. Target addresses may be IPv4,
IPv6 or domain names.

## Installation

```
pip install .
```

The package needs only the standard library at runtime.

## Running

```
socks5d -c config.json
```

`-c` gives the path of the configuration file. It defaults to
`config.json`. The command exits with status 1 in three cases: the file
does not exist, it cannot be read or decoded, or the server fails to
start. Ctrl-C stops the server.

## Configuration

The configuration is a JSON object:

```json
{
  "address": "127.0.0.1:1080",
  "users": {
    "alice": "password"
  },
  "tls": {
    "enable": false,
    "cert_file": "server.crt",
    "key_file": "server.key"
  },
  "udp": {
    "enable": true,
    "address": "",
    "buffer_size": 65535,
    "timeout": 60
  }
}
```

- `address` is the TCP listen address, written as `host:port`. An IPv6
  host may be given in brackets. The default is `:1080`, which listens on
  all interfaces.
- `users` maps user names to passwords, and the passwords must be strings.
  If the map is empty or missing, clients connect without authentication.
  If it has entries, only username/password authentication is accepted.
- `tls`: when `enable` is true, the server loads the certificate and key
  and accepts TLS 1.2 or later. If they cannot be loaded, it logs a warning
  and runs without TLS.
- `udp`: when `enable` is true, a UDP relay is started.
  - `address` defaults to the TCP address.
  - `buffer_size` is the largest datagram accepted from a client, in bytes.
    Anything longer is cut to this size. Leave it at 0 and every datagram
    is dropped.
  - `timeout` is the number of seconds of inactivity after which a UDP
    session is closed. It must be positive, or the server fails to start.

A field with the wrong JSON type makes loading fail with `ValueError`.

## Using it as a library

```python
import asyncio

from socks5d.config import load_config
from socks5d.server import Server


async def run() -> None:
    server = Server(load_config("config.json"))
    await server.serve_forever()


asyncio.run(run())
```

Parts of the library API:

- `Config.from_dict()` builds a configuration from an already decoded
  object.
- `Server.start()` binds the listeners and returns.
- `Server.address()` gives the bound TCP address.
- `Server.stop()` closes the listener and the UDP relay.
- `UDPHandler` in `socks5d.udp` can run on its own:
  - `start()` and `stop()` run and close it.
  - `local_address()` gives the bound relay address.
  - `expire_sessions()` closes idle sessions.

The helpers in `socks5d.protocol` work on plain bytes and have no network
side effects: `select_method`, `build_reply`, `format_ip`,
`parse_udp_datagram` and `build_udp_response`.

## Limitations

- The `BIND` command is not supported.
- The configuration comes only from the JSON file. There is no way to set
  it through the environment.
- UDP sessions are keyed by the client's address. All datagrams from one
  client go to the target named in its first datagram.
- The relay does not check that a client has made a `UDP ASSOCIATE`
  request first.
- The FRAG field is not interpreted.
- Datagrams sent back to the client carry only the 4-byte header
  (`00 00 00 01`). They have no address or port fields.

## Tests

```
pip install ".[test]"
pytest
```