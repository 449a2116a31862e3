# edgenet

Small asyncio implementations of network protocols that devices at the edge
of a network tend to need. The package uses only the standard library.

- **DHCP**: packet encoding and decoding, a client that acquires, renews and
  releases a lease, and a server with an in-memory lease table.
- **Captive-portal DNS**: a responder that answers every `A`/`IN` question
  with one fixed IPv4 address.

The protocol logic works on plain `bytes` and knows nothing about sockets.
The asyncio layer accepts any object with coroutine methods
`send(remote, data)` and `receive(size)` returning `(data, remote)`;
`edgenet.udp.UdpSocket` is one such socket.

## Modules

| Module | Contents |
| --- | --- |
| `edgenet.udp` | `UdpSocket`: `bind`, `send`, `receive`, `local_address`, `close`, async context manager |
| `edgenet.captive` | `reply`, `run`, `DnsError`, `ShortBufError`, `InvalidMessageError` |
| `edgenet.dhcp_options` | `MessageType`, `DhcpOption` and its subclasses, `Options`, `DhcpError` and its subclasses |
| `edgenet.dhcp_packet` | `Packet`, `Settings` |
| `edgenet.dhcp_client` | `Client` |
| `edgenet.dhcp_server` | `Server`, `ServerOptions`, `Lease`, `Action`, `ActionKind` |
| `edgenet.dhcp_io` | `ClientLease`, `NetworkInfo`, `run_server` |

## DHCP packets

```python
from edgenet.dhcp_client import Client
from edgenet.dhcp_packet import Packet

client = Client(mac=bytes([0x02, 0x00, 0x00, 0x00, 0x00, 0x01]))
packet, xid = client.discover(secs=0, ip=None)
wire = packet.encode()          # padded to at least 272 bytes

decoded = Packet.decode(wire)
assert decoded.xid == xid
assert client.is_offer(decoded, xid) is False   # a request, not a reply
```

`Client` takes an optional `rng` with a `getrandbits` method for transaction
ids; by default it uses `random.SystemRandom`.

## Running a DHCP server

`Server` hands out addresses `.50` to `.200` of its own /24 and holds at most
`capacity` leases. `ServerOptions.create` sets a subnet mask of
`255.255.255.0` and a lease time of 7200 seconds; with `gateway=True` the
server also advertises itself as router.

```python
import asyncio
from ipaddress import IPv4Address

from edgenet.dhcp_io import run_server
from edgenet.dhcp_server import Server, ServerOptions
from edgenet.udp import UdpSocket

async def main():
    ip = IPv4Address("192.168.71.1")
    server = Server(now=None, ip=ip, capacity=64)
    options = ServerOptions.create(ip, gateway=True)
    async with await UdpSocket.bind(("0.0.0.0", 67), broadcast=True) as socket:
        await run_server(server, options, socket, 1500)

asyncio.run(main())
```

`run_server` skips packets that cannot be decoded. Replies to requests with
the broadcast flag set, or from a client whose source address is `0.0.0.0`,
go to `255.255.255.255`. With `now=None` the server uses a monotonic clock
in seconds.

## Acquiring a lease as a client

```python
from edgenet.dhcp_client import Client
from edgenet.dhcp_io import ClientLease
from edgenet.udp import UdpSocket

async def acquire(mac):
    client = Client(mac)
    async with await UdpSocket.bind(("0.0.0.0", 68), broadcast=True) as socket:
        lease, info = await ClientLease.create(client, socket)
        print(lease.ip, info.gateway, info.dns1)
        await lease.keep(client, socket)
```

`ClientLease.create` retries discovery until a server grants an address.
`keep` renews the lease once a third of it has passed and returns when a
renewal is refused or goes unanswered; `renew` and `release` can also be
called directly.

## Captive-portal DNS

```python
from datetime import timedelta
from ipaddress import IPv4Address

from edgenet.captive import reply, run
from edgenet.udp import UdpSocket

# Answer a single query held in `request` (bytes):
response = reply(request, IPv4Address("192.168.71.1"), timedelta(minutes=1), 1500)

# Or serve forever:
async def serve():
    async with await UdpSocket.bind(("::", 53), broadcast=False) as socket:
        await run(socket, IPv4Address("192.168.71.1"), timedelta(minutes=1), 1500)
```

`ttl` may be seconds or a `timedelta`. Requests that are not queries get an
empty `NOTIMP` reply. `reply` raises `InvalidMessageError` for malformed
requests and `ShortBufError` when the answer would not fit in `max_size`
bytes; `run` skips malformed requests and stops on any other error.

DHCP decoding problems raise subclasses of `DhcpError`, such as
`MissingCookieError`, `InvalidHlenError` or `DataUnderflowError`.

## What this package does not do

- It has no command-line programs; servers and clients are started from
  your own code as shown above.
- The DHCP server keeps its leases in memory only; they are lost when the
  process ends.
- Broadcast replies are sent through an ordinary UDP socket. Clients that
  need a unicast Ethernet frame addressed to their MAC address are not
  served specially.

## Tests

```
pip install -e .[test]
pytest
```