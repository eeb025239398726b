"""
UDP-based LAN discovery.

A requester broadcasts a fixed magic datagram and collects the replies
for a bounded time; a responder bound to the discovery port answers
every request with its display name and HTTP port.
"""

import asyncio
import logging
import socket
from collections.abc import Iterable

from discovery.errors import MalformedMessage, TransportError
from discovery.interfaces import interface_broadcast_addrs
from discovery.models import Peer, PeerDirectory

logger = logging.getLogger(__name__)

# --- Wire protocol ---

REQUEST_MAGIC = "DISTRIB-DISCOVER"
RESPONSE_MAGIC = "DISTRIB-HERE"
LIMITED_BROADCAST = "255.255.255.255"


def encode_request() -> bytes:
    return f"{REQUEST_MAGIC}\n".encode("ascii")


def encode_response(name: str, http_port: int) -> bytes:
    return f"{RESPONSE_MAGIC} {name} {http_port}\n".encode("utf-8")


def parse_response(data: bytes, addr: tuple[str, int]) -> Peer:
    """
    Parse a response datagram into a Peer.

    The host comes from the datagram's source address, never from the
    payload, so a peer cannot advertise somebody else's address.
    """
    try:
        parts = data.decode("utf-8").split()
    except UnicodeDecodeError as e:
        raise MalformedMessage(f"undecodable payload: {e}") from e

    if len(parts) != 3 or parts[0] != RESPONSE_MAGIC:
        raise MalformedMessage(f"unexpected payload: {data[:64]!r}")

    name, port_text = parts[1], parts[2]
    if not (port_text.isascii() and port_text.isdigit()) or not 0 < int(port_text) < 65536:
        raise MalformedMessage(f"bad port: {port_text!r}")

    return Peer(name=name, address=f"{addr[0]}:{int(port_text)}")


def _sanitize_name(name: str) -> str:
    # The response is whitespace-delimited; the name must stay one token
    return "-".join(name.split()) or "unknown"


# --- Requester ---

class _ResponseCollector(asyncio.DatagramProtocol):
    """Collects discovery responses into a PeerDirectory."""

    def __init__(self, directory: PeerDirectory) -> None:
        self.directory = directory
        self.lost: asyncio.Future = asyncio.get_running_loop().create_future()

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        try:
            peer = parse_response(data, addr)
        except MalformedMessage as e:
            logger.debug(f"Ignoring invalid discovery packet from {addr}: {e}")
            return

        if self.directory.add(peer):
            logger.info(f"Discovered peer: {peer.name} ({peer.address})")

    def error_received(self, exc: Exception) -> None:
        # Per-address send failures land here too; some interfaces
        # simply do not support broadcast
        logger.warning(f"Discovery UDP error: {exc}")

    def connection_lost(self, exc: Exception | None) -> None:
        if not self.lost.done():
            self.lost.set_result(exc)


async def discover_peers(
    port: int,
    timeout: float,
    broadcast_addrs: Iterable[str] | None = None,
) -> list[Peer]:
    """
    Run one discovery round and return the peers that answered.

    Sends the request to the limited broadcast address and to the
    directed-broadcast address of every local interface, or only to
    ``broadcast_addrs`` when given, then collects replies until
    ``timeout`` seconds pass or the socket fails.

    Raises:
        TransportError: the local UDP socket could not be opened.
    """
    loop = asyncio.get_running_loop()

    sock = None
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.setblocking(False)
        sock.bind(("0.0.0.0", 0))
        directory = PeerDirectory()
        transport, protocol = await loop.create_datagram_endpoint(
            lambda: _ResponseCollector(directory),
            sock=sock,
        )
    except OSError as e:
        if sock is not None:
            sock.close()
        raise TransportError(f"open UDP socket: {e}") from e

    try:
        if broadcast_addrs is None:
            targets = [LIMITED_BROADCAST, *interface_broadcast_addrs()]
        else:
            targets = list(broadcast_addrs)

        request = encode_request()
        for target in dict.fromkeys(targets):
            try:
                transport.sendto(request, (target, port))
            except OSError as e:
                logger.warning(f"Broadcast to {target} failed: {e}")

        try:
            exc = await asyncio.wait_for(asyncio.shield(protocol.lost), timeout)
            if exc is not None:
                logger.warning(f"Discovery socket closed early: {exc}")
        except asyncio.TimeoutError:
            pass
    finally:
        transport.close()

    return directory.peers()


# --- Responder ---

class _RequestHandler(asyncio.DatagramProtocol):
    """Answers every discovery request with a fixed response frame."""

    def __init__(self, response: bytes) -> None:
        self.response = response
        self.transport: asyncio.DatagramTransport | None = None
        self.lost: asyncio.Future = asyncio.get_running_loop().create_future()

    def connection_made(self, transport) -> None:
        self.transport = transport

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        if data.strip() != REQUEST_MAGIC.encode("ascii"):
            return
        logger.info(f"Discovery request from {addr[0]}:{addr[1]}")
        self.transport.sendto(self.response, addr)

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"Discovery UDP error: {exc}")

    def connection_lost(self, exc: Exception | None) -> None:
        if not self.lost.done():
            self.lost.set_result(exc)


class DiscoveryResponder:
    """Answers discovery requests on a UDP port until cancelled."""

    def __init__(self, port: int, name: str, http_port: int) -> None:
        self._port = port
        self._name = _sanitize_name(name)
        self._http_port = http_port
        self._transport: asyncio.DatagramTransport | None = None
        self._protocol: _RequestHandler | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def port(self) -> int:
        """The bound UDP port (resolves port 0 once started)."""
        if self._transport is not None:
            return self._transport.get_extra_info("sockname")[1]
        return self._port

    async def start(self) -> None:
        """
        Bind the discovery port.

        Raises:
            TransportError: the port could not be bound.
        """
        if self._transport is not None:
            return

        loop = asyncio.get_running_loop()
        response = encode_response(self._name, self._http_port)

        sock = None
        try:
            # SO_REUSEADDR before bind so a restarted server can rebind at once
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.setblocking(False)
            sock.bind(("0.0.0.0", self._port))
            transport, protocol = await loop.create_datagram_endpoint(
                lambda: _RequestHandler(response),
                sock=sock,
            )
        except OSError as e:
            if sock is not None:
                sock.close()
            raise TransportError(f"listen UDP :{self._port}: {e}") from e

        self._transport = transport
        self._protocol = protocol
        logger.info(f"Discovery listener on :{self.port} as {self._name!r}")

    async def serve(self) -> None:
        """Answer requests until the task is cancelled, then close the socket."""
        await self.start()
        protocol = self._protocol
        try:
            exc = await asyncio.shield(protocol.lost)
            if exc is not None:
                logger.error(f"Discovery listener lost its socket: {exc}")
        finally:
            self.close()

    def close(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None
            logger.info("Discovery listener stopped")
