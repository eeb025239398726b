import asyncio
import socket
import time
import unittest
from collections import namedtuple
from unittest.mock import patch

from discovery.errors import MalformedMessage, TransportError
from discovery.interfaces import broadcast_address, interface_broadcast_addrs
from discovery.models import Peer, PeerDirectory
from discovery.service import (
    DiscoveryResponder,
    discover_peers,
    encode_request,
    encode_response,
    parse_response,
)

IfAddr = namedtuple("IfAddr", "family address netmask broadcast ptp")
IfStats = namedtuple("IfStats", "isup duplex speed mtu flags")


def free_udp_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class _Replies(asyncio.DatagramProtocol):
    """Test client that records every datagram it receives."""

    def __init__(self):
        self.received: asyncio.Queue = asyncio.Queue()

    def datagram_received(self, data, addr):
        self.received.put_nowait(data)


class _FakeResponder(asyncio.DatagramProtocol):
    """Answers any datagram with a fixed burst of replies."""

    def __init__(self, replies):
        self.replies = replies

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        for reply in self.replies:
            self.transport.sendto(reply, addr)


class TestWireFormat(unittest.TestCase):
    def test_frames(self):
        self.assertEqual(encode_request(), b"DISTRIB-DISCOVER\n")
        self.assertEqual(encode_response("box", 9848), b"DISTRIB-HERE box 9848\n")

    def test_parse_uses_source_address(self):
        peer = parse_response(b"DISTRIB-HERE laptop 9848\n", ("192.168.1.20", 40000))
        self.assertEqual(peer, Peer(name="laptop", address="192.168.1.20:9848"))
        self.assertEqual(peer.host, "192.168.1.20")
        self.assertEqual(peer.port, 9848)

    def test_parse_rejects_malformed(self):
        for payload in [
            b"",
            b"DISTRIB-HERE laptop",
            b"DISTRIB-HERE laptop 9848 extra",
            b"HELLO laptop 9848",
            b"DISTRIB-HERE laptop http",
            b"DISTRIB-HERE laptop 0",
            b"DISTRIB-HERE laptop 70000",
            "DISTRIB-HERE laptop \u00b2".encode(),
            "DISTRIB-HERE laptop \u0669\u0668".encode(),
            b"\xff\xfe\xfd",
        ]:
            with self.assertRaises(MalformedMessage):
                parse_response(payload, ("10.0.0.1", 1))


class TestPeerDirectory(unittest.TestCase):
    def test_dedup_by_address(self):
        directory = PeerDirectory()
        self.assertTrue(directory.add(Peer(name="a", address="10.0.0.1:9848")))
        self.assertFalse(directory.add(Peer(name="renamed", address="10.0.0.1:9848")))
        self.assertTrue(directory.add(Peer(name="a", address="10.0.0.1:9000")))
        self.assertEqual(len(directory), 2)
        self.assertEqual(directory.peers()[0].name, "a")


class TestBroadcastAddresses(unittest.TestCase):
    def test_broadcast_address(self):
        self.assertEqual(broadcast_address("192.168.1.37", "255.255.255.0"), "192.168.1.255")
        self.assertEqual(broadcast_address("10.1.2.3", "255.255.0.0"), "10.1.255.255")
        self.assertEqual(broadcast_address("172.16.5.4", "255.255.255.252"), "172.16.5.7")

    def test_interface_filtering(self):
        addrs = {
            "lo": [IfAddr(socket.AF_INET, "127.0.0.1", "255.0.0.0", None, None)],
            "eth0": [
                IfAddr(socket.AF_INET, "192.168.1.37", "255.255.255.0", None, None),
                IfAddr(socket.AF_INET6, "fe80::1", "ffff:ffff:ffff:ffff::", None, None),
            ],
            "wlan0": [IfAddr(socket.AF_INET, "10.0.0.5", "255.255.0.0", None, None)],
            "tun0": [IfAddr(socket.AF_INET, "10.8.0.2", "255.255.255.0", None, None)],
            "eth1": [IfAddr(socket.AF_INET6, "fe80::2", "ffff:ffff:ffff:ffff::", None, None)],
        }
        stats = {
            "lo": IfStats(True, 0, 0, 65536, "up,loopback,running"),
            "eth0": IfStats(True, 2, 1000, 1500, "up,broadcast,running,multicast"),
            "wlan0": IfStats(False, 2, 0, 1500, "broadcast,multicast"),
            "tun0": IfStats(True, 0, 0, 1500, "up,pointopoint,running"),
            "eth1": IfStats(True, 2, 1000, 1500, "up,broadcast,running"),
        }
        with patch("discovery.interfaces.psutil.net_if_addrs", return_value=addrs), \
                patch("discovery.interfaces.psutil.net_if_stats", return_value=stats):
            self.assertEqual(interface_broadcast_addrs(), ["192.168.1.255"])


class TestDiscovery(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.responder = DiscoveryResponder(0, "test node", 8080)
        await self.responder.start()

    async def asyncTearDown(self):
        self.responder.close()

    async def _client(self):
        loop = asyncio.get_running_loop()
        transport, protocol = await loop.create_datagram_endpoint(
            _Replies, local_addr=("127.0.0.1", 0)
        )
        self.addCleanup(transport.close)
        return transport, protocol

    async def test_responder_replies_with_name_and_http_port(self):
        transport, protocol = await self._client()
        transport.sendto(encode_request(), ("127.0.0.1", self.responder.port))
        reply = await asyncio.wait_for(protocol.received.get(), 2)
        self.assertEqual(reply, b"DISTRIB-HERE test-node 8080\n")

    async def test_responder_ignores_other_payloads(self):
        transport, protocol = await self._client()
        transport.sendto(b"DISTRIB-HERE someone 1", ("127.0.0.1", self.responder.port))
        transport.sendto(b"  DISTRIB-DISCOVER  \r\n", ("127.0.0.1", self.responder.port))
        reply = await asyncio.wait_for(protocol.received.get(), 2)
        self.assertEqual(reply, b"DISTRIB-HERE test-node 8080\n")
        await asyncio.sleep(0.1)
        self.assertTrue(protocol.received.empty())

    async def test_discovery_round_against_responder(self):
        peers = await discover_peers(self.responder.port, 0.3, broadcast_addrs=["127.0.0.1"])
        self.assertEqual(peers, [Peer(name="test-node", address="127.0.0.1:8080")])

    async def test_discovery_dedups_and_drops_malformed(self):
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _FakeResponder([
                b"garbage",
                b"DISTRIB-HERE two-fields\n",
                "DISTRIB-HERE superscript \u00b2\n".encode(),
                b"DISTRIB-HERE fake 9000\n",
                b"DISTRIB-HERE fake-again 9000\n",
                b"DISTRIB-HERE other 9001\n",
            ]),
            local_addr=("127.0.0.1", 0),
        )
        self.addCleanup(transport.close)
        port = transport.get_extra_info("sockname")[1]

        peers = await discover_peers(port, 0.3, broadcast_addrs=["127.0.0.1"])
        self.assertEqual([p.address for p in peers], ["127.0.0.1:9000", "127.0.0.1:9001"])
        self.assertEqual(peers[0].name, "fake")

    async def test_unreachable_port_returns_empty_list(self):
        port = free_udp_port()
        started = time.monotonic()
        peers = await discover_peers(port, 0.2)
        self.assertEqual(peers, [])
        self.assertLess(time.monotonic() - started, 2)

    async def test_serve_closes_socket_on_cancel(self):
        responder = DiscoveryResponder(0, "short-lived", 1)
        await responder.start()
        port = responder.port
        task = asyncio.create_task(responder.serve())
        await asyncio.sleep(0.05)
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.05)

        # a socket without SO_REUSEADDR can only bind once the port is free
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.bind(("0.0.0.0", port))

    async def test_start_fails_when_port_taken(self):
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.bind(("0.0.0.0", 0))
            port = s.getsockname()[1]
            with self.assertRaises(TransportError):
                await DiscoveryResponder(port, "late", 1).start()


if __name__ == "__main__":
    unittest.main()
