import unittest

import aiohttp
from aiohttp import web
from aiohttp.test_utils import TestServer

from discovery.models import Peer
from transfer.errors import PushError
from transfer.service import push_file, push_to_peers


class FakeReceiver:
    """Minimal stand-in for a peer's /receive endpoint."""

    def __init__(self, status=200, reply=None):
        self.status = status
        self.reply = reply
        self.uploads = []

    async def handle(self, request: web.Request) -> web.Response:
        form = await request.post()
        upload = form["file"]
        self.uploads.append((upload.filename, form.get("sender"), upload.file.read()))
        if self.status != 200:
            return web.Response(status=self.status, text="boom")
        reply = self.reply or {"ok": True, "id": "20240309-143005-a1b2c3", "updated": False}
        return web.json_response(reply)


class TestPush(unittest.IsolatedAsyncioTestCase):
    async def start_receiver(self, receiver: FakeReceiver) -> str:
        app = web.Application()
        app.router.add_post("/receive", receiver.handle)
        server = TestServer(app, host="127.0.0.1")
        await server.start_server()
        self.addAsyncCleanup(server.close)
        return f"127.0.0.1:{server.port}"

    async def test_push_file_sends_multipart(self):
        receiver = FakeReceiver()
        address = await self.start_receiver(receiver)

        async with aiohttp.ClientSession() as session:
            entry_id, updated = await push_file(session, address, "notes.html", "alice", b"<p>hi</p>")

        self.assertEqual(entry_id, "20240309-143005-a1b2c3")
        self.assertFalse(updated)
        self.assertEqual(receiver.uploads, [("notes.html", "alice", b"<p>hi</p>")])

    async def test_push_file_error_status(self):
        address = await self.start_receiver(FakeReceiver(status=500))
        async with aiohttp.ClientSession() as session:
            with self.assertRaises(PushError) as ctx:
                await push_file(session, address, "notes.html", "alice", b"x")
        self.assertIn("500", str(ctx.exception))

    async def test_push_file_response_without_id(self):
        address = await self.start_receiver(FakeReceiver(reply={"ok": True}))
        async with aiohttp.ClientSession() as session:
            with self.assertRaises(PushError):
                await push_file(session, address, "notes.html", "alice", b"x")

    async def test_push_to_peers_continues_past_failures(self):
        good = await self.start_receiver(FakeReceiver(reply={"ok": True, "id": "20240309-143005-a1b2c3", "updated": True}))
        bad = await self.start_receiver(FakeReceiver(status=400))
        peers = [
            Peer(name="bad", address=bad),
            Peer(name="good", address=good),
        ]

        results = await push_to_peers(peers, "notes.html", "alice", b"<p>hi</p>", timeout=5)

        self.assertEqual([r.peer.name for r in results], ["bad", "good"])
        self.assertFalse(results[0].ok)
        self.assertIn("400", results[0].error)
        self.assertTrue(results[1].ok)
        self.assertTrue(results[1].updated)
        self.assertEqual(results[1].entry_id, "20240309-143005-a1b2c3")


if __name__ == "__main__":
    unittest.main()
