"""
HTTP push of a document to discovered peers.

Each peer receives a multipart POST to ``/receive`` with the document
under ``file`` and the sender's display name under ``sender``.
"""

import asyncio
import json
import logging

import aiohttp

from config import PUSH_TIMEOUT
from discovery.models import Peer
from transfer.errors import PushError
from transfer.models import PushResult

logger = logging.getLogger(__name__)


async def push_file(
    session: aiohttp.ClientSession,
    address: str,
    filename: str,
    sender: str,
    data: bytes,
) -> tuple[str, bool]:
    """
    Upload one document to ``address`` ("host:port").

    Returns:
        (entry_id, updated) as reported by the receiver.
    Raises:
        PushError: the request failed or the response was unusable.
    """
    form = aiohttp.FormData()
    form.add_field("file", data, filename=filename, content_type="text/html")
    form.add_field("sender", sender)

    url = f"http://{address}/receive"
    try:
        async with session.post(url, data=form) as resp:
            body = await resp.text()
            if resp.status != 200:
                raise PushError(f"server returned {resp.status}: {body.strip()}")
    except aiohttp.ClientError as e:
        raise PushError(f"POST {url}: {e}") from e
    except asyncio.TimeoutError as e:
        raise PushError(f"POST {url}: timed out") from e

    try:
        result = json.loads(body)
    except ValueError as e:
        raise PushError(f"parse response: {e}") from e

    entry_id = result.get("id") if isinstance(result, dict) else None
    if not isinstance(entry_id, str):
        raise PushError(f"response without id: {body.strip()}")
    return entry_id, bool(result.get("updated", False))


async def _push_one(
    session: aiohttp.ClientSession,
    peer: Peer,
    filename: str,
    sender: str,
    data: bytes,
) -> PushResult:
    try:
        entry_id, updated = await push_file(session, peer.address, filename, sender, data)
    except PushError as e:
        logger.warning(f"Push of {filename} to {peer.name} ({peer.address}) failed: {e}")
        return PushResult(peer=peer, error=str(e))
    logger.info(f"Pushed {filename} to {peer.name} ({peer.address}) as {entry_id}")
    return PushResult(peer=peer, entry_id=entry_id, updated=updated)


async def push_to_peers(
    peers: list[Peer],
    filename: str,
    sender: str,
    data: bytes,
    timeout: float = PUSH_TIMEOUT,
) -> list[PushResult]:
    """Upload to every peer concurrently. One failure never stops the others."""
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    async with aiohttp.ClientSession(timeout=client_timeout) as session:
        return list(await asyncio.gather(
            *(_push_one(session, peer, filename, sender, data) for peer in peers)
        ))
