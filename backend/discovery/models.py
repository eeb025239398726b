"""Pydantic models for peer discovery."""

from pydantic import BaseModel


class Peer(BaseModel):
    """A device that answered a discovery request."""
    name: str  # display only, not unique
    address: str  # "host:http_port"

    @property
    def host(self) -> str:
        return self.address.rsplit(":", 1)[0]

    @property
    def port(self) -> int:
        return int(self.address.rsplit(":", 1)[1])


class PeerDirectory:
    """Peers collected during a single discovery round, unique by address."""

    def __init__(self) -> None:
        self._peers: dict[str, Peer] = {}

    def add(self, peer: Peer) -> bool:
        """Record a peer. Returns False if its address was already seen."""
        if peer.address in self._peers:
            return False
        self._peers[peer.address] = peer
        return True

    def peers(self) -> list[Peer]:
        return list(self._peers.values())

    def __len__(self) -> int:
        return len(self._peers)
