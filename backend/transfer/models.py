"""Pydantic models for pushing documents to peers."""

from pydantic import BaseModel

from discovery.models import Peer


class PushResult(BaseModel):
    """Outcome of uploading one document to one peer."""
    peer: Peer
    entry_id: str | None = None
    updated: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
