"""Pydantic models for stored documents."""

from datetime import datetime

from pydantic import BaseModel


class FileEntry(BaseModel):
    """Metadata of one stored document, persisted as meta.json."""
    id: str  # fixed at first receipt, kept across updates
    filename: str  # as supplied by the sender, never used as a path
    sender: str
    received_at: datetime  # last successful write
    size: int
    sha256: str  # hex digest of the current content
