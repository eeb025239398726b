"""
Filesystem-backed content store.

Each document lives in its own directory named by its identifier::

    <data_dir>/files/<YYYYMMDD>-<HHMMSS>-<hhhhhh>/
        original.html   raw bytes, served as-is
        meta.json       FileEntry

A resend with the same filename and sender overwrites the existing
entry in place and keeps its identifier, so links to it stay valid.
"""

import logging
import os
import re
import shutil
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path

from pydantic import ValidationError

from security.digest import id_suffix, sha256_hex
from store.errors import EntryNotFound, InvalidIdentifier, PersistenceError, StoreError
from store.models import FileEntry

logger = logging.getLogger(__name__)

VALID_ID = re.compile(r"[0-9]{8}-[0-9]{6}-[0-9a-f]{6}")
ID_TIME_FORMAT = "%Y%m%d-%H%M%S"

CONTENT_FILENAME = "original.html"
META_FILENAME = "meta.json"

# Seconds to step forward when a fresh identifier is already taken
MAX_ID_ATTEMPTS = 60


def is_valid_id(entry_id) -> bool:
    return isinstance(entry_id, str) and VALID_ID.fullmatch(entry_id) is not None


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _atomic_write(path: Path, data: bytes) -> None:
    """Write via a temp file in the same directory and rename over ``path``."""
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        tmp.write_bytes(data)
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


class ContentStore:
    """Stores received documents under content-and-time derived identifiers."""

    def __init__(
        self,
        data_dir: str | Path,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._base_dir = Path(data_dir) / "files"
        self._clock = clock or _local_now
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"create storage dir: {e}") from e

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    # --- Writes ---

    def save(self, filename: str, sender: str, data: bytes) -> tuple[FileEntry, bool]:
        """
        Store a document.

        If an entry with the same filename and sender exists, its content
        and metadata are replaced and its identifier is kept.

        Returns:
            (entry, was_update)
        """
        hash_hex = sha256_hex(data)
        now = self._clock()

        existing = self.find_by_filename_and_sender(filename, sender)
        if existing is not None:
            entry_id = existing.id
            was_update = True
        else:
            entry_id = self._create_entry_dir(now, hash_hex)
            was_update = False

        entry = FileEntry(
            id=entry_id,
            filename=filename,
            sender=sender,
            received_at=now,
            size=len(data),
            sha256=hash_hex,
        )
        try:
            self._write_entry(entry, data)
        except PersistenceError:
            if not was_update:
                # release the identifier reserved by _create_entry_dir
                shutil.rmtree(self._base_dir / entry_id, ignore_errors=True)
            raise

        logger.debug(
            f"{'Updated' if was_update else 'Stored'} {entry.id} "
            f"({entry.filename!r} from {entry.sender}, {entry.size} bytes)"
        )
        return entry, was_update

    def delete(self, entry_id: str) -> None:
        """Remove an entry directory with everything in it."""
        self._check_id(entry_id)
        entry_dir = self._base_dir / entry_id
        if not entry_dir.is_dir():
            raise EntryNotFound(f"no entry {entry_id}")
        try:
            shutil.rmtree(entry_dir)
        except FileNotFoundError as e:
            raise EntryNotFound(f"no entry {entry_id}") from e
        except OSError as e:
            raise PersistenceError(f"delete entry {entry_id}: {e}") from e
        logger.info(f"Deleted {entry_id}")

    def _create_entry_dir(self, now: datetime, hash_hex: str) -> str:
        suffix = id_suffix(hash_hex)
        for offset in range(MAX_ID_ATTEMPTS):
            stamp = (now + timedelta(seconds=offset)).strftime(ID_TIME_FORMAT)
            entry_id = f"{stamp}-{suffix}"
            try:
                (self._base_dir / entry_id).mkdir()
            except FileExistsError:
                continue
            except OSError as e:
                raise PersistenceError(f"create entry dir: {e}") from e
            return entry_id
        raise PersistenceError(f"no free identifier for digest {suffix}")

    def _write_entry(self, entry: FileEntry, data: bytes) -> None:
        # Content first, then metadata; the pair is not transactional
        entry_dir = self._base_dir / entry.id
        try:
            _atomic_write(entry_dir / CONTENT_FILENAME, data)
            _atomic_write(
                entry_dir / META_FILENAME,
                entry.model_dump_json(indent=2).encode("utf-8"),
            )
        except OSError as e:
            raise PersistenceError(f"write entry {entry.id}: {e}") from e

    # --- Reads ---

    def list(self) -> list[FileEntry]:
        """All readable entries, most recently received first."""
        try:
            children = sorted(self._base_dir.iterdir())
        except OSError as e:
            raise PersistenceError(f"read storage dir: {e}") from e

        entries: list[FileEntry] = []
        for child in children:
            if not is_valid_id(child.name) or not child.is_dir():
                continue
            try:
                entries.append(self._load(child.name))
            except StoreError as e:
                logger.debug(f"Skipping entry {child.name}: {e}")

        entries.sort(key=lambda e: e.received_at, reverse=True)
        return entries

    def find_by_filename_and_sender(self, filename: str, sender: str) -> FileEntry | None:
        """Most recent entry with this filename and sender, if any."""
        for entry in self.list():
            if entry.filename == filename and entry.sender == sender:
                return entry
        return None

    def get(self, entry_id: str) -> FileEntry:
        self._check_id(entry_id)
        return self._load(entry_id)

    def content_path(self, entry_id: str) -> Path:
        """
        Location of the raw bytes for ``entry_id``.

        The file is not checked for existence; readers must handle a
        missing file themselves.
        """
        self._check_id(entry_id)
        return self._base_dir / entry_id / CONTENT_FILENAME

    def _load(self, entry_id: str) -> FileEntry:
        meta_path = self._base_dir / entry_id / META_FILENAME
        try:
            raw = meta_path.read_bytes()
        except FileNotFoundError as e:
            raise EntryNotFound(f"no entry {entry_id}") from e
        except OSError as e:
            raise PersistenceError(f"read metadata {entry_id}: {e}") from e

        try:
            entry = FileEntry.model_validate_json(raw)
        except ValidationError as e:
            raise PersistenceError(f"parse metadata {entry_id}: {e}") from e

        if entry.received_at.tzinfo is None:
            entry.received_at = entry.received_at.astimezone()
        return entry

    @staticmethod
    def _check_id(entry_id) -> None:
        if not is_valid_id(entry_id):
            raise InvalidIdentifier(f"invalid file ID: {entry_id!r}")
