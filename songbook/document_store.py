"""
Document store backed by one text file per song.

The store is the source of truth for song content. Everything the search
index knows is derived from these files and can be rebuilt from them.

Layout:
    <songs_root>/<id>.song   UTF-8 song text, written atomically
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Iterator

from .errors import SongNotFound, StorageError, ValidationError
from .types import is_valid_id

logger = logging.getLogger(__name__)

SONG_EXTENSION = ".song"


class SongStore:
    """
    File-backed store for raw song text keyed by ID.

    All methods block on I/O; the coordinator calls them from worker
    threads. Concurrent writes to the same ID are serialized by the
    coordinator, not here.
    """

    def __init__(self, songs_root: Path):
        """
        Args:
            songs_root: Directory holding the .song files (created if absent)
        """
        self._root = Path(songs_root)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, id: str) -> Path:
        if not is_valid_id(id):
            raise ValidationError(f"Invalid song id: {id!r}", song_id=id)
        return self._root / f"{id}{SONG_EXTENSION}"

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def write(self, id: str, body: str) -> None:
        """
        Write a song, replacing any previous content.

        The body goes to a temporary file in the same directory which then
        replaces the target, so readers see either the old or the new body.

        Raises:
            StorageError: If the file could not be written
        """
        path = self._path(id)
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=self._root, prefix=f".{id}.", suffix=".tmp",
            )
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(body)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise StorageError(f"Failed to write song {id}: {e}", song_id=id) from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

    def delete(self, id: str) -> None:
        """
        Delete a song.

        Raises:
            SongNotFound: If there is no such song
            StorageError: If the file exists but could not be removed
        """
        path = self._path(id)
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise SongNotFound(f"Song {id} does not exist", song_id=id) from e
        except OSError as e:
            raise StorageError(f"Failed to delete song {id}: {e}", song_id=id) from e

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def read(self, id: str) -> str:
        """
        Read a song's raw text.

        Raises:
            SongNotFound: If there is no such song
            StorageError: If the file could not be read
        """
        path = self._path(id)
        try:
            with open(path, encoding="utf-8", newline="") as f:
                return f.read()
        except FileNotFoundError as e:
            raise SongNotFound(f"Song {id} does not exist", song_id=id) from e
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Failed to read song {id}: {e}", song_id=id) from e

    def exists(self, id: str) -> bool:
        """Check if a song exists. Malformed IDs never exist."""
        if not is_valid_id(id):
            return False
        return (self._root / f"{id}{SONG_EXTENSION}").is_file()

    def list_ids(self) -> list[str]:
        """List all song IDs, sorted."""
        return sorted(self.iter_ids())

    def iter_ids(self) -> Iterator[str]:
        try:
            entries = list(os.scandir(self._root))
        except OSError as e:
            raise StorageError(f"Failed to list songs in {self._root}: {e}") from e
        for entry in entries:
            name = entry.name
            if not name.endswith(SONG_EXTENSION) or name.startswith("."):
                continue
            id = name[:-len(SONG_EXTENSION)]
            if is_valid_id(id) and entry.is_file():
                yield id

    def count(self) -> int:
        return sum(1 for _ in self.iter_ids())

    def close(self) -> None:
        """Nothing to release; present for protocol symmetry."""
