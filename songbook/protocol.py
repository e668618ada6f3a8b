"""
Protocol definitions for the songbook storage collaborators.

The coordinator only talks to these interfaces:
- DocumentStoreProtocol: authoritative song text (files locally)
- SearchIndexProtocol: derived full-text index (SQLite FTS5 locally)
- KeyStoreProtocol: persistence of the capability keys
"""

from typing import Optional, Protocol, runtime_checkable

from .types import KeyPair, SearchHit, SongDocument


@runtime_checkable
class DocumentStoreProtocol(Protocol):
    """
    Raw song text keyed by ID.

    Implemented by:
    - SongStore (one file per song)
    """

    def read(self, id: str) -> str: ...

    def write(self, id: str, body: str) -> None: ...

    def delete(self, id: str) -> None: ...

    def exists(self, id: str) -> bool: ...

    def list_ids(self) -> list[str]: ...

    def close(self) -> None: ...


@runtime_checkable
class SearchIndexProtocol(Protocol):
    """
    Full-text index over song projections.

    Implemented by:
    - SearchIndex (SQLite FTS5)
    """

    def add_or_update(self, document: SongDocument) -> None: ...

    def remove(self, id: str) -> None: ...

    def query(self, query: Optional[str], limit: Optional[int] = None) -> list[SearchHit]: ...

    def rebuild_all(self, store: DocumentStoreProtocol) -> int: ...

    def list_ids(self) -> list[str]: ...

    def close(self) -> None: ...


@runtime_checkable
class KeyStoreProtocol(Protocol):
    """
    Capability key persistence.

    Implemented by:
    - KeyStore (one file per key in the data root)
    """

    def load_keys(self) -> KeyPair: ...

    def save_keys(self, admin: Optional[str], user: Optional[str],
                  *, admin_changed: bool = True) -> None: ...

    def mark_activated(self) -> None: ...
