"""
Data types for the songbook engine.
"""

import re
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional


# IDs are lowercase ASCII words joined by single hyphens
_ID_RE = re.compile(r'^[a-z0-9]+(?:-[a-z0-9]+)*$')

MAX_ID_LENGTH = 128


def is_valid_id(id: str) -> bool:
    """Check that an ID is a URL-safe slug usable as a file name."""
    return bool(id) and len(id) <= MAX_ID_LENGTH and bool(_ID_RE.match(id))


class Status(IntEnum):
    """Result status; values are the matching HTTP codes."""
    OK = 200
    CREATED = 201
    BAD_REQUEST = 400
    FORBIDDEN = 403
    NOT_FOUND = 404
    INTERNAL_ERROR = 500


class OperationKind(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    SEARCH = "search"
    REINDEX = "reindex"

    @property
    def needs_admin(self) -> bool:
        """Mutations and reindexing are reserved for the administrator key."""
        return self not in (OperationKind.READ, OperationKind.SEARCH)


@dataclass
class Operation:
    """
    An operation descriptor handed to the engine by a transport.

    Attributes:
        kind: What to do
        id: Target song ID (Read, Update, Delete)
        raw_body: Song text (Create, Update)
        request_key: Capability key presented by the caller
        accept: The caller's Accept header, used to pick a representation
        query: Search query string (Search)
        transpose: Semitone offset applied to chords on Read
        activate: Whether an administrator key presented here counts as
            the operator having seen it
    """
    kind: OperationKind
    id: Optional[str] = None
    raw_body: Optional[str] = None
    request_key: Optional[str] = None
    accept: Optional[str] = None
    query: Optional[str] = None
    transpose: int = 0
    activate: bool = True


@dataclass
class Result:
    """What the engine hands back to the transport."""
    status: Status
    body: str = ""
    content_type: str = "text/plain"
    id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status < 400


@dataclass
class Decision:
    """Outcome of an access-control check."""
    allowed: bool
    is_administrator: bool = False


@dataclass
class KeyPair:
    """Capability keys as persisted, plus the activation flag."""
    admin: Optional[str] = None
    user: Optional[str] = None
    activated: bool = False


@dataclass
class SongDocument:
    """
    One song: raw text plus the metadata extracted from it.

    Only `body` is persisted; everything else is recomputed from it.
    """
    id: Optional[str]
    title: str
    artist: str
    body: str
    key: Optional[str] = None
    lyrics: str = ""
    chords: list[str] = field(default_factory=list)


@dataclass
class SearchHit:
    """One ranked search result."""
    id: str
    title: str
    artist: str
    snippet: str = ""
    score: Optional[float] = None
