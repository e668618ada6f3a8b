"""
Full-text search index using SQLite FTS5.

The index holds a projection of every song (title, artist, lyrics) and is
derived entirely from the document store. It can be dropped and rebuilt
at any time.

Query syntax:
    yesterday                 bare terms search title, artist and lyrics
    title:yesterday           restrict a term to one field
    artist:"bill monroe"      quoted phrases
    blue*                     prefix match
    a AND b, a OR b, a NOT b  boolean operators (adjacent terms are ANDed)
    +a -b                     required / excluded terms
    title:(blue OR moon)      a field applies to a whole group
"""

import logging
import os
import re
import sqlite3
import threading
from pathlib import Path
from typing import Optional

from .errors import IndexFailure, QuerySyntaxError, SongNotFound
from .song_format import parse_song
from .types import SearchHit, SongDocument

logger = logging.getLogger(__name__)

INDEX_FILENAME = "songs.db"

FIELD_ALIASES = {
    "title": "title",
    "t": "title",
    "artist": "artist",
    "a": "artist",
    "body": "body",
    "lyrics": "body",
    "l": "body",
    "text": "body",
}

# bm25 weights per column: id (unindexed), title, artist, body
_BM25_WEIGHTS = "0.0, 10.0, 5.0, 1.0"

_SCHEMA = """
    CREATE VIRTUAL TABLE IF NOT EXISTS songs USING fts5(
        id UNINDEXED,
        title,
        artist,
        body,
        tokenize = 'unicode61 remove_diacritics 2'
    )
"""


# -----------------------------------------------------------------------------
# Query parsing
# -----------------------------------------------------------------------------

_OPERATORS = {"AND": "AND", "&&": "AND", "OR": "OR", "||": "OR", "NOT": "NOT", "!": "NOT"}

_FIELD_PREFIX_RE = re.compile(r'^([A-Za-z]+):(.*)$', re.DOTALL)


class _Token:
    __slots__ = ("kind", "value", "field", "modifier")

    def __init__(self, kind: str, value: str = "", field: Optional[str] = None,
                 modifier: str = ""):
        self.kind = kind          # WORD, PHRASE, LPAREN, RPAREN, OP, FIELD
        self.value = value
        self.field = field
        self.modifier = modifier  # "+", "-" or ""

    def __repr__(self) -> str:
        return f"_Token({self.kind!r}, {self.value!r}, field={self.field!r})"


def _tokenize(query: str) -> list[_Token]:
    tokens: list[_Token] = []
    i = 0
    n = len(query)
    while i < n:
        c = query[i]
        if c.isspace():
            i += 1
            continue
        if c == "(":
            tokens.append(_Token("LPAREN"))
            i += 1
            continue
        if c == ")":
            tokens.append(_Token("RPAREN"))
            i += 1
            continue

        modifier = ""
        if c in "+-" and i + 1 < n and not query[i + 1].isspace():
            modifier = c
            i += 1
            c = query[i]

        if c == '"':
            end = query.find('"', i + 1)
            if end == -1:
                raise QuerySyntaxError("Unterminated quoted phrase")
            tokens.append(_Token("PHRASE", query[i + 1:end], modifier=modifier))
            i = end + 1
            continue

        start = i
        while i < n and not query[i].isspace() and query[i] not in '()"':
            i += 1
        word = query[start:i]

        if not modifier and word in _OPERATORS:
            tokens.append(_Token("OP", _OPERATORS[word]))
            continue

        m = _FIELD_PREFIX_RE.match(word)
        if m:
            name = m.group(1).lower()
            if name not in FIELD_ALIASES:
                raise QuerySyntaxError(f"Unknown field '{m.group(1)}'")
            field = FIELD_ALIASES[name]
            rest = m.group(2)
            if rest:
                tokens.append(_Token("WORD", rest, field=field, modifier=modifier))
            else:
                # Field applies to the following phrase or group
                tokens.append(_Token("FIELD", field=field, modifier=modifier))
            continue

        if not word:
            raise QuerySyntaxError(f"Unexpected character at position {i}")
        tokens.append(_Token("WORD", word, modifier=modifier))
    return tokens


def _quote(term: str) -> str:
    return '"' + term.replace('"', '""') + '"'


class _QueryCompiler:
    """Recursive-descent translation of the query syntax into an FTS5 MATCH."""

    def __init__(self, tokens: list[_Token]):
        self._tokens = tokens
        self._pos = 0

    def _peek(self) -> Optional[_Token]:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _next(self) -> _Token:
        token = self._peek()
        if token is None:
            raise QuerySyntaxError("Unexpected end of query")
        self._pos += 1
        return token

    def compile(self) -> str:
        expr = self._or_expr(None)
        if self._peek() is not None:
            token = self._peek()
            if token.kind == "RPAREN":
                raise QuerySyntaxError("Unbalanced ')'")
            raise QuerySyntaxError(f"Unexpected token {token.value or token.kind!r}")
        if expr is None:
            raise QuerySyntaxError("Query has no searchable terms")
        return expr

    def _or_expr(self, field: Optional[str]) -> Optional[str]:
        parts = [self._and_expr(field)]
        while (token := self._peek()) is not None and token.kind == "OP" and token.value == "OR":
            self._next()
            part = self._and_expr(field)
            if parts[-1] is None or part is None:
                raise QuerySyntaxError("OR needs a term on both sides")
            parts.append(part)
        if parts[0] is None:
            return None
        return parts[0] if len(parts) == 1 else "(" + " OR ".join(parts) + ")"

    def _and_expr(self, field: Optional[str]) -> Optional[str]:
        positives: list[str] = []
        negatives: list[str] = []
        expect_operand = True
        while True:
            token = self._peek()
            if token is None or token.kind == "RPAREN":
                break
            if token.kind == "OP":
                if token.value == "OR":
                    break
                self._next()
                if token.value == "NOT":
                    operand = self._primary(field)
                    if operand:
                        negatives.append(operand)
                    expect_operand = False
                    continue
                if expect_operand:
                    raise QuerySyntaxError("AND needs a term on both sides")
                expect_operand = True
                continue
            negate = token.modifier == "-"
            operand = self._primary(field)
            if operand:
                (negatives if negate else positives).append(operand)
            expect_operand = False

        if expect_operand and (positives or negatives):
            raise QuerySyntaxError("Operator is missing a term")
        if not positives:
            if negatives:
                raise QuerySyntaxError("A query needs at least one term that is not excluded")
            return None
        expr = positives[0] if len(positives) == 1 else "(" + " AND ".join(positives) + ")"
        for negative in negatives:
            expr = f"({expr} NOT {negative})"
        return expr

    def _primary(self, field: Optional[str]) -> Optional[str]:
        token = self._next()
        if token.kind == "FIELD":
            target = self._peek()
            if target is None or target.kind not in ("PHRASE", "LPAREN", "WORD"):
                raise QuerySyntaxError(f"Field '{token.field}' needs a term")
            target.field = token.field
            return self._primary(token.field)
        if token.kind == "LPAREN":
            expr = self._or_expr(field)
            closing = self._peek()
            if closing is None or closing.kind != "RPAREN":
                raise QuerySyntaxError("Unbalanced '('")
            self._next()
            return expr
        if token.kind in ("WORD", "PHRASE"):
            return self._leaf(token, token.field or field)
        if token.kind == "RPAREN":
            raise QuerySyntaxError("Unbalanced ')'")
        raise QuerySyntaxError(f"Unexpected operator {token.value}")

    @staticmethod
    def _leaf(token: _Token, field: Optional[str]) -> Optional[str]:
        text = token.value
        prefix = token.kind == "WORD" and text.endswith("*")
        if prefix:
            text = text.rstrip("*")
        if not re.search(r'\w', text):
            return None
        leaf = _quote(text) + (" *" if prefix else "")
        if field:
            leaf = f"{field} : {leaf}"
        return leaf


def compile_query(query: str) -> str:
    """
    Translate a user query into an FTS5 MATCH expression.

    Raises:
        QuerySyntaxError: If the query is malformed
    """
    return _QueryCompiler(_tokenize(query)).compile()


# -----------------------------------------------------------------------------
# Index
# -----------------------------------------------------------------------------

class SearchIndex:
    """
    FTS5-backed index of song projections.

    Every mutation commits before returning, so a reported success is
    durable. A single connection is shared across worker threads and
    guarded by a lock.
    """

    def __init__(self, index_dir: Path):
        """
        Args:
            index_dir: Directory holding the index database (created if absent)
        """
        self._dir = Path(index_dir)
        self._db_path = self._dir / INDEX_FILENAME
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None
        self._open()

    @property
    def path(self) -> Path:
        return self._db_path

    def _connect(self, path: Path) -> sqlite3.Connection:
        conn = sqlite3.connect(str(path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute(_SCHEMA)
        conn.commit()
        return conn

    def _open(self) -> None:
        """Open the index, replacing it with an empty one if it is unreadable."""
        self._dir.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = self._connect(self._db_path)
            self._conn.execute("SELECT count(*) FROM songs").fetchone()
        except sqlite3.DatabaseError as e:
            logger.warning("Search index at %s is unreadable (%s), starting empty", self._db_path, e)
            if self._conn is not None:
                self._conn.close()
            self._db_path.unlink(missing_ok=True)
            self._conn = self._connect(self._db_path)

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise IndexFailure("Search index is closed")
        return self._conn

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def add_or_update(self, document: SongDocument) -> None:
        """Replace the projection for document.id and commit."""
        if not document.id:
            raise ValueError("Cannot index a document without an id")
        with self._lock:
            conn = self._require_conn()
            try:
                conn.execute("DELETE FROM songs WHERE id = ?", (document.id,))
                conn.execute(
                    "INSERT INTO songs (id, title, artist, body) VALUES (?, ?, ?, ?)",
                    (document.id, document.title, document.artist, document.lyrics),
                )
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise IndexFailure(f"Failed to index song {document.id}: {e}",
                                   song_id=document.id) from e

    def remove(self, id: str) -> None:
        """Remove the projection for an ID; no-op if absent."""
        with self._lock:
            conn = self._require_conn()
            try:
                conn.execute("DELETE FROM songs WHERE id = ?", (id,))
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise IndexFailure(f"Failed to remove song {id} from index: {e}",
                                   song_id=id) from e

    def rebuild_all(self, store) -> int:
        """
        Drop the index and re-derive it from every song in the store.

        The new index is built in a side file and swapped in only when
        complete. A failure leaves the previous index (or an empty one)
        in place, and the next call starts again from scratch.

        Args:
            store: Document store providing list_ids() and read()

        Returns:
            Number of songs indexed
        """
        with self._lock:
            self._dir.mkdir(parents=True, exist_ok=True)
            tmp_path = self._dir / f"{INDEX_FILENAME}.rebuild"
            _unlink_db(tmp_path)

            count = 0
            conn = None
            try:
                conn = self._connect(tmp_path)
                for id in store.list_ids():
                    try:
                        body = store.read(id)
                    except SongNotFound:
                        continue  # deleted while scanning
                    doc = parse_song(body, id=id)
                    conn.execute(
                        "INSERT INTO songs (id, title, artist, body) VALUES (?, ?, ?, ?)",
                        (id, doc.title, doc.artist, doc.lyrics),
                    )
                    count += 1
                conn.commit()
                conn.close()
                conn = None

                if self._conn is not None:
                    self._conn.close()
                    self._conn = None
                _unlink_db(self._db_path)
                os.replace(tmp_path, self._db_path)
            except (sqlite3.Error, OSError) as e:
                raise IndexFailure(f"Index rebuild failed: {e}") from e
            finally:
                if conn is not None:
                    conn.close()
                _unlink_db(tmp_path)
                if self._conn is None:
                    self._open()

        logger.info("Rebuilt search index with %d songs", count)
        return count

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def query(self, query: Optional[str], limit: Optional[int] = None) -> list[SearchHit]:
        """
        Run a query and return ranked hits.

        An empty query lists every song ordered by title.

        Raises:
            QuerySyntaxError: If the query is malformed
        """
        query = (query or "").strip()
        if not query:
            return self._list_all(limit)

        match = compile_query(query)
        sql = f"""
            SELECT id, title, artist,
                   snippet(songs, 3, '', '', '...', 12) AS snippet,
                   bm25(songs, {_BM25_WEIGHTS}) AS score
            FROM songs
            WHERE songs MATCH ?
            ORDER BY score, title COLLATE NOCASE, id
        """
        params: tuple = (match,)
        if limit:
            sql += " LIMIT ?"
            params = (match, limit)

        with self._lock:
            conn = self._require_conn()
            try:
                rows = conn.execute(sql, params).fetchall()
            except sqlite3.OperationalError as e:
                if "fts5" in str(e) or "syntax" in str(e):
                    raise QuerySyntaxError(str(e)) from e
                raise IndexFailure(f"Search failed: {e}") from e
            except sqlite3.Error as e:
                raise IndexFailure(f"Search failed: {e}") from e

        return [
            SearchHit(id=row["id"], title=row["title"], artist=row["artist"],
                      snippet=row["snippet"] or "", score=row["score"])
            for row in rows
        ]

    def _list_all(self, limit: Optional[int]) -> list[SearchHit]:
        sql = """
            SELECT id, title, artist, body
            FROM songs
            ORDER BY title COLLATE NOCASE, id
        """
        params: tuple = ()
        if limit:
            sql += " LIMIT ?"
            params = (limit,)
        with self._lock:
            conn = self._require_conn()
            try:
                rows = conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise IndexFailure(f"Listing songs failed: {e}") from e
        return [
            SearchHit(id=row["id"], title=row["title"], artist=row["artist"],
                      snippet=(row["body"] or "").split("\n", 1)[0])
            for row in rows
        ]

    def list_ids(self) -> list[str]:
        with self._lock:
            conn = self._require_conn()
            try:
                rows = conn.execute("SELECT id FROM songs ORDER BY id").fetchall()
            except sqlite3.Error as e:
                raise IndexFailure(f"Listing index ids failed: {e}") from e
        return [row["id"] for row in rows]

    def count(self) -> int:
        with self._lock:
            conn = self._require_conn()
            return conn.execute("SELECT count(*) FROM songs").fetchone()[0]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def _unlink_db(path: Path) -> None:
    """Remove an SQLite file along with its journal side files."""
    for suffix in ("", "-journal", "-wal", "-shm"):
        try:
            os.unlink(f"{path}{suffix}")
        except FileNotFoundError:
            pass
