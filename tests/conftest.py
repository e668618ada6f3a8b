"""
Shared pytest fixtures for songbook tests.

Every test gets its own data root under tmp_path and a clean environment,
so config overrides from the developer's shell never leak in.
"""

from pathlib import Path

import pytest

from songbook.access import KeyStore
from songbook.api import Songbook
from songbook.config import SongbookConfig
from songbook.document_store import SongStore
from songbook.search_index import SearchIndex


YESTERDAY = """{title: Yesterday}
{artist: The Beatles}
{key: F}

[F]Yesterday, [Em7]all my troubles seemed so [A7]far a[Dm]way
Now it [Bb]looks as though they're [C7]here to [F]stay
"""

BLUE_MOON = """{title: Blue Moon of Kentucky}
{artist: Bill Monroe}
{key: A}

[A]Blue moon of Kentucky keep on [D]shining
Shine [A]on the one that's gone and [E7]proved untrue
"""

LET_IT_BE = """{t: Let It Be}
{st: The Beatles}

[C]When I find myself in [G]times of trouble
[Am]Mother Mary [F]comes to me
"""


_ENV_VARS = ("DATA_ROOT", "SONGS_ROOT", "WEB_ROOT", "PORT", "HOST", "HOSTNAME", "SONGBOOK_VERBOSE")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove environment overrides that would redirect the data root."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def data_root(tmp_path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def songbook(data_root):
    """A Songbook on the local backends in a fresh data root."""
    sb = Songbook(data_root)
    yield sb
    sb.close()


@pytest.fixture
def make_songbook(data_root):
    """
    Factory for Songbooks with optionally wrapped collaborators.

    Missing collaborators are the real local implementations. Everything
    created is closed at teardown.
    """
    opened = []

    def factory(*, store=None, index=None, key_store=None) -> Songbook:
        config = SongbookConfig(data_root=data_root)
        sb = Songbook(
            config=config,
            store=store if store is not None else SongStore(config.songs_root),
            index=index if index is not None else SearchIndex(config.index_dir),
            key_store=key_store if key_store is not None else KeyStore(data_root),
        )
        opened.append(sb)
        return sb

    yield factory
    for sb in opened:
        sb.close()
