"""
Pluggable storage backend factory.

Creates the document store, search index and key store based on
configuration. The local backend uses song files + SQLite FTS5. External
backends register via the ``songbook.backends`` entry point group.

External backend packages provide a factory function::

    def create_backends(config: SongbookConfig) -> BackendBundle:
        ...

and register it in their pyproject.toml::

    [project.entry-points."songbook.backends"]
    my-backend = "my_package.backend:create_backends"
"""

from typing import NamedTuple

from .config import SongbookConfig
from .protocol import DocumentStoreProtocol, KeyStoreProtocol, SearchIndexProtocol


class BackendBundle(NamedTuple):
    """Collection of storage backends returned by the factory."""
    store: DocumentStoreProtocol
    index: SearchIndexProtocol
    keys: KeyStoreProtocol


def create_backends(config: SongbookConfig) -> BackendBundle:
    """
    Create storage backends from configuration.

    For ``backend = "local"`` (default), creates the file SongStore, the
    FTS5 SearchIndex and the file KeyStore.

    For other values, loads the backend via the ``songbook.backends`` entry
    point group.
    """
    if config.backend == "local":
        return _create_local_backends(config)
    return _load_backend(config.backend, config)


def _create_local_backends(config: SongbookConfig) -> BackendBundle:
    """Create the default local storage backends."""
    from .access import KeyStore
    from .document_store import SongStore
    from .search_index import SearchIndex

    config.data_root.mkdir(parents=True, exist_ok=True)
    return BackendBundle(
        store=SongStore(config.songs_root),
        index=SearchIndex(config.index_dir),
        keys=KeyStore(config.data_root),
    )


def _load_backend(name: str, config: SongbookConfig) -> BackendBundle:
    """Load a backend by entry point name."""
    from importlib.metadata import entry_points

    eps = entry_points(group="songbook.backends")
    for ep in eps:
        if ep.name == name:
            factory = ep.load()
            return factory(config)

    available = [ep.name for ep in eps]
    if available:
        raise ValueError(
            f"Unknown backend: {name!r}. Available: {available}"
        )
    raise ValueError(
        f"Unknown backend: {name!r}. No backends registered."
    )
