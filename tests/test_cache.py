"""Tests for the document cache."""

from songbook.cache import DocumentCache


class TestDocumentCache:

    def test_miss(self):
        assert DocumentCache().get("a") is None

    def test_put_get(self):
        cache = DocumentCache()
        cache.put("a", "one")
        assert cache.get("a") == "one"
        assert "a" in cache
        assert len(cache) == 1

    def test_invalidate(self):
        cache = DocumentCache()
        cache.put("a", "one")
        cache.invalidate("a")
        assert cache.get("a") is None
        assert "a" not in cache

    def test_fill_with_current_generation(self):
        cache = DocumentCache()
        generation = cache.generation("a")
        assert cache.fill("a", "one", generation)
        assert cache.get("a") == "one"

    def test_stale_fill_after_write_is_dropped(self):
        cache = DocumentCache()
        generation = cache.generation("a")
        # A write lands while the read is still in flight
        cache.put("a", "new")
        assert not cache.fill("a", "old", generation)
        assert cache.get("a") == "new"

    def test_stale_fill_after_delete_is_dropped(self):
        cache = DocumentCache()
        cache.put("a", "one")
        generation = cache.generation("a")
        cache.invalidate("a")
        assert not cache.fill("a", "one", generation)
        assert cache.get("a") is None

    def test_clear(self):
        cache = DocumentCache()
        cache.put("a", "one")
        cache.put("b", "two")
        generation = cache.generation("a")
        cache.clear()
        assert len(cache) == 0
        assert not cache.fill("a", "one", generation)
