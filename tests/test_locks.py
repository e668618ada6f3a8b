"""Tests for per-ID write serialization."""

import asyncio

import pytest

from songbook.locks import KeyedLocks


class TestKeyedLocks:

    @pytest.mark.asyncio
    async def test_same_key_serializes(self):
        locks = KeyedLocks()
        events = []

        async def writer(name):
            async with locks.write("song"):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        await asyncio.gather(writer("a"), writer("b"))
        assert events in (
            ["a-start", "a-end", "b-start", "b-end"],
            ["b-start", "b-end", "a-start", "a-end"],
        )

    @pytest.mark.asyncio
    async def test_different_keys_overlap(self):
        locks = KeyedLocks()
        inside = set()
        overlapped = False

        async def writer(key):
            nonlocal overlapped
            async with locks.write(key):
                inside.add(key)
                await asyncio.sleep(0.01)
                if len(inside) > 1:
                    overlapped = True
                inside.discard(key)

        await asyncio.gather(writer("a"), writer("b"))
        assert overlapped

    @pytest.mark.asyncio
    async def test_reader_waits_for_writer(self):
        locks = KeyedLocks()
        events = []
        entered = asyncio.Event()

        async def writer():
            async with locks.write("song"):
                entered.set()
                await asyncio.sleep(0.01)
                events.append("write-done")

        async def reader():
            await entered.wait()
            await locks.wait_for_writer("song")
            events.append("read")

        await asyncio.gather(writer(), reader())
        assert events == ["write-done", "read"]

    @pytest.mark.asyncio
    async def test_reader_without_writer_does_not_block(self):
        locks = KeyedLocks()
        await asyncio.wait_for(locks.wait_for_writer("song"), timeout=1)
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_entries_released(self):
        locks = KeyedLocks()
        async with locks.write("song"):
            assert locks.is_locked("song")
            assert len(locks) == 1
        assert not locks.is_locked("song")
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        locks = KeyedLocks()
        with pytest.raises(RuntimeError):
            async with locks.write("song"):
                raise RuntimeError("boom")
        assert len(locks) == 0
