"""Tests for MemoryWindow and MemoryManager."""

import pytest

from nodeflow.memory import InMemoryMemoryStore, MemoryManager, MemoryStore, MemoryWindow, Turn


def turns(*contents: str) -> list[Turn]:
    return [Turn("user" if i % 2 == 0 else "assistant", c) for i, c in enumerate(contents)]


class TestMemoryWindow:
    def test_keeps_most_recent_turns_in_order(self):
        window = MemoryWindow(max_messages=3)
        window.extend(turns("a", "b", "c", "d", "e"))

        assert [t.content for t in window.snapshot()] == ["c", "d", "e"]
        assert len(window) == 3

    def test_snapshot_is_a_copy(self):
        window = MemoryWindow(max_messages=5, turns=turns("a"))
        snapshot = window.snapshot()
        snapshot.append(Turn("user", "sneaky"))

        assert len(window) == 1

    def test_initial_turns_are_trimmed(self):
        window = MemoryWindow(max_messages=2, turns=turns("a", "b", "c"))
        assert [t.content for t in window.snapshot()] == ["b", "c"]

    def test_resize_shrinks_from_the_oldest_end(self):
        window = MemoryWindow(max_messages=4, turns=turns("a", "b", "c", "d"))
        window.resize(2)

        assert window.max_messages == 2
        assert [t.content for t in window.snapshot()] == ["c", "d"]

    def test_clear(self):
        window = MemoryWindow(turns=turns("a", "b"))
        window.clear()
        assert window.snapshot() == []

    def test_rejects_non_positive_limit(self):
        with pytest.raises(ValueError):
            MemoryWindow(max_messages=0)

    def test_turn_to_llm_dict(self):
        assert Turn("assistant", "hi").to_llm_dict() == {"role": "assistant", "content": "hi"}


class TestMemoryManager:
    def test_scope_key(self):
        assert MemoryManager.scope_key("s1", "chat") == "s1:chat"
        assert MemoryManager.scope_key("s1", "chat", "shared") == "s1:shared"
        assert MemoryManager.scope_key(None, "chat") == "default:chat"

    @pytest.mark.asyncio
    async def test_window_is_reused_per_scope(self):
        manager = MemoryManager(default_max_messages=4)
        first = await manager.window("s:a")
        first.append(Turn("user", "hi"))

        again = await manager.window("s:a")
        other = await manager.window("s:b")

        assert again is first
        assert other is not first
        assert first.max_messages == 4
        assert manager.scopes() == ["s:a", "s:b"]

    @pytest.mark.asyncio
    async def test_window_limit_follows_latest_request(self):
        manager = MemoryManager()
        window = await manager.window("s:a", max_messages=10)
        window.extend(turns("a", "b", "c"))

        await manager.window("s:a", max_messages=2)

        assert [t.content for t in window.snapshot()] == ["b", "c"]

    @pytest.mark.asyncio
    async def test_persist_and_reload_through_store(self):
        store = InMemoryMemoryStore()
        assert isinstance(store, MemoryStore)

        manager = MemoryManager(store=store)
        window = await manager.window("s:a")
        window.extend(turns("q", "answer"))
        await manager.persist("s:a")

        restored = await MemoryManager(store=store).window("s:a")
        assert restored.snapshot() == turns("q", "answer")

    @pytest.mark.asyncio
    async def test_persist_without_store_is_a_no_op(self):
        manager = MemoryManager()
        await manager.window("s:a")
        await manager.persist("s:a")
        await manager.persist("unknown")

    def test_lock_is_shared_per_scope(self):
        manager = MemoryManager()
        assert manager.lock("s:a") is manager.lock("s:a")
        assert manager.lock("s:a") is not manager.lock("s:b")

    @pytest.mark.asyncio
    async def test_forget_drops_the_window(self):
        manager = MemoryManager()
        (await manager.window("s:a")).append(Turn("user", "hi"))

        manager.forget("s:a")

        assert manager.scopes() == []
        assert len(await manager.window("s:a")) == 0

    @pytest.mark.asyncio
    async def test_least_recently_used_scope_is_evicted(self):
        manager = MemoryManager(max_scopes=2)
        await manager.window("s1:chat")
        await manager.window("s2:chat")
        await manager.window("s1:chat")

        await manager.window("s3:chat")

        assert manager.scopes() == ["s1:chat", "s3:chat"]

    @pytest.mark.asyncio
    async def test_locked_scope_survives_eviction(self):
        manager = MemoryManager(max_scopes=1)
        async with manager.lock("s1:chat"):
            (await manager.window("s1:chat")).append(Turn("user", "hi"))
            await manager.window("s2:chat")
            assert manager.scopes() == ["s1:chat", "s2:chat"]

        await manager.window("s3:chat")
        assert manager.scopes() == ["s3:chat"]

    @pytest.mark.asyncio
    async def test_evicted_scope_reloads_from_store(self):
        manager = MemoryManager(store=InMemoryMemoryStore(), max_scopes=1)
        window = await manager.window("s1:chat")
        window.extend(turns("q", "answer"))
        await manager.persist("s1:chat")

        await manager.window("s2:chat")
        restored = await manager.window("s1:chat")

        assert restored is not window
        assert restored.snapshot() == turns("q", "answer")

    def test_max_scopes_must_be_positive(self):
        with pytest.raises(ValueError):
            MemoryManager(max_scopes=0)
