"""
PersistentStore 单元测试

测试内容：
- InMemoryStore
- FileStore（tmp_path）
- RedisStore 未配置 / 不可用时回退到内存
- create_store
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from autopilot.store import FileStore, InMemoryStore, RedisStore, create_store


# ============================================================
# InMemoryStore
# ============================================================

class TestInMemoryStore:
    """测试内存存储"""

    @pytest.mark.asyncio
    async def test_set_get_remove(self):
        store = InMemoryStore()
        await store.set({"a": {"x": 1}, "b": [1, 2]})
        assert await store.get(["a", "b", "missing"]) == {"a": {"x": 1}, "b": [1, 2]}

        await store.remove(["a", "missing"])
        assert await store.get(["a"]) == {}
        assert await store.get_one("a", "default") == "default"

    @pytest.mark.asyncio
    async def test_values_are_copies(self):
        store = InMemoryStore()
        value = {"items": [1]}
        await store.set({"k": value})
        value["items"].append(2)

        loaded = await store.get_one("k")
        loaded["items"].append(3)
        assert await store.get_one("k") == {"items": [1]}


# ============================================================
# FileStore
# ============================================================

class TestFileStore:
    """测试文件存储"""

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        store = FileStore(str(tmp_path))
        await store.set({"agent_state": {"task_queue": []}})
        assert (tmp_path / "agent_state.json").exists()

        reopened = FileStore(str(tmp_path))
        assert await reopened.get_one("agent_state") == {"task_queue": []}

    @pytest.mark.asyncio
    async def test_remove(self, tmp_path):
        store = FileStore(str(tmp_path))
        await store.set({"k": 1})
        await store.remove(["k", "never-set"])
        assert await store.get(["k"]) == {}

    @pytest.mark.asyncio
    async def test_corrupt_file_is_skipped(self, tmp_path):
        (tmp_path / "k.json").write_text("{broken", encoding="utf-8")
        store = FileStore(str(tmp_path))
        assert await store.get(["k"]) == {}


# ============================================================
# RedisStore
# ============================================================

class TestRedisStore:
    """测试 Redis 存储的回退行为"""

    @pytest.mark.asyncio
    async def test_no_url_uses_fallback(self):
        store = RedisStore(redis_url="")
        await store.set({"k": {"v": 1}})
        assert await store.get_one("k") == {"v": 1}
        await store.remove(["k"])
        assert await store.get_one("k") is None

    @pytest.mark.asyncio
    async def test_unreachable_redis_uses_fallback(self):
        mock_client = MagicMock()
        mock_client.ping = AsyncMock(side_effect=ConnectionError("refused"))
        with patch("autopilot.store.aioredis.from_url", return_value=mock_client):
            store = RedisStore(redis_url="redis://localhost:6379/0")
            await store.set({"k": 1})
            assert await store.get_one("k") == 1
        mock_client.mset.assert_not_called()

    @pytest.mark.asyncio
    async def test_connected_redis_uses_prefixed_keys(self):
        mock_client = MagicMock()
        mock_client.ping = AsyncMock(return_value=True)
        mock_client.mset = AsyncMock()
        mock_client.mget = AsyncMock(return_value=['{"v": 2}', None])
        with patch("autopilot.store.aioredis.from_url", return_value=mock_client):
            store = RedisStore(redis_url="redis://localhost:6379/0")
            await store.set({"k": {"v": 2}})
            result = await store.get(["k", "other"])

        mock_client.mset.assert_awaited_once_with({"autopilot:k": '{"v": 2}'})
        mock_client.mget.assert_awaited_once_with(["autopilot:k", "autopilot:other"])
        assert result == {"k": {"v": 2}}


# ============================================================
# create_store
# ============================================================

class TestCreateStore:
    """测试按配置创建存储"""

    def test_memory_backend(self):
        assert isinstance(create_store("memory"), InMemoryStore)

    def test_file_backend(self, tmp_path):
        with patch("autopilot.store.settings") as mock_settings:
            mock_settings.store_backend = "file"
            mock_settings.store_path = str(tmp_path / "store")
            store = create_store()
        assert isinstance(store, FileStore)
        assert (tmp_path / "store").is_dir()

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_store("cassandra")
