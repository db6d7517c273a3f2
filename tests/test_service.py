"""
AgentService 单元测试

测试内容：
- 任务命令与状态查询
- 一次性初始化与检查点恢复
- 记忆维护命令
- 独立的截图 / 动作命令
- 命令异常转换为 {"success": False}
"""
import pytest

from autopilot.models import TaskStatus
from autopilot.service import AgentService
from autopilot.store import STATE_KEY
from conftest import FakePlanner, FakeTabController


@pytest.fixture
def tabs():
    return FakeTabController(pages={"https://a.test": {"title": "A", "text": "hello", "links": []}})


@pytest.fixture
def service(store, memory, tabs, make_scheduler):
    planner = FakePlanner(answers=["summary"])
    return AgentService(
        store=store,
        tabs=tabs,
        planner=planner,
        memory=memory,
        scheduler=make_scheduler(tabs, planner),
    )


# ============================================================
# 任务命令
# ============================================================

class TestTaskCommands:
    """测试任务命令"""

    @pytest.mark.asyncio
    async def test_add_task_and_status(self, service):
        response = await service.add_task({"type": "analyze_url", "url": "https://a.test"})
        assert response["success"] is True
        assert response["task_id"]

        await service.scheduler.wait_until_idle()
        status = await service.status()
        assert status["success"] is True
        assert status["stats"]["queue_length"] == 0
        assert status["stats"]["visited_urls"] == 1
        assert status["stats"]["analysis_results"] == 1

        history = await service.history()
        assert history["history"]["visited_urls"] == ["https://a.test"]

    @pytest.mark.asyncio
    async def test_autonomous_task_sets_type(self, service):
        response = await service.autonomous_task({"description": "look around"})
        await service.scheduler.wait_until_idle()

        task = service.scheduler.finished[0]
        assert task.id == response["task_id"]
        assert task.type == "autonomous_browser_task"

    @pytest.mark.asyncio
    async def test_bad_spec_is_error_response(self, service):
        response = await service.add_task(None)
        assert response["success"] is False
        assert response["error"]

    @pytest.mark.asyncio
    async def test_stop_and_clear(self, service):
        await service.add_task({"type": "analyze_url", "url": "https://a.test"})
        await service.scheduler.wait_until_idle()

        assert await service.stop() == {"success": True}
        assert await service.clear() == {"success": True}
        assert (await service.status())["stats"]["visited_urls"] == 0


# ============================================================
# 初始化
# ============================================================

class TestInitAgent:
    """测试一次性初始化"""

    @pytest.mark.asyncio
    async def test_resumes_saved_queue(self, store, service, tabs):
        await store.set({STATE_KEY: {
            "task_queue": [{"id": "saved", "type": "analyze_url", "status": "running", "params": {"url": "https://a.test"}}],
            "context": {},
        }})

        await service.init_agent()
        await service.scheduler.wait_until_idle()

        assert [t.id for t in service.scheduler.finished] == ["saved"]
        assert service.scheduler.finished[0].status == TaskStatus.COMPLETED
        assert tabs.opened == ["https://a.test"]

    @pytest.mark.asyncio
    async def test_status_does_not_resume(self, store, service, tabs):
        await store.set({STATE_KEY: {
            "task_queue": [{"id": "saved", "type": "analyze_url", "status": "pending", "params": {"url": "https://a.test"}}],
            "context": {},
        }})

        status = await service.status()

        assert status["stats"]["queue_length"] == 1
        assert status["stats"]["is_running"] is False
        assert tabs.opened == []

    @pytest.mark.asyncio
    async def test_init_runs_once(self, store, service):
        await service.init_agent(resume=False)
        await store.set({STATE_KEY: {
            "task_queue": [{"id": "late", "type": "analyze_url", "status": "pending", "params": {"url": "https://a.test"}}],
        }})
        await service.init_agent(resume=False)
        assert service.scheduler.queue == []


# ============================================================
# 记忆命令
# ============================================================

class TestMemoryCommands:
    """测试记忆维护命令"""

    @pytest.mark.asyncio
    async def test_stats_export_import(self, service):
        await service.add_task({"type": "analyze_url", "url": "https://a.test"})
        await service.scheduler.wait_until_idle()

        stats = await service.memory_stats()
        assert stats["stats"]["total_experiences"] == 1

        exported = await service.export_memory()
        assert exported["success"] is True

        assert await service.clear_memory() == {"success": True}
        assert (await service.memory_stats())["stats"]["total_experiences"] == 0

        assert await service.import_memory(exported["data"]) == {"success": True}
        assert (await service.memory_stats())["stats"]["total_experiences"] == 1

    @pytest.mark.asyncio
    async def test_invalid_import(self, service):
        response = await service.import_memory("{not json")
        assert response == {"success": False, "error": "Invalid memory format"}


# ============================================================
# 浏览器命令
# ============================================================

class TestBrowserCommands:
    """测试截图与单个动作"""

    @pytest.mark.asyncio
    async def test_capture_snapshot(self, service):
        response = await service.capture_snapshot()
        assert response["success"] is True
        assert response["screenshot"]["data"].startswith("data:image/png;base64,")

    @pytest.mark.asyncio
    async def test_execute_action(self, service, tabs):
        ok = await service.execute_action({"type": "click", "selector": "#go"})
        assert ok["success"] is True
        assert ok["result"]["action"] == {"type": "click", "selector": "#go"}

        tabs.failing_selectors.add("#missing")
        failed = await service.execute_action({"type": "click", "selector": "#missing"})
        assert failed["success"] is False
        assert failed["result"]["result"]["error"] == "Element not found"

    @pytest.mark.asyncio
    async def test_shutdown(self, service, tabs):
        tabs._handles["tab-1"] = "https://a.test"
        await service.shutdown()
        assert tabs._handles == {}
