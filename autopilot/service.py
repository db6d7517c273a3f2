"""
AgentService - 面向调用方的命令入口

持有调度器、经验记忆和受控浏览面，负责一次性初始化。
每个命令返回 {"success": bool, ...}，失败时带 error，不向调用方抛异常。
"""
import asyncio
import functools
from typing import Any, Awaitable, Callable, Dict, Optional

from loguru import logger

from autopilot.browser.tabs import PlaywrightTabController, TabController
from autopilot.handlers.download import Uploader
from autopilot.llm import PlannerClient
from autopilot.memory.experience import ExperienceMemory
from autopilot.models import TaskType
from autopilot.scheduler import TaskScheduler
from autopilot.store import PersistentStore, create_store


def command(func: Callable[..., Awaitable[Dict[str, Any]]]) -> Callable[..., Awaitable[Dict[str, Any]]]:
    """把命令中的异常转换为 {"success": False, "error": ...}"""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> Dict[str, Any]:
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            logger.error(f"❌ [AgentService] {func.__name__} 失败: {e}")
            return {"success": False, "error": str(e)}

    return wrapper


class AgentService:
    """
    命令门面

    Args:
        store: 持久化存储，默认按配置创建
        tabs: 标签页控制器，默认 Playwright
        planner: AI 规划服务客户端
        memory: 经验记忆
        uploader: 下载文件的外部上传器
        scheduler: 直接注入的调度器（测试用）
    """

    def __init__(
        self,
        store: Optional[PersistentStore] = None,
        tabs: Optional[TabController] = None,
        planner: Optional[PlannerClient] = None,
        memory: Optional[ExperienceMemory] = None,
        uploader: Optional[Uploader] = None,
        scheduler: Optional[TaskScheduler] = None,
    ):
        self.store = store or create_store()
        self.tabs = tabs or PlaywrightTabController()
        self.planner = planner or PlannerClient()
        self.memory = memory or ExperienceMemory(self.store)
        self.scheduler = scheduler or TaskScheduler(
            self.store, self.tabs, self.planner, memory=self.memory, uploader=uploader
        )
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def init_agent(self, resume: bool = True) -> TaskScheduler:
        """
        一次性初始化：加载记忆和调度检查点，队列非空时恢复执行

        Args:
            resume: 为 False 时只加载状态，不启动调度循环
        """
        async with self._init_lock:
            if not self._initialized:
                await self.memory.init()
                await self.scheduler.load_state()
                self._initialized = True
                logger.info("🤖 [AgentService] Agent 初始化完成")
        if resume and self.scheduler.queue and not self.scheduler.is_running:
            self.scheduler.ensure_running()
        return self.scheduler

    # ============================================================
    # 任务
    # ============================================================

    @command
    async def add_task(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        scheduler = await self.init_agent()
        task_id = await scheduler.add_task(spec)
        return {"success": True, "task_id": task_id}

    @command
    async def autonomous_task(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        scheduler = await self.init_agent()
        task_id = await scheduler.add_task({**spec, "type": TaskType.AUTONOMOUS_BROWSER_TASK.value})
        return {"success": True, "task_id": task_id}

    @command
    async def status(self) -> Dict[str, Any]:
        scheduler = await self.init_agent(resume=False)
        return {"success": True, "stats": scheduler.get_stats()}

    @command
    async def stop(self) -> Dict[str, Any]:
        self.scheduler.stop()
        return {"success": True}

    @command
    async def clear(self) -> Dict[str, Any]:
        await self.scheduler.clear_history()
        return {"success": True}

    @command
    async def history(self) -> Dict[str, Any]:
        scheduler = await self.init_agent(resume=False)
        return {"success": True, "history": scheduler.get_history()}

    # ============================================================
    # 记忆
    # ============================================================

    @command
    async def memory_stats(self) -> Dict[str, Any]:
        await self.init_agent(resume=False)
        return {"success": True, "stats": await self.memory.get_memory_stats()}

    @command
    async def clear_memory(self, keep_successful: bool = False) -> Dict[str, Any]:
        await self.init_agent(resume=False)
        await self.memory.clear_memory(keep_successful)
        return {"success": True}

    @command
    async def export_memory(self) -> Dict[str, Any]:
        await self.init_agent(resume=False)
        return {"success": True, "data": await self.memory.export_memory()}

    @command
    async def import_memory(self, blob: str) -> Dict[str, Any]:
        await self.init_agent(resume=False)
        if await self.memory.import_memory(blob):
            return {"success": True}
        return {"success": False, "error": "Invalid memory format"}

    # ============================================================
    # 浏览器
    # ============================================================

    @command
    async def capture_snapshot(self) -> Dict[str, Any]:
        screenshot = await self.scheduler.perception.capture()
        return {"success": True, "screenshot": screenshot}

    @command
    async def execute_action(self, action: Dict[str, Any]) -> Dict[str, Any]:
        record = await self.scheduler.perception.execute_action(action)
        return {"success": bool(record["result"].get("success", False)), "result": record}

    async def shutdown(self) -> None:
        """停止调度并释放浏览器"""
        self.scheduler.stop()
        await self.scheduler.wait_until_idle()
        await self.tabs.shutdown()
