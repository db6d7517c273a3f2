"""
任务调度器 - 有序队列 + 单工作者状态机

每个任务：pending → running → completed | failed

流程（每个任务）：
1. 出队（先出队再执行，running 的任务不在队列中）
2. 标记 running 并保存状态
3. 从经验记忆获取知识
4. 按任务类型分发到处理器
5. 标记 completed / failed，记录经验
6. 派生任务追加到队尾，保存状态与记忆检查点
7. 短暂休眠后继续

stop() 只阻止下一个任务开始，不会中断正在执行的任务。
"""
import asyncio
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from loguru import logger

from autopilot.browser.tabs import TabController
from autopilot.handlers import (
    AnalyzeUrlHandler,
    AutonomousHandler,
    DownloadHandler,
    ExtractDataHandler,
    SearchHandler,
    TaskOutcome,
)
from autopilot.handlers.download import Uploader
from autopilot.llm import PlannerClient
from autopilot.memory.experience import ExperienceMemory
from autopilot.memory.models import AgentStateSnapshot, Knowledge
from autopilot.models import (
    AgentContext,
    AnalyzeOptions,
    AnalyzeUrlParams,
    AutonomousParams,
    ChainParams,
    DownloadFileParams,
    ExtractDataParams,
    FollowLinksParams,
    SearchParams,
    Task,
    TaskStatus,
    TaskType,
    utc_now,
)
from autopilot.perception.loop import PerceptionActionLoop
from autopilot.store import STATE_KEY, PersistentStore
from config.settings import settings

Dispatcher = Callable[[Any, Optional[Knowledge]], Awaitable[TaskOutcome]]


class TaskScheduler:
    """
    单工作者任务调度器

    Attributes:
        queue: 待执行任务（FIFO）
        context: 共享上下文，只由调度器修改
        current_task: 正在执行的任务
        finished: 最近结束的任务（仅进程内）
        is_running: 调度循环是否在运行
    """

    def __init__(
        self,
        store: PersistentStore,
        tabs: TabController,
        planner: PlannerClient,
        memory: Optional[ExperienceMemory] = None,
        loop: Optional[PerceptionActionLoop] = None,
        uploader: Optional[Uploader] = None,
        max_depth: Optional[int] = None,
        task_interval: Optional[float] = None,
        navigation_settle_delay: Optional[float] = None,
        finished_limit: int = 100,
    ):
        self.store = store
        self.tabs = tabs
        self.planner = planner
        self.memory = memory
        self.max_depth = settings.max_depth if max_depth is None else max_depth
        self.task_interval = settings.task_interval if task_interval is None else task_interval

        self.queue: List[Task] = []
        self.context = AgentContext()
        self.current_task: Optional[Task] = None
        self.finished: Deque[Task] = deque(maxlen=finished_limit)
        self.is_running = False
        self._stop_requested = False
        self._loop_task: Optional[asyncio.Task] = None
        self._memory_ready = False

        self.perception = loop or PerceptionActionLoop(tabs, planner)
        self.analyze_handler = AnalyzeUrlHandler(tabs, planner, max_depth=self.max_depth)
        self.search_handler = SearchHandler(tabs)
        self.extract_handler = ExtractDataHandler(tabs)
        self.download_handler = DownloadHandler(uploader=uploader)
        self.autonomous_handler = AutonomousHandler(tabs, self.perception, navigation_settle_delay)

        self._dispatch_table: Dict[TaskType, Dispatcher] = {
            TaskType.ANALYZE_URL: self._run_analyze_url,
            TaskType.FOLLOW_LINKS: self._run_follow_links,
            TaskType.DOWNLOAD_FILE: self._run_download_file,
            TaskType.SEARCH_AND_ANALYZE: self._run_search,
            TaskType.EXTRACT_DATA: self._run_extract_data,
            TaskType.CHAIN: self._run_chain,
            TaskType.AUTONOMOUS_BROWSER_TASK: self._run_autonomous,
        }

    # ============================================================
    # 队列控制
    # ============================================================

    async def add_task(self, spec: Dict[str, Any]) -> str:
        """
        入队一个任务，不等待执行

        Args:
            spec: 扁平任务规格，例如 {"type": "analyze_url", "url": "..."}

        Returns:
            str: 任务 ID
        """
        task = Task.from_spec(spec)
        self.queue.append(task)
        logger.debug(f"📋 [TaskScheduler] 入队 {task.type} ({task.id})，队列长度 {len(self.queue)}")
        await self.save_state()
        self.ensure_running()
        return task.id

    def ensure_running(self) -> None:
        """调度循环未运行时在后台启动"""
        if self._loop_task is None or self._loop_task.done():
            if not self.is_running:
                self._loop_task = asyncio.create_task(self.start())
        elif not self.is_running:
            # 循环正在收尾：撤销停止请求，收尾结束后重新检查队列
            self._stop_requested = False

    async def start(self) -> None:
        """
        运行调度循环直到队列为空或 stop() 被调用

        已在运行时为空操作。
        """
        if self.is_running:
            # 停止请求尚未生效时，重新 start 相当于撤销停止
            self._stop_requested = False
            return

        self.is_running = True
        self._stop_requested = False
        try:
            await self._init_memory()
            await self._restore_state_from_memory()
            logger.info(f"🤖 [TaskScheduler] 调度器启动，待执行 {len(self.queue)} 个任务")

            while self.queue and not self._stop_requested:
                task = self.queue.pop(0)
                await self._run_task(task)
                if self.queue and not self._stop_requested:
                    await asyncio.sleep(self.task_interval)
        finally:
            self.is_running = False
            self.current_task = None
            await self.save_state()
            await self._save_state_to_memory()
            logger.info("🤖 [TaskScheduler] 调度器停止")

        if self.queue and not self._stop_requested and not self.is_running:
            logger.debug(f"📋 [TaskScheduler] 收尾期间有 {len(self.queue)} 个新任务入队，重新启动")
            self._loop_task = asyncio.create_task(self.start())

    def stop(self) -> None:
        """请求停止：当前任务完成后不再开始下一个"""
        if self.is_running:
            self._stop_requested = True
            logger.info("🤖 [TaskScheduler] 收到停止请求，当前任务结束后停止")

    async def wait_until_idle(self) -> None:
        """等待后台调度循环结束"""
        while self._loop_task is not None and not self._loop_task.done():
            await self._loop_task

    # ============================================================
    # 单个任务
    # ============================================================

    async def _run_task(self, task: Task) -> None:
        self.current_task = task
        task.status = TaskStatus.RUNNING
        await self.save_state()
        logger.info(f"▶️ [TaskScheduler] 执行 {task.type} ({task.id})")

        started = time.monotonic()
        outcome: Optional[TaskOutcome] = None
        knowledge = await self._knowledge_for(task)
        try:
            outcome = await self._dispatch(task, knowledge)
            self._apply(outcome)
        except Exception as e:
            task.status = TaskStatus.FAILED
            task.error = str(e) or type(e).__name__
            logger.error(f"❌ [TaskScheduler] 任务失败 {task.type} ({task.id}): {task.error}")
        else:
            task.status = TaskStatus.COMPLETED
            task.result = outcome.result
        elapsed_ms = (time.monotonic() - started) * 1000
        task.completed_at = utc_now()

        if task.status == TaskStatus.COMPLETED:
            task.result["execution_time_ms"] = elapsed_ms
            memory_outcome = task.result
        else:
            memory_outcome = {"success": False, "error": task.error, "execution_time_ms": elapsed_ms}
        await self._record_experience(task, memory_outcome)

        if outcome is not None:
            for spec in outcome.next_tasks:
                await self.add_task(spec)

        await self.save_state()
        await self._save_state_to_memory()
        self.finished.append(task)
        self.current_task = None
        logger.info(f"⏹️ [TaskScheduler] {task.type} ({task.id}) → {task.status.value}，耗时 {elapsed_ms:.0f}ms")

    async def _dispatch(self, task: Task, knowledge: Optional[Knowledge]) -> TaskOutcome:
        """
        Raises:
            UnknownTaskTypeError: 任务类型不在封闭集合内
        """
        handler = self._dispatch_table[task.kind]
        return await handler(task.params, knowledge)

    def _apply(self, outcome: TaskOutcome) -> None:
        """把处理器返回的记录写入共享上下文"""
        self.context.analysis_results.extend(outcome.analysis_records)
        self.context.downloaded_files.extend(outcome.download_records)

    async def _knowledge_for(self, task: Task) -> Optional[Knowledge]:
        if self.memory is None or not self.memory.learning_enabled:
            return None
        try:
            knowledge = await self.memory.get_knowledge_for_task(task)
        except Exception as e:
            logger.warning(f"⚠️ [TaskScheduler] 获取知识失败: {e}")
            return None
        if knowledge.similar_tasks:
            logger.debug(f"📚 [TaskScheduler] 使用 {len(knowledge.similar_tasks)} 条相似经验")
        return knowledge

    async def _record_experience(self, task: Task, outcome: Dict[str, Any]) -> None:
        if self.memory is None or not self.memory.learning_enabled:
            return
        try:
            await self.memory.save_experience(task, outcome, {"visited_urls": sorted(self.context.visited_urls)})
        except Exception as e:
            logger.error(f"❌ [TaskScheduler] 保存经验失败: {e}")

    # ============================================================
    # 分发目标
    # ============================================================

    async def _run_analyze_url(self, params: AnalyzeUrlParams, knowledge: Optional[Knowledge]) -> TaskOutcome:
        if params.url in self.context.visited_urls:
            logger.debug(f"⏭️ [TaskScheduler] 跳过已访问的 URL: {params.url}")
            return TaskOutcome(result={
                "success": True,
                "skipped": True,
                "message": "URL already visited",
                "url": params.url,
            })
        self.context.visited_urls.add(params.url)
        return await self.analyze_handler.execute(params, knowledge)

    async def _run_follow_links(self, params: FollowLinksParams, knowledge: Optional[Knowledge]) -> TaskOutcome:
        if params.depth >= self.max_depth:
            return TaskOutcome(result={
                "success": False,
                "depth_exceeded": True,
                "message": "Maximum depth reached",
                "depth": params.depth,
            })
        options = AnalyzeOptions(auto_follow=True, max_follow=params.max_links, depth=params.depth)
        return await self._run_analyze_url(AnalyzeUrlParams(url=params.start_url, options=options), knowledge)

    async def _run_download_file(self, params: DownloadFileParams, knowledge: Optional[Knowledge]) -> TaskOutcome:
        return await self.download_handler.execute(params, knowledge)

    async def _run_search(self, params: SearchParams, knowledge: Optional[Knowledge]) -> TaskOutcome:
        return await self.search_handler.execute(params, knowledge)

    async def _run_extract_data(self, params: ExtractDataParams, knowledge: Optional[Knowledge]) -> TaskOutcome:
        return await self.extract_handler.execute(params, knowledge)

    async def _run_chain(self, params: ChainParams, knowledge: Optional[Knowledge]) -> TaskOutcome:
        """
        依次执行子任务；子任务声明 stop_on_error 且失败时中断。
        子任务抛出的异常直接向上传播，整个 chain 记为失败。
        """
        results = []
        next_tasks: List[Dict[str, Any]] = []
        for spec in params.tasks:
            sub_task = Task.from_spec(spec)
            sub_outcome = await self._dispatch(sub_task, None)
            self._apply(sub_outcome)
            next_tasks.extend(sub_outcome.next_tasks)
            results.append(sub_outcome.result)
            if not sub_outcome.success and sub_task.stop_on_error:
                logger.info(f"⛔ [TaskScheduler] chain 子任务 {sub_task.type} 失败，停止执行")
                break

        return TaskOutcome(
            result={
                "success": True,
                "results": results,
                "completed": sum(1 for r in results if r.get("success")),
                "total": len(params.tasks),
            },
            next_tasks=next_tasks,
        )

    async def _run_autonomous(self, params: AutonomousParams, knowledge: Optional[Knowledge]) -> TaskOutcome:
        return await self.autonomous_handler.execute(params, knowledge)

    # ============================================================
    # 持久化
    # ============================================================

    def _snapshot(self, full_context: bool = True) -> AgentStateSnapshot:
        return AgentStateSnapshot(
            task_queue=[t.to_dict() for t in self.queue],
            context=self.context.to_dict() if full_context else self.context.to_summary(),
            is_running=self.is_running,
            current_task=self.current_task.summary() if self.current_task else None,
            saved_at=utc_now(),
        )

    async def save_state(self) -> None:
        """完整状态写入 PersistentStore"""
        try:
            await self.store.set({STATE_KEY: self._snapshot().to_dict()})
        except Exception as e:
            logger.error(f"❌ [TaskScheduler] 保存状态失败: {e}")

    async def load_state(self) -> bool:
        """
        用 PersistentStore 中的检查点替换队列和上下文

        Returns:
            bool: 是否找到检查点
        """
        raw = await self.store.get_one(STATE_KEY)
        if not raw:
            return False
        snapshot = AgentStateSnapshot.from_dict(raw)
        self.queue = [self._restored(t) for t in snapshot.task_queue]
        self.context = AgentContext.from_dict(snapshot.context)
        logger.info(f"🔄 [TaskScheduler] 加载检查点：{len(self.queue)} 个待执行任务")
        return True

    async def _save_state_to_memory(self) -> None:
        """写入经验记忆的检查点，分析结果只保留数量"""
        if self.memory is None:
            return
        try:
            await self.memory.save_agent_state(self._snapshot(full_context=False))
        except Exception as e:
            logger.error(f"❌ [TaskScheduler] 保存记忆检查点失败: {e}")

    async def _init_memory(self) -> None:
        if self.memory is None or self._memory_ready:
            return
        await self.memory.init()
        self._memory_ready = True

    async def _restore_state_from_memory(self) -> None:
        """把记忆检查点中未完成的任务追加到队尾，并合并上下文"""
        if self.memory is None:
            return
        snapshot = await self.memory.load_agent_state()
        if snapshot is None:
            return

        known = {t.id for t in self.queue}
        if self.current_task is not None:
            known.add(self.current_task.id)
        restored = 0
        for data in snapshot.task_queue:
            if data.get("status") not in (TaskStatus.PENDING.value, TaskStatus.RUNNING.value):
                continue
            if data.get("id") in known:
                continue
            task = self._restored(data)
            self.queue.append(task)
            known.add(task.id)
            restored += 1
        if restored:
            logger.info(f"🔄 [TaskScheduler] 从记忆恢复 {restored} 个任务")

        restored_context = AgentContext.from_dict(snapshot.context)
        self.context.visited_urls |= restored_context.visited_urls
        seen = {(d.get("url"), d.get("timestamp")) for d in self.context.downloaded_files}
        for record in restored_context.downloaded_files:
            if (record.get("url"), record.get("timestamp")) not in seen:
                self.context.downloaded_files.append(record)

    @staticmethod
    def _restored(data: Dict[str, Any]) -> Task:
        task = Task.from_dict(data)
        if task.status == TaskStatus.RUNNING:
            task.status = TaskStatus.PENDING
        return task

    # ============================================================
    # 查询
    # ============================================================

    def get_stats(self) -> Dict[str, Any]:
        return {
            "queue_length": len(self.queue),
            "is_running": self.is_running,
            "visited_urls": len(self.context.visited_urls),
            "downloaded_files": len(self.context.downloaded_files),
            "analysis_results": len(self.context.analysis_results),
            "current_task": self.current_task.summary() if self.current_task else None,
        }

    def get_history(self) -> Dict[str, Any]:
        return {
            "visited_urls": sorted(self.context.visited_urls),
            "downloaded_files": list(self.context.downloaded_files),
            "analysis_results": list(self.context.analysis_results),
        }

    async def clear_history(self) -> None:
        self.context.clear()
        await self.save_state()
        logger.info("🧹 [TaskScheduler] 历史已清空")
