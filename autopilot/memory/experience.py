"""
经验记忆 - 记录任务执行结果，提炼模式，为新任务生成知识

记忆以单个 JSON 文档保存在 PersistentStore 的 agent_memory 键下：
{version, experiences: [...], agent_state, created_at}

经验数量超过上限时执行淘汰：成功优先、新的优先，截断到上限。
"""
import json
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import urlparse

from loguru import logger

from autopilot.memory.models import (
    AgentStateSnapshot,
    Experience,
    ExperienceResult,
    ExperienceTask,
    Knowledge,
    LearnedPatterns,
    Memory,
    Performance,
)
from autopilot.models import StepType, Task, utc_now
from autopilot.store import MEMORY_KEY, PersistentStore
from config.settings import settings

TaskLike = Union[Task, Dict[str, Any]]


def _task_view(task: TaskLike) -> ExperienceTask:
    """把 Task 或查询字典统一成 ExperienceTask"""
    if isinstance(task, Task):
        return ExperienceTask(type=task.type, description=task.description, url=task.url, goal=task.goal)
    return ExperienceTask(
        type=str(task.get("type") or ""),
        description=task.get("description") or task.get("goal"),
        url=task.get("url"),
        goal=task.get("goal"),
    )


def _hostname(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    try:
        return urlparse(url).hostname
    except ValueError:
        return None


def _ranked(experiences: List[Experience]) -> List[Experience]:
    """成功优先，同等情况下新的优先（稳定排序）"""
    newest_first = sorted(experiences, key=lambda e: e.timestamp, reverse=True)
    return sorted(newest_first, key=lambda e: not e.success)


def _action_result(step: Dict[str, Any]) -> Optional[Tuple[Dict[str, Any], Dict[str, Any]]]:
    """取出 action_result 步骤中的 (action, result)"""
    if step.get("type") != StepType.ACTION_RESULT.value:
        return None
    data = step.get("data") or {}
    action = data.get("action") or {}
    result = data.get("result") or {}
    return action, result


def _compact_steps(steps: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """去掉步骤中的截图数据，只保留 url / timestamp"""
    compacted = []
    for step in steps:
        step_type = step.get("type")
        data = step.get("data")
        if step_type == StepType.SCREENSHOT.value and isinstance(data, dict):
            data = {"url": data.get("url"), "timestamp": data.get("timestamp"), "saved": True}
        elif step_type == StepType.VERIFICATION.value and isinstance(data, dict):
            shot = data.get("screenshot") or {}
            data = {
                "screenshot": {"url": shot.get("url"), "timestamp": shot.get("timestamp"), "saved": True},
                "analysis": data.get("analysis"),
            }
        compacted.append({"type": step_type, "data": data})
    return compacted


def _outcome_field(outcome: Dict[str, Any], key: str) -> Any:
    """处理器结果可能把循环结果嵌套在 result 中"""
    value = outcome.get(key)
    if not value and isinstance(outcome.get("result"), dict):
        value = outcome["result"].get(key)
    return value


class ExperienceMemory:
    """
    有上限的经验日志

    Attributes:
        store: 持久化存储
        max_memory_size: 经验数量上限
        learning_enabled: 关闭后调度器不再检索知识
    """

    def __init__(
        self,
        store: PersistentStore,
        max_memory_size: Optional[int] = None,
        learning_enabled: Optional[bool] = None,
    ):
        self.store = store
        self.max_memory_size = max_memory_size or settings.max_memory_size
        self.learning_enabled = settings.learning_enabled if learning_enabled is None else learning_enabled

    async def init(self) -> None:
        """确保存储中有一份记忆文档"""
        raw = await self.store.get_one(MEMORY_KEY)
        if raw is None:
            await self._save_memory(Memory())
            logger.info("🧠 [ExperienceMemory] 初始化空记忆")
        else:
            memory = await self.get_memory()
            logger.info(f"🧠 [ExperienceMemory] 已加载 {len(memory.experiences)} 条经验")

    async def get_memory(self) -> Memory:
        raw = await self.store.get_one(MEMORY_KEY)
        if raw is None:
            return Memory()
        try:
            return Memory.from_dict(raw)
        except (TypeError, ValueError, AttributeError) as e:
            logger.error(f"❌ [ExperienceMemory] 记忆文档损坏，使用空记忆: {e}")
            return Memory()

    async def _save_memory(self, memory: Memory) -> None:
        await self.store.set({MEMORY_KEY: memory.to_dict()})

    # ============================================================
    # 写入
    # ============================================================

    async def save_experience(
        self,
        task: TaskLike,
        outcome: Dict[str, Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> Experience:
        """
        记录一次任务执行

        Args:
            task: 已结束的任务
            outcome: 处理结果 {success, error?, steps?, final_screenshot?, execution_time_ms?}
            context: 执行时的上下文摘要

        Returns:
            Experience: 新建的经验记录
        """
        context = dict(context or {})
        steps = list(_outcome_field(outcome, "steps") or [])
        page_info = context.pop("page_info", None) or next(
            (s.get("data") for s in reversed(steps) if s.get("type") == StepType.PAGE_INFO.value),
            None,
        )
        success = bool(outcome.get("success", False))

        experience = Experience(
            task=_task_view(task),
            actions=_compact_steps(steps),
            result=ExperienceResult(
                success=success,
                error=_outcome_field(outcome, "error"),
                screenshot_saved=bool(_outcome_field(outcome, "final_screenshot")),
            ),
            context={"page_info": page_info, **context},
            performance=Performance(
                steps_count=len(steps),
                execution_time_ms=float(outcome.get("execution_time_ms") or 0),
                success_rate=1 if success else 0,
            ),
            learned_patterns=self.extract_patterns(task, steps),
        )

        memory = await self.get_memory()
        memory.experiences.append(experience)
        if len(memory.experiences) > self.max_memory_size:
            memory.experiences = _ranked(memory.experiences)[:self.max_memory_size]
            logger.debug(f"🧠 [ExperienceMemory] 淘汰后保留 {len(memory.experiences)} 条经验")

        await self._save_memory(memory)
        return experience

    def extract_patterns(self, task: TaskLike, steps: List[Dict[str, Any]]) -> LearnedPatterns:
        """
        从步骤日志中提取成功/失败动作、选择器计数和页面结构

        Args:
            task: 对应的任务（目前只用步骤日志）
            steps: [{type, data}] 步骤日志
        """
        patterns = LearnedPatterns()
        for step in steps or []:
            pair = _action_result(step)
            if pair is not None:
                action, result = pair
                selector = action.get("selector") or action.get("target")
                if result.get("success"):
                    patterns.successful_actions.append({
                        "type": action.get("type"),
                        "selector": selector,
                        "context": action.get("options"),
                    })
                    if action.get("selector"):
                        key = action["selector"]
                        patterns.common_selectors[key] = patterns.common_selectors.get(key, 0) + 1
                else:
                    patterns.failed_actions.append({
                        "type": action.get("type"),
                        "selector": selector,
                        "error": result.get("error"),
                    })

            if step.get("type") == StepType.PAGE_INFO.value and isinstance(step.get("data"), dict):
                page = step["data"]
                elements = page.get("elements") or {}
                patterns.page_structures.append({
                    "url": page.get("url"),
                    "elements_count": {
                        "buttons": len(elements.get("buttons") or []),
                        "inputs": len(elements.get("inputs") or []),
                        "links": len(elements.get("links") or []),
                    },
                })
        return patterns

    # ============================================================
    # 检索与知识
    # ============================================================

    async def find_similar_experiences(self, task: TaskLike, limit: int = 5) -> List[Experience]:
        """
        描述互相包含（不区分大小写）或 URL 主机名相同即视为相似

        Returns:
            List[Experience]: 成功优先、新的优先，最多 limit 条
        """
        query = _task_view(task)
        description = (query.description or "").lower()
        host = _hostname(query.url)

        memory = await self.get_memory()
        matches = []
        for exp in memory.experiences:
            exp_description = (exp.task.description or "").lower()
            description_match = bool(description and exp_description) and (
                description in exp_description or exp_description in description
            )
            exp_host = _hostname(exp.task.url)
            url_match = bool(host and exp_host) and host == exp_host
            if description_match or url_match:
                matches.append(exp)
        return _ranked(matches)[:limit]

    async def get_knowledge_for_task(self, task: TaskLike) -> Knowledge:
        """取最相似的 3 条经验，计算最佳实践、常见错误和推荐动作"""
        similar = await self.find_similar_experiences(task, 3)
        return Knowledge(
            similar_tasks=[
                {
                    "description": exp.task.description,
                    "success": exp.success,
                    "actions": exp.learned_patterns.successful_actions[:5],
                    "common_selectors": exp.learned_patterns.common_selectors,
                }
                for exp in similar
            ],
            best_practices=self._best_practices(similar),
            common_mistakes=self._common_mistakes(similar),
            recommended_actions=self._recommended_actions(similar),
        )

    @staticmethod
    def _best_practices(experiences: List[Experience]) -> Dict[str, Any]:
        practices: Dict[str, Any] = {
            "successful_selectors": {},
            "action_sequences": [],
            "timing": {"average_wait_time": 0, "average_steps": 0},
        }
        successful = [e for e in experiences if e.success]
        if not successful:
            return practices

        for exp in successful:
            for selector, count in exp.learned_patterns.common_selectors.items():
                practices["successful_selectors"][selector] = practices["successful_selectors"].get(selector, 0) + count

            sequence = []
            for step in exp.actions:
                pair = _action_result(step)
                if pair is not None and pair[1].get("success"):
                    action = pair[0]
                    sequence.append({"type": action.get("type"), "selector": action.get("selector") or action.get("target")})
            if sequence:
                practices["action_sequences"].append(sequence)

        practices["timing"]["average_wait_time"] = sum(e.performance.execution_time_ms for e in successful) / len(successful)
        practices["timing"]["average_steps"] = sum(e.performance.steps_count for e in successful) / len(successful)
        return practices

    @staticmethod
    def _common_mistakes(experiences: List[Experience]) -> List[Dict[str, Any]]:
        mistakes: Dict[str, int] = {}
        for exp in experiences:
            for failed in exp.learned_patterns.failed_actions:
                key = f"{failed.get('type')}:{failed.get('selector') or 'unknown'}"
                mistakes[key] = mistakes.get(key, 0) + 1
        ranked = sorted(mistakes.items(), key=lambda item: item[1], reverse=True)[:10]
        return [{"action": key, "count": count} for key, count in ranked]

    @staticmethod
    def _recommended_actions(experiences: List[Experience]) -> List[Dict[str, Any]]:
        successful = [e for e in experiences if e.success]
        if not successful:
            return []

        # experiences 已是新的优先，第一次出现的位置即最近一次的位置
        frequency: Dict[Tuple[Any, Any], Dict[str, int]] = {}
        for exp in successful:
            for index, step in enumerate(exp.actions):
                pair = _action_result(step)
                if pair is None or not pair[1].get("success"):
                    continue
                action = pair[0]
                key = (action.get("type"), action.get("selector"))
                if key not in frequency:
                    frequency[key] = {"count": 0, "position": index}
                frequency[key]["count"] += 1

        ranked = sorted(frequency.items(), key=lambda item: item[1]["count"], reverse=True)[:5]
        return [
            {
                "type": action_type,
                "selector": selector or None,
                "confidence": data["count"] / len(successful),
                "suggested_position": data["position"],
            }
            for (action_type, selector), data in ranked
        ]

    # ============================================================
    # 统计与维护
    # ============================================================

    async def get_memory_stats(self) -> Dict[str, Any]:
        memory = await self.get_memory()
        experiences = memory.experiences
        successful = sum(1 for e in experiences if e.success)
        return {
            "total_experiences": len(experiences),
            "successful": successful,
            "failed": len(experiences) - successful,
            "success_rate": successful / len(experiences) if experiences else 0,
            "unique_tasks": len({e.task.type for e in experiences}),
            "unique_urls": len({e.task.url for e in experiences if e.task.url}),
            "memory_size": len(json.dumps(memory.to_dict(), ensure_ascii=False)),
            # 淘汰排序后数组不一定按时间排列，这里只按位置取
            "oldest_experience": experiences[-1].timestamp if experiences else None,
            "newest_experience": experiences[0].timestamp if experiences else None,
        }

    async def clear_memory(self, keep_successful: bool = False) -> None:
        """
        Args:
            keep_successful: True 时只保留成功经验，否则删除整个记忆文档并重建
        """
        if keep_successful:
            memory = await self.get_memory()
            memory.experiences = [e for e in memory.experiences if e.success]
            await self._save_memory(memory)
            logger.info(f"🧠 [ExperienceMemory] 清理失败经验，保留 {len(memory.experiences)} 条")
        else:
            await self.store.remove([MEMORY_KEY])
            await self.init()
            logger.info("🧠 [ExperienceMemory] 记忆已清空")

    async def export_memory(self) -> str:
        """整个记忆文档导出为缩进 JSON 文本"""
        memory = await self.get_memory()
        return json.dumps(memory.to_dict(), ensure_ascii=False, indent=2)

    async def import_memory(self, blob: str) -> bool:
        """
        用导出的文本整体替换记忆

        Returns:
            bool: 解析失败返回 False，原记忆保持不变
        """
        try:
            memory = Memory.from_dict(json.loads(blob))
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning(f"⚠️ [ExperienceMemory] 导入失败: {e}")
            return False
        await self._save_memory(memory)
        logger.info(f"🧠 [ExperienceMemory] 导入 {len(memory.experiences)} 条经验")
        return True

    # ============================================================
    # 调度器检查点
    # ============================================================

    async def save_agent_state(self, snapshot: Union[AgentStateSnapshot, Dict[str, Any]]) -> None:
        if isinstance(snapshot, dict):
            snapshot = AgentStateSnapshot.from_dict(snapshot)
        snapshot.saved_at = utc_now()
        memory = await self.get_memory()
        memory.agent_state = snapshot
        await self._save_memory(memory)

    async def load_agent_state(self) -> Optional[AgentStateSnapshot]:
        memory = await self.get_memory()
        return memory.agent_state
