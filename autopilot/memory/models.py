"""
经验记忆的记录类型

所有记录都带 to_dict / from_dict；from_dict 对缺失字段使用显式默认值，
并兼容旧版导出中的 camelCase 字段名。
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from autopilot.models import SCHEMA_VERSION, new_id, utc_now


def _pick(data: Dict[str, Any], key: str, legacy: Optional[str] = None, default: Any = None) -> Any:
    if key in data and data[key] is not None:
        return data[key]
    if legacy and legacy in data and data[legacy] is not None:
        return data[legacy]
    return default


@dataclass
class ExperienceTask:
    type: str = ""
    description: Optional[str] = None
    url: Optional[str] = None
    goal: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ExperienceTask":
        data = data or {}
        return cls(
            type=str(data.get("type") or ""),
            description=data.get("description"),
            url=data.get("url"),
            goal=data.get("goal"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "description": self.description, "url": self.url, "goal": self.goal}


@dataclass
class ExperienceResult:
    success: bool = False
    error: Optional[str] = None
    screenshot_saved: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ExperienceResult":
        data = data or {}
        return cls(
            success=bool(data.get("success", False)),
            error=data.get("error"),
            screenshot_saved=bool(_pick(data, "screenshot_saved", "finalScreenshot", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "error": self.error, "screenshot_saved": self.screenshot_saved}


@dataclass
class Performance:
    steps_count: int = 0
    execution_time_ms: float = 0
    success_rate: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Performance":
        data = data or {}
        return cls(
            steps_count=int(_pick(data, "steps_count", "stepsCount", 0)),
            execution_time_ms=float(_pick(data, "execution_time_ms", "executionTime", 0)),
            success_rate=int(_pick(data, "success_rate", "successRate", 0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps_count": self.steps_count,
            "execution_time_ms": self.execution_time_ms,
            "success_rate": self.success_rate,
        }


@dataclass
class LearnedPatterns:
    """
    从步骤日志中提取的模式

    Attributes:
        successful_actions: [{type, selector, context}]
        failed_actions: [{type, selector, error}]
        common_selectors: 成功动作中选择器出现次数
        page_structures: [{url, elements_count: {buttons, inputs, links}}]
    """
    successful_actions: List[Dict[str, Any]] = field(default_factory=list)
    failed_actions: List[Dict[str, Any]] = field(default_factory=list)
    common_selectors: Dict[str, int] = field(default_factory=dict)
    page_structures: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "LearnedPatterns":
        data = data or {}
        return cls(
            successful_actions=list(_pick(data, "successful_actions", "successfulActions", [])),
            failed_actions=list(_pick(data, "failed_actions", "failedActions", [])),
            common_selectors=dict(_pick(data, "common_selectors", "commonSelectors", {})),
            page_structures=list(_pick(data, "page_structures", "pageStructures", [])),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "successful_actions": self.successful_actions,
            "failed_actions": self.failed_actions,
            "common_selectors": self.common_selectors,
            "page_structures": self.page_structures,
        }


@dataclass
class Experience:
    """一次任务执行的不可变记录"""
    task: ExperienceTask
    result: ExperienceResult
    id: str = field(default_factory=new_id)
    timestamp: str = field(default_factory=utc_now)
    actions: List[Dict[str, Any]] = field(default_factory=list)
    context: Dict[str, Any] = field(default_factory=dict)
    performance: Performance = field(default_factory=Performance)
    learned_patterns: LearnedPatterns = field(default_factory=LearnedPatterns)

    @property
    def success(self) -> bool:
        return self.result.success

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Experience":
        return cls(
            task=ExperienceTask.from_dict(data.get("task")),
            result=ExperienceResult.from_dict(data.get("result")),
            id=str(data.get("id") or new_id()),
            timestamp=str(data.get("timestamp") or utc_now()),
            actions=list(data.get("actions") or []),
            context=dict(data.get("context") or {}),
            performance=Performance.from_dict(data.get("performance")),
            learned_patterns=LearnedPatterns.from_dict(_pick(data, "learned_patterns", "learnedPatterns")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "task": self.task.to_dict(),
            "actions": self.actions,
            "result": self.result.to_dict(),
            "context": self.context,
            "performance": self.performance.to_dict(),
            "learned_patterns": self.learned_patterns.to_dict(),
        }


@dataclass
class AgentStateSnapshot:
    """调度器检查点"""
    task_queue: List[Dict[str, Any]] = field(default_factory=list)
    context: Dict[str, Any] = field(default_factory=dict)
    is_running: bool = False
    current_task: Optional[Dict[str, Any]] = None
    saved_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AgentStateSnapshot":
        data = data or {}
        return cls(
            task_queue=list(_pick(data, "task_queue", "taskQueue", [])),
            context=dict(data.get("context") or {}),
            is_running=bool(_pick(data, "is_running", "isRunning", False)),
            current_task=_pick(data, "current_task", "currentTask"),
            saved_at=_pick(data, "saved_at", "savedAt"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_queue": self.task_queue,
            "context": self.context,
            "is_running": self.is_running,
            "current_task": self.current_task,
            "saved_at": self.saved_at,
        }


@dataclass
class Memory:
    """持久化的记忆整体"""
    experiences: List[Experience] = field(default_factory=list)
    agent_state: Optional[AgentStateSnapshot] = None
    created_at: str = field(default_factory=utc_now)
    version: int = SCHEMA_VERSION

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Memory":
        """
        Raises:
            TypeError / ValueError: 结构不合法
        """
        if not isinstance(data, dict):
            raise TypeError("memory must be a JSON object")
        experiences = data.get("experiences") or []
        if not isinstance(experiences, list):
            raise TypeError("experiences must be a list")
        state = _pick(data, "agent_state", "agentState")
        return cls(
            experiences=[Experience.from_dict(e) for e in experiences],
            agent_state=AgentStateSnapshot.from_dict(state) if state else None,
            created_at=str(_pick(data, "created_at", "createdAt", utc_now())),
            version=int(data.get("version") or SCHEMA_VERSION),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "experiences": [e.to_dict() for e in self.experiences],
            "agent_state": self.agent_state.to_dict() if self.agent_state else None,
            "created_at": self.created_at,
        }


@dataclass
class Knowledge:
    """从相似经验中即时计算出的知识，不写回记忆"""
    similar_tasks: List[Dict[str, Any]] = field(default_factory=list)
    best_practices: Dict[str, Any] = field(default_factory=dict)
    common_mistakes: List[Dict[str, Any]] = field(default_factory=list)
    recommended_actions: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "similar_tasks": self.similar_tasks,
            "best_practices": self.best_practices,
            "common_mistakes": self.common_mistakes,
            "recommended_actions": self.recommended_actions,
        }
