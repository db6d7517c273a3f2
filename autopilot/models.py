"""
Task / AgentContext 数据模型

定义调度器的核心数据结构，包括：
- TaskType：任务类型枚举（封闭集合）
- TaskStatus：任务状态枚举
- ActionType / StepType：感知-执行循环中的动作与步骤类型
- *Params：每种任务类型各自的参数结构
- Task：队列中的任务
- AgentContext：调度器共享上下文（已访问 URL、下载记录、分析结果）
"""
import random
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Union

from autopilot.errors import UnknownTaskTypeError

SCHEMA_VERSION = 1


class TaskType(str, Enum):
    """任务类型"""
    ANALYZE_URL = "analyze_url"
    FOLLOW_LINKS = "follow_links"
    DOWNLOAD_FILE = "download_file"
    SEARCH_AND_ANALYZE = "search_and_analyze"
    EXTRACT_DATA = "extract_data"
    CHAIN = "chain"
    AUTONOMOUS_BROWSER_TASK = "autonomous_browser_task"


class TaskStatus(str, Enum):
    """任务状态"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ActionType(str, Enum):
    """页面原子动作"""
    CLICK = "click"
    TYPE = "type"
    SCROLL = "scroll"
    WAIT = "wait"


class StepType(str, Enum):
    """感知-执行循环步骤日志中的记录类型"""
    SCREENSHOT = "screenshot"
    ANALYSIS = "analysis"
    PAGE_INFO = "page_info"
    ACTIONS = "actions"
    ACTION_RESULT = "action_result"
    VERIFICATION = "verification"


def utc_now() -> str:
    """ISO-8601 格式的当前 UTC 时间"""
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    """时间戳 + 随机抖动，进程生命周期内唯一即可"""
    return f"{int(time.time() * 1000)}-{random.randint(0, 0xFFFFFF):06x}"


# ============================================================
# 各任务类型的参数
# ============================================================

@dataclass
class AnalyzeOptions:
    """
    analyze_url 的可选参数

    Attributes:
        auto_follow: 分析完成后是否把页面链接作为后续任务入队
        max_follow: 最多跟随的链接数
        depth: 当前递归深度
        prompt: 自定义分析提示词
    """
    auto_follow: bool = False
    max_follow: int = 5
    depth: int = 0
    prompt: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AnalyzeOptions":
        data = data or {}
        return cls(
            auto_follow=bool(data.get("auto_follow", False)),
            max_follow=int(data.get("max_follow", 5)),
            depth=int(data.get("depth", 0)),
            prompt=data.get("prompt"),
        )


@dataclass
class AnalyzeUrlParams:
    url: str
    options: AnalyzeOptions = field(default_factory=AnalyzeOptions)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalyzeUrlParams":
        return cls(url=data.get("url", ""), options=AnalyzeOptions.from_dict(data.get("options")))


@dataclass
class FollowLinksParams:
    start_url: str
    max_links: int = 10
    depth: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FollowLinksParams":
        return cls(
            start_url=data.get("start_url") or data.get("url", ""),
            max_links=int(data.get("max_links", 10)),
            depth=int(data.get("depth", 0)),
        )


@dataclass
class DownloadFileParams:
    url: str
    file_name: Optional[str] = None
    upload: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DownloadFileParams":
        return cls(
            url=data.get("url", ""),
            file_name=data.get("file_name"),
            upload=bool(data.get("upload", False)),
        )


@dataclass
class SearchParams:
    query: str
    max_results: int = 5

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchParams":
        return cls(query=data.get("query", ""), max_results=int(data.get("max_results", 5)))


@dataclass
class ExtractDataParams:
    """
    extract_data 的参数

    selectors 中的 title / text / links / images 为内置提取项，
    custom 为 {名称: CSS 选择器} 的自定义映射。
    """
    url: str
    selectors: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractDataParams":
        return cls(url=data.get("url", ""), selectors=dict(data.get("selectors") or {}))


@dataclass
class ChainParams:
    """子任务列表，每个子任务可声明 stop_on_error"""
    tasks: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChainParams":
        return cls(tasks=[dict(t) for t in data.get("tasks") or []])


@dataclass
class AutonomousParams:
    """
    autonomous_browser_task 的参数

    Attributes:
        description: 任务描述
        goal: 任务目标（description 缺省时使用）
        url: 执行前先导航到的页面
        prompt: 自定义截图分析提示词
        search_text: 示例输入文本，启发式规划时填入搜索框
    """
    description: Optional[str] = None
    goal: Optional[str] = None
    url: Optional[str] = None
    prompt: Optional[str] = None
    search_text: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AutonomousParams":
        return cls(
            description=data.get("description"),
            goal=data.get("goal"),
            url=data.get("url"),
            prompt=data.get("prompt"),
            search_text=data.get("search_text"),
        )

    @property
    def summary(self) -> str:
        return self.description or self.goal or ""


@dataclass
class RawParams:
    """未知任务类型的原始参数，保留下来以便在分发时报错并记录"""
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawParams":
        return cls(data=dict(data))


TaskParams = Union[
    AnalyzeUrlParams, FollowLinksParams, DownloadFileParams, SearchParams,
    ExtractDataParams, ChainParams, AutonomousParams, RawParams,
]

PARAMS_BY_TYPE = {
    TaskType.ANALYZE_URL: AnalyzeUrlParams,
    TaskType.FOLLOW_LINKS: FollowLinksParams,
    TaskType.DOWNLOAD_FILE: DownloadFileParams,
    TaskType.SEARCH_AND_ANALYZE: SearchParams,
    TaskType.EXTRACT_DATA: ExtractDataParams,
    TaskType.CHAIN: ChainParams,
    TaskType.AUTONOMOUS_BROWSER_TASK: AutonomousParams,
}

# 任务规格中不属于参数的字段
_ENVELOPE_KEYS = {"type", "id", "status", "created_at", "completed_at", "error", "result", "stop_on_error"}


def parse_task_type(value: str) -> Optional[TaskType]:
    """把字符串解析为 TaskType，未知类型返回 None"""
    try:
        return TaskType(value)
    except ValueError:
        return None


def parse_params(task_type: str, data: Dict[str, Any]) -> TaskParams:
    kind = parse_task_type(task_type)
    if kind is None:
        return RawParams.from_dict(data)
    return PARAMS_BY_TYPE[kind].from_dict(data)


@dataclass
class Task:
    """
    调度队列中的任务

    Attributes:
        type: 任务类型字符串（未知类型在分发时失败）
        params: 与类型对应的参数结构
        id: 进程内唯一 ID
        status: 当前状态 pending → running → completed | failed
        created_at / completed_at: ISO 时间
        error: 失败原因
        result: 处理结果
        stop_on_error: 作为 chain 子任务时，失败是否中断整个链
        label: 调用方给出的任务描述，任何类型都保留
    """
    type: str
    params: TaskParams
    id: str = field(default_factory=new_id)
    status: TaskStatus = TaskStatus.PENDING
    created_at: str = field(default_factory=utc_now)
    completed_at: Optional[str] = None
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    stop_on_error: bool = False
    label: Optional[str] = None

    @classmethod
    def from_spec(cls, spec: Dict[str, Any]) -> "Task":
        """
        根据调用方提交的扁平任务规格创建新任务

        Args:
            spec: 例如 {"type": "analyze_url", "url": "https://a.test"}

        Returns:
            Task: 已分配 ID、状态为 pending 的任务
        """
        task_type = str(spec.get("type", ""))
        params = {k: v for k, v in spec.items() if k not in _ENVELOPE_KEYS}
        return cls(
            type=task_type,
            params=parse_params(task_type, params),
            stop_on_error=bool(spec.get("stop_on_error", False)),
            label=spec.get("description") or None,
        )

    @property
    def kind(self) -> TaskType:
        """
        Raises:
            UnknownTaskTypeError: 类型不在封闭集合内
        """
        kind = parse_task_type(self.type)
        if kind is None:
            raise UnknownTaskTypeError(self.type)
        return kind

    @property
    def url(self) -> Optional[str]:
        params = self.params
        if isinstance(params, FollowLinksParams):
            return params.start_url or None
        if isinstance(params, RawParams):
            return params.data.get("url")
        return getattr(params, "url", None) or None

    @property
    def description(self) -> Optional[str]:
        if self.label:
            return self.label
        params = self.params
        if isinstance(params, AutonomousParams):
            return params.summary or None
        if isinstance(params, SearchParams):
            return params.query or None
        if isinstance(params, RawParams):
            return params.data.get("description") or params.data.get("goal")
        return None

    @property
    def goal(self) -> Optional[str]:
        if isinstance(self.params, AutonomousParams):
            return self.params.goal
        return None

    def params_dict(self) -> Dict[str, Any]:
        if isinstance(self.params, RawParams):
            return dict(self.params.data)
        return asdict(self.params)

    def summary(self) -> Dict[str, Any]:
        """用于快照的精简描述"""
        return {"id": self.id, "type": self.type, "status": self.status.value, "url": self.url}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "params": self.params_dict(),
            "status": self.status.value,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
            "error": self.error,
            "result": self.result,
            "stop_on_error": self.stop_on_error,
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        task_type = str(data.get("type", ""))
        try:
            status = TaskStatus(data.get("status", TaskStatus.PENDING.value))
        except ValueError:
            status = TaskStatus.PENDING
        return cls(
            type=task_type,
            params=parse_params(task_type, data.get("params") or {}),
            id=str(data.get("id") or new_id()),
            status=status,
            created_at=data.get("created_at") or utc_now(),
            completed_at=data.get("completed_at"),
            error=data.get("error"),
            result=data.get("result"),
            stop_on_error=bool(data.get("stop_on_error", False)),
            label=data.get("label"),
        )


@dataclass
class AgentContext:
    """
    调度器共享上下文

    只由调度器自身修改；处理器返回数据，由调度器写入。
    """
    visited_urls: Set[str] = field(default_factory=set)
    downloaded_files: List[Dict[str, Any]] = field(default_factory=list)
    analysis_results: List[Dict[str, Any]] = field(default_factory=list)

    def clear(self) -> None:
        self.visited_urls.clear()
        self.downloaded_files.clear()
        self.analysis_results.clear()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "visited_urls": sorted(self.visited_urls),
            "downloaded_files": list(self.downloaded_files),
            "analysis_results": list(self.analysis_results),
        }

    def to_summary(self) -> Dict[str, Any]:
        """写入经验记忆的版本，分析结果只保留数量"""
        return {
            "visited_urls": sorted(self.visited_urls),
            "downloaded_files": list(self.downloaded_files),
            "analysis_results_count": len(self.analysis_results),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AgentContext":
        data = data or {}
        return cls(
            visited_urls=set(data.get("visited_urls") or []),
            downloaded_files=list(data.get("downloaded_files") or []),
            analysis_results=list(data.get("analysis_results") or []),
        )
