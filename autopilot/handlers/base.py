"""
任务处理器抽象基类

处理器只返回数据，不修改调度器的共享上下文：
需要写入的分析结果、下载记录和后续任务都放在 TaskOutcome 中，由调度器统一应用。
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from autopilot.memory.models import Knowledge


@dataclass
class TaskOutcome:
    """
    处理结果

    Attributes:
        result: 写入 Task.result 的内容，至少包含 success
        next_tasks: 需要追加到队尾的任务规格
        analysis_records: 追加到 context.analysis_results 的记录
        download_records: 追加到 context.downloaded_files 的记录
    """
    result: Dict[str, Any]
    next_tasks: List[Dict[str, Any]] = field(default_factory=list)
    analysis_records: List[Dict[str, Any]] = field(default_factory=list)
    download_records: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.result.get("success", False))


class BaseHandler(ABC):
    """处理器抽象基类"""

    @abstractmethod
    async def execute(self, params: Any, knowledge: Optional[Knowledge] = None) -> TaskOutcome:
        """子类实现具体执行逻辑"""
        ...
