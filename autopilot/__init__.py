"""
autopilot - 任务驱动的浏览器自动化 Agent

三个核心子系统：
- TaskScheduler：任务队列与状态机
- ExperienceMemory：经验记忆与知识提炼
- PerceptionActionLoop：截图 → 分析 → 规划 → 执行 → 验证
"""
from autopilot.models import Task, TaskStatus, TaskType
from autopilot.memory.experience import ExperienceMemory
from autopilot.perception.loop import PerceptionActionLoop
from autopilot.scheduler import TaskScheduler
from autopilot.service import AgentService

__all__ = [
    "AgentService",
    "ExperienceMemory",
    "PerceptionActionLoop",
    "Task",
    "TaskScheduler",
    "TaskStatus",
    "TaskType",
]
