"""
按任务类型划分的处理器
"""
from autopilot.handlers.autonomous import AutonomousHandler, build_task_prompt
from autopilot.handlers.base import BaseHandler, TaskOutcome
from autopilot.handlers.download import DownloadHandler, extract_file_name
from autopilot.handlers.web import AnalyzeUrlHandler, ExtractDataHandler, SearchHandler

__all__ = [
    "AnalyzeUrlHandler",
    "AutonomousHandler",
    "BaseHandler",
    "DownloadHandler",
    "ExtractDataHandler",
    "SearchHandler",
    "TaskOutcome",
    "build_task_prompt",
    "extract_file_name",
]
