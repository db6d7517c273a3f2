"""
异常定义

所有 autopilot 异常都继承自 AutopilotError，调用方可以按层级捕获。
"""


class AutopilotError(Exception):
    """autopilot 基础异常"""


class PlannerError(AutopilotError):
    """AI 规划服务不可达或返回非 2xx 状态"""


class TabControllerError(AutopilotError):
    """浏览上下文不可用、句柄未知或页内脚本执行失败"""


class TabLoadTimeout(TabControllerError):
    """标签页加载超过截止时间"""

    def __init__(self, url: str, timeout_ms: int):
        self.url = url
        self.timeout_ms = timeout_ms
        super().__init__(f"页面加载超时（{timeout_ms}ms）: {url}")


class UnknownTaskTypeError(AutopilotError):
    """任务类型不在已知集合中"""

    def __init__(self, task_type: str):
        self.task_type = task_type
        super().__init__(f"Unknown task type: {task_type}")


class DownloadError(AutopilotError):
    """下载文件时服务器返回错误状态"""
