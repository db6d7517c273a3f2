"""
感知-执行循环：截图分析、元素检查、动作规划与执行
"""
from autopilot.perception.inspector import ElementInfo, PageInfo, build_selector
from autopilot.perception.loop import PerceptionActionLoop
from autopilot.perception.planning import fallback_actions, parse_action_list

__all__ = [
    "ElementInfo",
    "PageInfo",
    "PerceptionActionLoop",
    "build_selector",
    "fallback_actions",
    "parse_action_list",
]
