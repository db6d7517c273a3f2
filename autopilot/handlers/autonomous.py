"""
autonomous_browser_task 处理器

先导航到目标页面，再用历史知识（推荐动作 / 常见错误）增强提示词，
最后交给感知-执行循环。
"""
import asyncio
from typing import Optional

from loguru import logger

from autopilot.browser.tabs import TabController
from autopilot.handlers.base import BaseHandler, TaskOutcome
from autopilot.memory.models import Knowledge
from autopilot.models import AutonomousParams, utc_now
from autopilot.perception.loop import PerceptionActionLoop
from config.settings import settings

_DEFAULT_PROMPT = (
    "Complete the following task on the web page: {task}. "
    "Analyze the screen, determine the necessary actions and perform them."
)


def build_task_prompt(params: AutonomousParams, knowledge: Optional[Knowledge] = None) -> str:
    """
    生成截图分析提示词，有知识时追加推荐动作和前 3 个常见错误
    """
    prompt = params.prompt or _DEFAULT_PROMPT.format(task=params.summary)
    if knowledge is None:
        return prompt

    if knowledge.recommended_actions:
        prompt += "\n\nRecommendations based on past experience:\n"
        for i, rec in enumerate(knowledge.recommended_actions, 1):
            target = f" on element {rec['selector']}" if rec.get("selector") else ""
            prompt += f"{i}. Try {rec['type']}{target} (confidence: {rec['confidence'] * 100:.0f}%)\n"

    if knowledge.common_mistakes:
        prompt += "\n\nAvoid these mistakes:\n"
        for i, mistake in enumerate(knowledge.common_mistakes[:3], 1):
            prompt += f"{i}. {mistake['action']} (failed {mistake['count']} times)\n"

    return prompt


class AutonomousHandler(BaseHandler):
    """把 autonomous 任务委托给 PerceptionActionLoop"""

    def __init__(
        self,
        tabs: TabController,
        loop: PerceptionActionLoop,
        navigation_settle_delay: Optional[float] = None,
    ):
        self.tabs = tabs
        self.loop = loop
        self.navigation_settle_delay = (
            settings.navigation_settle_delay if navigation_settle_delay is None else navigation_settle_delay
        )

    async def execute(self, params: AutonomousParams, knowledge: Optional[Knowledge] = None) -> TaskOutcome:
        if params.url:
            await self.tabs.navigate(params.url)
            await asyncio.sleep(self.navigation_settle_delay)

        prompt = build_task_prompt(params, knowledge)
        result = await self.loop.run(params.summary, prompt=prompt, search_text=params.search_text)

        records = []
        final = result.get("final_screenshot")
        if final:
            records.append({
                "type": "autonomous_task",
                "task": params.summary,
                "screenshot": {"url": final.get("url"), "timestamp": final.get("timestamp")},
                "steps_count": len(result.get("steps") or []),
                "timestamp": utc_now(),
            })

        if result["success"]:
            message = "Task completed successfully"
        else:
            message = f"Error: {result.get('error')}"
            logger.warning(f"⚠️ [Autonomous] {params.summary}: {result.get('error')}")

        return TaskOutcome(
            result={"success": result["success"], "result": result, "message": message},
            analysis_records=records,
        )
