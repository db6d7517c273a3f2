"""
感知-执行循环

单次 autonomous 任务的状态机：
CAPTURE → ANALYZE → INSPECT → PLAN → (EXECUTE → VERIFY)* → DONE | ERROR

- ANALYZE 失败降级为文字错误，循环继续
- PLAN 失败退回启发式规划
- 单个动作失败只记录，不影响后续动作
- 未捕获异常返回失败结果，并带上已经收集的步骤日志
"""
import asyncio
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from loguru import logger

from autopilot.browser import scripts
from autopilot.browser.tabs import TabController
from autopilot.errors import PlannerError, TabControllerError
from autopilot.llm import PlannerClient
from autopilot.models import ActionType, StepType, utc_now
from autopilot.perception.inspector import PageInfo, inspect_page
from autopilot.perception.planning import plan_actions
from config.settings import settings

DEFAULT_ANALYZE_PROMPT = (
    "Describe what is visible on the screen. Identify the interactive elements "
    "(buttons, inputs, links) and where they are."
)
TASK_ANALYZE_PROMPT = (
    "Analyze the screen and determine which actions are needed to complete the task."
)
VERIFY_PROMPT = "Check whether anything changed on the screen after the action."

# wait 动作的上限
MAX_WAIT_MS = 30000


def _step(step_type: StepType, data: Any) -> Dict[str, Any]:
    return {"type": step_type.value, "data": data}


class PerceptionActionLoop:
    """
    截图 → 分析 → 检查 → 规划 → 执行/验证

    Attributes:
        screenshot_history: 最近的截图（超过上限丢弃最旧的）
        action_history: 本实例执行过的全部动作记录
    """

    def __init__(
        self,
        tabs: TabController,
        planner: PlannerClient,
        history_limit: Optional[int] = None,
        settle_delay: Optional[float] = None,
        link_limit: Optional[int] = None,
    ):
        self.tabs = tabs
        self.planner = planner
        self.settle_delay = settings.action_settle_delay if settle_delay is None else settle_delay
        self.link_limit = link_limit or settings.max_page_links
        self.screenshot_history: Deque[Dict[str, Any]] = deque(
            maxlen=history_limit or settings.screenshot_history_limit
        )
        self.action_history: List[Dict[str, Any]] = []

    async def capture(self) -> Dict[str, Any]:
        """CAPTURE：截取活动页并写入历史"""
        snapshot = await self.tabs.capture_visual()
        self.screenshot_history.append(snapshot)
        return snapshot

    async def analyze(self, snapshot: Dict[str, Any], prompt: str = DEFAULT_ANALYZE_PROMPT) -> Dict[str, Any]:
        """
        ANALYZE：图文请求，失败时返回带 error 的降级结果
        """
        try:
            text = await self.planner.ask_with_image(prompt, snapshot["data"])
        except PlannerError as e:
            logger.warning(f"👁️ [PerceptionLoop] 截图分析失败: {e}")
            return {
                "analysis": f"Vision analysis error: {e}. Falling back to page text analysis.",
                "error": str(e),
                "timestamp": utc_now(),
            }
        return {"analysis": text or "Analysis unavailable", "timestamp": utc_now()}

    async def inspect(self) -> PageInfo:
        """INSPECT：枚举可交互元素"""
        return await inspect_page(self.tabs, None, self.link_limit)

    async def execute_action(self, action: Dict[str, Any]) -> Dict[str, Any]:
        """
        EXECUTE：执行单个动作

        Args:
            action: {type, selector | target, text?, direction?, amount?, duration?, options?}

        Returns:
            Dict: 动作记录 {action, result: {success, error?, ...}, timestamp}
        """
        action_type = action.get("type")
        if action_type == ActionType.WAIT.value:
            duration = action.get("duration")
            duration = 1000 if duration is None else int(duration)
            await asyncio.sleep(min(duration, MAX_WAIT_MS) / 1000)
            result: Dict[str, Any] = {"success": True, "duration": duration}
        else:
            try:
                raw = await self.tabs.run_in_page(None, scripts.EXECUTE_ACTION, action)
                result = raw if isinstance(raw, dict) else {"success": bool(raw)}
            except TabControllerError as e:
                result = {"success": False, "error": str(e)}

        record = {"action": action, "result": result, "timestamp": utc_now()}
        self.action_history.append(record)
        if not result.get("success", False):
            logger.debug(f"👁️ [PerceptionLoop] 动作失败 {action_type}: {result.get('error')}")
        return record

    async def run(
        self,
        description: str,
        prompt: Optional[str] = None,
        search_text: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        执行一次完整的感知-执行循环

        Args:
            description: 任务描述（用于规划）
            prompt: 截图分析提示词（可能已附加历史经验）
            search_text: 示例输入文本，启发式规划时使用

        Returns:
            Dict: 成功时 {success, steps, results, final_screenshot}，
                  失败时 {success: False, error, steps}
        """
        steps: List[Dict[str, Any]] = []
        try:
            snapshot = await self.capture()
            steps.append(_step(StepType.SCREENSHOT, snapshot))

            analysis = await self.analyze(snapshot, prompt or TASK_ANALYZE_PROMPT)
            steps.append(_step(StepType.ANALYSIS, analysis))

            page_info = await self.inspect()
            steps.append(_step(StepType.PAGE_INFO, page_info.to_dict()))

            actions = await plan_actions(
                self.planner, description, analysis["analysis"], page_info, search_text
            )
            steps.append(_step(StepType.ACTIONS, actions))
            logger.info(f"👁️ [PerceptionLoop] 规划 {len(actions)} 个动作: {description}")

            results = []
            for action in actions:
                record = await self.execute_action(action)
                results.append(record)
                steps.append(_step(StepType.ACTION_RESULT, record))

                await asyncio.sleep(self.settle_delay)
                after = await self.capture()
                verification = await self.analyze(after, VERIFY_PROMPT)
                steps.append(_step(StepType.VERIFICATION, {"screenshot": after, "analysis": verification}))

            return {
                "success": True,
                "steps": steps,
                "results": results,
                "final_screenshot": await self.capture(),
            }
        except Exception as e:
            logger.error(f"❌ [PerceptionLoop] 循环中断: {e}")
            return {"success": False, "error": str(e), "steps": steps}
