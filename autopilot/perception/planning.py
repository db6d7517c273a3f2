"""
动作规划 - 让 AI 根据截图分析和页面元素给出动作列表

模型可能把 JSON 包在说明文字或 markdown 代码块里，
这里取出第一个合法的数组字面量；失败时退回确定性的启发式规划。
"""
import json
from typing import Any, Dict, List, Optional

from loguru import logger

from autopilot.errors import PlannerError
from autopilot.llm import PlannerClient
from autopilot.perception.inspector import PageInfo

SUBMIT_KEYWORDS = ("submit", "search", "отправить", "найти")

_PLAN_PROMPT = """Based on the screen analysis, determine the sequence of actions needed to complete the task: "{task}"

Screen analysis: {analysis}

Elements available on the page:
Buttons: {buttons}
Inputs: {inputs}
Links: {links}

Return a JSON array of actions in this format:
[
  {{"type": "click", "selector": "element selector"}},
  {{"type": "type", "selector": "input selector", "text": "text to enter"}},
  {{"type": "scroll", "direction": "down", "amount": 500}},
  {{"type": "wait", "duration": 2000}}
]"""


def build_plan_prompt(task_description: str, analysis: str, page_info: PageInfo) -> str:
    elements = page_info.to_dict()["elements"]
    return _PLAN_PROMPT.format(
        task=task_description,
        analysis=analysis,
        buttons=json.dumps(elements["buttons"], ensure_ascii=False),
        inputs=json.dumps(elements["inputs"], ensure_ascii=False),
        links=json.dumps(elements["links"], ensure_ascii=False),
    )


def parse_action_list(content: Optional[str]) -> Optional[List[Dict[str, Any]]]:
    """
    从模型输出中提取第一个合法的 JSON 数组

    Args:
        content: 模型返回的原始文本

    Returns:
        Optional[List[Dict]]: 动作列表（只保留对象元素）；找不到数组时返回 None
    """
    if not content:
        return None

    decoder = json.JSONDecoder()
    pos = content.find("[")
    while pos != -1:
        try:
            value, _ = decoder.raw_decode(content, pos)
        except json.JSONDecodeError:
            pos = content.find("[", pos + 1)
            continue
        if isinstance(value, list):
            return [item for item in value if isinstance(item, dict)]
        pos = content.find("[", pos + 1)
    return None


def fallback_actions(page_info: PageInfo, search_text: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    启发式规划：有示例文本时填入第一个搜索框，再点击第一个提交/搜索按钮

    可能返回空列表。
    """
    actions: List[Dict[str, Any]] = []

    if search_text:
        search_input = next(
            (
                i for i in page_info.inputs
                if i.type in ("text", "search") or "search" in i.placeholder.lower()
            ),
            None,
        )
        if search_input is not None:
            actions.append({"type": "type", "selector": search_input.selector, "text": search_text})

    submit_button = next(
        (b for b in page_info.buttons if any(k in b.text.lower() for k in SUBMIT_KEYWORDS)),
        None,
    )
    if submit_button is not None:
        actions.append({"type": "click", "selector": submit_button.selector})

    return actions


async def plan_actions(
    planner: PlannerClient,
    task_description: str,
    analysis: str,
    page_info: PageInfo,
    search_text: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    PLAN 阶段：请求模型规划，任何传输或解析失败都退回启发式规划
    """
    prompt = build_plan_prompt(task_description, analysis, page_info)
    try:
        content = await planner.ask(prompt, temperature=0.3, max_tokens=2000)
    except PlannerError as e:
        logger.warning(f"🧭 [Planning] 规划请求失败，使用启发式规划: {e}")
        return fallback_actions(page_info, search_text)

    actions = parse_action_list(content)
    if actions is None:
        logger.warning("🧭 [Planning] 响应中没有 JSON 数组，使用启发式规划")
        return fallback_actions(page_info, search_text)

    logger.debug(f"🧭 [Planning] 模型规划了 {len(actions)} 个动作")
    return actions
