"""
感知-执行循环单元测试

测试内容：
- 选择器合成
- 页面检查输出
- 动作列表解析与启发式规划
- PerceptionActionLoop 完整流程与降级路径
- PlaywrightTabController 的句柄校验
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from autopilot.browser.tabs import PlaywrightTabController
from autopilot.errors import TabControllerError, TabLoadTimeout
from autopilot.perception.inspector import PageInfo, build_selector, inspect_page
from autopilot.perception.loop import PerceptionActionLoop
from autopilot.perception.planning import fallback_actions, parse_action_list, plan_actions
from conftest import SEARCH_PAGE_ELEMENTS, FakePlanner, FakeTabController


# ============================================================
# 选择器
# ============================================================

class TestBuildSelector:
    """测试选择器合成优先级"""

    def test_id_wins(self):
        assert build_selector({"tag": "button", "id": "x", "class_name": "btn primary"}) == "#x"

    def test_first_class(self):
        assert build_selector({"tag": "BUTTON", "id": "", "class_name": "btn primary"}) == "button.btn"

    def test_path_stops_at_ancestor_id(self):
        element = {
            "tag": "input",
            "ancestors": [
                {"tag": "form", "id": "search-form", "class_name": ""},
                {"tag": "body", "id": "", "class_name": ""},
            ],
        }
        assert build_selector(element) == "#search-form > input"

    def test_full_path_without_ids(self):
        element = {
            "tag": "span",
            "ancestors": [
                {"tag": "div", "class_name": "card wide"},
                {"tag": "body"},
                {"tag": "html"},
            ],
        }
        assert build_selector(element) == "html > body > div.card > span"


# ============================================================
# 页面检查
# ============================================================

class TestInspect:
    """测试 INSPECT 输出"""

    @pytest.mark.asyncio
    async def test_inspect_page(self):
        tabs = FakeTabController(elements=SEARCH_PAGE_ELEMENTS)
        info = await inspect_page(tabs, None, 20)

        assert info.title == "Search"
        data = info.to_dict()
        assert data["elements"]["buttons"] == [{"index": 0, "selector": "#go", "text": "Search"}]
        assert data["elements"]["inputs"] == [{
            "index": 0,
            "selector": "#search-form > input",
            "type": "search",
            "placeholder": "Search products",
            "name": "q",
        }]
        assert data["elements"]["links"] == []


# ============================================================
# 规划
# ============================================================

class TestPlanning:
    """测试动作列表解析与启发式规划"""

    def test_parse_fenced_json(self):
        content = 'Here is the plan:\n```json\n[{"type": "click", "selector": "#go"}]\n```'
        assert parse_action_list(content) == [{"type": "click", "selector": "#go"}]

    def test_parse_skips_invalid_brackets(self):
        content = 'Step [one] first, then [{"type": "wait", "duration": 500}, 3]'
        assert parse_action_list(content) == [{"type": "wait", "duration": 500}]

    def test_parse_no_array(self):
        assert parse_action_list("I cannot help with that.") is None
        assert parse_action_list("") is None
        assert parse_action_list(None) is None

    def test_fallback_types_then_clicks(self):
        info = PageInfo.from_raw(SEARCH_PAGE_ELEMENTS)
        assert fallback_actions(info, "running shoes") == [
            {"type": "type", "selector": "#search-form > input", "text": "running shoes"},
            {"type": "click", "selector": "#go"},
        ]

    def test_fallback_without_text_only_clicks(self):
        info = PageInfo.from_raw(SEARCH_PAGE_ELEMENTS)
        assert fallback_actions(info) == [{"type": "click", "selector": "#go"}]

    def test_fallback_can_be_empty(self):
        info = PageInfo.from_raw({"buttons": [{"tag": "button", "id": "close", "text": "Close"}]})
        assert fallback_actions(info, "anything") == []

    @pytest.mark.asyncio
    async def test_plan_uses_model_answer(self):
        planner = FakePlanner(answers=['[{"type": "scroll", "direction": "down", "amount": 500}]'])
        info = PageInfo.from_raw(SEARCH_PAGE_ELEMENTS)
        actions = await plan_actions(planner, "scroll down", "a long page", info)
        assert actions == [{"type": "scroll", "direction": "down", "amount": 500}]
        assert "scroll down" in planner.prompts[0]
        assert "#search-form > input" in planner.prompts[0]

    @pytest.mark.asyncio
    async def test_plan_falls_back_on_prose(self):
        planner = FakePlanner(answers=["Just click search."])
        info = PageInfo.from_raw(SEARCH_PAGE_ELEMENTS)
        actions = await plan_actions(planner, "search", "a search page", info, "shoes")
        assert [a["type"] for a in actions] == ["type", "click"]


# ============================================================
# PerceptionActionLoop
# ============================================================

class TestPerceptionActionLoop:
    """测试感知-执行循环"""

    @pytest.mark.asyncio
    async def test_run_step_log_order(self):
        tabs = FakeTabController(elements=SEARCH_PAGE_ELEMENTS)
        planner = FakePlanner(answers=['```json\n[{"type": "click", "selector": "#go"}]\n```'])
        loop = PerceptionActionLoop(tabs, planner, settle_delay=0)

        result = await loop.run("press search")

        assert result["success"] is True
        assert [s["type"] for s in result["steps"]] == [
            "screenshot", "analysis", "page_info", "actions", "action_result", "verification",
        ]
        assert result["steps"][3]["data"] == [{"type": "click", "selector": "#go"}]
        assert result["results"][0]["result"] == {"success": True}
        assert result["final_screenshot"]["data"].startswith("data:image/png;base64,")
        assert tabs.actions == [{"type": "click", "selector": "#go"}]
        assert len(loop.screenshot_history) == 3
        assert len(planner.image_prompts) == 2

    @pytest.mark.asyncio
    async def test_failing_planner_uses_fallback(self):
        tabs = FakeTabController(elements=SEARCH_PAGE_ELEMENTS)
        planner = FakePlanner(fail=True)
        loop = PerceptionActionLoop(tabs, planner, settle_delay=0)

        result = await loop.run("search shoes", search_text="shoes")

        assert result["success"] is True
        analysis = result["steps"][1]["data"]
        assert analysis["analysis"].startswith("Vision analysis error:")
        assert [a["selector"] for a in result["steps"][3]["data"]] == ["#search-form > input", "#go"]
        assert [a["type"] for a in tabs.actions] == ["type", "click"]

    @pytest.mark.asyncio
    async def test_failed_action_does_not_stop_loop(self):
        tabs = FakeTabController(elements=SEARCH_PAGE_ELEMENTS)
        tabs.failing_selectors.add("#missing")
        planner = FakePlanner(answers=['[{"type": "click", "selector": "#missing"}, {"type": "click", "selector": "#go"}]'])
        loop = PerceptionActionLoop(tabs, planner, settle_delay=0)

        result = await loop.run("click things")

        assert result["success"] is True
        assert [r["result"]["success"] for r in result["results"]] == [False, True]
        assert len(loop.action_history) == 2

    @pytest.mark.asyncio
    async def test_capture_error_returns_failure(self):
        tabs = FakeTabController()
        tabs.capture_error = TabControllerError("no active tab")
        loop = PerceptionActionLoop(tabs, FakePlanner(), settle_delay=0)

        result = await loop.run("anything")

        assert result["success"] is False
        assert "no active tab" in result["error"]
        assert result["steps"] == []

    @pytest.mark.asyncio
    async def test_error_keeps_partial_steps(self):
        tabs = FakeTabController()
        tabs.run_in_page = AsyncMock(side_effect=TabControllerError("page detached"))
        loop = PerceptionActionLoop(tabs, FakePlanner(), settle_delay=0)

        result = await loop.run("anything")

        assert result["success"] is False
        assert [s["type"] for s in result["steps"]] == ["screenshot", "analysis"]

    @pytest.mark.asyncio
    async def test_screenshot_history_is_bounded(self):
        loop = PerceptionActionLoop(FakeTabController(), FakePlanner(), history_limit=2, settle_delay=0)
        for _ in range(3):
            await loop.capture()
        assert len(loop.screenshot_history) == 2

    @pytest.mark.asyncio
    async def test_wait_action_handled_locally(self):
        tabs = FakeTabController()
        loop = PerceptionActionLoop(tabs, FakePlanner(), settle_delay=0)

        record = await loop.execute_action({"type": "wait", "duration": 0})

        assert record["result"] == {"success": True, "duration": 0}
        assert tabs.actions == []

    @pytest.mark.asyncio
    async def test_action_controller_error_is_recorded(self):
        tabs = FakeTabController()
        tabs.run_in_page = AsyncMock(side_effect=TabControllerError("gone"))
        loop = PerceptionActionLoop(tabs, FakePlanner(), settle_delay=0)

        record = await loop.execute_action({"type": "click", "selector": "#a"})

        assert record["result"] == {"success": False, "error": "gone"}
        assert loop.action_history == [record]


# ============================================================
# PlaywrightTabController
# ============================================================

class TestPlaywrightTabController:
    """测试不需要真实浏览器的句柄校验"""

    @pytest.mark.asyncio
    async def test_no_active_tab(self):
        controller = PlaywrightTabController(manager=MagicMock(), default_timeout_ms=1000)
        with pytest.raises(TabControllerError):
            await controller.run_in_page(None, "() => 1")
        with pytest.raises(TabControllerError):
            await controller.capture_visual()

    @pytest.mark.asyncio
    async def test_unknown_handle(self):
        controller = PlaywrightTabController(manager=MagicMock(), default_timeout_ms=1000)
        with pytest.raises(TabControllerError):
            await controller.wait_for_load("tab-99")

    @pytest.mark.asyncio
    async def test_close_unknown_handle_is_ignored(self):
        controller = PlaywrightTabController(manager=MagicMock(), default_timeout_ms=1000)
        await controller.close("tab-1")

    @staticmethod
    def _failing_goto(error):
        page = MagicMock()
        page.goto = AsyncMock(side_effect=error)
        page.is_closed = MagicMock(return_value=False)
        page.close = AsyncMock()
        context = MagicMock()
        context.new_page = AsyncMock(return_value=page)
        manager = MagicMock()
        manager.new_context = AsyncMock(return_value=context)
        return PlaywrightTabController(manager=manager, default_timeout_ms=1000), page

    @pytest.mark.asyncio
    async def test_failed_open_closes_page(self):
        controller, page = self._failing_goto(PlaywrightError("net::ERR_NAME_NOT_RESOLVED"))

        with pytest.raises(TabControllerError):
            await controller.open("https://unreachable.test", background=True)

        page.close.assert_awaited_once()
        assert controller._pages == {}

    @pytest.mark.asyncio
    async def test_open_timeout_closes_page(self):
        controller, page = self._failing_goto(PlaywrightTimeoutError("Timeout 1000ms exceeded"))

        with pytest.raises(TabLoadTimeout):
            await controller.open("https://slow.test")

        page.close.assert_awaited_once()
        assert controller._pages == {}
        assert controller._active is None
