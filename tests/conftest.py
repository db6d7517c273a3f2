"""
Test configuration

提供不依赖真实浏览器和网络的替身：
- FakeTabController：按 URL 返回预设页面
- FakePlanner：记录提示词并返回预设回答
"""
import asyncio
import itertools
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# 确保项目根目录在 sys.path 中
src_path = Path(__file__).parent.parent
sys.path.insert(0, str(src_path))

from autopilot.browser import scripts  # noqa: E402
from autopilot.browser.tabs import TabController  # noqa: E402
from autopilot.errors import PlannerError, TabControllerError, TabLoadTimeout  # noqa: E402
from autopilot.memory.experience import ExperienceMemory  # noqa: E402
from autopilot.models import utc_now  # noqa: E402
from autopilot.perception.loop import PerceptionActionLoop  # noqa: E402
from autopilot.scheduler import TaskScheduler  # noqa: E402
from autopilot.store import InMemoryStore  # noqa: E402


class FakeTabController(TabController):
    """
    Attributes:
        pages: url → {"title", "text", "links": [url, ...]}
        elements: ELEMENTS 脚本返回的原始元素描述
        opened / navigated / closed / actions: 调用记录
        gate: 设置后 wait_for_load 会等待该事件
    """

    def __init__(self, pages: Optional[Dict[str, Dict[str, Any]]] = None, elements: Optional[Dict[str, Any]] = None):
        self.pages = pages or {}
        self.elements = elements or {"title": "", "url": "", "buttons": [], "inputs": [], "links": []}
        self.opened: List[str] = []
        self.navigated: List[str] = []
        self.closed: List[str] = []
        self.actions: List[Dict[str, Any]] = []
        self.failing_selectors = set()
        self.timeout_urls = set()
        self.capture_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self._handles: Dict[str, str] = {}
        self._active: Optional[str] = None
        self._counter = itertools.count(1)

    async def open(self, url: str, background: bool = False) -> str:
        handle = f"tab-{next(self._counter)}"
        self._handles[handle] = url
        self.opened.append(url)
        if not background:
            self._active = handle
        return handle

    async def navigate(self, url: str) -> str:
        self.navigated.append(url)
        if self._active is None:
            return await self.open(url)
        self._handles[self._active] = url
        return self._active

    async def wait_for_load(self, handle: str, timeout_ms: Optional[int] = None) -> None:
        if self.gate is not None:
            await self.gate.wait()
        url = self._handles[handle]
        if url in self.timeout_urls:
            raise TabLoadTimeout(url, timeout_ms or 30000)

    async def run_in_page(self, handle: Optional[str], script: str, arg: Any = None) -> Any:
        url = self._handles.get(handle or self._active or "", "")
        page = self.pages.get(url, {})
        if script == scripts.PAGE_CONTENT:
            return {"title": page.get("title", ""), "url": url, "text": page.get("text", ""), "html": ""}
        if script == scripts.PAGE_LINKS:
            return [{"url": link, "text": "", "title": ""} for link in page.get("links", [])]
        if script == scripts.EXTRACT_DATA:
            return {"title": page.get("title", "")} if arg.get("title") else {}
        if script == scripts.ELEMENTS:
            return self.elements
        if script == scripts.EXECUTE_ACTION:
            self.actions.append(arg)
            if arg.get("selector") in self.failing_selectors:
                return {"success": False, "error": "Element not found", "selector": arg.get("selector")}
            return {"success": True}
        raise TabControllerError("unexpected script")

    async def capture_visual(self, handle: Optional[str] = None) -> Dict[str, Any]:
        if self.capture_error is not None:
            raise self.capture_error
        url = self._handles.get(handle or self._active or "", "about:blank")
        return {"data": "data:image/png;base64,iVBORw0KGgo=", "timestamp": utc_now(), "url": url}

    async def close(self, handle: str) -> None:
        self.closed.append(handle)
        self._handles.pop(handle, None)
        if self._active == handle:
            self._active = None

    async def shutdown(self) -> None:
        self._handles.clear()


class FakePlanner:
    """PlannerClient 的替身"""

    def __init__(self, answers: Optional[List[str]] = None, vision_answer: str = "A page with a search box", fail: bool = False):
        self.answers = list(answers or [])
        self.vision_answer = vision_answer
        self.fail = fail
        self.prompts: List[str] = []
        self.image_prompts: List[str] = []

    async def ask(self, prompt: str, temperature: float = 0.7, max_tokens: int = 1000) -> Optional[str]:
        self.prompts.append(prompt)
        if self.fail:
            raise PlannerError("planner unreachable")
        return self.answers.pop(0) if self.answers else None

    async def ask_with_image(self, prompt: str, image_data_url: str, temperature: float = 0.7, max_tokens: int = 2000) -> Optional[str]:
        self.image_prompts.append(prompt)
        if self.fail:
            raise PlannerError("planner unreachable")
        return self.vision_answer


SEARCH_PAGE_ELEMENTS = {
    "title": "Search",
    "url": "https://shop.test/",
    "buttons": [
        {"tag": "button", "id": "go", "class_name": "btn primary", "ancestors": [], "text": "Search", "index": 0},
    ],
    "inputs": [
        {
            "tag": "input",
            "id": "",
            "class_name": "",
            "ancestors": [{"tag": "form", "id": "search-form", "class_name": "wide"}],
            "type": "search",
            "placeholder": "Search products",
            "name": "q",
            "index": 0,
        },
    ],
    "links": [],
}


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def tabs():
    return FakeTabController()


@pytest.fixture
def planner():
    return FakePlanner()


@pytest.fixture
def memory(store):
    return ExperienceMemory(store, max_memory_size=1000, learning_enabled=True)


@pytest.fixture
def make_scheduler(store, memory):
    """按需组装调度器，所有延迟为 0"""

    def _make(tabs, planner, **kwargs):
        loop = PerceptionActionLoop(tabs, planner, settle_delay=0)
        kwargs.setdefault("memory", memory)
        kwargs.setdefault("max_depth", 5)
        return TaskScheduler(
            store,
            tabs,
            planner,
            loop=loop,
            task_interval=0,
            navigation_settle_delay=0,
            **kwargs,
        )

    return _make
