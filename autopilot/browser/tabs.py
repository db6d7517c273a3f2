"""
标签页控制器

TabController 是核心对受控浏览面的全部需求：
打开 / 导航 / 等待加载 / 页内执行脚本 / 截图 / 关闭。
PlaywrightTabController 基于 BrowserManager 提供的浏览器上下文实现。
"""
import base64
import itertools
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from loguru import logger
from playwright.async_api import BrowserContext, Error as PlaywrightError, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from autopilot.browser.manager import BrowserManager, browser_manager
from autopilot.errors import TabControllerError, TabLoadTimeout
from autopilot.models import utc_now
from config.settings import settings


class TabController(ABC):
    """受控浏览面接口，handle 为标签页句柄字符串"""

    @abstractmethod
    async def open(self, url: str, background: bool = False) -> str:
        """打开新标签页；background=False 时成为当前活动页"""

    @abstractmethod
    async def navigate(self, url: str) -> str:
        """在活动页中导航（没有活动页时新开一个），返回活动页句柄"""

    @abstractmethod
    async def wait_for_load(self, handle: str, timeout_ms: Optional[int] = None) -> None:
        """
        等待页面加载完成

        Raises:
            TabLoadTimeout: 超过截止时间
        """

    @abstractmethod
    async def run_in_page(self, handle: Optional[str], script: str, arg: Any = None) -> Any:
        """在页面内执行脚本；handle 为 None 时使用活动页"""

    @abstractmethod
    async def capture_visual(self, handle: Optional[str] = None) -> Dict[str, Any]:
        """截图，返回 {data: data URL, timestamp, url}"""

    @abstractmethod
    async def close(self, handle: str) -> None:
        """关闭标签页，未知句柄忽略"""

    async def shutdown(self) -> None:
        """释放全部资源"""


class PlaywrightTabController(TabController):
    """基于 Playwright 的标签页控制器，所有标签页共享一个浏览器上下文"""

    def __init__(self, manager: Optional[BrowserManager] = None, default_timeout_ms: Optional[int] = None):
        self._manager = manager or browser_manager
        self._default_timeout_ms = default_timeout_ms or settings.tab_load_timeout_ms
        self._context: Optional[BrowserContext] = None
        self._pages: Dict[str, Page] = {}
        self._active: Optional[str] = None
        self._counter = itertools.count(1)

    async def _get_context(self) -> BrowserContext:
        if self._context is None:
            self._context = await self._manager.new_context()
        return self._context

    def _page(self, handle: Optional[str]) -> Page:
        handle = handle or self._active
        if handle is None:
            raise TabControllerError("没有活动的标签页")
        page = self._pages.get(handle)
        if page is None or page.is_closed():
            raise TabControllerError(f"未知的标签页: {handle}")
        return page

    async def _goto(self, page: Page, url: str) -> None:
        try:
            # 只等到提交，加载完成由 wait_for_load 按截止时间等待
            await page.goto(url, wait_until="commit", timeout=self._default_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise TabLoadTimeout(url, self._default_timeout_ms) from e
        except PlaywrightError as e:
            raise TabControllerError(f"打开页面失败 {url}: {e}") from e

    async def open(self, url: str, background: bool = False) -> str:
        context = await self._get_context()
        page = await context.new_page()
        handle = f"tab-{next(self._counter)}"
        self._pages[handle] = page
        if not background:
            self._active = handle
        logger.debug(f"🌐 [TabController] 打开 {handle}: {url} (background={background})")
        try:
            await self._goto(page, url)
        except TabControllerError:
            # 调用方拿不到句柄，只能在这里关闭
            await self.close(handle)
            raise
        return handle

    async def navigate(self, url: str) -> str:
        if self._active is None or self._active not in self._pages:
            handle = await self.open(url, background=False)
        else:
            handle = self._active
            await self._goto(self._page(handle), url)
        await self.wait_for_load(handle)
        return handle

    async def wait_for_load(self, handle: str, timeout_ms: Optional[int] = None) -> None:
        page = self._page(handle)
        timeout_ms = timeout_ms or self._default_timeout_ms
        try:
            await page.wait_for_load_state("load", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise TabLoadTimeout(page.url, timeout_ms) from e

    async def run_in_page(self, handle: Optional[str], script: str, arg: Any = None) -> Any:
        page = self._page(handle)
        try:
            return await page.evaluate(script, arg)
        except PlaywrightError as e:
            raise TabControllerError(f"页面脚本执行失败: {e}") from e

    async def capture_visual(self, handle: Optional[str] = None) -> Dict[str, Any]:
        page = self._page(handle)
        try:
            png = await page.screenshot(type="png")
        except PlaywrightError as e:
            raise TabControllerError(f"截图失败: {e}") from e
        return {
            "data": "data:image/png;base64," + base64.b64encode(png).decode("ascii"),
            "timestamp": utc_now(),
            "url": page.url,
        }

    async def close(self, handle: str) -> None:
        page = self._pages.pop(handle, None)
        if self._active == handle:
            self._active = None
        if page is not None and not page.is_closed():
            try:
                await page.close()
            except PlaywrightError as e:
                logger.warning(f"🌐 [TabController] 关闭 {handle} 出错: {e}")

    async def shutdown(self) -> None:
        for handle in list(self._pages):
            await self.close(handle)
        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.warning(f"🌐 [TabController] 关闭上下文出错: {e}")
            self._context = None
        await self._manager.close()
