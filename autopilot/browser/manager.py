"""
浏览器管理 - 为标签页控制器提供 Chromium 和浏览器上下文

Chromium 在第一次需要上下文时才启动；关闭时先关闭发出去的上下文，
再关闭浏览器和 Playwright。
"""
import asyncio
from typing import Dict, List, Optional

from loguru import logger
from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from autopilot.errors import TabControllerError
from config.settings import settings


class BrowserManager:
    """
    Attributes:
        headless: 是否无界面运行
        viewport: 新上下文的视口大小
        user_agent: 覆盖默认 UA，None 时使用 Chromium 自带的
    """

    def __init__(
        self,
        headless: Optional[bool] = None,
        viewport: Optional[Dict[str, int]] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        self.headless = settings.headless if headless is None else headless
        self.viewport = viewport or {"width": settings.viewport_width, "height": settings.viewport_height}
        self.user_agent = user_agent or settings.user_agent
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._contexts: List[BrowserContext] = []
        self._lock = asyncio.Lock()

    @property
    def is_started(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def _launch(self) -> Browser:
        """
        Raises:
            TabControllerError: Chromium 无法启动（例如未执行 playwright install）
        """
        logger.info(f"🌐 [BrowserManager] 启动 Chromium (headless={self.headless})")
        try:
            self._playwright = await async_playwright().start()
            return await self._playwright.chromium.launch(
                headless=self.headless,
                args=["--no-sandbox", "--disable-dev-shm-usage"],
            )
        except PlaywrightError as e:
            await self._stop_playwright()
            raise TabControllerError(f"浏览器启动失败: {e}") from e

    async def new_context(self) -> BrowserContext:
        """
        创建独立 cookie / 存储的浏览器上下文，必要时先启动浏览器

        Returns:
            BrowserContext: 由 close() 统一回收
        """
        async with self._lock:
            if not self.is_started:
                self._contexts.clear()
                self._browser = await self._launch()
            options = {"viewport": self.viewport}
            if self.user_agent:
                options["user_agent"] = self.user_agent
            context = await self._browser.new_context(**options)
            self._contexts.append(context)
            return context

    async def _stop_playwright(self) -> None:
        if self._playwright is None:
            return
        try:
            await self._playwright.stop()
        except PlaywrightError as e:
            logger.warning(f"🌐 [BrowserManager] 停止 Playwright 出错: {e}")
        self._playwright = None

    async def close(self) -> None:
        """回收上下文、浏览器和 Playwright，可重复调用"""
        async with self._lock:
            contexts, self._contexts = self._contexts, []
            for context in contexts:
                try:
                    await context.close()
                except PlaywrightError as e:
                    logger.debug(f"🌐 [BrowserManager] 上下文已关闭: {e}")
            if self._browser is not None:
                try:
                    await self._browser.close()
                except PlaywrightError as e:
                    logger.warning(f"🌐 [BrowserManager] 关闭浏览器出错: {e}")
                self._browser = None
                logger.info("🌐 [BrowserManager] 浏览器已关闭")
            await self._stop_playwright()


browser_manager = BrowserManager()
