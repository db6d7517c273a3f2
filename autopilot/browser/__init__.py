"""
受控浏览面：Playwright 浏览器生命周期与标签页控制
"""
from autopilot.browser.manager import BrowserManager, browser_manager
from autopilot.browser.tabs import PlaywrightTabController, TabController

__all__ = ["BrowserManager", "PlaywrightTabController", "TabController", "browser_manager"]
