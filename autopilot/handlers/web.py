"""
网页类任务处理器：analyze_url / search_and_analyze / extract_data

都在后台标签页中打开页面，处理完成后关闭标签页。
标签页超时或控制器错误向上抛出，由调度器记为任务失败。
"""
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import quote_plus

from loguru import logger

from autopilot.browser import scripts
from autopilot.browser.tabs import TabController
from autopilot.errors import PlannerError
from autopilot.handlers.base import BaseHandler, TaskOutcome
from autopilot.llm import PlannerClient
from autopilot.memory.models import Knowledge
from autopilot.models import AnalyzeUrlParams, ExtractDataParams, SearchParams, TaskType, utc_now
from config.settings import settings

_ANALYZE_PROMPT = """Analyze the content of this web page:
URL: {url}
Title: {title}
Text: {text}

Give a short analysis: the main topic, key points and useful information."""

# 发给模型的正文长度
_PROMPT_TEXT_CHARS = 3000


@asynccontextmanager
async def background_tab(tabs: TabController, url: str, timeout_ms: Optional[int] = None) -> AsyncIterator[str]:
    """打开后台标签页并等待加载完成，退出时关闭"""
    handle = await tabs.open(url, background=True)
    try:
        await tabs.wait_for_load(handle, timeout_ms)
        yield handle
    finally:
        await tabs.close(handle)


async def page_links(tabs: TabController, handle: str) -> List[Dict[str, Any]]:
    return list(await tabs.run_in_page(handle, scripts.PAGE_LINKS) or [])


class AnalyzeUrlHandler(BaseHandler):
    """
    打开页面 → 取正文 → 模型分析 → 提取链接

    auto_follow 时把前 max_follow 个链接作为 depth+1 的 analyze_url 任务返回，
    子任务深度达到 max_depth 时不再派生。
    """

    def __init__(
        self,
        tabs: TabController,
        planner: PlannerClient,
        max_depth: Optional[int] = None,
        max_links: Optional[int] = None,
        max_content_chars: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ):
        self.tabs = tabs
        self.planner = planner
        self.max_depth = settings.max_depth if max_depth is None else max_depth
        self.max_links = max_links or settings.max_page_links
        self.max_content_chars = max_content_chars or settings.max_content_chars
        self.timeout_ms = timeout_ms or settings.tab_load_timeout_ms

    async def analyze_content(self, content: Dict[str, Any], url: str, prompt: Optional[str] = None) -> str:
        """模型分析页面正文；传输失败转换为文字结果"""
        text = content.get("text") or ""
        prompt = prompt or _ANALYZE_PROMPT.format(
            url=url,
            title=content.get("title") or "",
            text=text[:_PROMPT_TEXT_CHARS],
        )
        try:
            answer = await self.planner.ask(prompt, temperature=0.7, max_tokens=1000)
        except PlannerError as e:
            logger.warning(f"⚠️ [AnalyzeUrl] 页面分析失败 {url}: {e}")
            return f"Analysis failed: {e}"
        return answer or "Analysis unavailable"

    async def execute(self, params: AnalyzeUrlParams, knowledge: Optional[Knowledge] = None) -> TaskOutcome:
        url = params.url
        options = params.options

        async with background_tab(self.tabs, url, self.timeout_ms) as handle:
            content = await self.tabs.run_in_page(handle, scripts.PAGE_CONTENT) or {}
            analysis = await self.analyze_content(content, url, options.prompt)
            links = await page_links(self.tabs, handle)

        record = {
            "url": url,
            "title": content.get("title") or "",
            "content": (content.get("text") or "")[:self.max_content_chars],
            "links": links[:self.max_links],
            "analysis": analysis,
            "timestamp": utc_now(),
        }

        next_tasks = []
        child_depth = options.depth + 1
        if options.auto_follow and child_depth < self.max_depth:
            next_tasks = [
                {
                    "type": TaskType.ANALYZE_URL.value,
                    "url": link["url"],
                    "options": {
                        "auto_follow": True,
                        "max_follow": options.max_follow,
                        "depth": child_depth,
                        "prompt": options.prompt,
                    },
                }
                for link in links[:options.max_follow]
            ]
        logger.info(f"📄 [AnalyzeUrl] {url} 分析完成，链接 {len(links)} 个，派生 {len(next_tasks)} 个任务")

        return TaskOutcome(
            result={"success": True, "result": record},
            next_tasks=next_tasks,
            analysis_records=[record],
        )


class SearchHandler(BaseHandler):
    """在搜索引擎中检索，把结果链接作为 analyze_url 任务返回"""

    def __init__(
        self,
        tabs: TabController,
        search_url_template: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ):
        self.tabs = tabs
        self.search_url_template = search_url_template or settings.search_url_template
        self.timeout_ms = timeout_ms or settings.tab_load_timeout_ms

    async def execute(self, params: SearchParams, knowledge: Optional[Knowledge] = None) -> TaskOutcome:
        search_url = self.search_url_template.format(query=quote_plus(params.query))
        async with background_tab(self.tabs, search_url, self.timeout_ms) as handle:
            links = await page_links(self.tabs, handle)

        results = [
            link for link in links
            if "duckduckgo.com" not in link["url"] and "javascript:" not in link["url"]
        ][:params.max_results]
        logger.info(f"🔎 [Search] '{params.query}' 得到 {len(results)} 个结果")

        return TaskOutcome(
            result={"success": True, "query": params.query, "results": results},
            next_tasks=[
                {"type": TaskType.ANALYZE_URL.value, "url": link["url"], "options": {"depth": 0}}
                for link in results
            ],
        )


class ExtractDataHandler(BaseHandler):
    """按选择器提取页面数据"""

    def __init__(self, tabs: TabController, timeout_ms: Optional[int] = None):
        self.tabs = tabs
        self.timeout_ms = timeout_ms or settings.tab_load_timeout_ms

    async def execute(self, params: ExtractDataParams, knowledge: Optional[Knowledge] = None) -> TaskOutcome:
        async with background_tab(self.tabs, params.url, self.timeout_ms) as handle:
            data = await self.tabs.run_in_page(handle, scripts.EXTRACT_DATA, params.selectors)
        return TaskOutcome(result={
            "success": True,
            "url": params.url,
            "data": data or {},
            "timestamp": utc_now(),
        })
