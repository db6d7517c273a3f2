"""
AI 规划服务客户端

对接 OpenAI 兼容的 /v1/chat/completions 接口：
- 纯文本请求（页面分析、动作规划）
- 图文请求（截图分析，图片以 image_url 形式嵌入 user 消息）

不同后端把生成文本放在不同位置，extract_text 统一兼容：
choices[0].message.content / response / message.content
"""
import asyncio
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger

from autopilot.errors import PlannerError
from config.settings import settings


def extract_text(data: Any) -> Optional[str]:
    """
    从响应 JSON 中取出生成的文本

    Args:
        data: 响应体解析后的 JSON

    Returns:
        Optional[str]: 生成文本；完全没有文本时返回 None（视为“无回答”，而不是错误）
    """
    if not isinstance(data, dict):
        return None

    choices = data.get("choices")
    if isinstance(choices, list) and choices:
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            return message["content"]

    if isinstance(data.get("response"), str):
        return data["response"]

    message = data.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"]

    return None


class PlannerClient:
    """
    无状态的补全请求客户端

    传输失败或非 2xx 状态时抛出 PlannerError，由调用方转换为文本结果。
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        model: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.api_url = (api_url or settings.planner_api_url).rstrip("/")
        self.model = model or settings.planner_model
        self.api_token = api_token if api_token is not None else settings.planner_api_token
        self.timeout = timeout or settings.planner_timeout

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Optional[str]:
        """
        发送一次补全请求

        Args:
            messages: OpenAI 格式消息列表
            temperature: 采样温度
            max_tokens: 最大生成 token 数

        Returns:
            Optional[str]: 生成文本，无文本时为 None

        Raises:
            PlannerError: 网络错误或非 2xx 状态
        """
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"

        payload: Dict[str, Any] = {"model": self.model, "messages": messages}
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.post(
                    f"{self.api_url}/v1/chat/completions",
                    json=payload,
                    headers=headers,
                ) as response:
                    if response.status < 200 or response.status >= 300:
                        error_text = await response.text()
                        raise PlannerError(f"HTTP {response.status}: {error_text[:200]}")
                    data = await response.json(content_type=None)
        except PlannerError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise PlannerError(f"{type(e).__name__}: {e}") from e

        text = extract_text(data)
        if text is None:
            logger.debug("🤖 [Planner] 响应中没有生成文本")
        return text

    async def ask(self, prompt: str, temperature: float = 0.7, max_tokens: int = 1000) -> Optional[str]:
        """单条 user 消息的文本请求"""
        return await self.complete(
            [{"role": "user", "content": prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
        )

    async def ask_with_image(
        self,
        prompt: str,
        image_data_url: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> Optional[str]:
        """
        图文请求

        Args:
            prompt: 文本指令
            image_data_url: data:image/png;base64,... 形式的图片
        """
        messages = [{
            "role": "user",
            "content": [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": image_data_url}},
            ],
        }]
        return await self.complete(messages, temperature=temperature, max_tokens=max_tokens)
