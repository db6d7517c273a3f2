"""
download_file 处理器

用 aiohttp 下载文件，可选写入本地目录、交给外部上传器（云存储）。
网络错误和非 2xx 状态转换为 success=False 的结果返回。
"""
import asyncio
import base64
import re
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional, Tuple
from urllib.parse import unquote, urlparse

import aiohttp
from loguru import logger

from autopilot.errors import DownloadError
from autopilot.handlers.base import BaseHandler, TaskOutcome
from autopilot.memory.models import Knowledge
from autopilot.models import DownloadFileParams, utc_now
from config.settings import settings

# (file_name, data, content_type) -> {"url": ...}
Uploader = Callable[[str, bytes, str], Awaitable[Dict[str, str]]]

_FILENAME_RE = re.compile(r'filename="?(.+?)"?$', re.IGNORECASE)

# 结果中 base64 预览的长度
PREVIEW_CHARS = 100


def extract_file_name(url: str, content_disposition: Optional[str] = None) -> str:
    """
    优先取 Content-Disposition 中的文件名，其次取 URL 路径最后一段，最后默认 download
    """
    if content_disposition:
        match = _FILENAME_RE.search(content_disposition)
        if match:
            return match.group(1)
    name = unquote(urlparse(url).path.rsplit("/", 1)[-1])
    return name or "download"


class DownloadHandler(BaseHandler):
    """
    Args:
        uploader: 外部上传器，params.upload 为真时调用
        download_dir: 设置后把文件写入该目录
    """

    def __init__(self, uploader: Optional[Uploader] = None, download_dir: Optional[str] = None, timeout: int = 120):
        self.uploader = uploader
        self.download_dir = download_dir if download_dir is not None else settings.download_dir
        self.timeout = timeout

    async def _fetch(self, url: str) -> Tuple[bytes, str, Optional[str]]:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
            async with session.get(url) as response:
                if response.status < 200 or response.status >= 300:
                    raise DownloadError(f"HTTP {response.status}")
                data = await response.read()
                content_type = response.headers.get("Content-Type", "application/octet-stream")
                return data, content_type, response.headers.get("Content-Disposition")

    async def execute(self, params: DownloadFileParams, knowledge: Optional[Knowledge] = None) -> TaskOutcome:
        url = params.url
        try:
            data, content_type, disposition = await self._fetch(url)
        except (DownloadError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"❌ [Download] 下载失败 {url}: {e}")
            return TaskOutcome(result={"success": False, "error": str(e), "url": url})

        file_name = params.file_name or extract_file_name(url, disposition)
        record = {"url": url, "file_name": file_name, "size": len(data), "timestamp": utc_now()}

        if self.download_dir:
            target = Path(self.download_dir)
            target.mkdir(parents=True, exist_ok=True)
            path = target / Path(file_name).name
            await asyncio.to_thread(path.write_bytes, data)
            record["path"] = str(path)

        if params.upload and self.uploader is not None:
            upload = await self.uploader(file_name, data, content_type)
            record["upload_url"] = upload.get("url")
            logger.info(f"☁️ [Download] {file_name} 已上传: {record['upload_url']}")

        logger.info(f"📥 [Download] {file_name} ({len(data)} bytes)")
        result = {"success": True, **record}
        if "upload_url" not in record:
            result["preview"] = base64.b64encode(data).decode("ascii")[:PREVIEW_CHARS] + "..."
        return TaskOutcome(result=result, download_records=[record])
