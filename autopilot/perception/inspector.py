"""
页面检查 - 枚举可交互元素并合成稳定选择器

选择器优先级：
1. 元素有 id → #id
2. 元素有 class → tag.第一个class
3. 沿祖先链向上拼接 tag / tag.第一个class，遇到有 id 的祖先时以 #id 结束，
   用 " > " 连接；一直没有 id 时使用到根的完整路径
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from autopilot.browser import scripts
from autopilot.browser.tabs import TabController


def _first_class(class_name: Optional[str]) -> Optional[str]:
    if not class_name:
        return None
    tokens = class_name.split()
    return tokens[0] if tokens else None


def _segment(node: Dict[str, Any]) -> str:
    tag = (node.get("tag") or "").lower()
    first = _first_class(node.get("class_name"))
    return f"{tag}.{first}" if first else tag


def build_selector(element: Dict[str, Any]) -> str:
    """
    为元素合成 CSS 选择器

    Args:
        element: {tag, id, class_name, ancestors: [{tag, id, class_name}, ...]}，
            ancestors 从父元素开始向根排列

    Returns:
        str: CSS 选择器
    """
    if element.get("id"):
        return f"#{element['id']}"

    first = _first_class(element.get("class_name"))
    tag = (element.get("tag") or "").lower()
    if first:
        return f"{tag}.{first}"

    path = [_segment(element)]
    for ancestor in element.get("ancestors") or []:
        if ancestor.get("id"):
            path.insert(0, f"#{ancestor['id']}")
            break
        path.insert(0, _segment(ancestor))
    return " > ".join(p for p in path if p) or tag


@dataclass
class ElementInfo:
    """可交互元素描述"""
    kind: str
    index: int
    selector: str
    text: str = ""
    type: Optional[str] = None
    placeholder: str = ""
    name: str = ""
    href: Optional[str] = None
    bounds: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, kind: str, raw: Dict[str, Any]) -> "ElementInfo":
        return cls(
            kind=kind,
            index=int(raw.get("index", 0)),
            selector=build_selector(raw),
            text=raw.get("text") or "",
            type=raw.get("type"),
            placeholder=raw.get("placeholder") or "",
            name=raw.get("name") or "",
            href=raw.get("href"),
            bounds=dict(raw.get("bounds") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"index": self.index, "selector": self.selector}
        if self.kind == "button":
            data["text"] = self.text
        elif self.kind == "input":
            data.update(type=self.type, placeholder=self.placeholder, name=self.name)
        else:
            data.update(text=self.text, href=self.href)
        return data


@dataclass
class PageInfo:
    """INSPECT 阶段的输出"""
    title: str = ""
    url: str = ""
    buttons: List[ElementInfo] = field(default_factory=list)
    inputs: List[ElementInfo] = field(default_factory=list)
    links: List[ElementInfo] = field(default_factory=list)

    @classmethod
    def from_raw(cls, raw: Optional[Dict[str, Any]]) -> "PageInfo":
        raw = raw or {}
        return cls(
            title=raw.get("title") or "",
            url=raw.get("url") or "",
            buttons=[ElementInfo.from_raw("button", b) for b in raw.get("buttons") or []],
            inputs=[ElementInfo.from_raw("input", i) for i in raw.get("inputs") or []],
            links=[ElementInfo.from_raw("link", l) for l in raw.get("links") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "url": self.url,
            "elements": {
                "buttons": [b.to_dict() for b in self.buttons],
                "inputs": [i.to_dict() for i in self.inputs],
                "links": [l.to_dict() for l in self.links],
            },
        }


async def inspect_page(tabs: TabController, handle: Optional[str] = None, link_limit: int = 20) -> PageInfo:
    """
    枚举当前页面的按钮、输入框和链接

    Args:
        tabs: 标签页控制器
        handle: 标签页句柄，None 表示活动页
        link_limit: 最多返回的链接数
    """
    raw = await tabs.run_in_page(handle, scripts.ELEMENTS, link_limit)
    return PageInfo.from_raw(raw)
