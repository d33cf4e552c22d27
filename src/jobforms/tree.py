"""
Read access to a page's element tree.

The detection and monitoring code only talks to the ``Node`` protocol below.
``SoupNode`` backs it with BeautifulSoup so static HTML, saved snapshots and
``page.content()`` dumps from a live browser can all be analysed the same way.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Iterator, List, Optional, Protocol, runtime_checkable
import re

from bs4 import BeautifulSoup, Comment, Tag


_WS_RE = re.compile(r"\s+")
_NON_TEXT_TAGS = {"script", "style", "noscript", "template"}


def normalize_ws(value: Optional[str]) -> str:
    return _WS_RE.sub(" ", value or "").strip()


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float


@runtime_checkable
class Node(Protocol):
    @property
    def tag(self) -> str: ...

    @property
    def classes(self) -> List[str]: ...

    @property
    def parent(self) -> Optional["Node"]: ...

    def attr(self, name: str) -> Optional[str]: ...

    def has_attr(self, name: str) -> bool: ...

    def text(self) -> str: ...

    def children(self) -> List["Node"]: ...

    def previous_siblings(self) -> Iterator["Node"]: ...

    def select(self, css: str) -> List["Node"]: ...

    def select_one(self, css: str) -> Optional["Node"]: ...

    def closest(self, css: str) -> Optional["Node"]: ...

    def matches(self, css: str) -> bool: ...

    def contains(self, other: "Node") -> bool: ...

    def is_connected(self) -> bool: ...

    def bounding_box(self) -> Optional[BoundingBox]: ...

    def set_attr(self, name: str, value: str) -> None: ...

    def remove_attr(self, name: str) -> None: ...


class SoupNode:
    __slots__ = ("_tag",)

    def __init__(self, tag: Tag):
        self._tag = tag

    # identity follows the wrapped tag, not the wrapper
    def __eq__(self, other: object) -> bool:
        return isinstance(other, SoupNode) and other._tag is self._tag

    def __hash__(self) -> int:
        return id(self._tag)

    def __repr__(self) -> str:
        ident = self.attr("id") or self.attr("name") or ""
        return f"<SoupNode {self.tag}{'#' + ident if ident else ''}>"

    @property
    def raw(self) -> Tag:
        return self._tag

    @property
    def tag(self) -> str:
        return (self._tag.name or "").lower()

    @property
    def classes(self) -> List[str]:
        value = self._tag.get("class") or []
        if isinstance(value, str):
            return value.split()
        return list(value)

    @property
    def parent(self) -> Optional["SoupNode"]:
        p = self._tag.parent
        if p is None or isinstance(p, BeautifulSoup):
            return None
        return SoupNode(p)

    def attr(self, name: str) -> Optional[str]:
        value = self._tag.get(name)
        if value is None:
            return None
        if isinstance(value, list):
            return " ".join(value)
        return str(value)

    def has_attr(self, name: str) -> bool:
        return self._tag.has_attr(name)

    def text(self) -> str:
        parts = []
        for s in self._tag.find_all(string=True):
            if isinstance(s, Comment) or (s.parent is not None and s.parent.name in _NON_TEXT_TAGS):
                continue
            parts.append(str(s))
        return normalize_ws(" ".join(parts))

    def children(self) -> List["SoupNode"]:
        return [SoupNode(t) for t in self._tag.find_all(recursive=False)]

    def previous_siblings(self) -> Iterator["SoupNode"]:
        for sib in self._tag.find_previous_siblings():
            yield SoupNode(sib)

    def select(self, css: str) -> List["SoupNode"]:
        return [SoupNode(t) for t in self._tag.select(css)]

    def select_one(self, css: str) -> Optional["SoupNode"]:
        found = self._tag.select_one(css)
        return SoupNode(found) if found is not None else None

    def closest(self, css: str) -> Optional["SoupNode"]:
        found = self._tag.css.closest(css)
        return SoupNode(found) if found is not None else None

    def matches(self, css: str) -> bool:
        if isinstance(self._tag, BeautifulSoup):
            return False
        return bool(self._tag.css.match(css))

    def contains(self, other: Node) -> bool:
        if not isinstance(other, SoupNode):
            return False
        if other._tag is self._tag:
            return True
        return any(p is self._tag for p in other._tag.parents)

    def is_connected(self) -> bool:
        if isinstance(self._tag, BeautifulSoup):
            return True
        for p in self._tag.parents:
            if isinstance(p, BeautifulSoup):
                return True
        return False

    def bounding_box(self) -> Optional[BoundingBox]:
        raw = self.attr("data-bbox")
        if not raw:
            return None
        try:
            x, y, w, h = (float(v) for v in raw.split(","))
        except ValueError:
            return None
        return BoundingBox(x, y, w, h)

    def set_attr(self, name: str, value: str) -> None:
        self._tag[name] = value

    def remove_attr(self, name: str) -> None:
        if self._tag.has_attr(name):
            del self._tag[name]


class PageTree:
    """A parsed page plus the location facts detection needs."""

    def __init__(self, soup: BeautifulSoup, *, url: str = "", title: Optional[str] = None, referrer: str = ""):
        self.soup = soup
        self.url = url or ""
        self.referrer = referrer or ""
        if title is None:
            title = soup.title.get_text() if soup.title else ""
        self.title = normalize_ws(title)
        self.root = SoupNode(soup)

    @property
    def body(self) -> SoupNode:
        return SoupNode(self.soup.body) if self.soup.body is not None else self.root

    @property
    def host(self) -> str:
        m = re.match(r"^[a-z][a-z0-9+.\-]*://([^/?#:]+)", self.url.strip(), re.I)
        return m.group(1).lower() if m else ""

    def body_text(self) -> str:
        return self.body.text()

    def body_classes(self) -> List[str]:
        return self.body.classes if self.soup.body is not None else []

    def select(self, css: str) -> List[SoupNode]:
        return self.root.select(css)

    def select_one(self, css: str) -> Optional[SoupNode]:
        return self.root.select_one(css)

    def meta(self, name: str) -> Optional[str]:
        for m in self.soup.find_all("meta"):
            key = m.get("name") or m.get("property")
            if key and key.lower() == name.lower():
                content = normalize_ws(m.get("content"))
                if content:
                    return content
        return None

    def find_label_for(self, element_id: str) -> Optional[SoupNode]:
        for label in self.soup.find_all("label", attrs={"for": True}):
            if label.get("for") == element_id:
                return SoupNode(label)
        return None

    def find_by_id(self, element_id: str) -> Optional[SoupNode]:
        found = self.soup.find(attrs={"id": element_id})
        return SoupNode(found) if isinstance(found, Tag) else None


def parse_html(html: str, *, url: str = "", referrer: str = "", title: Optional[str] = None) -> PageTree:
    return PageTree(BeautifulSoup(html, "html.parser"), url=url, title=title, referrer=referrer)


_HIDDEN_STYLE_RE = re.compile(r"display\s*:\s*none|visibility\s*:\s*hidden", re.I)


def is_self_hidden(node: Node) -> bool:
    if node.has_attr("hidden") or node.attr("aria-hidden") == "true":
        return True
    if "hidden" in node.classes:
        return True
    return bool(_HIDDEN_STYLE_RE.search(node.attr("style") or ""))


def is_hidden(node: Node, within: Optional[Node] = None) -> bool:
    """True when the node or an ancestor (up to ``within``) is hidden."""
    current: Optional[Node] = node
    while current is not None:
        if is_self_hidden(current):
            return True
        if within is not None and current == within:
            break
        current = current.parent
    return False
