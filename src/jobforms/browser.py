from __future__ import annotations
from typing import List

from playwright.async_api import Frame, Page

from .tree import PageTree, parse_html


async def tree_from_page(page: Page) -> PageTree:
    """Snapshot an already open page into a ``PageTree``; never navigates."""
    html_text = await page.content()
    referrer = await page.evaluate("() => document.referrer")
    return parse_html(html_text, url=page.url, referrer=referrer or "", title=await page.title())


async def tree_from_frame(frame: Frame, referrer: str = "") -> PageTree:
    html_text = await frame.content()
    return parse_html(html_text, url=frame.url, referrer=referrer)


async def trees_from_child_frames(page: Page) -> List[PageTree]:
    """One tree per child frame; embedded application forms often live in iframes."""
    trees: List[PageTree] = []
    for frame in page.frames:
        if frame == page.main_frame or frame.is_detached():
            continue
        trees.append(await tree_from_frame(frame, referrer=page.url))
    return trees
