from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import json

from .tree import PageTree, parse_html


@dataclass
class SnapshotManifest:
    base_dir: Path
    url: str
    page_html: Path
    page_dom_html: Optional[Path]
    screenshot: Optional[Path]
    frames: List[Dict[str, Any]]
    referrer: str = ""


def load_snapshot_manifest(directory: Path) -> SnapshotManifest:
    manifest_path = directory / "manifest.json"
    data = json.loads(manifest_path.read_text(encoding="utf-8"))
    return SnapshotManifest(
        base_dir=directory,
        url=data.get("url", ""),
        page_html=directory / data.get("page_html", "page.html"),
        page_dom_html=(directory / data["page_dom_html"]) if data.get("page_dom_html") else None,
        screenshot=(directory / data["screenshot"]) if data.get("screenshot") else None,
        frames=data.get("frames", []),
        referrer=data.get("referrer", ""),
    )


def load_snapshot_tree(directory: Path) -> Tuple[PageTree, SnapshotManifest]:
    """
    Parse the main page of a snapshot. The serialized DOM is preferred over
    the raw response HTML since it reflects script-rendered content.
    """
    manifest = load_snapshot_manifest(directory)
    html_text = (manifest.page_dom_html or manifest.page_html).read_text(encoding="utf-8")
    return parse_html(html_text, url=manifest.url, referrer=manifest.referrer), manifest


def load_frame_trees(manifest: SnapshotManifest) -> List[PageTree]:
    trees: List[PageTree] = []
    for fr in manifest.frames:
        # prefer DOM file when present
        p = manifest.base_dir / (fr.get("dom_path") or fr.get("path", ""))
        if not p.is_file():
            continue
        trees.append(parse_html(p.read_text(encoding="utf-8"), url=fr.get("url") or manifest.url, referrer=manifest.url))
    return trees
