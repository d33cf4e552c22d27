from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
import json
import re

from bs4 import BeautifulSoup

from ..models import JobContext, JobType
from ..tree import Node, PageTree, normalize_ws


@dataclass(frozen=True)
class JobContextSelectors:
    title: Tuple[str, ...] = ()
    company: Tuple[str, ...] = ()
    description: Tuple[str, ...] = ()
    location: Tuple[str, ...] = ()


GENERIC_SELECTORS = JobContextSelectors(
    title=(
        'h1[class*="job"], h1[class*="title"]',
        '[data-testid*="job-title"]',
        ".job-title, .position-title",
        "h1, h2",
    ),
    company=(
        '[class*="company"], [class*="employer"]',
        '[data-testid*="company"]',
        ".company-name, .employer-name",
    ),
    description=(
        '[class*="description"], [class*="job-description"]',
        '[data-testid*="description"]',
        ".description, .job-details",
    ),
    location=(
        '[class*="location"]',
        '[data-testid*="location"]',
        ".location, .job-location",
    ),
)

_REQ_HEADING_RE = re.compile(r"requirement|qualification|what you'?ll need|skills|must have", re.I)
_REQ_INLINE_RE = re.compile(r"\b(requirements?|qualifications?|must have)\s*:\s*([^.]+)", re.I)
_PLATITUDES = [
    r"team player",
    r"fast[- ]?paced",
    r"dynamic environment",
    r"excellent communication",
    r"self[- ]?starter",
]
_TITLE_SPLIT_RE = re.compile(r"\s+(?:-|\||–|at)\s+")
_MAX_REQUIREMENTS = 10
_EMPLOYMENT_TYPES: Dict[str, JobType] = {
    "FULL_TIME": "full_time",
    "PART_TIME": "part_time",
    "CONTRACTOR": "contract",
    "TEMPORARY": "contract",
    "INTERN": "internship",
}


def first_text(tree: PageTree, selectors: Tuple[str, ...], accept: Optional[Callable[[str], bool]] = None) -> Optional[str]:
    for css in selectors:
        for node in tree.select(css):
            value = node.text()
            if value and (accept is None or accept(value)):
                return value
    return None


def _iter_json_ld(tree: PageTree) -> Iterator[Dict[str, Any]]:
    for script in tree.select('script[type="application/ld+json"]'):
        raw = script.raw.string or script.raw.get_text()
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            continue
        stack: List[Any] = [data]
        while stack:
            item = stack.pop(0)
            if isinstance(item, list):
                stack.extend(item)
            elif isinstance(item, dict):
                if "@graph" in item:
                    stack.extend(item["@graph"] if isinstance(item["@graph"], list) else [item["@graph"]])
                yield item


def _ld_text(value: Any) -> Optional[str]:
    """Plain string from a JSON-LD value: literals, ``@value``/``name`` objects, first usable list item."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return _ld_text(value.get("@value")) or _ld_text(value.get("name"))
    if isinstance(value, list):
        for item in value:
            text = _ld_text(item)
            if text:
                return text
    return None


def structured_job_posting(tree: PageTree) -> Optional[Dict[str, Any]]:
    """Flatten the first schema.org ``JobPosting`` block on the page."""
    for item in _iter_json_ld(tree):
        kind = item.get("@type")
        kinds = kind if isinstance(kind, list) else [kind]
        if "JobPosting" not in kinds:
            continue
        company = _ld_text(item.get("hiringOrganization"))
        description = _ld_text(item.get("description")) or ""
        if "<" in description:
            description = BeautifulSoup(description, "html.parser").get_text(" ")
        location = None
        loc = item.get("jobLocation")
        if isinstance(loc, list):
            loc = loc[0] if loc else None
        if isinstance(loc, dict):
            addr = loc.get("address") or {}
            if isinstance(addr, dict):
                parts = [_ld_text(addr.get(k)) for k in ("addressLocality", "addressRegion", "addressCountry")]
                location = ", ".join(p for p in parts if p) or None
        employment = _ld_text(item.get("employmentType"))
        return {
            "title": normalize_ws(_ld_text(item.get("title"))) or None,
            "company": normalize_ws(company) or None,
            "description": normalize_ws(description) or None,
            "location": location,
            "job_type": _EMPLOYMENT_TYPES.get(str(employment or "").upper()),
        }
    return None


def _title_parts(tree: PageTree) -> List[str]:
    return [p for p in (normalize_ws(x) for x in _TITLE_SPLIT_RE.split(tree.title)) if p]


def extract_requirements(scope: Node, body_text: str = "") -> List[str]:
    reqs: List[str] = []
    for lst in scope.select("ul, ol"):
        heading = next((s for s in lst.previous_siblings() if s.text()), None)
        if heading is None or len(heading.text()) > 80 or not _REQ_HEADING_RE.search(heading.text()):
            continue
        for li in lst.select("li"):
            item = li.text()
            if item and not any(re.search(p, item.lower()) for p in _PLATITUDES):
                reqs.append(item)
    if not reqs and body_text:
        for m in _REQ_INLINE_RE.finditer(body_text):
            reqs.append(normalize_ws(m.group(2)))
    return list(dict.fromkeys(reqs))[:_MAX_REQUIREMENTS]


def infer_job_type(text: str) -> Optional[JobType]:
    hay = text.lower()
    if "full time" in hay or "full-time" in hay:
        return "full_time"
    if "part time" in hay or "part-time" in hay:
        return "part_time"
    if "contract" in hay:
        return "contract"
    if "intern" in hay:
        return "internship"
    return None


def extract_job_context(
    tree: PageTree,
    platform_selectors: Optional[JobContextSelectors] = None,
    *,
    accept_title: Optional[Callable[[str], bool]] = None,
) -> Optional[JobContext]:
    """
    Resolve job context through platform selectors, generic selectors,
    JSON-LD ``JobPosting`` data and finally ``<head>`` hints.
    Returns None when neither a title nor a company can be found.
    """
    chains = [s for s in (platform_selectors, GENERIC_SELECTORS) if s is not None]

    def from_selectors(attr: str, accept: Optional[Callable[[str], bool]] = None) -> Optional[str]:
        for sel in chains:
            value = first_text(tree, getattr(sel, attr), accept)
            if value:
                return value
        return None

    structured = structured_job_posting(tree) or {}
    title_parts = _title_parts(tree)

    title = (
        from_selectors("title", accept_title)
        or structured.get("title")
        or tree.meta("og:title")
        or (title_parts[0] if title_parts else None)
    )
    company = (
        from_selectors("company")
        or structured.get("company")
        or tree.meta("og:site_name")
        or (title_parts[-1] if len(title_parts) > 1 else None)
    )
    if not title and not company:
        return None

    description = (
        from_selectors("description")
        or structured.get("description")
        or tree.meta("description")
        or tree.meta("og:description")
        or ""
    )
    location = from_selectors("location") or structured.get("location")

    desc_node = None
    for sel in chains:
        for css in sel.description:
            desc_node = tree.select_one(css)
            if desc_node is not None:
                break
        if desc_node is not None:
            break
    body_text = tree.body_text()
    requirements = extract_requirements(desc_node or tree.body, body_text)
    job_type = structured.get("job_type") or infer_job_type(f"{description} {body_text}")

    return JobContext(
        title=title or "Unknown Position",
        company=company or "Unknown Company",
        description=description,
        requirements=requirements,
        location=location,
        job_type=job_type,
    )
