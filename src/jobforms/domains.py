from __future__ import annotations
import tldextract


# Bundled public suffix snapshot only; detection never touches the network.
_EXTRACT = tldextract.TLDExtract(suffix_list_urls=())


def domain(host_or_url: str) -> str:
    ext = _EXTRACT(host_or_url)
    base = ".".join([p for p in [ext.domain, ext.suffix] if p])
    return base.lower()


def registered_name(host_or_url: str) -> str:
    """``uk.indeed.com`` and ``indeed.co.uk`` both give ``indeed``."""
    return (_EXTRACT(host_or_url).domain or "").lower()
