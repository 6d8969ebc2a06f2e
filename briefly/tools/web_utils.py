from __future__ import annotations

import re
from urllib.parse import parse_qsl, urlencode, urlparse, urlsplit, urlunsplit


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except Exception:
        return False


def clean_text(text: str) -> str:
    """Collapse whitespace and strip; used for titles and snippets."""
    return re.sub(r"\s+", " ", text or "").strip()


def extract_domain(url: str) -> str:
    """Hostname without the leading ``www.``."""
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""
    if host.startswith("www."):
        host = host[4:]
    return host


TRACKING_PARAMS = frozenset(
    {"fbclid", "gclid", "dclid", "msclkid", "mc_cid", "mc_eid", "ref", "ref_src", "igshid", "yclid"}
)


def _is_tracking_param(name: str) -> bool:
    name = name.lower()
    return name.startswith("utm_") or name in TRACKING_PARAMS


def canonical_url(url: str) -> str:
    """Stable key for a URL: lowercased scheme/host, sorted query without
    tracking parameters, no fragment."""
    parsed = urlsplit(url.strip())
    scheme = (parsed.scheme or "https").lower()
    netloc = parsed.netloc.lower()
    path = parsed.path or "/"
    if len(path) > 1:
        path = path.rstrip("/")
    params = parse_qsl(parsed.query, keep_blank_values=True)
    query = urlencode(sorted(p for p in params if not _is_tracking_param(p[0])))
    return urlunsplit((scheme, netloc, path, query, ""))
