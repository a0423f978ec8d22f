"""Web tools for the untrusted sub-agent: web_search and web_fetch.

Page content is untrusted data, so these tools are only registered with
the untrusted registry. Uses the tool httpx client (NOT the ChatClient's,
which carries API credentials).
"""

from __future__ import annotations

import html
import ipaddress
import logging
import re
import socket
from dataclasses import dataclass
from datetime import date
from typing import Any
from urllib.parse import urljoin, urlparse

import httpx

from troy.agent.dispatch import ToolRegistry
from troy.config import Settings

logger = logging.getLogger(__name__)

_BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
_USER_AGENT = "Troy/0.1 (personal assistant)"
_MAX_FETCH_CHARS = 50000
_MAX_REDIRECTS = 5
_REDIRECT_CODES = frozenset({301, 302, 303, 307, 308})
_TEXT_TYPES = ("text/", "application/json", "application/xml", "application/xhtml")

# Loopback, private, link-local and "this network" ranges, v4 and v6
_PRIVATE_NETWORKS = tuple(
    ipaddress.ip_network(cidr)
    for cidr in (
        "0.0.0.0/8",
        "10.0.0.0/8",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "::1/128",
        "fc00::/7",
        "fe80::/10",
    )
)

_BLOCKED_HOSTNAMES = frozenset({"localhost", "0.0.0.0", "metadata.google.internal"})

_BOILERPLATE_RE = re.compile(
    r"<(script|style|noscript|nav|header|footer)\b[^>]*>.*?</\1\s*>",
    re.DOTALL | re.IGNORECASE,
)
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")


@dataclass
class SearchQuota:
    """Per-process daily counter for Brave searches; resets at local midnight."""

    day: date | None = None
    used: int = 0

    def take(self, limit: int, today: date | None = None) -> str | None:
        """Count one search; return an error message once `limit` is spent."""
        today = today or date.today()
        if self.day != today:
            self.day, self.used = today, 0

        if self.used >= limit:
            return f"Daily web search limit reached ({limit}). Resets tomorrow."

        self.used += 1
        if self.used > limit * 0.8:
            logger.warning("Web search quota at %d/%d", self.used, limit)
        return None

    def reset(self) -> None:
        self.day, self.used = None, 0


_search_quota = SearchQuota()


def _private_network(address: str) -> ipaddress.IPv4Network | ipaddress.IPv6Network | None:
    ip = ipaddress.ip_address(address)
    return next((net for net in _PRIVATE_NETWORKS if ip in net), None)


def is_url_safe(url: str) -> tuple[bool, str]:
    """Resolve the URL's host and refuse anything inside a private range.

    Returns (is_safe, reason). Every address the host resolves to must be
    public, so a name with one private A record is refused.
    """
    try:
        hostname = urlparse(url).hostname
        if not hostname:
            return False, "Could not parse hostname from URL"
        if hostname.lower() in _BLOCKED_HOSTNAMES:
            return False, f"Blocked hostname: {hostname}"

        try:
            resolved = {info[4][0] for info in socket.getaddrinfo(hostname, None)}
        except socket.gaierror:
            return False, f"Could not resolve hostname: {hostname}"

        for address in sorted(resolved):
            network = _private_network(address)
            if network is not None:
                return False, f"URL resolves to blocked IP range ({network})"
        return True, ""
    except ValueError as e:
        return False, f"URL validation error: {e}"


def extract_readable(page: str) -> str:
    """Visible text of an HTML page, whitespace collapsed."""
    text = _BOILERPLATE_RE.sub("", page)
    text = _COMMENT_RE.sub("", text)
    text = html.unescape(_TAG_RE.sub(" ", text))
    return _SPACE_RE.sub(" ", text).strip()


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "\n\n[... truncated]"


# ---------------------------------------------------------------------------
# Tool handlers
# ---------------------------------------------------------------------------


async def web_search(
    query: str,
    count: int = 5,
    *,
    settings: Settings,
    http: httpx.AsyncClient,
) -> str:
    """Search via the Brave Search API and list title, URL and snippet per hit."""
    if not settings.brave_search_api_key:
        return "Error: BRAVE_SEARCH_API_KEY is not set."

    quota_error = _search_quota.take(settings.web_search_daily_limit)
    if quota_error:
        return f"Rate limit: {quota_error}"

    count = max(1, min(int(count), 10))
    logger.info("Web search: %r (count=%d)", query, count)

    try:
        response = await http.get(
            _BRAVE_SEARCH_URL,
            params={"q": query, "count": count},
            headers={
                "Accept": "application/json",
                "Accept-Encoding": "gzip",
                "X-Subscription-Token": settings.brave_search_api_key,
            },
            timeout=10,
        )
    except httpx.TimeoutException:
        return "Web search timed out. Try again."
    except httpx.ConnectError as e:
        return f"Could not connect to search service: {e}"

    if response.status_code != 200:
        return f"Error: Brave Search API returned {response.status_code} {response.reason_phrase}"

    hits = (response.json().get("web") or {}).get("results") or []
    if not hits:
        return f"No results found for: {query}"

    blocks = [
        "\n".join([hit.get("title", ""), hit.get("url", ""), hit.get("description", "")])
        for hit in hits[:count]
    ]
    return f'Search results for "{query}":\n\n' + "\n\n".join(blocks)


async def web_fetch(
    url: str,
    max_chars: int | None = None,
    *,
    settings: Settings,
    http: httpx.AsyncClient,
) -> str:
    """Fetch a page and return its readable text.

    Redirects are followed here rather than by httpx so each hop is
    checked with is_url_safe before it is requested.
    """
    if not url.startswith(("http://", "https://")):
        return "URL must start with http:// or https://"

    safe, reason = is_url_safe(url)
    if not safe:
        return f"Blocked: {reason}"

    limit = min(max_chars or settings.web_fetch_max_chars, _MAX_FETCH_CHARS)
    target = url

    try:
        for _ in range(_MAX_REDIRECTS + 1):
            response = await http.get(
                target,
                headers={"User-Agent": _USER_AGENT},
                follow_redirects=False,
                timeout=15,
            )
            location = response.headers.get("location", "")
            if response.status_code not in _REDIRECT_CODES or not location:
                break

            next_url = urljoin(target, location)
            safe, reason = is_url_safe(next_url)
            if not safe:
                return f"Blocked redirect to unsafe URL: {reason}"
            logger.debug("Following redirect %s -> %s", target, next_url)
            target = next_url
        else:
            return f"Too many redirects (max {_MAX_REDIRECTS})"
    except httpx.TimeoutException:
        return f"Fetch timed out for: {url}"
    except httpx.ConnectError as e:
        return f"Could not connect to {url}: {e}"

    content_type = response.headers.get("content-type", "")
    if content_type and not any(kind in content_type for kind in _TEXT_TYPES):
        return f"Cannot extract text from binary content (content-type: {content_type})"

    body = extract_readable(response.text) if "html" in content_type else response.text
    text = _truncate(body, limit)
    return f"Content from {url} ({len(text)} chars):\n\n{text}"


# ---------------------------------------------------------------------------
# Tool schemas
# ---------------------------------------------------------------------------


_WEB_SEARCH_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": (
        "Search the web with Brave Search. Returns a title, URL and snippet for each "
        "result. Use web_fetch to read a result in full."
    ),
    "properties": {
        "query": {"type": "string", "description": "Search terms"},
        "count": {
            "type": "integer",
            "description": "How many results to return (1-10, default 5)",
            "minimum": 1,
            "maximum": 10,
            "default": 5,
        },
    },
    "required": ["query"],
}

_WEB_FETCH_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": "Download a web page and return its text with markup removed.",
    "properties": {
        "url": {"type": "string", "description": "An http:// or https:// URL"},
        "max_chars": {
            "type": "integer",
            "description": f"Cut the text off after this many characters (at most {_MAX_FETCH_CHARS})",
            "maximum": _MAX_FETCH_CHARS,
        },
    },
    "required": ["url"],
}


def register_web_tools(
    registry: ToolRegistry,
    settings: Settings,
    http_client: httpx.AsyncClient,
) -> None:
    """Register web_search and web_fetch as read-only tools."""

    async def _search(query: str, count: int = 5) -> str:
        return await web_search(query, count, settings=settings, http=http_client)

    async def _fetch(url: str, max_chars: int | None = None) -> str:
        return await web_fetch(url, max_chars, settings=settings, http=http_client)

    registry.register("web_search", _search, _WEB_SEARCH_SCHEMA, read_only=True)
    registry.register("web_fetch", _fetch, _WEB_FETCH_SCHEMA, read_only=True)
