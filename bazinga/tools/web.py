"""Web fetch tool: retrieves a URL and reduces HTML to readable text."""

from dataclasses import dataclass, field
from html.parser import HTMLParser
from urllib.parse import urlsplit

import httpx
from pydantic import BaseModel, Field

from bazinga.errors import ResourceError, ToolValidationError
from bazinga.tools.base import ToolContext, ToolDefinition
from bazinga.utils.logging import get_logger

logger = get_logger(__name__)

USER_AGENT = "Bazinga/1.0 AI Assistant"
MAX_RESPONSE_BYTES = 10 * 1024 * 1024
MAX_REDIRECTS = 10
TIMEOUT_SECONDS = 30.0

TEXT_CONTENT_TYPES = ("text/", "application/json", "application/xml", "application/javascript", "application/xhtml+xml")

REMOVED_TAGS = {"script", "style", "noscript", "nav", "header", "footer", "aside"}
VOID_TAGS = {"area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "source", "track", "wbr"}
BLOCK_TAGS = {
    "p", "div", "section", "article", "main", "li", "ul", "ol", "table", "tr", "td", "th",
    "h1", "h2", "h3", "h4", "h5", "h6", "pre", "blockquote", "br", "hr", "body", "title",
}  # fmt: skip

# (tag, attribute, value) in preference order; None matches any tag
MAIN_SELECTORS = [
    ("main", None, None),
    ("article", None, None),
    (None, "role", "main"),
    (None, "class", "main-content"),
    (None, "id", "main-content"),
    (None, "class", "content"),
    (None, "id", "content"),
    (None, "class", "post-content"),
    (None, "class", "entry-content"),
]
BODY_NOISE_CLASSES = {"nav", "navigation", "sidebar", "menu", "header", "footer", "ads", "advertisement"}


class WebFetchInput(BaseModel):
    url: str = Field(..., description="The URL to fetch (https:// is assumed when no scheme is given)")


@dataclass
class _Node:
    tag: str
    attrs: dict[str, str] = field(default_factory=dict)
    children: list["_Node | str"] = field(default_factory=list)

    def classes(self) -> set[str]:
        return set(self.attrs.get("class", "").split())

    def matches(self, tag: str | None, attr: str | None, value: str | None) -> bool:
        if tag is not None and self.tag != tag:
            return False
        if attr == "class":
            return value in self.classes()
        if attr is not None:
            return self.attrs.get(attr) == value
        return True


class _TreeBuilder(HTMLParser):
    """Builds a minimal element tree, dropping elements whose text is never wanted."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.root = _Node("#document")
        self._stack = [self.root]
        self._skip_depth = 0

    def handle_starttag(self, tag, attrs):
        if tag in VOID_TAGS:
            if not self._skip_depth:
                self._stack[-1].children.append(_Node(tag))
            return
        if self._skip_depth or tag in REMOVED_TAGS:
            self._skip_depth += 1
            return
        node = _Node(tag, {name: value or "" for name, value in attrs})
        self._stack[-1].children.append(node)
        self._stack.append(node)

    def handle_endtag(self, tag):
        if tag in VOID_TAGS:
            return
        if self._skip_depth:
            self._skip_depth -= 1
            return
        for i in range(len(self._stack) - 1, 0, -1):
            if self._stack[i].tag == tag:
                del self._stack[i:]
                break

    def handle_data(self, data):
        if not self._skip_depth:
            self._stack[-1].children.append(data)


def _iter_nodes(node: _Node):
    yield node
    for child in node.children:
        if isinstance(child, _Node):
            yield from _iter_nodes(child)


def _text_of(node: _Node, skip_noise: bool = False) -> str:
    parts: list[str] = []

    def walk(current: _Node) -> None:
        if skip_noise and (current.tag == "nav" or current.classes() & BODY_NOISE_CLASSES):
            return
        block = current.tag in BLOCK_TAGS
        if block:
            parts.append("\n")
        for child in current.children:
            if isinstance(child, str):
                parts.append(child)
            else:
                walk(child)
        if block:
            parts.append("\n")

    walk(node)
    return "".join(parts).strip()


def clean_html(html: str) -> str:
    """Reduce an HTML document to its main readable text."""
    builder = _TreeBuilder()
    builder.feed(html)
    builder.close()

    text_parts: list[str] = []
    for selector in MAIN_SELECTORS:
        for node in _iter_nodes(builder.root):
            if node.matches(*selector) and (text := _text_of(node)):
                text_parts.append(text)
        if text_parts:
            break

    if not text_parts:
        bodies = [node for node in _iter_nodes(builder.root) if node.tag == "body"] or [builder.root]
        text_parts = [text for body in bodies if (text := _text_of(body, skip_noise=True))]

    lines = [line.strip() for line in "\n\n".join(text_parts).split("\n")]
    result: list[str] = []
    for line in lines:
        if len(line) <= 2:
            continue
        if result and result[-1] == line:
            continue
        result.append(line)
    return "\n".join(result)


def normalize_url(url: str) -> str:
    """Default to https and reject non-http(s) schemes.

    Raises:
        ToolValidationError: If the URL is empty or uses another scheme
    """
    url = url.strip()
    if not url:
        raise ToolValidationError("url is required")
    if "://" not in url:
        url = f"https://{url}"

    scheme = urlsplit(url).scheme.lower()
    if scheme not in ("http", "https"):
        raise ToolValidationError(f"unsupported URL scheme: {scheme} (only http and https are allowed)")
    return url


def is_text_content(content_type: str) -> bool:
    content_type = content_type.lower()
    return any(text_type in content_type for text_type in TEXT_CONTENT_TYPES)


async def fetch_url(url: str, transport: httpx.AsyncBaseTransport | None = None) -> str:
    """Fetch a URL and return its text, cleaned when the response is HTML.

    Raises:
        ToolValidationError: If the URL is not http(s)
        ResourceError: On network failure, HTTP error status, non-text content or oversized bodies
    """
    target = normalize_url(url)
    logger.debug(f"Fetching URL: {target}")

    headers = {
        "User-Agent": USER_AGENT,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,text/plain;q=0.8,*/*;q=0.7",
        "Accept-Language": "en-US,en;q=0.9",
    }
    async with httpx.AsyncClient(
        transport=transport,
        timeout=TIMEOUT_SECONDS,
        follow_redirects=True,
        max_redirects=MAX_REDIRECTS,
        headers=headers,
    ) as client:
        try:
            async with client.stream("GET", target) as response:
                if response.status_code < 200 or response.status_code >= 400:
                    raise ResourceError(f"HTTP error {response.status_code}: {response.reason_phrase}")

                content_type = response.headers.get("content-type", "")
                if not is_text_content(content_type):
                    raise ResourceError(
                        f"unsupported content type: {content_type} (only text content is supported)"
                    )

                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) >= MAX_RESPONSE_BYTES:
                        raise ResourceError(f"response too large (exceeded {MAX_RESPONSE_BYTES} bytes)")
                encoding = response.encoding or "utf-8"
        except httpx.TooManyRedirects as e:
            raise ResourceError("failed to fetch URL: too many redirects") from e
        except httpx.HTTPError as e:
            raise ResourceError(f"failed to fetch URL: {e}") from e

    content = body.decode(encoding, errors="replace")
    if "html" in content_type.lower():
        content = clean_html(content)

    logger.info(f"Fetched {target} ({len(content)} chars, {content_type})")
    return content


async def web_fetch(params: WebFetchInput, ctx: ToolContext) -> str:
    content = await fetch_url(params.url, ctx.http_transport)
    return f"Content from {params.url}:\n\n{content}"


def create_web_tool() -> ToolDefinition:
    return ToolDefinition(
        "web_fetch",
        "Fetch a web page or text resource over HTTP(S) and return its readable text content",
        WebFetchInput,
        web_fetch,
    )
