"""Tests for the web fetch tool."""

import httpx
import pytest

from bazinga.errors import ResourceError, ToolValidationError
from bazinga.tools import web
from bazinga.tools.base import ToolContext
from bazinga.tools.web import WebFetchInput, clean_html, fetch_url, normalize_url, web_fetch

PAGE = """
<html>
  <head><title>Docs</title><style>body { color: red; }</style></head>
  <body>
    <nav>Home | About</nav>
    <main>
      <h1>Getting started</h1>
      <p>Install the package first.</p>
      <script>trackVisitor();</script>
    </main>
    <footer>Copyright</footer>
  </body>
</html>
"""


def transport_for(handler):
    return httpx.MockTransport(handler)


class TestCleanHtml:
    """Tests for HTML reduction."""

    def test_prefers_main_content(self):
        """Test that the main element wins and scripts are dropped."""
        text = clean_html(PAGE)

        assert "Getting started" in text
        assert "Install the package first." in text
        assert "trackVisitor" not in text
        assert "Home | About" not in text
        assert "Copyright" not in text

    def test_falls_back_to_body_without_noise(self):
        """Test the body fallback skips navigation and sidebars."""
        html = '<body><div class="sidebar">Links here</div><div><p>Article text body</p></div></body>'

        text = clean_html(html)

        assert text == "Article text body"

    def test_short_and_duplicate_lines_removed(self):
        """Test that tiny lines and consecutive duplicates are dropped."""
        html = "<body><p>ok</p><p>Repeated line</p><p>Repeated line</p></body>"

        assert clean_html(html) == "Repeated line"


class TestNormalizeUrl:
    """Tests for URL normalization."""

    def test_defaults_to_https(self):
        """Test that a bare host gains https://."""
        assert normalize_url("example.com/docs") == "https://example.com/docs"

    @pytest.mark.parametrize("url", ["ftp://example.com/file", "file:///etc/passwd"])
    def test_rejects_other_schemes(self, url):
        """Test that only http and https are allowed."""
        with pytest.raises(ToolValidationError, match="unsupported URL scheme"):
            normalize_url(url)

    def test_rejects_empty(self):
        """Test that an empty URL is an input error."""
        with pytest.raises(ToolValidationError, match="url is required"):
            normalize_url("  ")


class TestFetchUrl:
    """Tests for fetching through a mock transport."""

    @pytest.mark.asyncio
    async def test_html_is_cleaned(self):
        """Test that HTML responses are reduced to text and the user agent is sent."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["agent"] = request.headers["user-agent"]
            return httpx.Response(200, text=PAGE, headers={"content-type": "text/html; charset=utf-8"})

        content = await fetch_url("https://docs.example.com", transport_for(handler))

        assert seen["agent"] == web.USER_AGENT
        assert "Install the package first." in content
        assert "<p>" not in content

    @pytest.mark.asyncio
    async def test_plain_text_is_returned_as_is(self):
        """Test that non-HTML text passes through."""
        transport = transport_for(
            lambda request: httpx.Response(200, text='{"ok": true}', headers={"content-type": "application/json"})
        )

        assert await fetch_url("https://api.example.com/status", transport) == '{"ok": true}'

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        """Test that 4xx responses are resource errors."""
        transport = transport_for(lambda request: httpx.Response(404, text="missing"))

        with pytest.raises(ResourceError, match="HTTP error 404: Not Found"):
            await fetch_url("https://example.com/missing", transport)

    @pytest.mark.asyncio
    async def test_binary_content_rejected(self):
        """Test that non-text content types are refused."""
        transport = transport_for(
            lambda request: httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png"})
        )

        with pytest.raises(ResourceError, match="unsupported content type: image/png"):
            await fetch_url("https://example.com/logo.png", transport)

    @pytest.mark.asyncio
    async def test_response_too_large(self, monkeypatch):
        """Test that bodies over the size limit are refused."""
        monkeypatch.setattr(web, "MAX_RESPONSE_BYTES", 16)
        transport = transport_for(
            lambda request: httpx.Response(200, text="x" * 64, headers={"content-type": "text/plain"})
        )

        with pytest.raises(ResourceError, match="response too large"):
            await fetch_url("https://example.com/big.txt", transport)

    @pytest.mark.asyncio
    async def test_network_failure(self):
        """Test that transport errors become resource errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ResourceError, match="failed to fetch URL"):
            await fetch_url("https://unreachable.example.com", transport_for(handler))

    @pytest.mark.asyncio
    async def test_tool_frames_content(self, tmp_path):
        """Test the tool wrapper uses the context transport."""
        transport = transport_for(
            lambda request: httpx.Response(200, text="hello world", headers={"content-type": "text/plain"})
        )
        ctx = ToolContext(root_path=str(tmp_path), http_transport=transport)

        result = await web_fetch(WebFetchInput(url="example.com"), ctx)

        assert result == "Content from example.com:\n\nhello world"
