"""The browser-side reload client and its insertion into HTML pages."""

from __future__ import annotations


INJECT_MARKER = b"__livedir_reload__"

# Keep this snippet self-contained: no external JS, no imports.
RELOAD_SNIPPET = b"""
<script id="__livedir_reload__">
(function() {
  console.log('Live reload enabled');
  const source = new EventSource('/sse');
  source.onmessage = function(event) {
    if (event.data === 'reload') {
      console.log('Reloading page after file change');
      window.location.reload();
    }
  };
  source.onerror = function() {
    console.log('Live reload connection lost');
  };
})();
</script>
"""


def inject_reload_client(html: bytes, snippet: bytes = RELOAD_SNIPPET) -> bytes:
    """Insert ``snippet`` before ``</body>``, else ``</html>``, else at the end."""
    if INJECT_MARKER in html:
        return html
    lower = html.lower()
    for tag in (b"</body>", b"</html>"):
        idx = lower.rfind(tag)
        if idx != -1:
            return html[:idx] + snippet + html[idx:]
    return html + snippet
