"""Minimal HTML pages returned to the browser on the POST callback.

The gateway expects an HTML body for its POST return, so redirects are done
with a meta refresh plus a script fallback. Pages never include secrets or
audit payloads.
"""
from __future__ import annotations

import json
from html import escape


def _js_string(value: str) -> str:
    return json.dumps(value).replace("</", "<\\/")


def render_redirect_page(url: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
  <title>Processing Payment</title>
  <meta http-equiv="refresh" content="0;url={escape(url, quote=True)}">
</head>
<body>
  <h1>Processing Payment</h1>
  <p>Please wait while we redirect you...</p>
  <script>window.location.href = {_js_string(url)};</script>
</body>
</html>
"""


def render_error_page(url: str, title: str, message: str, delay_seconds: int = 3) -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
  <title>{escape(title)}</title>
  <meta http-equiv="refresh" content="{int(delay_seconds)};url={escape(url, quote=True)}">
</head>
<body>
  <h1>{escape(title)}</h1>
  <p>{escape(message)} Redirecting...</p>
</body>
</html>
"""
