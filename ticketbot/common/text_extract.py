"""Plain-text extraction from HTML ticket bodies."""

import html
import re
from typing import Any

TAG = re.compile(r"<[^>]*>")
WHITESPACE = re.compile(r"\s+")


def strip_html(value: Any) -> str:
    """
    Reduce an HTML fragment to single-spaced plain text.

    Args:
        value: HTML string (None allowed).
    Returns:
        Text with tags removed and entities unescaped.
    """
    if value is None:
        return ""
    text = TAG.sub(" ", str(value))
    return WHITESPACE.sub(" ", html.unescape(text)).strip()
