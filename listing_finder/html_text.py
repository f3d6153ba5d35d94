from __future__ import annotations

import re
from typing import Optional

from bs4 import BeautifulSoup, Comment

MAX_TEXT_LENGTH = 9000
NOISE_TAGS = ("script", "style", "noscript", "template")

_WHITESPACE_RE = re.compile(r"\s+")


def extract_text_from_html(html: Optional[str], limit: int = MAX_TEXT_LENGTH) -> str:
    """Reduce an HTML document to a whitespace-collapsed plain-text excerpt of at most `limit` chars."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in NOISE_TAGS:
        for elem in soup.find_all(tag):
            elem.decompose()
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()
    text = _WHITESPACE_RE.sub(" ", soup.get_text(" ")).strip()
    return text[:limit]
