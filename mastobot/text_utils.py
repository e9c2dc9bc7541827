"""
Text helpers for Mastodon content.

Mastodon delivers post bodies as HTML and enforces a per-instance
character limit, so inbound text is stripped to plain text and outbound
text is squeezed to fit before posting.
"""

import html
import re

_TAG_RE = re.compile(r"<[^>]*>")
_MD_LINK_RE = re.compile(r"\[([^\]]+)\]\((https?://[^\s)]+)\)")
_URL_RE = re.compile(r"https?://[^\s)]+")
_DOMAIN_RE = re.compile(r"^https?://([^/\s?]+)")
_HSPACE_RE = re.compile(r"[ \t　]+")

ELLIPSIS = "…"


def strip_html(markup: str) -> str:
    """Drop tags and decode entities from a status body."""
    text = _TAG_RE.sub("", markup or "")
    return html.unescape(text).strip()


def _domain_of(url: str) -> str:
    match = _DOMAIN_RE.match(url)
    return match.group(1) if match else "source"


def normalize_links_to_domains(text: str) -> str:
    """
    Replace links with their plain domain.

    ``[label](https://sub.example.com/a?b)`` and ``https://sub.example.com/a``
    both become ``(sub.example.com)``.
    """
    s = _MD_LINK_RE.sub(lambda m: f"({_domain_of(m.group(2))})", text)
    s = _URL_RE.sub(lambda m: f"({_domain_of(m.group(0))})", s)
    s = s.replace("（", "(").replace("）", ")")
    s = "\n".join(_HSPACE_RE.sub(" ", line).strip() for line in s.splitlines())
    return s.strip()


def fit_for_mastodon_plain(text: str, limit: int) -> str:
    """
    Fit text into a Mastodon post of at most ``limit`` characters.

    Links are normalized first. If the text is still too long, whole
    lines are kept while they fit; a single over-long line is cut and
    ends with an ellipsis.
    """
    if limit <= 0:
        return ""

    s = normalize_links_to_domains(text)
    if len(s) <= limit:
        return s

    kept = ""
    for line in s.splitlines():
        tentative = line if not kept else f"{kept}\n{line}"
        if len(tentative) > limit:
            break
        kept = tentative
    if kept:
        return kept

    return s[: limit - 1] + ELLIPSIS
