"""Plain-text helpers for conversation titles and previews."""
import re
from typing import Optional

from config import DEFAULT_TITLE, TITLE_PREVIEW_CHARS

_FENCED_CODE = re.compile(r"```[^\n]*\n?(.*?)```", re.DOTALL)
_INLINE_CODE = re.compile(r"`([^`]*)`")
_IMAGE = re.compile(r"!\[([^\]]*)\]\([^)]*\)")
_LINK = re.compile(r"\[([^\]]*)\]\([^)]*\)")
_HEADING = re.compile(r"^\s{0,3}#{1,6}\s+", re.MULTILINE)
_BLOCKQUOTE = re.compile(r"^\s{0,3}>\s?", re.MULTILINE)
_LIST_MARKER = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+", re.MULTILINE)
_HORIZONTAL_RULE = re.compile(r"^\s*(?:[-*_]\s*){3,}$", re.MULTILINE)
_EMPHASIS = re.compile(r"(?<!\w)(\*\*|__|\*|_|~~)(?=\S)(.+?)(?<=\S)\1(?!\w)")
_WHITESPACE = re.compile(r"\s+")


def strip_markdown(text: str) -> str:
    """
    Reduce Markdown to plain text on a single line.

    Code fences keep their body, links and images keep their label, and
    heading, quote, list and emphasis markers are dropped.

    Args:
        text: Markdown source

    Returns:
        Plain text with whitespace collapsed to single spaces
    """
    if not text:
        return ""

    plain = _FENCED_CODE.sub(r"\1", text)
    plain = _INLINE_CODE.sub(r"\1", plain)
    plain = _IMAGE.sub(r"\1", plain)
    plain = _LINK.sub(r"\1", plain)
    plain = _HORIZONTAL_RULE.sub("", plain)
    plain = _HEADING.sub("", plain)
    plain = _BLOCKQUOTE.sub("", plain)
    plain = _LIST_MARKER.sub("", plain)
    plain = _EMPHASIS.sub(r"\2", plain)

    return _WHITESPACE.sub(" ", plain).strip()


def first_word(text: str) -> str:
    """Return the leading whitespace-delimited token of the plain text."""
    words = strip_markdown(text).split(" ", 1)
    return words[0]


def truncate(text: str, limit: int) -> str:
    """Shorten plain text to ``limit`` characters, marking the cut with ``...``."""
    plain = strip_markdown(text)
    if len(plain) <= limit:
        return plain
    return plain[:limit] + "..."


def derive_title(messages, fallback: Optional[str] = None) -> str:
    """
    Title shown for a conversation.

    The leading word of the first message, else ``fallback`` (an explicit
    title given at creation), else the default title.
    """
    if messages:
        word = first_word(messages[0].content)
        if word:
            return word
    return fallback or DEFAULT_TITLE


def derive_preview(messages) -> str:
    """First characters of the first message, or the default title."""
    if messages:
        preview = truncate(messages[0].content, TITLE_PREVIEW_CHARS)
        if preview:
            return preview
    return DEFAULT_TITLE
