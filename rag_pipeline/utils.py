"""Utility helpers for hashing, HTML extraction, and text chunking.

This module provides:
- content_hash: SHA-256 hex digest of document content (caller-side dedup)
- validate_chunking / chunk_text: fixed-size character sliding windows with overlap
- make_snippet: short citation excerpt of a chunk
- html_to_text: HTML to plain text using BeautifulSoup
"""
import hashlib
import re
from typing import List

from bs4 import BeautifulSoup
from bs4.element import Tag

from rag_pipeline.errors import ValidationError

MAX_CHUNK_SIZE = 10000
SNIPPET_CHARS = 300


def content_hash(content: str) -> str:
    """Compute the SHA-256 hex digest of document content.

    Args:
        content: Raw document text.

    Returns:
        str: 64-char hex digest.
    """
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def validate_chunking(chunk_size: int, overlap: int) -> None:
    """Reject chunking parameters that cannot produce a terminating window walk.

    Raises:
        ValidationError: if chunk_size is outside 1..MAX_CHUNK_SIZE, overlap is
            negative, or overlap >= chunk_size.
    """
    if not isinstance(chunk_size, int) or isinstance(chunk_size, bool):
        raise ValidationError("chunk_size must be an integer")
    if not isinstance(overlap, int) or isinstance(overlap, bool):
        raise ValidationError("chunk_overlap must be an integer")
    if chunk_size < 1 or chunk_size > MAX_CHUNK_SIZE:
        raise ValidationError(f"chunk_size must be between 1 and {MAX_CHUNK_SIZE}")
    if overlap < 0:
        raise ValidationError("chunk_overlap must not be negative")
    if overlap >= chunk_size:
        raise ValidationError(
            f"chunk_overlap ({overlap}) must be smaller than chunk_size ({chunk_size})"
        )


def chunk_text(text: str, chunk_size: int, overlap: int) -> List[str]:
    """Split text into fixed-size character windows with overlap.

    Window i starts at i * (chunk_size - overlap) and spans chunk_size characters; the
    walk stops once a window would start at or past the end of the text. Each window is
    trimmed and whitespace-only windows are dropped, so list positions (the chunk
    ordinals) stay contiguous.

    Args:
        text: Input string to split.
        chunk_size: Window size in characters.
        overlap: Characters shared by consecutive windows.

    Returns:
        List[str]: Non-empty trimmed chunks, in document order.

    Raises:
        ValidationError: for invalid chunk_size/overlap, before any chunking.
    """
    validate_chunking(chunk_size, overlap)
    if not text:
        return []
    step = chunk_size - overlap
    chunks: List[str] = []
    for start in range(0, len(text), step):
        window = text[start:start + chunk_size].strip()
        if window:
            chunks.append(window)
    return chunks


def make_snippet(content: str, limit: int = SNIPPET_CHARS) -> str:
    """Collapse whitespace and cut content to a short citation excerpt."""
    s = re.sub(r"\s+", " ", content or "").strip()
    if len(s) > limit:
        s = s[:limit].rstrip() + "..."
    return s


def html_to_text(html: str) -> str:
    """Convert HTML into plain text, one paragraph-like block per line.

    Headings (h1..h4) and paragraph-like elements are kept in document order; script
    and style content is removed. If no structure is detected, falls back to the whole
    page text.

    Args:
        html: Raw HTML string.

    Returns:
        str: Extracted text.
    """
    soup = BeautifulSoup(html, "lxml")

    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()

    blocks: List[str] = []
    root = soup.body if soup.body else soup
    for el in root.descendants:
        if isinstance(el, Tag) and el.name in ["h1", "h2", "h3", "h4", "p", "li", "td", "pre"]:
            txt = re.sub(r"\s+", " ", el.get_text(" ", strip=True)).strip()
            if txt:
                blocks.append(txt)

    if not blocks:
        text = re.sub(r"\s+", " ", soup.get_text(" ", strip=True)).strip()
        return text
    return "\n".join(blocks)


def page_title(html: str) -> str:
    """Return the <title> text of an HTML page, or an empty string."""
    soup = BeautifulSoup(html, "lxml")
    if soup.title and soup.title.string:
        return soup.title.string.strip()[:500]
    return ""
