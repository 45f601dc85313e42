"""Text normalization utilities for ja/en conversation data and keywords.

Handles Unicode width folding, whitespace, punctuation and markup.
"""
from __future__ import annotations

import re
import unicodedata


def normalize_line_whitespace(text: str) -> str:
    """Collapse runs of spaces/tabs inside lines and drop blank-line runs, keeping newlines."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [re.sub(r"[ \t　]+", " ", line).strip() for line in text.split("\n")]
    text = "\n".join(lines)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def normalize_punctuation(text: str) -> str:
    """Normalize common punctuation variations."""
    # Replace smart quotes
    text = text.replace("“", '"').replace("”", '"')
    text = text.replace("‘", "'").replace("’", "'")

    # Normalize dashes
    text = text.replace("–", "-").replace("—", "-")

    # Remove excessive punctuation
    text = re.sub(r"([!?.。！？]){2,}", r"\1", text)

    return text


def clean_html(text: str) -> str:
    """Remove HTML tags from text."""
    return re.sub(r"<[^>]+>", "", text)


def normalize_conversation(text: str, *, clean_html_tags: bool = True) -> str:
    """Normalize a conversation transcript before extraction.

    Line structure is preserved so speaker/timestamp prefixes stay intact.
    """
    if not text or not text.strip():
        return ""

    if clean_html_tags:
        text = clean_html(text)

    # NFKC folds full-width ASCII and half-width katakana
    text = unicodedata.normalize("NFKC", text)
    text = normalize_punctuation(text)
    return normalize_line_whitespace(text)


def normalize_keyword(keyword: str) -> str:
    """Case- and width-insensitive form of a keyword for matching."""
    keyword = unicodedata.normalize("NFKC", keyword or "")
    return re.sub(r"\s+", " ", keyword).strip().casefold()
