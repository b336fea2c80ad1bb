"""Paragraph classification and keyword extraction for semantic chunking.

Classification is an ordered rule table: the first rule whose predicate
holds decides the paragraph kind. Headings are tested before lists, so a
short unpunctuated "1. Overview" line is a heading, not a list item.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable

# Sentence-final punctuation (CJK and ASCII).
SENTENCE_ENDINGS = "。！？.!?"

_MAX_HEADING_LENGTH = 100

_HEADING_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^第[一二三四五六七八九十百千万\d]+[章节部分篇].*"),  # 第一章 / 第1节
    re.compile(r"^[一二三四五六七八九十]+[、.．].*"),                 # 一、概述
    re.compile(r"^[（(][一二三四五六七八九十\d]+[）)].*"),             # (一) / (1)
    re.compile(r"^\d+[、.．]\d*[、.．]?.*"),                          # 1、 / 1.1
    re.compile(r"^[【\[].*[】\]]$"),                                  # 【Title】 / [Title]
    re.compile(r"^#+\s+.*"),                                         # markdown
    re.compile(r"^Chapter\s+\d+.*", re.IGNORECASE),
    re.compile(r"^Section\s+\d+.*", re.IGNORECASE),
    re.compile(r"^\d+\.\d*\.?\d*\s+[A-Z].*"),                        # 1.1 Title
    re.compile(r"^[A-Z]\.\s+\S.*"),                                  # A. Title
    re.compile(r"^[A-Z][A-Z\s]+$"),                                  # ALL CAPS TITLE
    re.compile(r"^[IVXLCDM]+\.\s+.*"),                               # IV. Title
)

_LIST_ITEM_RE = re.compile(r"^[•●○◆◇▪▫\-*]\s+.*|^\d+[.、)）]\s+.*")
_MARKDOWN_HEADING_RE = re.compile(r"^#+\s*")
_KEYWORD_SPLIT_RE = re.compile(r"[\s,.!?;:，。！？；：、]+")

_TOPIC_CHANGE_WORDS_RE = re.compile(
    r"^(?:however|moreover|furthermore|in contrast|therefore|thus|"
    r"in conclusion|firstly|secondly)\b",
    re.IGNORECASE,
)
_TOPIC_CHANGE_PREFIXES: tuple[str, ...] = (
    "另外", "此外", "其次", "然而", "但是", "不过", "相反",
    "总之", "综上", "因此", "所以", "由此可见",
    "首先", "最后", "第一", "第二",
)


class ParagraphKind(str, Enum):
    HEADING = "heading"
    LIST = "list"
    TABLE = "table"
    CONTENT = "content"


@dataclass(frozen=True)
class Paragraph:
    """A paragraph annotated for grouping decisions."""

    text: str
    kind: ParagraphKind
    keywords: frozenset[str]

    @property
    def is_heading(self) -> bool:
        return self.kind is ParagraphKind.HEADING

    @property
    def is_list(self) -> bool:
        return self.kind is ParagraphKind.LIST


# ------------------------------------------------------------------
# Rule predicates
# ------------------------------------------------------------------


def looks_like_heading(text: str) -> bool:
    """Short, single-line, unpunctuated text matching a heading pattern."""
    stripped = text.strip()
    if not stripped or "\n" in stripped:
        return False
    if len(stripped) >= _MAX_HEADING_LENGTH:
        return False
    if stripped[-1] in SENTENCE_ENDINGS:
        return False
    return any(p.fullmatch(stripped) for p in _HEADING_PATTERNS)


def looks_like_list(text: str) -> bool:
    """Every non-blank line is a bullet or numbered list item."""
    lines = [line.strip() for line in text.strip().splitlines() if line.strip()]
    return bool(lines) and all(_LIST_ITEM_RE.fullmatch(line) for line in lines)


def looks_like_table(text: str) -> bool:
    """Two or more lines, each split into columns by pipes or tabs."""
    lines = [line.strip() for line in text.strip().splitlines() if line.strip()]
    if len(lines) < 2:
        return False
    return all(line.count("|") >= 2 or "\t" in line for line in lines)


_Rule = tuple[Callable[[str], bool], ParagraphKind]


def classify_paragraph(text: str, detect_headings: bool = True) -> ParagraphKind:
    """Return the kind of *text* from the first matching rule.

    Args:
        text: A single paragraph (no blank lines inside).
        detect_headings: When False the heading rule is skipped entirely.
    """
    rules: list[_Rule] = []
    if detect_headings:
        rules.append((looks_like_heading, ParagraphKind.HEADING))
    rules.append((looks_like_list, ParagraphKind.LIST))
    rules.append((looks_like_table, ParagraphKind.TABLE))

    for predicate, kind in rules:
        if predicate(text):
            return kind
    return ParagraphKind.CONTENT


# ------------------------------------------------------------------
# Keywords and topic boundaries
# ------------------------------------------------------------------


def extract_keywords(text: str) -> frozenset[str]:
    """Lowercase tokens of length >= 2, split on whitespace and punctuation."""
    return frozenset(t for t in _KEYWORD_SPLIT_RE.split(text.lower()) if len(t) >= 2)


def jaccard_similarity(a: frozenset[str], b: frozenset[str]) -> float:
    """|a ∩ b| / |a ∪ b|; 0.0 when either set is empty."""
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def opens_with_topic_change(text: str) -> bool:
    """True if *text* starts with a discourse marker that signals a new topic."""
    stripped = text.lstrip()
    return bool(_TOPIC_CHANGE_WORDS_RE.match(stripped)) or stripped.startswith(
        _TOPIC_CHANGE_PREFIXES
    )


def heading_title(text: str) -> str:
    """Heading text without markdown markers, e.g. '# Introduction' -> 'Introduction'."""
    return _MARKDOWN_HEADING_RE.sub("", text.strip()).strip()


def annotate(text: str, detect_headings: bool = True) -> Paragraph:
    return Paragraph(
        text=text,
        kind=classify_paragraph(text, detect_headings=detect_headings),
        keywords=extract_keywords(text),
    )
