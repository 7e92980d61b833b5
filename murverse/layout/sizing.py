from __future__ import annotations

"""
Estimate a fragment card's grid footprint and font scale from its text.

Design intent:
- Keep estimation a pure function of (content, note, tags, direction, relevance).
- Keep the deterministic direction decision separate from the randomized
  display variant; only the deterministic one may reach persisted layout.
"""

import math
import random
import re
from dataclasses import dataclass
from typing import Sequence

from murverse.layout.models import Direction, FragmentFootprint

BASE_FONT_SIZE = 14
FONT_SIZE_SPREAD = 6
BASE_CHARS_PER_LINE = 18
NOTE_LINE_WEIGHT = 0.9
TAGS_PER_ROW = 3
STACK_PADDING_CELLS = 2.0
SPAN_PADDING_CELLS = 2.0
MIN_TEXT_SPAN_CELLS = 10.0
CHAR_SPAN_CELLS = 0.6

DEFAULT_MAX_CONTENT_LENGTH = 100
DEFAULT_MAX_NOTE_LENGTH = 500
TRUNCATION_SUFFIX = "......"

_LATIN_RE = re.compile(r"[a-zA-Z]")
_DIGIT_RE = re.compile(r"[0-9]")
_CODE_PUNCT_RE = re.compile(r"[{}\[\]()=;:]")
_CJK_ONLY_RE = re.compile(r"^[\u4e00-\u9fa5\u3040-\u30ff\s]+$")


@dataclass(frozen=True)
class SizeEstimate:
    direction: Direction
    font_size: int
    footprint: FragmentFootprint


def truncate_text(text: str, max_length: int) -> str:
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[:max_length] + TRUNCATION_SUFFIX


def _forces_horizontal(full_text: str) -> bool:
    return bool(
        _LATIN_RE.search(full_text)
        or _DIGIT_RE.search(full_text)
        or _CODE_PUNCT_RE.search(full_text)
    )


def decide_direction(content: str, note: str | None = None, *, vertical_cjk: bool = False) -> Direction:
    """Layout direction used for anything that is persisted.

    Pure CJK/Kana text turns vertical only when ``vertical_cjk`` is set, so the
    answer depends on the text alone.
    """
    full_text = f"{content or ''} {note or ''}"
    if _forces_horizontal(full_text):
        return "horizontal"
    if vertical_cjk and full_text.strip() and _CJK_ONLY_RE.match(full_text):
        return "vertical"
    return "horizontal"


def decide_display_direction(
    content: str,
    note: str | None = None,
    *,
    rng: random.Random | None = None,
    vertical_probability: float = 0.3,
) -> Direction:
    """On-screen hint only. Never feed the result into planning or storage."""
    full_text = f"{content or ''} {note or ''}"
    if _forces_horizontal(full_text):
        return "horizontal"
    if full_text.strip() and _CJK_ONLY_RE.match(full_text):
        draw = (rng or random).random()
        return "vertical" if draw < vertical_probability else "horizontal"
    return "horizontal"


def calculate_font_size(relevance: float = 0.0) -> int:
    clamped = min(1.0, max(0.0, float(relevance or 0.0)))
    return int(math.floor(BASE_FONT_SIZE + clamped * FONT_SIZE_SPREAD))


def _chars_per_line(font_size: int) -> int:
    return int(math.ceil(BASE_CHARS_PER_LINE / (font_size / BASE_FONT_SIZE)))


def estimate_footprint(
    content: str,
    note: str | None,
    tags: Sequence[str],
    direction: Direction,
    font_size: int,
    *,
    max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH,
    max_note_length: int = DEFAULT_MAX_NOTE_LENGTH,
) -> FragmentFootprint:
    content_text = truncate_text(content or "", max_content_length)
    note_text = truncate_text(note or "", max_note_length)
    font_factor = font_size / BASE_FONT_SIZE
    per_line = _chars_per_line(font_size)

    content_lines = max(1, math.ceil(len(content_text) / per_line))
    note_lines = math.ceil(len(note_text) / per_line) if note_text else 0
    tag_rows = math.ceil(len(tags) / TAGS_PER_ROW)

    # "stack" grows with line count, "span" with line length. Horizontal cards
    # stack rows downward; vertical cards stack columns sideways.
    stack = content_lines + NOTE_LINE_WEIGHT * note_lines + tag_rows + STACK_PADDING_CELLS
    longest_line = min(per_line, max(len(content_text), len(note_text)))
    span = max(MIN_TEXT_SPAN_CELLS, longest_line * CHAR_SPAN_CELLS * font_factor) + SPAN_PADDING_CELLS

    if direction == "vertical":
        width, height = stack, span
    else:
        width, height = span, stack
    return FragmentFootprint(
        width=max(1, int(math.ceil(width))),
        height=max(1, int(math.ceil(height))),
    )


def estimate_size(
    content: str,
    note: str | None,
    tags: Sequence[str],
    *,
    relevance: float = 0.0,
    direction: Direction | None = None,
    vertical_cjk: bool = False,
    max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH,
    max_note_length: int = DEFAULT_MAX_NOTE_LENGTH,
) -> SizeEstimate:
    resolved_direction = direction or decide_direction(content, note, vertical_cjk=vertical_cjk)
    font_size = calculate_font_size(relevance)
    footprint = estimate_footprint(
        content,
        note,
        tags,
        resolved_direction,
        font_size,
        max_content_length=max_content_length,
        max_note_length=max_note_length,
    )
    return SizeEstimate(direction=resolved_direction, font_size=font_size, footprint=footprint)
