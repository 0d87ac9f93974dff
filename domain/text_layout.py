"""Greedy word wrapping for slide captions."""

from __future__ import annotations

from typing import Callable, Tuple

MAX_WRAPPED_LINES = 3
AVERAGE_GLYPH_WIDTH_RATIO = 0.55


def estimate_text_width(text_value: str, font_size_px: int) -> float:
    """Estimate rendered width from the character count and font size."""
    return len(text_value) * font_size_px * AVERAGE_GLYPH_WIDTH_RATIO


def wrap_text(
    text_value: str,
    max_pixel_width: float,
    font_size_px: int,
    measure: Callable[[str], float] | None = None,
    max_lines: int = MAX_WRAPPED_LINES,
) -> Tuple[str, ...]:
    """Pack words into lines no wider than max_pixel_width.

    A word that alone exceeds the bound still gets its own line. Lines past
    max_lines are dropped without an ellipsis.
    """
    if measure is None:
        measure = lambda candidate: estimate_text_width(candidate, font_size_px)

    lines: list[str] = []
    current_line = ""
    for word in text_value.split():
        candidate = f"{current_line} {word}" if current_line else word
        if measure(candidate) > max_pixel_width and current_line:
            lines.append(current_line)
            current_line = word
        else:
            current_line = candidate

    if current_line:
        lines.append(current_line)

    return tuple(lines[:max_lines])
