"""Slide geometry and palette shared by both thumbnail backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from PIL import ImageColor

GRADIENT_TOP_COLOR = "#FF6B6B"
GRADIENT_BOTTOM_COLOR = "#FF8E53"
PANEL_COLOR = "#FFFFFF"
PLACEHOLDER_TEXT_COLOR = "#666666"
BADGE_COLOR = "#FFD700"
BADGE_TEXT_COLOR = "#000000"
NAME_COLOR = "#FFFFFF"
PRICE_COLOR = "#FFD700"
HOT_LABEL_COLOR = "#FF0000"
SOLD_COLOR = "#FFFFFF"

PLACEHOLDER_TEXT = "Product Image"
HOT_LABEL_TEXT = "HOT DEAL"
SOLD_FALLBACK_TEXT = "0 sold"

PANEL_LEFT_RATIO = 0.2
PANEL_TOP_RATIO = 0.15
PANEL_WIDTH_RATIO = 0.6
PANEL_HEIGHT_RATIO = 0.4
PANEL_CORNER_RADIUS = 20
PLACEHOLDER_TEXT_Y_RATIO = 0.35

BADGE_CENTER = (100, 100)
BADGE_RADIUS = 50

NAME_Y_RATIO = 0.65
NAME_MAX_WIDTH_RATIO = 0.9
NAME_LINE_HEIGHT = 60

RICH_PRICE_Y_RATIO = 0.85
RICH_HOT_LABEL_Y_RATIO = 0.92
SIMPLE_PRICE_Y_RATIO = 0.75
SIMPLE_HOT_LABEL_Y_RATIO = 0.85
SIMPLE_SOLD_Y_RATIO = 0.92


@dataclass(frozen=True)
class SlideLayout:
    """Pixel positions of every slide element for one frame size."""

    width: int
    height: int
    panel_box: Tuple[int, int, int, int]
    image_box: Tuple[int, int, int, int]
    badge_box: Tuple[int, int, int, int]
    center_x: float
    placeholder_text_y: float
    name_y: float
    name_max_width: float
    line_height: int

    def y_at(self, ratio: float) -> float:
        return self.height * ratio


def compute_slide_layout(width: int, height: int) -> SlideLayout:
    """Resolve fractional anchors into pixel boxes."""
    panel_left = int(round(width * PANEL_LEFT_RATIO))
    panel_top = int(round(height * PANEL_TOP_RATIO))
    panel_right = int(round(width * (PANEL_LEFT_RATIO + PANEL_WIDTH_RATIO)))
    panel_bottom = int(round(height * (PANEL_TOP_RATIO + PANEL_HEIGHT_RATIO)))

    image_size = int(min(width * PANEL_WIDTH_RATIO, height * PANEL_HEIGHT_RATIO))
    image_left = int(round((width - image_size) / 2.0))
    image_box = (image_left, panel_top, image_left + image_size, panel_top + image_size)

    badge_x, badge_y = BADGE_CENTER
    badge_box = (
        badge_x - BADGE_RADIUS,
        badge_y - BADGE_RADIUS,
        badge_x + BADGE_RADIUS,
        badge_y + BADGE_RADIUS,
    )
    return SlideLayout(
        width=width,
        height=height,
        panel_box=(panel_left, panel_top, panel_right, panel_bottom),
        image_box=image_box,
        badge_box=badge_box,
        center_x=width / 2.0,
        placeholder_text_y=height * PLACEHOLDER_TEXT_Y_RATIO,
        name_y=height * NAME_Y_RATIO,
        name_max_width=width * NAME_MAX_WIDTH_RATIO,
        line_height=NAME_LINE_HEIGHT,
    )


def parse_color_rgba(color_value: str) -> Tuple[int, int, int, int]:
    """Convert a hex or CSS color name into an RGBA tuple."""
    rgb = ImageColor.getrgb(color_value)
    if len(rgb) == 4:
        return rgb
    return (rgb[0], rgb[1], rgb[2], 255)


def rank_label(rank_index: int) -> str:
    """Badge text for a 0-based rank index."""
    return f"#{rank_index + 1}"
