"""Simple thumbnail backend: a declarative slide document rasterized in one pass.

The slide is described as a tuple of immutable elements (gradient, rounded
rectangle, circle, text) with every coordinate already resolved to pixels.
Rasterizing walks the tuple once, back to front. No network I/O happens here:
the product photo is always represented by the placeholder panel, so the only
failure mode is rasterization itself.
"""

from __future__ import annotations

from dataclasses import dataclass
import io
from typing import Dict, Tuple, Union

from PIL import Image, ImageDraw, ImageFont

from domain.product_video import (
    NAME_CHARACTER_BUDGET,
    Product,
    Thumbnail,
    VideoConfig,
    truncate_text,
)
from service.thumbnail_layout import (
    BADGE_COLOR,
    BADGE_TEXT_COLOR,
    GRADIENT_BOTTOM_COLOR,
    GRADIENT_TOP_COLOR,
    HOT_LABEL_COLOR,
    HOT_LABEL_TEXT,
    NAME_COLOR,
    PANEL_COLOR,
    PANEL_CORNER_RADIUS,
    PLACEHOLDER_TEXT,
    PLACEHOLDER_TEXT_COLOR,
    PRICE_COLOR,
    SIMPLE_HOT_LABEL_Y_RATIO,
    SIMPLE_PRICE_Y_RATIO,
    SIMPLE_SOLD_Y_RATIO,
    SOLD_COLOR,
    SOLD_FALLBACK_TEXT,
    compute_slide_layout,
    parse_color_rgba,
    rank_label,
)

RASTERIZE_CODE = "render_product_video.render.rasterize_failed"

BACKEND_NAME = "simple"
BADGE_FONT_SIZE = 36
PLACEHOLDER_FONT_SIZE = 32
NAME_FONT_SIZE = 36
PRICE_FONT_SIZE = 48
HOT_LABEL_FONT_SIZE = 32
SOLD_FONT_SIZE = 28

Color = Tuple[int, int, int, int]


class RasterizeError(RuntimeError):
    """Slide document could not be rasterized."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class VerticalGradient:
    """Full-frame top-to-bottom fill."""

    top: Color
    bottom: Color


@dataclass(frozen=True)
class RoundedRect:
    box: Tuple[int, int, int, int]
    radius: int
    fill: Color


@dataclass(frozen=True)
class Circle:
    center: Tuple[int, int]
    radius: int
    fill: Color


@dataclass(frozen=True)
class TextElement:
    """Horizontally centered text sitting on a baseline."""

    x: float
    y: float
    text: str
    size: int
    fill: Color


SlideElement = Union[VerticalGradient, RoundedRect, Circle, TextElement]


@dataclass(frozen=True)
class SlideDocument:
    """Ordered slide elements, back to front."""

    width: int
    height: int
    elements: Tuple[SlideElement, ...]


def sold_text(product: Product) -> str:
    return product.sold.strip() or SOLD_FALLBACK_TEXT


def build_slide_document(
    product: Product, rank_index: int, config: VideoConfig
) -> SlideDocument:
    """Compose the declarative slide for one product."""
    layout = compute_slide_layout(config.width, config.height)
    badge_x = (layout.badge_box[0] + layout.badge_box[2]) // 2
    badge_y = (layout.badge_box[1] + layout.badge_box[3]) // 2
    badge_radius = (layout.badge_box[2] - layout.badge_box[0]) // 2
    center_x = layout.center_x
    elements: Tuple[SlideElement, ...] = (
        VerticalGradient(
            top=parse_color_rgba(GRADIENT_TOP_COLOR),
            bottom=parse_color_rgba(GRADIENT_BOTTOM_COLOR),
        ),
        Circle(
            center=(badge_x, badge_y),
            radius=badge_radius,
            fill=parse_color_rgba(BADGE_COLOR),
        ),
        TextElement(
            x=badge_x,
            y=badge_y + 15,
            text=rank_label(rank_index),
            size=BADGE_FONT_SIZE,
            fill=parse_color_rgba(BADGE_TEXT_COLOR),
        ),
        RoundedRect(
            box=layout.panel_box,
            radius=PANEL_CORNER_RADIUS,
            fill=parse_color_rgba(PANEL_COLOR),
        ),
        TextElement(
            x=center_x,
            y=layout.placeholder_text_y,
            text=PLACEHOLDER_TEXT,
            size=PLACEHOLDER_FONT_SIZE,
            fill=parse_color_rgba(PLACEHOLDER_TEXT_COLOR),
        ),
        TextElement(
            x=center_x,
            y=layout.name_y,
            text=truncate_text(product.name, NAME_CHARACTER_BUDGET),
            size=NAME_FONT_SIZE,
            fill=parse_color_rgba(NAME_COLOR),
        ),
        TextElement(
            x=center_x,
            y=layout.y_at(SIMPLE_PRICE_Y_RATIO),
            text=product.price,
            size=PRICE_FONT_SIZE,
            fill=parse_color_rgba(PRICE_COLOR),
        ),
        TextElement(
            x=center_x,
            y=layout.y_at(SIMPLE_HOT_LABEL_Y_RATIO),
            text=HOT_LABEL_TEXT,
            size=HOT_LABEL_FONT_SIZE,
            fill=parse_color_rgba(HOT_LABEL_COLOR),
        ),
        TextElement(
            x=center_x,
            y=layout.y_at(SIMPLE_SOLD_Y_RATIO),
            text=sold_text(product),
            size=SOLD_FONT_SIZE,
            fill=parse_color_rgba(SOLD_COLOR),
        ),
    )
    return SlideDocument(width=config.width, height=config.height, elements=elements)


def paint_vertical_gradient(image: Image.Image, element: VerticalGradient) -> None:
    """Fill the image row by row between the two stop colors."""
    draw_context = ImageDraw.Draw(image)
    last_row = max(1, image.height - 1)
    for row in range(image.height):
        ratio = row / last_row
        color = tuple(
            int(round(top + (bottom - top) * ratio))
            for top, bottom in zip(element.top, element.bottom)
        )
        draw_context.line([(0, row), (image.width, row)], fill=color)


class SlideRasterizer:
    """Rasterizes slide documents with Pillow's bundled font."""

    def __init__(self) -> None:
        self._font_cache: Dict[int, ImageFont.ImageFont | ImageFont.FreeTypeFont] = {}

    def font(self, size: int) -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
        cached = self._font_cache.get(size)
        if cached is not None:
            return cached
        font = ImageFont.load_default(size=size)
        self._font_cache[size] = font
        return font

    def rasterize(self, document: SlideDocument) -> bytes:
        """Paint every element and return PNG bytes."""
        try:
            image = Image.new("RGBA", (document.width, document.height))
            draw_context = ImageDraw.Draw(image)
            for element in document.elements:
                self._paint(image, draw_context, element)
            buffer = io.BytesIO()
            image.convert("RGB").save(buffer, format="PNG")
        except RasterizeError:
            raise
        except Exception as exc:
            raise RasterizeError(
                RASTERIZE_CODE, f"failed to rasterize slide: {exc}"
            ) from exc
        return buffer.getvalue()

    def _paint(
        self,
        image: Image.Image,
        draw_context: ImageDraw.ImageDraw,
        element: SlideElement,
    ) -> None:
        if isinstance(element, VerticalGradient):
            paint_vertical_gradient(image, element)
        elif isinstance(element, RoundedRect):
            draw_context.rounded_rectangle(
                element.box, radius=element.radius, fill=element.fill
            )
        elif isinstance(element, Circle):
            center_x, center_y = element.center
            draw_context.ellipse(
                (
                    center_x - element.radius,
                    center_y - element.radius,
                    center_x + element.radius,
                    center_y + element.radius,
                ),
                fill=element.fill,
            )
        elif isinstance(element, TextElement):
            self._paint_text(draw_context, element)
        else:
            raise RasterizeError(
                RASTERIZE_CODE, f"unsupported slide element: {type(element).__name__}"
            )

    def _paint_text(
        self, draw_context: ImageDraw.ImageDraw, element: TextElement
    ) -> None:
        if not element.text:
            return
        font = self.font(element.size)
        if isinstance(font, ImageFont.FreeTypeFont):
            draw_context.text(
                (element.x, element.y),
                element.text,
                font=font,
                fill=element.fill,
                anchor="ms",
            )
            return
        # bitmap fonts take no anchor; center on the measured box above the baseline
        left, top, right, bottom = draw_context.textbbox((0, 0), element.text, font=font)
        origin_x = element.x - (right - left) / 2.0
        origin_y = element.y - (bottom - top)
        draw_context.text((origin_x, origin_y), element.text, font=font, fill=element.fill)


class SimpleThumbnailRenderer:
    """Renders slides from declarative documents; never touches the network."""

    name = BACKEND_NAME

    def __init__(self, config: VideoConfig) -> None:
        self._config = config
        self._rasterizer = SlideRasterizer()

    def init(self) -> None:
        """Nothing to acquire; kept for interface parity with the rich backend."""

    def render(self, product: Product, rank_index: int) -> Thumbnail:
        document = build_slide_document(product, rank_index, self._config)
        return Thumbnail(
            rank=rank_index + 1,
            width=self._config.width,
            height=self._config.height,
            png_bytes=self._rasterizer.rasterize(document),
        )
