"""Rich thumbnail backend: incremental Pillow drawing with remote product photos."""

from __future__ import annotations

from dataclasses import dataclass
import io
import logging
import os
from typing import Callable, Sequence, Tuple
from urllib.parse import urlparse
from urllib.request import url2pathname

import httpx
import numpy as np
from PIL import Image, ImageDraw, ImageFont, ImageOps

from domain.product_video import Product, Thumbnail, VideoConfig
from domain.text_layout import wrap_text
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
    RICH_HOT_LABEL_Y_RATIO,
    RICH_PRICE_Y_RATIO,
    SlideLayout,
    compute_slide_layout,
    parse_color_rgba,
    rank_label,
)

LOGGER = logging.getLogger("render_product_video.rich")

CAPABILITY_CODE = "render_product_video.capability.unavailable"
FONT_DIR_CODE = "render_product_video.capability.fonts_missing"
FONT_LOAD_CODE = "render_product_video.capability.fonts_unloadable"
ASSET_FETCH_CODE = "render_product_video.asset.fetch_failed"
ASSET_TIMEOUT_CODE = "render_product_video.asset.timeout"
ASSET_DECODE_CODE = "render_product_video.asset.decode_failed"
ASSET_SCHEME_CODE = "render_product_video.asset.unsupported_uri"

BACKEND_NAME = "rich"
DEFAULT_IMAGE_TIMEOUT_SECONDS = 10.0
DITHER_SEED = 7
PLACEHOLDER_FONT_SIZE = 32
BADGE_FONT_SIZE = 36
NAME_FONT_SIZE = 48
PRICE_FONT_SIZE = 54
HOT_LABEL_FONT_SIZE = 32
HTTP_SCHEMES = ("http", "https")


class CapabilityError(RuntimeError):
    """Rich backend cannot be initialized."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class AssetFetchError(RuntimeError):
    """Product image could not be fetched or decoded."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class RichFonts:
    """Fonts used by the rich backend, one per slide element."""

    placeholder: ImageFont.FreeTypeFont
    badge: ImageFont.FreeTypeFont
    name: ImageFont.FreeTypeFont
    price: ImageFont.FreeTypeFont
    hot_label: ImageFont.FreeTypeFont


ImageFetcher = Callable[[str, float], Image.Image]


def decode_image_bytes(payload: bytes, source: str) -> Image.Image:
    """Decode image bytes into a fully loaded RGBA image."""
    try:
        image = Image.open(io.BytesIO(payload))
        image.load()
    except Exception as exc:
        raise AssetFetchError(
            ASSET_DECODE_CODE, f"cannot decode product image {source}: {exc}"
        ) from exc
    if image.mode != "RGBA":
        image = image.convert("RGBA")
    return image


def read_local_image(file_path: str) -> bytes:
    try:
        with open(file_path, "rb") as file_handle:
            return file_handle.read()
    except OSError as exc:
        raise AssetFetchError(
            ASSET_FETCH_CODE, f"cannot read product image {file_path}: {exc}"
        ) from exc


def fetch_product_image(uri: str, timeout_seconds: float) -> Image.Image:
    """Fetch a product image from http(s), file:// or a local path."""
    if not uri.strip():
        raise AssetFetchError(ASSET_FETCH_CODE, "product image URI is empty")
    try:
        parsed = urlparse(uri)
    except ValueError as exc:
        raise AssetFetchError(
            ASSET_SCHEME_CODE, f"malformed image URI {uri!r}: {exc}"
        ) from exc
    scheme = parsed.scheme.lower()
    if scheme in HTTP_SCHEMES:
        try:
            response = httpx.get(uri, timeout=timeout_seconds, follow_redirects=True)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise AssetFetchError(
                ASSET_TIMEOUT_CODE,
                f"product image timed out after {timeout_seconds}s: {uri}",
            ) from exc
        except httpx.HTTPError as exc:
            raise AssetFetchError(
                ASSET_FETCH_CODE, f"product image request failed: {exc}"
            ) from exc
        # httpx raises InvalidURL, and idna raises UnicodeError, before any request
        except (httpx.InvalidURL, ValueError) as exc:
            raise AssetFetchError(
                ASSET_FETCH_CODE, f"invalid product image URL {uri!r}: {exc}"
            ) from exc
        return decode_image_bytes(response.content, uri)
    if scheme == "file":
        return decode_image_bytes(read_local_image(url2pathname(parsed.path)), uri)
    if not scheme:
        return decode_image_bytes(read_local_image(uri), uri)
    raise AssetFetchError(ASSET_SCHEME_CODE, f"unsupported image URI: {uri}")


def build_vertical_gradient(
    top_rgb: Tuple[int, int, int],
    bottom_rgb: Tuple[int, int, int],
    width: int,
    height: int,
    seed: int = DITHER_SEED,
) -> Image.Image:
    """Build a dithered top-to-bottom gradient as an RGBA image."""
    gradient_array = np.zeros((height, width, 3), dtype=np.float32)
    top_color = np.array(top_rgb, dtype=np.float32)
    bottom_color = np.array(bottom_rgb, dtype=np.float32)

    ramp = np.linspace(0.0, 1.0, num=height, dtype=np.float32)[:, np.newaxis, np.newaxis]
    gradient_array[:, :, :] = (1.0 - ramp) * top_color + ramp * bottom_color

    # sub-1.0 noise hides 8-bit banding; fixed seed keeps frames reproducible
    rng = np.random.default_rng(seed)
    gradient_array += rng.random((height, width, 3), dtype=np.float32) - 0.5

    np.clip(gradient_array, 0, 255, out=gradient_array)
    return Image.fromarray(gradient_array.astype(np.uint8)).convert("RGBA")


def list_font_files(fonts_dir: str) -> list[str]:
    """List font files from the fonts directory."""
    if not os.path.isdir(fonts_dir):
        raise CapabilityError(
            FONT_DIR_CODE, f"fonts directory does not exist: {fonts_dir}"
        )

    font_files: list[str] = []
    for entry_name in sorted(os.listdir(fonts_dir)):
        lower_name = entry_name.lower()
        if lower_name.endswith(".ttf") or lower_name.endswith(".otf"):
            font_files.append(os.path.join(fonts_dir, entry_name))

    if not font_files:
        raise CapabilityError(FONT_DIR_CODE, f"no font files found in {fonts_dir}")
    return font_files


def select_bold_font(font_files: Sequence[str]) -> str:
    """Prefer a font whose file name marks it as bold."""
    for font_file_path in font_files:
        if "bold" in os.path.basename(font_file_path).lower():
            return font_file_path
    return font_files[0]


def select_regular_font(font_files: Sequence[str]) -> str:
    for font_file_path in font_files:
        if "bold" not in os.path.basename(font_file_path).lower():
            return font_file_path
    return font_files[0]


def load_font(font_file_path: str | None, size: int) -> ImageFont.FreeTypeFont:
    """Load a scalable font from a file, or Pillow's bundled one when None."""
    try:
        if font_file_path is None:
            font = ImageFont.load_default(size=size)
        else:
            font = ImageFont.truetype(font_file_path, size=size)
    except Exception as exc:
        raise CapabilityError(
            FONT_LOAD_CODE, f"failed to load font {font_file_path} at size {size}: {exc}"
        ) from exc
    if not isinstance(font, ImageFont.FreeTypeFont):
        raise CapabilityError(
            FONT_LOAD_CODE, "scalable fonts need Pillow built with FreeType"
        )
    return font


def load_rich_fonts(fonts_dir: str | None) -> RichFonts:
    """Load the font set from fonts_dir, or Pillow's bundled font."""
    if fonts_dir is None:
        regular_path: str | None = None
        bold_path: str | None = None
    else:
        font_files = list_font_files(fonts_dir)
        regular_path = select_regular_font(font_files)
        bold_path = select_bold_font(font_files)
    return RichFonts(
        placeholder=load_font(regular_path, PLACEHOLDER_FONT_SIZE),
        badge=load_font(bold_path, BADGE_FONT_SIZE),
        name=load_font(bold_path, NAME_FONT_SIZE),
        price=load_font(bold_path, PRICE_FONT_SIZE),
        hot_label=load_font(bold_path, HOT_LABEL_FONT_SIZE),
    )


def encode_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.convert("RGB").save(buffer, format="PNG")
    return buffer.getvalue()


class RichThumbnailRenderer:
    """Draws slides back to front on a gradient surface."""

    name = BACKEND_NAME

    def __init__(
        self,
        config: VideoConfig,
        fonts_dir: str | None = None,
        image_timeout_seconds: float = DEFAULT_IMAGE_TIMEOUT_SECONDS,
        fetch_image: ImageFetcher = fetch_product_image,
    ) -> None:
        self._config = config
        self._fonts_dir = fonts_dir
        self._image_timeout_seconds = image_timeout_seconds
        self._fetch_image = fetch_image
        self._layout: SlideLayout = compute_slide_layout(config.width, config.height)
        self._surface: Image.Image | None = None
        self._fonts: RichFonts | None = None

    @property
    def layout(self) -> SlideLayout:
        return self._layout

    def init(self) -> None:
        """Load fonts and build the background surface; raises CapabilityError."""
        self._fonts = load_rich_fonts(self._fonts_dir)
        top_rgb = parse_color_rgba(GRADIENT_TOP_COLOR)[:3]
        bottom_rgb = parse_color_rgba(GRADIENT_BOTTOM_COLOR)[:3]
        try:
            self._surface = build_vertical_gradient(
                top_rgb, bottom_rgb, self._config.width, self._config.height
            )
        except (MemoryError, ValueError) as exc:
            raise CapabilityError(
                CAPABILITY_CODE, f"cannot allocate drawing surface: {exc}"
            ) from exc

    def _ensure_ready(self) -> Tuple[Image.Image, RichFonts]:
        if self._surface is None or self._fonts is None:
            self.init()
        if self._surface is None or self._fonts is None:
            raise CapabilityError(CAPABILITY_CODE, "drawing surface unavailable")
        return self._surface, self._fonts

    def render(self, product: Product, rank_index: int) -> Thumbnail:
        """Render one product slide and return it PNG-encoded."""
        surface, fonts = self._ensure_ready()
        layout = self._layout
        frame_image = surface.copy()
        draw_context = ImageDraw.Draw(frame_image)

        self._draw_product_image(frame_image, draw_context, fonts, product)

        draw_context.ellipse(layout.badge_box, fill=parse_color_rgba(BADGE_COLOR))
        badge_x = (layout.badge_box[0] + layout.badge_box[2]) / 2.0
        badge_y = (layout.badge_box[1] + layout.badge_box[3]) / 2.0
        draw_context.text(
            (badge_x, badge_y),
            rank_label(rank_index),
            font=fonts.badge,
            fill=parse_color_rgba(BADGE_TEXT_COLOR),
            anchor="mm",
        )

        name_lines = wrap_text(
            product.name,
            layout.name_max_width,
            NAME_FONT_SIZE,
            measure=fonts.name.getlength,
        )
        for line_index, line in enumerate(name_lines):
            draw_context.text(
                (layout.center_x, layout.name_y + line_index * layout.line_height),
                line,
                font=fonts.name,
                fill=parse_color_rgba(NAME_COLOR),
                anchor="ms",
            )

        if product.price:
            draw_context.text(
                (layout.center_x, layout.y_at(RICH_PRICE_Y_RATIO)),
                product.price,
                font=fonts.price,
                fill=parse_color_rgba(PRICE_COLOR),
                anchor="ms",
            )
        draw_context.text(
            (layout.center_x, layout.y_at(RICH_HOT_LABEL_Y_RATIO)),
            HOT_LABEL_TEXT,
            font=fonts.hot_label,
            fill=parse_color_rgba(HOT_LABEL_COLOR),
            anchor="ms",
        )

        return Thumbnail(
            rank=rank_index + 1,
            width=self._config.width,
            height=self._config.height,
            png_bytes=encode_png(frame_image),
        )

    def _draw_product_image(
        self,
        frame_image: Image.Image,
        draw_context: ImageDraw.ImageDraw,
        fonts: RichFonts,
        product: Product,
    ) -> None:
        layout = self._layout
        draw_context.rounded_rectangle(
            layout.panel_box,
            radius=PANEL_CORNER_RADIUS,
            fill=parse_color_rgba(PANEL_COLOR),
        )
        try:
            product_image = self._fetch_image(product.image, self._image_timeout_seconds)
        except AssetFetchError as exc:
            LOGGER.warning(
                "%s: using placeholder for %r (%s)",
                exc.code,
                product.name,
                str(exc).strip(),
            )
            draw_context.text(
                (layout.center_x, layout.placeholder_text_y),
                PLACEHOLDER_TEXT,
                font=fonts.placeholder,
                fill=parse_color_rgba(PLACEHOLDER_TEXT_COLOR),
                anchor="ms",
            )
            return

        left, top, right, bottom = layout.image_box
        fitted = ImageOps.contain(product_image, (right - left, bottom - top))
        paste_x = left + (right - left - fitted.width) // 2
        paste_y = top + (bottom - top - fitted.height) // 2
        frame_image.paste(fitted, (paste_x, paste_y), fitted)
