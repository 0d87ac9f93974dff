"""Domain types and parsing for render_product_video."""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import Any, Sequence, Tuple

INVALID_CONFIG_CODE = "render_product_video.input.invalid_config"
INVALID_PRODUCT_CODE = "render_product_video.input.invalid_product"
EMPTY_PRODUCTS_CODE = "render_product_video.input.empty_products"
PRODUCTS_FILE_CODE = "render_product_video.input.products_file"

NAME_CHARACTER_BUDGET = 30
TRUNCATION_SUFFIX = "..."
PRODUCT_FIELDS = ("name", "price", "image", "link", "sold", "rank")


class RenderValidationError(ValueError):
    """Validation error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class Product:
    """Ranked product record supplied by the caller."""

    name: str
    price: str
    image: str
    link: str
    sold: str
    rank: int

    def __post_init__(self) -> None:
        if isinstance(self.rank, bool) or not isinstance(self.rank, int):
            raise RenderValidationError(
                INVALID_PRODUCT_CODE, f"product rank must be an integer: {self.rank!r}"
            )
        if self.rank <= 0:
            raise RenderValidationError(
                INVALID_PRODUCT_CODE, "product rank must be positive"
            )


@dataclass(frozen=True)
class VideoConfig:
    """Output geometry and timing for one video."""

    width: int
    height: int
    fps: int
    duration_seconds: float

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "width and height must be positive"
            )
        if self.fps <= 0:
            raise RenderValidationError(INVALID_CONFIG_CODE, "fps must be positive")
        if self.duration_seconds <= 0:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "duration_seconds must be positive"
            )


@dataclass(frozen=True)
class Thumbnail:
    """PNG-encoded slide for one product."""

    rank: int
    width: int
    height: int
    png_bytes: bytes


@dataclass(frozen=True)
class EncodeJob:
    """Inputs for a single encoder invocation."""

    frames_pattern: str
    frame_count: int
    fps: int
    width: int
    height: int
    duration_cap_seconds: float
    audio_track: str | None
    output_path: str

    @property
    def output_size(self) -> str:
        return f"{self.width}x{self.height}"

    @property
    def uses_silent_audio(self) -> bool:
        return self.audio_track is None


@dataclass(frozen=True)
class RenderResult:
    """Successful pipeline outcome."""

    output_path: str
    frame_count: int
    backend: str


def truncate_text(text_value: str, max_length: int = NAME_CHARACTER_BUDGET) -> str:
    """Shorten text to max_length characters, ending with an ellipsis."""
    if len(text_value) <= max_length:
        return text_value
    keep = max(0, max_length - len(TRUNCATION_SUFFIX))
    return text_value[:keep] + TRUNCATION_SUFFIX


def parse_product(payload: Any, position: int) -> Product:
    """Parse a product mapping; rank defaults to its 1-based position."""
    if not isinstance(payload, dict):
        raise RenderValidationError(
            INVALID_PRODUCT_CODE, f"product #{position} must be an object"
        )
    values: dict[str, Any] = {}
    for field_name in PRODUCT_FIELDS:
        if field_name == "rank":
            continue
        raw_value = payload.get(field_name, "")
        if raw_value is None:
            raw_value = ""
        if not isinstance(raw_value, (str, int, float)):
            raise RenderValidationError(
                INVALID_PRODUCT_CODE,
                f"product #{position} field {field_name!r} must be text",
            )
        values[field_name] = str(raw_value)
    rank_value = payload.get("rank", position)
    return Product(
        name=values["name"],
        price=values["price"],
        image=values["image"],
        link=values["link"],
        sold=values["sold"],
        rank=rank_value,
    )


def parse_products(payload: Any) -> Tuple[Product, ...]:
    """Parse a JSON-decoded product list, keeping caller order."""
    if not isinstance(payload, list):
        raise RenderValidationError(
            PRODUCTS_FILE_CODE, "products payload must be a JSON list"
        )
    if not payload:
        raise RenderValidationError(EMPTY_PRODUCTS_CODE, "no products to render")
    return tuple(
        parse_product(item, position)
        for position, item in enumerate(payload, start=1)
    )


def load_products_file(file_path: str) -> Tuple[Product, ...]:
    """Read and parse a UTF-8 JSON products file."""
    try:
        with open(file_path, "r", encoding="utf-8") as file_handle:
            payload = json.load(file_handle)
    except FileNotFoundError as exc:
        raise RenderValidationError(
            PRODUCTS_FILE_CODE, f"products file not found: {file_path}"
        ) from exc
    except UnicodeDecodeError as exc:
        raise RenderValidationError(
            PRODUCTS_FILE_CODE,
            f"products file is not valid UTF-8 at byte offset {exc.start}",
        ) from exc
    except json.JSONDecodeError as exc:
        raise RenderValidationError(
            PRODUCTS_FILE_CODE,
            f"products file is not valid JSON (line {exc.lineno}): {file_path}",
        ) from exc
    return parse_products(payload)


def ensure_products(products: Sequence[Product]) -> Tuple[Product, ...]:
    """Return products as a tuple, rejecting an empty list."""
    if not products:
        raise RenderValidationError(EMPTY_PRODUCTS_CODE, "no products to render")
    return tuple(products)


DEMO_PRODUCTS: Tuple[Product, ...] = (
    Product(
        name="Oversized unisex cotton t-shirt, Korean street style",
        price="₫89.000",
        image="https://cf.shopee.vn/file/placeholder_product_1",
        link="https://shopee.vn/product/1",
        sold="1.2k+ sold",
        rank=1,
    ),
    Product(
        name="Unisex running sneakers, 2024 trending edition",
        price="₫299.000",
        image="https://cf.shopee.vn/file/placeholder_product_2",
        link="https://shopee.vn/product/2",
        sold="850+ sold",
        rank=2,
    ),
    Product(
        name="Waterproof premium laptop backpack",
        price="₫199.000",
        image="https://cf.shopee.vn/file/placeholder_product_3",
        link="https://shopee.vn/product/3",
        sold="560+ sold",
        rank=3,
    ),
    Product(
        name="Soft silicone case for iPhone 15 Pro Max",
        price="₫45.000",
        image="https://cf.shopee.vn/file/placeholder_product_4",
        link="https://shopee.vn/product/4",
        sold="2.1k+ sold",
        rank=4,
    ),
    Product(
        name="Wireless noise-cancelling Bluetooth headphones",
        price="₫599.000",
        image="https://cf.shopee.vn/file/placeholder_product_5",
        link="https://shopee.vn/product/5",
        sold="430+ sold",
        rank=5,
    ),
)
