"""Tests for the rich and simple thumbnail backends."""

from __future__ import annotations

import io
from pathlib import Path

import httpx
from PIL import Image
import pytest

from domain.product_video import Product, VideoConfig
from service import thumbnail_rich
from service.renderer_controller import (
    RendererBackend,
    RendererController,
    RichCapability,
)
from service.thumbnail_layout import (
    HOT_LABEL_TEXT,
    PLACEHOLDER_TEXT,
    SOLD_FALLBACK_TEXT,
    compute_slide_layout,
)
from service.thumbnail_rich import (
    ASSET_DECODE_CODE,
    ASSET_FETCH_CODE,
    ASSET_SCHEME_CODE,
    ASSET_TIMEOUT_CODE,
    FONT_DIR_CODE,
    AssetFetchError,
    CapabilityError,
    RichThumbnailRenderer,
    fetch_product_image,
)
from service.thumbnail_simple import (
    SimpleThumbnailRenderer,
    TextElement,
    build_slide_document,
)

WHITE = (255, 255, 255)
GOLD = (255, 215, 0)
BLUE = (0, 0, 255)


def build_config() -> VideoConfig:
    return VideoConfig(width=240, height=432, fps=30, duration_seconds=30)


def build_product(name: str = "Wireless Earbuds", sold: str = "1.2k sold") -> Product:
    return Product(
        name=name,
        price="$19.99",
        image="https://example.invalid/earbuds.png",
        link="https://example.invalid/earbuds",
        sold=sold,
        rank=1,
    )


def decode_png(payload: bytes) -> Image.Image:
    """Decode PNG bytes into an RGB image for pixel checks."""
    image = Image.open(io.BytesIO(payload))
    image.load()
    return image.convert("RGB")


def failing_fetcher(uri: str, timeout_seconds: float) -> Image.Image:
    raise AssetFetchError(ASSET_FETCH_CODE, f"unreachable: {uri}")


def solid_blue_fetcher(uri: str, timeout_seconds: float) -> Image.Image:
    return Image.new("RGBA", (50, 50), BLUE + (255,))


def write_png(path: Path, size: tuple[int, int], color: tuple[int, int, int]) -> Path:
    Image.new("RGB", size, color).save(path, format="PNG")
    return path


def test_layout_resolves_panel_and_image_boxes() -> None:
    """Anchor the square image box at the panel's top edge."""
    layout = compute_slide_layout(240, 432)

    assert layout.panel_box == (48, 65, 192, 238)
    assert layout.image_box == (48, 65, 192, 209)
    assert layout.badge_box == (50, 50, 150, 150)


def test_rich_renders_placeholder_panel_when_fetch_fails() -> None:
    """Draw the white panel at the configured size when the image is missing."""
    renderer = RichThumbnailRenderer(build_config(), fetch_image=failing_fetcher)
    renderer.init()

    thumbnail = renderer.render(build_product(), 0)
    image = decode_png(thumbnail.png_bytes)

    assert thumbnail.rank == 1
    assert image.size == (240, 432)
    assert image.getpixel((73, 213)) == WHITE
    assert image.getpixel((120, 190)) == WHITE
    assert image.getpixel((100, 60)) == GOLD


def test_rich_places_fetched_image_inside_panel() -> None:
    """Contain the fetched photo in the image box with the same panel bounds."""
    config = build_config()
    with_image = RichThumbnailRenderer(config, fetch_image=solid_blue_fetcher)
    without_image = RichThumbnailRenderer(config, fetch_image=failing_fetcher)

    image = decode_png(with_image.render(build_product(), 2).png_bytes)
    placeholder = decode_png(without_image.render(build_product(), 2).png_bytes)

    assert with_image.layout.panel_box == without_image.layout.panel_box
    assert image.size == placeholder.size == (240, 432)
    assert image.getpixel((120, 190)) == BLUE
    assert image.getpixel((120, 230)) == WHITE
    assert placeholder.getpixel((120, 230)) == WHITE
    for frame in (image, placeholder):
        outside_panel = frame.getpixel((10, 220))
        assert outside_panel != WHITE
        assert outside_panel[0] >= 250


def test_rich_init_rejects_missing_fonts_dir(tmp_path: Path) -> None:
    """Surface an unusable fonts directory as a capability error."""
    renderer = RichThumbnailRenderer(
        build_config(), fonts_dir=str(tmp_path / "missing"), fetch_image=failing_fetcher
    )

    with pytest.raises(CapabilityError) as error_info:
        renderer.init()

    assert error_info.value.code == FONT_DIR_CODE


def test_fetch_reads_local_paths_and_file_uris(tmp_path: Path) -> None:
    """Decode local images into RGBA whether given as a path or a file URI."""
    image_path = write_png(tmp_path / "photo.png", (12, 8), (10, 20, 30))

    from_path = fetch_product_image(str(image_path), 1.0)
    from_uri = fetch_product_image(image_path.as_uri(), 1.0)

    assert from_path.mode == "RGBA"
    assert from_path.size == (12, 8)
    assert from_uri.getpixel((0, 0)) == (10, 20, 30, 255)


def test_fetch_reports_missing_corrupt_and_unsupported_sources(tmp_path: Path) -> None:
    """Map each failure to its own code."""
    corrupt_path = tmp_path / "corrupt.png"
    corrupt_path.write_bytes(b"not an image")

    with pytest.raises(AssetFetchError) as missing_info:
        fetch_product_image(str(tmp_path / "absent.png"), 1.0)
    with pytest.raises(AssetFetchError) as corrupt_info:
        fetch_product_image(str(corrupt_path), 1.0)
    with pytest.raises(AssetFetchError) as scheme_info:
        fetch_product_image("ftp://example.invalid/photo.png", 1.0)

    assert missing_info.value.code == ASSET_FETCH_CODE
    assert corrupt_info.value.code == ASSET_DECODE_CODE
    assert scheme_info.value.code == ASSET_SCHEME_CODE


def test_fetch_maps_http_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    """Report a slow image host as a timeout."""

    def slow_get(url: str, **kwargs: object) -> httpx.Response:
        raise httpx.ReadTimeout("slow host")

    monkeypatch.setattr(thumbnail_rich.httpx, "get", slow_get)

    with pytest.raises(AssetFetchError) as error_info:
        fetch_product_image("https://example.invalid/photo.png", 0.5)

    assert error_info.value.code == ASSET_TIMEOUT_CODE


def test_fetch_decodes_http_payload(monkeypatch: pytest.MonkeyPatch) -> None:
    """Decode the body of a successful image response."""
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), (1, 2, 3)).save(buffer, format="PNG")

    def fake_get(url: str, **kwargs: object) -> httpx.Response:
        return httpx.Response(
            200, content=buffer.getvalue(), request=httpx.Request("GET", url)
        )

    monkeypatch.setattr(thumbnail_rich.httpx, "get", fake_get)

    image = fetch_product_image("https://example.invalid/photo.png", 0.5)

    assert image.size == (4, 4)
    assert image.getpixel((3, 3)) == (1, 2, 3, 255)


def test_slide_document_carries_truncated_name_and_sold_text() -> None:
    """Describe the slide with the shortened name, labels and sold counter."""
    product = build_product(name="Ultra slim stainless steel insulated water bottle")

    document = build_slide_document(product, 4, build_config())
    texts = [element.text for element in document.elements if isinstance(element, TextElement)]

    assert "#5" in texts
    assert PLACEHOLDER_TEXT in texts
    assert HOT_LABEL_TEXT in texts
    assert "$19.99" in texts
    assert "1.2k sold" in texts
    truncated = [text for text in texts if text.startswith("Ultra slim")]
    assert truncated == ["Ultra slim stainless steel ..."]


def test_slide_document_uses_sold_fallback() -> None:
    """Substitute the fallback counter when the product has no sold text."""
    document = build_slide_document(build_product(sold="  "), 0, build_config())
    texts = [element.text for element in document.elements if isinstance(element, TextElement)]

    assert texts[-1] == SOLD_FALLBACK_TEXT


def test_simple_renders_configured_size_without_network() -> None:
    """Rasterize a full slide with the gradient, badge and panel in place."""
    renderer = SimpleThumbnailRenderer(build_config())
    renderer.init()

    thumbnail = renderer.render(build_product(), 0)
    image = decode_png(thumbnail.png_bytes)

    assert image.size == (240, 432)
    assert image.getpixel((230, 0)) == (255, 107, 107)
    assert image.getpixel((73, 213)) == WHITE
    assert image.getpixel((100, 60)) == GOLD


def test_fetch_maps_malformed_uris_to_asset_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    """Report unparsable URIs and rejected hostnames as asset failures."""
    with pytest.raises(AssetFetchError) as parse_info:
        fetch_product_image("http://[abc/x.png", 0.5)

    def rejecting_get(url: str, **kwargs: object) -> httpx.Response:
        raise httpx.InvalidURL("invalid host")

    def idna_get(url: str, **kwargs: object) -> httpx.Response:
        raise UnicodeError("encoding with 'idna' codec failed")

    monkeypatch.setattr(thumbnail_rich.httpx, "get", rejecting_get)
    with pytest.raises(AssetFetchError) as invalid_info:
        fetch_product_image("http://bad host/x.png", 0.5)

    monkeypatch.setattr(thumbnail_rich.httpx, "get", idna_get)
    with pytest.raises(AssetFetchError) as idna_info:
        fetch_product_image("http://a..b/x.png", 0.5)

    assert parse_info.value.code == ASSET_SCHEME_CODE
    assert invalid_info.value.code == ASSET_FETCH_CODE
    assert idna_info.value.code == ASSET_FETCH_CODE


def test_malformed_image_uri_keeps_rich_backend() -> None:
    """Draw the placeholder for a malformed URI without leaving the rich backend."""
    config = build_config()
    controller = RendererController(
        RichCapability(True),
        rich_factory=lambda: RichThumbnailRenderer(config),
        simple_factory=lambda: SimpleThumbnailRenderer(config),
    )
    product = Product(
        name="Broken link",
        price="$5",
        image="http://[abc/x.png",
        link="",
        sold="",
        rank=1,
    )

    image = decode_png(controller.render(product, 0).png_bytes)

    assert controller.state == RendererBackend.RICH
    assert image.size == (240, 432)
    assert image.getpixel((73, 213)) == WHITE
    assert image.getpixel((120, 190)) == WHITE


def test_both_backends_render_products_without_name_or_price() -> None:
    """Render slides for products whose text fields are empty."""
    config = build_config()
    product = Product(name="", price="", image="", link="", sold="", rank=1)
    rich = RichThumbnailRenderer(config, fetch_image=failing_fetcher)

    rich_image = decode_png(rich.render(product, 0).png_bytes)
    simple_image = decode_png(SimpleThumbnailRenderer(config).render(product, 0).png_bytes)

    assert rich_image.size == simple_image.size == (240, 432)
    assert rich_image.getpixel((73, 213)) == WHITE
    assert simple_image.getpixel((73, 213)) == WHITE
