"""Tests for backend selection and rich-to-simple fallback."""

from __future__ import annotations

from typing import List

from domain.product_video import Product, Thumbnail
from service.renderer_controller import (
    RendererBackend,
    RendererController,
    RichCapability,
    detect_rich_capability,
)


class FakeRenderer:
    """Records calls and optionally fails on init or on a given render call."""

    def __init__(
        self, name: str, fail_init: bool = False, fail_on_call: int | None = None
    ) -> None:
        self.name = name
        self.fail_init = fail_init
        self.fail_on_call = fail_on_call
        self.init_calls = 0
        self.rendered: List[int] = []

    def init(self) -> None:
        self.init_calls += 1
        if self.fail_init:
            raise RuntimeError(f"{self.name} init failed")

    def render(self, product: Product, rank_index: int) -> Thumbnail:
        call_number = len(self.rendered) + 1
        self.rendered.append(rank_index)
        if self.fail_on_call == call_number:
            raise RuntimeError(f"{self.name} render failed")
        return Thumbnail(
            rank=rank_index + 1,
            width=8,
            height=8,
            png_bytes=self.name.encode("utf-8"),
        )


class CountingFactory:
    """Factory that hands out one renderer and counts how often it is asked."""

    def __init__(self, renderer: FakeRenderer) -> None:
        self.renderer = renderer
        self.calls = 0

    def __call__(self) -> FakeRenderer:
        self.calls += 1
        return self.renderer


def build_product(rank: int) -> Product:
    return Product(
        name=f"Product {rank}",
        price="$1",
        image="",
        link="",
        sold="",
        rank=rank,
    )


def test_unavailable_capability_starts_simple() -> None:
    """Never construct the rich backend when the probe failed."""
    rich = CountingFactory(FakeRenderer("rich"))
    simple = CountingFactory(FakeRenderer("simple"))
    controller = RendererController(RichCapability(False, "numpy missing"), rich, simple)

    thumbnail = controller.render(build_product(1), 0)

    assert controller.state == RendererBackend.SIMPLE
    assert thumbnail.png_bytes == b"simple"
    assert rich.calls == 0


def test_available_capability_renders_rich() -> None:
    """Route every render to the rich backend while it keeps working."""
    rich = CountingFactory(FakeRenderer("rich"))
    simple = CountingFactory(FakeRenderer("simple"))
    controller = RendererController(RichCapability(True), rich, simple)
    controller.init()

    outputs = [controller.render(build_product(rank), rank - 1).png_bytes for rank in (1, 2)]

    assert controller.state == RendererBackend.RICH
    assert outputs == [b"rich", b"rich"]
    assert simple.calls == 0


def test_rich_init_failure_falls_back_to_simple() -> None:
    """Switch to simple when the rich backend cannot be initialized."""
    rich = CountingFactory(FakeRenderer("rich", fail_init=True))
    simple = CountingFactory(FakeRenderer("simple"))
    controller = RendererController(RichCapability(True), rich, simple)

    controller.init()
    thumbnail = controller.render(build_product(1), 0)

    assert controller.state == RendererBackend.SIMPLE
    assert thumbnail.png_bytes == b"simple"
    assert rich.calls == 1
    assert rich.renderer.rendered == []


def test_rich_factory_import_error_falls_back_to_simple() -> None:
    """Treat a failed lazy import of the rich module like a failed init."""

    def broken_factory() -> FakeRenderer:
        raise ImportError("No module named 'numpy'")

    simple = CountingFactory(FakeRenderer("simple"))
    controller = RendererController(RichCapability(True), broken_factory, simple)

    controller.init()

    assert controller.state == RendererBackend.SIMPLE
    assert simple.calls == 1


def test_rich_render_failure_switches_once_and_rerenders() -> None:
    """Re-render the failing product with simple and never return to rich."""
    rich_renderer = FakeRenderer("rich", fail_on_call=2)
    simple_renderer = FakeRenderer("simple")
    controller = RendererController(
        RichCapability(True), CountingFactory(rich_renderer), CountingFactory(simple_renderer)
    )

    outputs = [controller.render(build_product(rank), rank - 1).png_bytes for rank in (1, 2, 3)]

    assert outputs == [b"rich", b"simple", b"simple"]
    assert controller.state == RendererBackend.SIMPLE
    assert rich_renderer.rendered == [0, 1]
    assert simple_renderer.rendered == [1, 2]
    assert simple_renderer.init_calls == 1


def test_detect_capability_reports_missing_module() -> None:
    """Report the first module that cannot be found."""
    capability = detect_rich_capability(modules=("definitely_not_a_real_module_xyz",))

    assert capability.available is False
    assert capability.reason is not None
    assert "definitely_not_a_real_module_xyz" in capability.reason


def test_detect_capability_reason_matches_availability() -> None:
    """Carry a reason exactly when the rich stack is unavailable."""
    capability = detect_rich_capability()

    assert (capability.reason is None) == capability.available
