"""Backend selection and one-way fallback from the rich to the simple renderer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import importlib
import importlib.util
import logging
from typing import Callable, Protocol, Sequence

from domain.product_video import Product, Thumbnail

LOGGER = logging.getLogger("render_product_video.controller")

CAPABILITY_CODE = "render_product_video.capability.unavailable"
RICH_RENDER_CODE = "render_product_video.capability.rich_render_failed"
RICH_MODULES = ("numpy", "httpx")


class RendererBackend(str, Enum):
    """Controller states."""

    RICH = "rich"
    SIMPLE = "simple"


class ThumbnailRenderer(Protocol):
    """Contract shared by both thumbnail backends."""

    name: str

    def init(self) -> None: ...

    def render(self, product: Product, rank_index: int) -> Thumbnail: ...


@dataclass(frozen=True)
class RichCapability:
    """Result of probing the rich rendering stack once at startup."""

    available: bool
    reason: str | None = None


def detect_rich_capability(modules: Sequence[str] = RICH_MODULES) -> RichCapability:
    """Probe whether the rich backend's libraries can be loaded."""
    for module_name in modules:
        if importlib.util.find_spec(module_name) is None:
            return RichCapability(False, f"{module_name} is not installed")
        try:
            importlib.import_module(module_name)
        except Exception as exc:
            return RichCapability(False, f"{module_name} import failed: {exc}")
    try:
        from PIL import features
    except Exception as exc:
        return RichCapability(False, f"Pillow features unavailable: {exc}")
    if not features.check("freetype2"):
        return RichCapability(False, "Pillow was built without FreeType")
    return RichCapability(True)


class RendererController:
    """Routes thumbnail requests to the current backend.

    Starts in RICH when the capability probe succeeded, SIMPLE otherwise.
    A failed rich init, or any error from a rich render, moves the controller
    to SIMPLE for the rest of its life; RICH is never retried. Callers only
    ever see thumbnails.
    """

    def __init__(
        self,
        capability: RichCapability,
        rich_factory: Callable[[], ThumbnailRenderer],
        simple_factory: Callable[[], ThumbnailRenderer],
    ) -> None:
        self._rich_factory = rich_factory
        self._simple_factory = simple_factory
        self._rich: ThumbnailRenderer | None = None
        self._simple: ThumbnailRenderer | None = None
        self._initialized = False
        if capability.available:
            self._state = RendererBackend.RICH
        else:
            self._state = RendererBackend.SIMPLE
            LOGGER.info(
                "%s: using simple renderer (%s)",
                CAPABILITY_CODE,
                capability.reason or "rich renderer disabled",
            )

    @property
    def state(self) -> RendererBackend:
        return self._state

    def init(self) -> None:
        """Acquire the current backend; a rich init failure falls back to simple."""
        if self._initialized:
            return
        if self._state == RendererBackend.RICH:
            try:
                rich = self._rich_factory()
                rich.init()
            except Exception as exc:
                self._fall_back(getattr(exc, "code", CAPABILITY_CODE), exc)
            else:
                self._rich = rich
        if self._state == RendererBackend.SIMPLE:
            self._simple_backend()
        self._initialized = True
        LOGGER.info(
            "render_product_video.renderer: %s backend selected", self._state.value
        )

    def render(self, product: Product, rank_index: int) -> Thumbnail:
        """Render one thumbnail through the current backend."""
        if not self._initialized:
            self.init()
        if self._state == RendererBackend.RICH and self._rich is not None:
            try:
                return self._rich.render(product, rank_index)
            except Exception as exc:
                self._fall_back(RICH_RENDER_CODE, exc)
        return self._simple_backend().render(product, rank_index)

    def _simple_backend(self) -> ThumbnailRenderer:
        if self._simple is None:
            simple = self._simple_factory()
            simple.init()
            self._simple = simple
        return self._simple

    def _fall_back(self, code: str, exc: Exception) -> None:
        LOGGER.warning(
            "%s: switching to simple renderer (%s)",
            code,
            str(exc).strip() or type(exc).__name__,
        )
        self._state = RendererBackend.SIMPLE
        self._rich = None
