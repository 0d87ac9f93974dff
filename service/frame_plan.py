"""Frame plan construction for render_product_video."""

from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction
import math
from typing import Tuple

from domain.product_video import (
    EMPTY_PRODUCTS_CODE,
    INVALID_CONFIG_CODE,
    RenderValidationError,
    VideoConfig,
)

FRAME_PREFIX = "frame_"
FRAME_SUFFIX = ".png"
MIN_INDEX_WIDTH = 6


@dataclass(frozen=True)
class ProductSlot:
    """A product's contiguous run of identical frames."""

    product_index: int
    start_frame: int
    frame_count: int

    def __post_init__(self) -> None:
        if self.product_index < 0:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "product_index must be non-negative"
            )
        if self.start_frame < 0:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "start_frame must be non-negative"
            )
        if self.frame_count < 0:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "frame_count must be non-negative"
            )

    @property
    def end_frame(self) -> int:
        return self.start_frame + self.frame_count


@dataclass(frozen=True)
class FramePlan:
    """Plan describing product ordering and timing across frames."""

    frames_per_product: int
    total_frames: int
    index_width: int
    slots: Tuple[ProductSlot, ...]

    def __post_init__(self) -> None:
        if self.frames_per_product < 0:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "frames_per_product must be non-negative"
            )
        if self.index_width < len(str(max(0, self.total_frames - 1))):
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "index_width too small for total_frames"
            )
        cursor = 0
        for expected_index, slot in enumerate(self.slots):
            if slot.product_index != expected_index:
                raise RenderValidationError(
                    INVALID_CONFIG_CODE, "slots must follow product order"
                )
            if slot.start_frame != cursor:
                raise RenderValidationError(
                    INVALID_CONFIG_CODE, "slots must be contiguous"
                )
            cursor = slot.end_frame
        if cursor != self.total_frames:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "slots do not cover total_frames"
            )

    @property
    def frames_pattern(self) -> str:
        """printf-style pattern understood by the ffmpeg image2 demuxer."""
        return f"{FRAME_PREFIX}%0{self.index_width}d{FRAME_SUFFIX}"

    def frame_name(self, frame_index: int) -> str:
        return frame_file_name(frame_index, self.index_width)


def frames_per_product(duration_seconds: float, fps: int, product_count: int) -> int:
    """Return floor((duration / product_count) * fps) without float drift."""
    if product_count <= 0:
        raise RenderValidationError(EMPTY_PRODUCTS_CODE, "no products to render")
    exact = Fraction(str(duration_seconds)) * fps / product_count
    return math.floor(exact)


def compute_index_width(duration_seconds: float, fps: int) -> int:
    """Digits needed for the largest frame index the duration/fps allows."""
    max_frames = math.ceil(Fraction(str(duration_seconds)) * fps)
    return max(MIN_INDEX_WIDTH, len(str(max(0, max_frames - 1))))


def frame_file_name(frame_index: int, index_width: int) -> str:
    """Return the zero-padded staging file name for a frame index."""
    if frame_index < 0:
        raise RenderValidationError(
            INVALID_CONFIG_CODE, "frame index must be non-negative"
        )
    return f"{FRAME_PREFIX}{frame_index:0{index_width}d}{FRAME_SUFFIX}"


def build_frame_plan(config: VideoConfig, product_count: int) -> FramePlan:
    """Build a frame plan giving every product the same number of frames."""
    per_product = frames_per_product(
        config.duration_seconds, config.fps, product_count
    )
    slots = tuple(
        ProductSlot(
            product_index=index,
            start_frame=index * per_product,
            frame_count=per_product,
        )
        for index in range(product_count)
    )
    total_frames = per_product * product_count
    return FramePlan(
        frames_per_product=per_product,
        total_frames=total_frames,
        index_width=compute_index_width(config.duration_seconds, config.fps),
        slots=slots,
    )
