#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "pillow>=10.1",
#   "numpy>=1.26",
#   "httpx>=0.27",
# ]
# ///
"""Render a ranked product list into a vertical slideshow MP4."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
import importlib
from fractions import Fraction
import logging
import math
import os
import shutil
import subprocess
import sys
import time
from types import ModuleType
from typing import Callable, Sequence, Tuple

from domain.product_video import (
    DEMO_PRODUCTS,
    INVALID_CONFIG_CODE,
    EncodeJob,
    Product,
    RenderResult,
    RenderValidationError,
    Thumbnail,
    VideoConfig,
    ensure_products,
    load_products_file,
)
from service.frame_plan import FramePlan, build_frame_plan
from service.renderer_controller import (
    RendererController,
    RichCapability,
    ThumbnailRenderer,
    detect_rich_capability,
)
from service.thumbnail_simple import RasterizeError, SimpleThumbnailRenderer

LOGGER = logging.getLogger("render_product_video")

FFMPEG_NOT_FOUND_CODE = "render_product_video.ffmpeg.not_found"
FFMPEG_EXEC_CODE = "render_product_video.ffmpeg.exec_error"
FFMPEG_UNSUPPORTED_CODE = "render_product_video.ffmpeg.unsupported"
FFMPEG_PROBE_CODE = "render_product_video.ffmpeg.probe_error"
ENCODE_PROCESS_CODE = "render_product_video.encode.process_failed"
ENCODE_NO_FRAMES_CODE = "render_product_video.encode.no_frames"
ENCODE_TIMEOUT_CODE = "render_product_video.encode.timeout"
ENCODE_OUTPUT_CODE = "render_product_video.encode.missing_output"
ENCODE_BUSY_CODE = "render_product_video.encode.busy"
STAGING_IO_CODE = "render_product_video.staging.io_error"
CLEANUP_CODE = "render_product_video.staging.cleanup_warning"
AUDIO_TRACK_CODE = "render_product_video.input.audio_track"

H264_CODEC = "libx264"
H264_PIXEL_FORMAT = "yuv420p"
H264_PRESET = "fast"
H264_CRF = "23"
AUDIO_CODEC = "aac"
AUDIO_BITRATE = "192k"
SILENT_AUDIO_SOURCE = "anullsrc=channel_layout=stereo:sample_rate=48000"
OUTPUT_EXTENSION = ".mp4"
PARTIAL_SUFFIX = ".partial"
FRAMES_DIR_NAME = "frames"
DEFAULT_OUTPUT_DIR = "output"
DEFAULT_VIDEO_BASENAME = "product_top5"
DEFAULT_IMAGE_TIMEOUT_SECONDS = 10.0
DEFAULT_ENCODE_TIMEOUT_SECONDS = 600.0
DURATION_TOLERANCE_SECONDS = 0.1
RENDERER_CHOICES = ("auto", "rich", "simple")

ENV_DEFAULTS = {
    "VIDEO_WIDTH": 1080,
    "VIDEO_HEIGHT": 1920,
    "VIDEO_FPS": 30,
    "VIDEO_DURATION": 30,
}


class RenderPipelineError(RuntimeError):
    """Runtime error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class StagingError(RenderPipelineError):
    """Frame staging directory could not be prepared or written."""

    stage = "staging"


class EncodeError(RenderPipelineError):
    """Encoder failed; no output file was produced."""

    stage = "encode"

    def __init__(self, code: str, message: str, diagnostic: str = "") -> None:
        super().__init__(code, message)
        self.diagnostic = diagnostic


@dataclass(frozen=True)
class StagedFrames:
    """Frames written for one run."""

    plan: FramePlan
    frames_dir: str
    frame_count: int

    @property
    def pattern_path(self) -> str:
        return os.path.join(self.frames_dir, self.plan.frames_pattern)


@dataclass(frozen=True)
class GenerateRequest:
    """Parsed CLI request and runtime options."""

    config: VideoConfig
    products: Tuple[Product, ...]
    audio_track: str | None
    output_dir: str
    video_basename: str
    renderer: str
    fonts_dir: str | None
    image_timeout_seconds: float
    encode_timeout_seconds: float


def configure_logging() -> None:
    """Configure logging for CLI output."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")


class StagingArea:
    """Owns the output directory and the frame staging directory beneath it."""

    def __init__(self, output_dir: str, frames_dir_name: str = FRAMES_DIR_NAME) -> None:
        self.output_dir = output_dir
        self.frames_dir = os.path.join(output_dir, frames_dir_name)

    def init(self) -> None:
        """Create both directories; existing ones are fine."""
        for directory in (self.output_dir, self.frames_dir):
            try:
                os.makedirs(directory, exist_ok=True)
            except OSError as exc:
                raise StagingError(
                    STAGING_IO_CODE, f"cannot create directory {directory}: {exc}"
                ) from exc

    def reset(self) -> None:
        """Drop frames left over from an earlier run, then recreate the directory."""
        try:
            self._remove_frames()
        except OSError as exc:
            raise StagingError(
                STAGING_IO_CODE, f"cannot clear staging directory {self.frames_dir}: {exc}"
            ) from exc
        self.init()

    def write_frame(self, file_name: str, payload: bytes) -> None:
        frame_path = os.path.join(self.frames_dir, file_name)
        try:
            with open(frame_path, "wb") as file_handle:
                file_handle.write(payload)
        except OSError as exc:
            raise StagingError(
                STAGING_IO_CODE, f"cannot write frame {frame_path}: {exc}"
            ) from exc

    def cleanup(self) -> None:
        """Delete staged frames and the staging directory; never raises."""
        try:
            self._remove_frames()
        except OSError as exc:
            LOGGER.warning(
                "%s: staging cleanup incomplete for %s (%s)",
                CLEANUP_CODE,
                self.frames_dir,
                str(exc).strip(),
            )

    def _remove_frames(self) -> None:
        try:
            entries = sorted(os.listdir(self.frames_dir))
        except FileNotFoundError:
            return
        for entry_name in entries:
            try:
                os.unlink(os.path.join(self.frames_dir, entry_name))
            except FileNotFoundError:
                continue
        try:
            os.rmdir(self.frames_dir)
        except FileNotFoundError:
            return


def stage_product_frames(
    products: Sequence[Product],
    config: VideoConfig,
    render_thumbnail: Callable[[Product, int], Thumbnail],
    staging: StagingArea,
) -> StagedFrames:
    """Render each product once and write it to its run of frame slots."""
    plan = build_frame_plan(config, len(products))
    frame_index = 0
    for slot in plan.slots:
        thumbnail = render_thumbnail(products[slot.product_index], slot.product_index)
        for _ in range(slot.frame_count):
            staging.write_frame(plan.frame_name(frame_index), thumbnail.png_bytes)
            frame_index += 1
    LOGGER.info(
        "render_product_video.frames: staged %d frames (%d per product)",
        frame_index,
        plan.frames_per_product,
    )
    return StagedFrames(plan=plan, frames_dir=staging.frames_dir, frame_count=frame_index)


def resolve_audio_track(audio_path: str | None) -> str | None:
    """Return a usable audio path, or None to request the silent track."""
    if not audio_path:
        return None
    if not os.path.isfile(audio_path):
        LOGGER.warning(
            "%s: audio track not found, using silent track: %s",
            AUDIO_TRACK_CODE,
            audio_path,
        )
        return None
    return audio_path


def build_output_path(
    output_dir: str, video_basename: str, now_ms: int | None = None
) -> str:
    """Return a timestamp-qualified output path that does not exist yet."""
    stamp = int(time.time() * 1000) if now_ms is None else now_ms
    while True:
        candidate = os.path.join(output_dir, f"{video_basename}_{stamp}{OUTPUT_EXTENSION}")
        if not os.path.exists(candidate):
            return candidate
        stamp += 1


def partial_output_path(output_path: str) -> str:
    root, extension = os.path.splitext(output_path)
    return f"{root}{PARTIAL_SUFFIX}{extension}"


def ensure_ffmpeg_available() -> str:
    """Ensure ffmpeg is installed and executable; return its path."""
    ffmpeg_path = shutil.which("ffmpeg")
    if not ffmpeg_path:
        raise EncodeError(FFMPEG_NOT_FOUND_CODE, "ffmpeg not on PATH")
    try:
        subprocess.run(
            [ffmpeg_path, "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        raise EncodeError(
            FFMPEG_EXEC_CODE, "ffmpeg exists but could not be executed"
        ) from exc
    return ffmpeg_path


def validate_ffmpeg_capabilities(ffmpeg_path: str) -> None:
    """Validate the encoders and the lavfi input the pipeline relies on."""
    encoders_result = subprocess.run(
        [ffmpeg_path, "-hide_banner", "-encoders"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )
    for encoder_name in (H264_CODEC, AUDIO_CODEC):
        if encoder_name not in encoders_result.stdout:
            raise EncodeError(
                FFMPEG_UNSUPPORTED_CODE,
                f"ffmpeg does not support {encoder_name} encoder",
            )

    formats_result = subprocess.run(
        [ffmpeg_path, "-hide_banner", "-formats"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )
    if "lavfi" not in formats_result.stdout:
        raise EncodeError(
            FFMPEG_UNSUPPORTED_CODE, "ffmpeg does not support the lavfi input format"
        )


def format_duration_cap(duration_seconds: float) -> str:
    """Format the -t value floored to whole milliseconds, never above the cap."""
    milliseconds = math.floor(Fraction(str(duration_seconds)) * 1000)
    whole_seconds, remainder = divmod(milliseconds, 1000)
    return f"{whole_seconds}.{remainder:03d}"


def build_scale_filter(width: int, height: int) -> str:
    """Fit frames inside the output size and pad the remainder."""
    return (
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1"
    )


def build_ffmpeg_command(
    job: EncodeJob, target_path: str, ffmpeg_path: str = "ffmpeg"
) -> list[str]:
    """Build the ffmpeg argument list for an encode job."""
    ffmpeg_cmd = [
        ffmpeg_path,
        "-y",
        "-hide_banner",
        "-loglevel",
        "error",
        "-framerate",
        str(job.fps),
        "-start_number",
        "0",
        "-i",
        job.frames_pattern,
    ]
    if job.uses_silent_audio:
        ffmpeg_cmd.extend(["-f", "lavfi", "-i", SILENT_AUDIO_SOURCE])
    else:
        ffmpeg_cmd.extend(["-i", str(job.audio_track)])
    ffmpeg_cmd.extend(
        [
            "-map",
            "0:v:0",
            "-map",
            "1:a:0",
            "-vf",
            build_scale_filter(job.width, job.height),
            "-c:v",
            H264_CODEC,
            "-preset",
            H264_PRESET,
            "-crf",
            H264_CRF,
            "-pix_fmt",
            H264_PIXEL_FORMAT,
            "-r",
            str(job.fps),
            "-c:a",
            AUDIO_CODEC,
            "-b:a",
            AUDIO_BITRATE,
            "-t",
            format_duration_cap(job.duration_cap_seconds),
        ]
    )
    if job.uses_silent_audio:
        ffmpeg_cmd.append("-shortest")
    ffmpeg_cmd.extend(["-movflags", "+faststart", "-f", "mp4", target_path])
    return ffmpeg_cmd


def discard_partial_output(partial_path: str) -> None:
    try:
        os.remove(partial_path)
    except FileNotFoundError:
        return
    except OSError as exc:
        LOGGER.warning(
            "%s: could not remove partial output %s (%s)",
            CLEANUP_CODE,
            partial_path,
            str(exc).strip(),
        )


def run_encode_job(job: EncodeJob, timeout_seconds: float) -> str:
    """Run ffmpeg for the job and return the output path.

    Exactly one outcome per call: the finished file at job.output_path, or an
    EncodeError. ffmpeg writes to a partial file that only becomes the output
    after a clean exit.
    """
    if job.frame_count <= 0:
        raise EncodeError(
            ENCODE_NO_FRAMES_CODE,
            "no frames were staged; duration is too short for the product count and fps",
        )
    ffmpeg_path = ensure_ffmpeg_available()
    validate_ffmpeg_capabilities(ffmpeg_path)

    partial_path = partial_output_path(job.output_path)
    ffmpeg_cmd = build_ffmpeg_command(job, partial_path, ffmpeg_path)
    LOGGER.info(
        "render_product_video.encode: %d frames at %d fps, %s, audio=%s",
        job.frame_count,
        job.fps,
        job.output_size,
        job.audio_track or "silent",
    )
    try:
        ffmpeg_process = subprocess.Popen(
            ffmpeg_cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )
    except OSError as exc:
        raise EncodeError(FFMPEG_NOT_FOUND_CODE, f"ffmpeg could not start: {exc}") from exc

    try:
        try:
            _, stderr_bytes = ffmpeg_process.communicate(timeout=timeout_seconds)
        except subprocess.TimeoutExpired as exc:
            ffmpeg_process.kill()
            ffmpeg_process.communicate()
            raise EncodeError(
                ENCODE_TIMEOUT_CODE,
                f"ffmpeg exceeded {timeout_seconds:g}s and was killed",
            ) from exc

        stderr_text = (stderr_bytes or b"").decode("utf-8", errors="replace").strip()
        if ffmpeg_process.returncode != 0:
            raise EncodeError(
                ENCODE_PROCESS_CODE,
                f"ffmpeg failed with exit code {ffmpeg_process.returncode}. {stderr_text}",
                diagnostic=stderr_text,
            )
        if not os.path.isfile(partial_path) or os.path.getsize(partial_path) == 0:
            raise EncodeError(
                ENCODE_OUTPUT_CODE,
                f"ffmpeg exited cleanly but wrote no output. {stderr_text}",
                diagnostic=stderr_text,
            )
        os.replace(partial_path, job.output_path)
    except BaseException:
        discard_partial_output(partial_path)
        raise
    finally:
        if ffmpeg_process.poll() is None:
            ffmpeg_process.kill()
            ffmpeg_process.wait()

    return job.output_path


def probe_duration_seconds(media_path: str) -> float:
    """Return the container duration in seconds via ffprobe."""
    ffprobe_path = shutil.which("ffprobe")
    if not ffprobe_path:
        raise RenderPipelineError(FFMPEG_NOT_FOUND_CODE, "ffprobe not on PATH")
    result = subprocess.run(
        [
            ffprobe_path,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            media_path,
        ],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        raise RenderPipelineError(
            FFMPEG_PROBE_CODE, f"ffprobe failed for {media_path}: {result.stderr.strip()}"
        )
    try:
        return float(result.stdout.strip())
    except ValueError as exc:
        raise RenderPipelineError(
            FFMPEG_PROBE_CODE, f"duration unavailable for {media_path}"
        ) from exc


def load_rich_renderer_module() -> ModuleType:
    """Import the rich backend lazily so a missing stack only disables it."""
    return importlib.import_module("service.thumbnail_rich")


def resolve_capability(renderer_choice: str) -> RichCapability:
    if renderer_choice == "simple":
        return RichCapability(False, "simple renderer requested")
    if renderer_choice == "rich":
        return RichCapability(True)
    return detect_rich_capability()


class ProductVideoGenerator:
    """Turns a ranked product list into one slideshow video.

    The rich/simple choice is made by the injected capability value and the
    controller; frames, encoding and staging are shared by both backends.
    """

    def __init__(
        self,
        config: VideoConfig,
        capability: RichCapability,
        output_dir: str = DEFAULT_OUTPUT_DIR,
        video_basename: str = DEFAULT_VIDEO_BASENAME,
        fonts_dir: str | None = None,
        image_timeout_seconds: float = DEFAULT_IMAGE_TIMEOUT_SECONDS,
        encode_timeout_seconds: float = DEFAULT_ENCODE_TIMEOUT_SECONDS,
        rich_factory: Callable[[], ThumbnailRenderer] | None = None,
        simple_factory: Callable[[], ThumbnailRenderer] | None = None,
    ) -> None:
        self.config = config
        self.video_basename = video_basename
        self.encode_timeout_seconds = encode_timeout_seconds
        self.staging = StagingArea(output_dir)
        self._encoding = False

        def build_rich() -> ThumbnailRenderer:
            rich_module = load_rich_renderer_module()
            return rich_module.RichThumbnailRenderer(
                config,
                fonts_dir=fonts_dir,
                image_timeout_seconds=image_timeout_seconds,
            )

        self.controller = RendererController(
            capability,
            rich_factory=rich_factory or build_rich,
            simple_factory=simple_factory or (lambda: SimpleThumbnailRenderer(config)),
        )

    @property
    def backend(self) -> str:
        return self.controller.state.value

    def init(self) -> None:
        self.staging.init()
        self.controller.init()

    def generate_thumbnail(self, product: Product, rank_index: int) -> Thumbnail:
        return self.controller.render(product, rank_index)

    def generate_video(
        self, products: Sequence[Product], audio_path: str | None = None
    ) -> RenderResult:
        """Stage frames for every product and encode them into one MP4."""
        if self._encoding:
            raise RenderPipelineError(
                ENCODE_BUSY_CODE, "an encode is already running for this staging area"
            )
        self._encoding = True
        try:
            ordered = ensure_products(products)
            self.staging.reset()
            staged = stage_product_frames(
                ordered, self.config, self.generate_thumbnail, self.staging
            )
            job = EncodeJob(
                frames_pattern=staged.pattern_path,
                frame_count=staged.frame_count,
                fps=self.config.fps,
                width=self.config.width,
                height=self.config.height,
                duration_cap_seconds=self.config.duration_seconds,
                audio_track=resolve_audio_track(audio_path),
                output_path=build_output_path(self.staging.output_dir, self.video_basename),
            )
            output_path = run_encode_job(job, self.encode_timeout_seconds)
        finally:
            self._encoding = False

        self._log_output_duration(output_path)
        LOGGER.info("render_product_video.done: %s", output_path)
        return RenderResult(
            output_path=output_path,
            frame_count=staged.frame_count,
            backend=self.backend,
        )

    def cleanup(self) -> None:
        self.staging.cleanup()

    def _log_output_duration(self, output_path: str) -> None:
        if not shutil.which("ffprobe"):
            return
        try:
            duration_seconds = probe_duration_seconds(output_path)
        except RenderPipelineError as exc:
            LOGGER.warning("%s: %s", exc.code, str(exc).strip())
            return
        LOGGER.info("render_product_video.duration: %.3fs", duration_seconds)
        if duration_seconds > self.config.duration_seconds + DURATION_TOLERANCE_SECONDS:
            LOGGER.warning(
                "%s: output runs %.3fs, cap is %gs",
                ENCODE_PROCESS_CODE,
                duration_seconds,
                self.config.duration_seconds,
            )


def read_env_number(name: str, cast: Callable[[str], float]) -> float:
    """Read a numeric default from the environment."""
    raw_value = os.environ.get(name, "").strip()
    if not raw_value:
        return ENV_DEFAULTS[name]
    try:
        return cast(raw_value)
    except ValueError as exc:
        raise RenderValidationError(
            INVALID_CONFIG_CODE, f"{name} must be a number: {raw_value!r}"
        ) from exc


def parse_args(argv: Sequence[str]) -> GenerateRequest:
    """Parse CLI arguments into a GenerateRequest."""
    parser = argparse.ArgumentParser(prog="render_product_video.py", add_help=True)
    source_group = parser.add_mutually_exclusive_group(required=True)
    source_group.add_argument("--products-file")
    source_group.add_argument("--demo", action="store_true")
    parser.add_argument("--audio-track", default=None)
    parser.add_argument("--output-dir", default=DEFAULT_OUTPUT_DIR)
    parser.add_argument("--video-basename", default=DEFAULT_VIDEO_BASENAME)
    parser.add_argument("--width", type=int, default=None)
    parser.add_argument("--height", type=int, default=None)
    parser.add_argument("--fps", type=int, default=None)
    parser.add_argument("--duration-seconds", type=float, default=None)
    parser.add_argument("--renderer", choices=RENDERER_CHOICES, default="auto")
    parser.add_argument("--fonts-dir", default=None)
    parser.add_argument(
        "--image-timeout-seconds", type=float, default=DEFAULT_IMAGE_TIMEOUT_SECONDS
    )
    parser.add_argument(
        "--encode-timeout-seconds", type=float, default=DEFAULT_ENCODE_TIMEOUT_SECONDS
    )

    parsed = parser.parse_args(argv)

    width = parsed.width
    if width is None:
        width = int(read_env_number("VIDEO_WIDTH", int))
    height = parsed.height
    if height is None:
        height = int(read_env_number("VIDEO_HEIGHT", int))
    fps = parsed.fps
    if fps is None:
        fps = int(read_env_number("VIDEO_FPS", int))
    duration_seconds = parsed.duration_seconds
    if duration_seconds is None:
        duration_seconds = read_env_number("VIDEO_DURATION", float)
    config = VideoConfig(
        width=width, height=height, fps=fps, duration_seconds=duration_seconds
    )
    if config.width % 2 or config.height % 2:
        raise RenderValidationError(
            INVALID_CONFIG_CODE, "width and height must be even for yuv420p output"
        )
    if parsed.image_timeout_seconds <= 0 or parsed.encode_timeout_seconds <= 0:
        raise RenderValidationError(INVALID_CONFIG_CODE, "timeouts must be positive")
    if not parsed.video_basename.strip():
        raise RenderValidationError(
            INVALID_CONFIG_CODE, "video-basename must be non-empty"
        )

    if parsed.demo:
        products = DEMO_PRODUCTS
    else:
        products = load_products_file(parsed.products_file)

    return GenerateRequest(
        config=config,
        products=products,
        audio_track=parsed.audio_track,
        output_dir=parsed.output_dir,
        video_basename=parsed.video_basename,
        renderer=parsed.renderer,
        fonts_dir=parsed.fonts_dir,
        image_timeout_seconds=parsed.image_timeout_seconds,
        encode_timeout_seconds=parsed.encode_timeout_seconds,
    )


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint."""
    configure_logging()

    try:
        request = parse_args(sys.argv[1:] if argv is None else argv)
        generator = ProductVideoGenerator(
            request.config,
            resolve_capability(request.renderer),
            output_dir=request.output_dir,
            video_basename=request.video_basename,
            fonts_dir=request.fonts_dir,
            image_timeout_seconds=request.image_timeout_seconds,
            encode_timeout_seconds=request.encode_timeout_seconds,
        )
        try:
            generator.init()
            result = generator.generate_video(request.products, request.audio_track)
        finally:
            generator.cleanup()
        sys.stdout.write(result.output_path + "\n")
        return 0
    except RenderValidationError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except RenderPipelineError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except RasterizeError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except Exception as exc:
        LOGGER.error("render_product_video.unhandled_error: %s", str(exc).strip())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
