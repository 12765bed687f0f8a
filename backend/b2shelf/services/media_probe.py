"""Video enrichment through ffmpeg — duration probe and one-frame thumbnail.

Nothing here raises for media problems: callers get either an
``Enrichment`` or an ``EnrichmentError`` value back.
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

import ffmpeg

from b2shelf.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnrichmentError:
    stage: str  # "probe" | "thumbnail"
    message: str


@dataclass(frozen=True)
class Enrichment:
    duration: float | None = None
    thumbnail_path: Path | None = None
    warnings: tuple[EnrichmentError, ...] = field(default_factory=tuple)


EnrichmentResult = Union[Enrichment, EnrichmentError]

FFMPEG_FAILURES = (ffmpeg.Error, OSError, ValueError, subprocess.TimeoutExpired)


def _error_text(e: Exception) -> str:
    stderr = getattr(e, "stderr", None)
    if isinstance(stderr, bytes) and stderr:
        return stderr.decode("utf-8", errors="replace").strip().splitlines()[-1]
    return str(e) or e.__class__.__name__


def probe_duration(path: Path) -> float:
    """Container duration in seconds; raises ffmpeg.Error / OSError / ValueError."""
    info = ffmpeg.probe(str(path), timeout=settings.ffmpeg_timeout_seconds)
    duration = (info.get("format") or {}).get("duration")
    if duration is None:
        for stream in info.get("streams", []):
            if stream.get("codec_type") == "video" and stream.get("duration"):
                duration = stream["duration"]
                break
    if duration is None:
        raise ValueError("no duration in probe output")
    return float(duration)


def render_thumbnail(path: Path, output: Path, at_seconds: float, size: str | None = None) -> Path:
    """Grab a single JPEG frame scaled to ``size`` (WxH)."""
    width, height = (size or settings.thumbnail_size).lower().split("x")
    (
        ffmpeg
        .input(str(path), ss=max(at_seconds, 0.0))
        .filter("scale", int(width), int(height))
        .output(str(output), vframes=1, format="image2", vcodec="mjpeg")
        .overwrite_output()
        .run(capture_stdout=True, capture_stderr=True, quiet=True)
    )
    if not output.exists() or output.stat().st_size == 0:
        raise ValueError("ffmpeg produced no thumbnail")
    return output


class MediaProbe:
    """Runs the ffmpeg steps in a worker thread."""

    def __init__(self, work_dir: str | Path | None = None):
        self._work_dir = Path(work_dir or settings.temp_dir)

    def _enrich_sync(self, path: Path) -> EnrichmentResult:
        try:
            duration = probe_duration(path)
        except FFMPEG_FAILURES as e:
            return EnrichmentError(stage="probe", message=_error_text(e))

        thumb = self._work_dir / f"{path.name}_thumb.jpg"
        try:
            self._work_dir.mkdir(parents=True, exist_ok=True)
            render_thumbnail(path, thumb, duration * settings.thumbnail_position)
        except FFMPEG_FAILURES as e:
            if thumb.exists():
                thumb.unlink()
            return Enrichment(
                duration=duration,
                warnings=(EnrichmentError(stage="thumbnail", message=_error_text(e)),),
            )
        return Enrichment(duration=duration, thumbnail_path=thumb)

    async def enrich(self, path: Path) -> EnrichmentResult:
        return await asyncio.to_thread(self._enrich_sync, path)
