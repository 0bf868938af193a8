"""Final video assembly with ffmpeg.

Each scene image becomes a clip of the scene's length, scaled and padded
to the output resolution with a slow Ken Burns zoom. The storyboard's
transition for a scene decides how it hands over to the next one. Fades
and dissolves fade through black into the next clip; zooms push further
in before a hard cut. Clips are joined with the concat
demuxer, the narration track is muxed in, and an SRT file is written from
the scene narration.
"""

import asyncio
import logging
import subprocess
from pathlib import Path
from typing import Optional

from storyflow.config import settings
from storyflow.schemas.media import RenderOutput
from storyflow.services.file_manager import FileManager
from storyflow.services.generators import GenerationResult, RenderRequest, RenderScene, VideoRenderer

logger = logging.getLogger(__name__)

FPS = 30
FADE_SECONDS = 0.25
ZOOM_END = 1.3
ZOOM_TRANSITION_END = 1.5


def _timestamp(seconds: float) -> str:
    millis = int(round(max(seconds, 0.0) * 1000))
    hours, millis = divmod(millis, 3_600_000)
    minutes, millis = divmod(millis, 60_000)
    secs, millis = divmod(millis, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def build_srt(scenes: list[RenderScene]) -> str:
    """SRT cues from scene narration; scenes without narration are skipped."""
    cues = []
    for scene in scenes:
        if not scene.narration.strip():
            continue
        cues.append(
            f"{len(cues) + 1}\n"
            f"{_timestamp(scene.start_time)} --> {_timestamp(scene.end_time)}\n"
            f"{scene.narration.strip()}\n"
        )
    return "\n".join(cues)


def parse_resolution(resolution: str) -> tuple[int, int]:
    width, _, height = resolution.lower().partition("x")
    return int(width), int(height)


def clip_frames(seconds: float) -> int:
    return max(int(round(seconds * FPS)), 1)


def transition_kind(transition: Optional[str]) -> str:
    """Reduce a free-text storyboard transition to cut, fade or zoom."""
    text = (transition or "").strip().lower()
    if "fade" in text or "dissolve" in text:
        return "fade"
    if "zoom" in text:
        return "zoom"
    return "cut"


def scene_filter(
    seconds: float,
    width: int,
    height: int,
    transition: Optional[str] = None,
    fade_in: bool = False,
    is_last: bool = False,
) -> str:
    """ffmpeg filter chain turning one still image into a scene clip.

    Args:
        seconds: Clip length
        width: Output width
        height: Output height
        transition: This scene's transition into the next one
        fade_in: Whether the previous scene fades into this one
        is_last: Last scene (no outgoing transition)
    """
    frames = clip_frames(seconds)
    kind = "cut" if is_last else transition_kind(transition)
    zoom_end = ZOOM_TRANSITION_END if kind == "zoom" else ZOOM_END
    parts = [
        f"scale={width}:{height}:force_original_aspect_ratio=decrease",
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2",
        f"zoompan=z='min(1.0+{zoom_end - 1.0:.2f}*on/{frames},{zoom_end:.2f})'"
        f":x='iw/2-(iw/zoom/2)':y='ih/2-(ih/zoom/2)':d={frames}:s={width}x{height}:fps={FPS}",
    ]
    fade = min(FADE_SECONDS, frames / FPS / 4)
    if fade_in:
        parts.append(f"fade=t=in:st=0:d={fade:.3f}")
    if kind == "fade":
        parts.append(f"fade=t=out:st={frames / FPS - fade:.3f}:d={fade:.3f}")
    parts.append("format=yuv420p")
    return ",".join(parts)


def _render_clip(image: Path, frames: int, video_filter: str, output: Path) -> None:
    """Encode one image as a clip of exactly frames frames."""
    subprocess.run(
        [
            "ffmpeg",
            "-y",
            "-i", str(image),
            "-vf", video_filter,
            "-frames:v", str(frames),
            "-c:v", "libx264",
            "-preset", "medium",
            "-crf", "23",
            str(output),
        ],
        check=True,
        capture_output=True,
    )



def _concat_clips(clip_paths: list[Path], output_path: Path) -> None:
    """Join clips with the concat demuxer (stream copy, hard cuts)."""
    list_file = output_path.parent / "concat_list.txt"
    try:
        with open(list_file, "w") as f:
            for clip_path in clip_paths:
                # -safe 0 below allows these absolute paths
                f.write(f"file '{clip_path.resolve()}'\n")

        subprocess.run(
            [
                "ffmpeg",
                "-y",
                "-f", "concat",
                "-safe", "0",
                "-i", str(list_file),
                "-c", "copy",
                str(output_path),
            ],
            check=True,
            capture_output=True,
        )
    finally:
        if list_file.exists():
            list_file.unlink()


def _mux_audio(video: Path, audio: Path, output: Path) -> None:
    subprocess.run(
        [
            "ffmpeg",
            "-y",
            "-i", str(video),
            "-i", str(audio),
            "-map", "0:v",
            "-map", "1:a",
            "-c:v", "copy",
            "-c:a", "aac",
            "-b:a", "128k",
            "-movflags", "+faststart",
            "-shortest",
            str(output),
        ],
        check=True,
        capture_output=True,
    )


def assemble(
    scenes: list[RenderScene],
    audio: Optional[Path],
    work_dir: Path,
    output_path: Path,
    resolution: str,
) -> None:
    """Blocking ffmpeg pipeline; run it in a worker thread."""
    width, height = parse_resolution(resolution)
    clips = []
    fade_in = False
    for index, scene in enumerate(scenes):
        seconds = max(scene.end_time - scene.start_time, 1.0 / FPS)
        is_last = index == len(scenes) - 1
        video_filter = scene_filter(seconds, width, height, scene.transition, fade_in, is_last)
        clip = work_dir / f"scene_{scene.order}.mp4"
        _render_clip(Path(scene.asset_url), clip_frames(seconds), video_filter, clip)
        clips.append(clip)
        fade_in = not is_last and transition_kind(scene.transition) == "fade"

    if audio is None:
        _concat_clips(clips, output_path)
        return
    silent = work_dir / "silent.mp4"
    _concat_clips(clips, silent)
    _mux_audio(silent, audio, output_path)


class FfmpegRenderer(VideoRenderer):
    """Renders the final MP4 and subtitles locally; the call itself is free."""

    def __init__(self, file_manager: Optional[FileManager] = None, resolution: Optional[str] = None):
        self.file_manager = file_manager or FileManager()
        self.resolution = resolution or settings.pipeline.render_resolution

    async def generate(self, request: RenderRequest) -> GenerationResult[RenderOutput]:
        if not request.scenes:
            raise ValueError("Nothing to render: no scenes")
        scenes = sorted(request.scenes, key=lambda s: s.order)
        missing = [s.asset_url for s in scenes if not Path(s.asset_url).exists()]
        if missing:
            raise FileNotFoundError(f"Missing scene assets: {missing}")

        output_path = self.file_manager.get_output_path(request.project_id, "final.mp4")
        work_dir = self.file_manager.get_work_dir(request.project_id)
        audio = Path(request.audio_url) if request.audio_url else None
        logger.info(f"Project {request.project_id}: rendering {len(scenes)} scenes at {self.resolution}")

        try:
            await asyncio.to_thread(assemble, scenes, audio, work_dir, output_path, self.resolution)
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode(errors="replace") if e.stderr else "No error output"
            logger.error(f"Project {request.project_id}: ffmpeg error: {stderr}")
            raise RuntimeError(f"Video rendering failed: {stderr[-500:]}") from e

        subtitles_path = self.file_manager.get_output_path(request.project_id, "final.srt")
        subtitles_path.write_text(build_srt(scenes), encoding="utf-8")

        duration = max(s.end_time for s in scenes)
        logger.info(f"Project {request.project_id}: render complete -> {output_path}")
        return GenerationResult(
            RenderOutput(
                url=str(output_path),
                subtitles_url=str(subtitles_path),
                duration=duration,
                resolution=self.resolution,
                file_size=output_path.stat().st_size,
                format="mp4",
            ),
            0.0,
        )
