"""Media storage and ffmpeg-backed assembly helpers."""

from __future__ import annotations

import subprocess
import uuid
from pathlib import Path
from typing import Protocol

import httpx

from app.core.settings import PATHS

MEDIA_URL_PREFIX = "/media/"


class MediaError(RuntimeError):
    pass


class Assembler(Protocol):
    def merge(self, segment_id: str, video_url: str, audio_url: str) -> str: ...

    def concat(self, project_id: str, video_urls: list[str]) -> str: ...


def _run(cmd: list[str]) -> subprocess.CompletedProcess[str]:
    proc = subprocess.run(cmd, capture_output=True, text=True)
    if proc.returncode != 0:
        raise MediaError(f"Command failed: {' '.join(cmd)}\n{proc.stderr.strip()}")
    return proc


def ffmpeg_available() -> bool:
    try:
        _run(["ffmpeg", "-version"])
        return True
    except (OSError, MediaError):
        return False


def media_url_for(path: Path, media_root: Path = PATHS.media_root) -> str:
    return MEDIA_URL_PREFIX + path.relative_to(media_root).as_posix()


def store_bytes(data: bytes, suffix: str, folder: str, media_root: Path = PATHS.media_root) -> str:
    target = media_root / folder / f"{uuid.uuid4().hex}{suffix}"
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    return media_url_for(target, media_root)


def download(url: str, output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with httpx.stream("GET", url, timeout=180, follow_redirects=True) as resp:
        resp.raise_for_status()
        with output_path.open("wb") as f:
            for chunk in resp.iter_bytes():
                f.write(chunk)


def resolve_local(url: str, work_dir: Path, media_root: Path = PATHS.media_root) -> Path:
    """Return a local file for ``url``, downloading remote media into ``work_dir``."""
    if url.startswith(MEDIA_URL_PREFIX):
        local = media_root / url[len(MEDIA_URL_PREFIX):]
        if not local.exists():
            raise MediaError(f"media file does not exist: {local}")
        return local
    if url.startswith(("http://", "https://")):
        suffix = Path(httpx.URL(url).path).suffix or ".bin"
        local = work_dir / f"{uuid.uuid4().hex}{suffix}"
        try:
            download(url, local)
        except httpx.HTTPError as exc:
            raise MediaError(f"download failed for {url}: {exc}") from exc
        return local
    raise MediaError(f"unsupported media url: {url}")


def merge_video_audio(video: Path, audio: Path, output_video: Path) -> None:
    output_video.parent.mkdir(parents=True, exist_ok=True)
    _run(
        [
            "ffmpeg",
            "-y",
            "-i",
            str(video),
            "-i",
            str(audio),
            "-map",
            "0:v:0",
            "-map",
            "1:a:0",
            "-c:v",
            "libx264",
            "-preset",
            "medium",
            "-pix_fmt",
            "yuv420p",
            "-c:a",
            "aac",
            "-ac",
            "2",
            "-ar",
            "48000",
            "-shortest",
            "-movflags",
            "+faststart",
            str(output_video),
        ]
    )


def concat_videos(videos: list[Path], output_video: Path) -> None:
    if not videos:
        raise MediaError("nothing to concatenate")
    output_video.parent.mkdir(parents=True, exist_ok=True)
    concat_txt = output_video.parent / f"{output_video.stem}_concat_list.txt"
    concat_txt.write_text(
        "".join(f"file '{path.as_posix()}'\n" for path in videos),
        encoding="utf-8",
    )

    _run(
        [
            "ffmpeg",
            "-y",
            "-f",
            "concat",
            "-safe",
            "0",
            "-i",
            str(concat_txt),
            "-c:v",
            "libx264",
            "-preset",
            "medium",
            "-pix_fmt",
            "yuv420p",
            "-c:a",
            "aac",
            "-ac",
            "2",
            "-ar",
            "48000",
            "-movflags",
            "+faststart",
            str(output_video),
        ]
    )


class FFmpegAssembler:
    def __init__(self, media_root: Path = PATHS.media_root):
        self.media_root = media_root

    def merge(self, segment_id: str, video_url: str, audio_url: str) -> str:
        work_dir = self.media_root / "segments" / segment_id
        video = resolve_local(video_url, work_dir, self.media_root)
        audio = resolve_local(audio_url, work_dir, self.media_root)
        output = work_dir / f"merged_{uuid.uuid4().hex[:8]}.mp4"
        merge_video_audio(video, audio, output)
        return media_url_for(output, self.media_root)

    def concat(self, project_id: str, video_urls: list[str]) -> str:
        work_dir = self.media_root / "projects" / project_id
        videos = [resolve_local(url, work_dir, self.media_root) for url in video_urls]
        output = work_dir / f"final_{uuid.uuid4().hex[:8]}.mp4"
        concat_videos(videos, output)
        return media_url_for(output, self.media_root)
