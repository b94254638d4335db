"""ffmpeg integration for shrinking video uploads to audio before transcription."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from fastapi.concurrency import run_in_threadpool

from transcriptor.config.settings import ExtractionConfig

logger = logging.getLogger(__name__)

_MB = 1024 * 1024

VIDEO_CONTENT_TYPES = frozenset(
    {
        "video/mp4",
        "video/quicktime",
        "video/x-msvideo",
        "video/webm",
        "video/x-ms-wmv",
        "video/x-flv",
        "video/x-matroska",
    }
)
VIDEO_EXTENSIONS = frozenset({".mp4", ".mov", ".avi", ".webm", ".wmv", ".flv", ".mkv"})


class AudioFormat(str, Enum):
    MP3 = "mp3"
    FLAC = "flac"
    WAV = "wav"

    @property
    def codec(self) -> str:
        return _CODECS[self]

    @property
    def content_type(self) -> str:
        return _CONTENT_TYPES[self]


_CODECS = {
    AudioFormat.MP3: "libmp3lame",
    AudioFormat.FLAC: "flac",
    AudioFormat.WAV: "pcm_s16le",
}
_CONTENT_TYPES = {
    AudioFormat.MP3: "audio/mpeg",
    AudioFormat.FLAC: "audio/flac",
    AudioFormat.WAV: "audio/wav",
}
_MP3_BITRATES = {"high": "192k", "medium": "128k", "low": "96k"}


class ExtractionError(RuntimeError):
    """Raised when ffmpeg fails to extract an audio track."""


@dataclass(frozen=True)
class ExtractionOptions:
    format: AudioFormat = AudioFormat.MP3
    quality: str = "medium"


@dataclass(frozen=True)
class ExtractionResult:
    output_path: Path
    format: AudioFormat
    original_size: int
    audio_size: int

    @property
    def reduction_percent(self) -> float:
        if self.original_size <= 0:
            return 0.0
        return (self.original_size - self.audio_size) / self.original_size * 100


class AudioExtractionService:
    """Strip the video stream and resample audio with ffmpeg."""

    def __init__(self, config: ExtractionConfig) -> None:
        self._config = config

    def is_applicable(self, path: Path | str, content_type: str | None = None) -> bool:
        """Return True for recognized video containers."""

        if content_type and content_type.lower() in VIDEO_CONTENT_TYPES:
            return True
        return Path(path).suffix.lower() in VIDEO_EXTENSIONS

    def choose_format(self, byte_size: int) -> AudioFormat:
        """Pick the output encoding from the input size alone."""

        size_mb = byte_size / _MB
        if size_mb > self._config.compressed_above_mb:
            return AudioFormat.MP3
        if size_mb > self._config.lossless_above_mb:
            return AudioFormat.FLAC
        return AudioFormat.WAV

    def choose_options(self, byte_size: int) -> ExtractionOptions:
        quality = "medium" if byte_size / _MB > self._config.compressed_above_mb else "high"
        return ExtractionOptions(format=self.choose_format(byte_size), quality=quality)

    def build_command(self, source: Path, target: Path, options: ExtractionOptions) -> list[str]:
        cmd = [
            self._config.ffmpeg_binary,
            "-y",
            "-i", str(source),
            "-vn",
            "-acodec", options.format.codec,
            "-ar", str(self._config.sample_rate_hz),
            "-ac", str(self._config.channels),
        ]
        if options.format is AudioFormat.MP3:
            cmd += ["-b:a", _MP3_BITRATES.get(options.quality, "128k")]
        elif options.format is AudioFormat.WAV:
            cmd += ["-b:a", "256k"]
        else:
            cmd += ["-compression_level", "5"]
        cmd.append(str(target))
        return cmd

    async def extract(self, source: Path, options: ExtractionOptions | None = None) -> ExtractionResult:
        """Extract the audio track of ``source`` next to it and return the new asset."""

        return await run_in_threadpool(self._extract_sync, Path(source), options or ExtractionOptions())

    def _extract_sync(self, source: Path, options: ExtractionOptions) -> ExtractionResult:
        if not source.exists():
            raise ExtractionError(f"Source media not found: {source}")

        target = source.with_name(f"{source.stem}.audio.{options.format.value}")
        cmd = self.build_command(source, target, options)
        logger.info("Extracting audio: %s", " ".join(cmd))

        try:
            subprocess.run(
                cmd,
                check=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=self._config.timeout_seconds,
            )
        except subprocess.CalledProcessError as exc:
            error_msg = exc.stderr.decode("utf-8", errors="replace") if exc.stderr else str(exc)
            logger.error("ffmpeg failed. stderr: %s", error_msg)
            _remove_quietly(target)
            raise ExtractionError(f"Audio extraction failed: {error_msg}") from exc
        except (OSError, subprocess.TimeoutExpired) as exc:
            _remove_quietly(target)
            raise ExtractionError(f"Audio extraction failed: {exc}") from exc

        result = ExtractionResult(
            output_path=target,
            format=options.format,
            original_size=source.stat().st_size,
            audio_size=target.stat().st_size if target.exists() else 0,
        )
        logger.info(
            "Audio extraction completed: %s (%.1fMB -> %.1fMB, %.1f%% smaller)",
            target.name,
            result.original_size / _MB,
            result.audio_size / _MB,
            result.reduction_percent,
        )
        return result

    def is_available(self) -> bool:
        """Probe whether the ffmpeg binary can be executed."""

        try:
            subprocess.run(
                [self._config.ffmpeg_binary, "-version"],
                check=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=10,
            )
        except (OSError, subprocess.SubprocessError):
            return False
        return True

    @staticmethod
    def cleanup(path: Path | None) -> None:
        if path is None:
            return
        if _remove_quietly(path):
            logger.info("Cleaned up audio file %s", path.name)


def _remove_quietly(path: Path) -> bool:
    try:
        if path.exists():
            path.unlink()
            return True
    except OSError as exc:
        logger.warning("Failed to remove %s: %s", path, exc)
    return False


__all__ = [
    "AudioExtractionService",
    "AudioFormat",
    "ExtractionError",
    "ExtractionOptions",
    "ExtractionResult",
]
