"""Video description: frames, time windows and ffprobe output parsing."""

from __future__ import annotations

import math
from dataclasses import dataclass, field


def _number(value: float) -> str:
    return format(value, "g")


def format_seconds(value: float) -> str:
    """Format a time in seconds as ``m:ss[.fff]``."""
    whole = int(value)
    minutes = math.trunc(whole / 60)
    seconds = math.fmod(whole, 60) + (value - whole)
    padding = "0" if seconds < 10 else ""
    return f"{minutes}:{padding}{_number(seconds)}"


@dataclass(frozen=True)
class TimeWindow:
    """A half-open interval of time, in seconds."""

    start: float = 0.0
    end: float = 0.0

    @property
    def duration(self) -> float:
        return self.end - self.start

    def contains(self, t: float) -> bool:
        return self.start <= t < self.end

    @classmethod
    def from_start_and_end(cls, start: float, end: float) -> TimeWindow:
        return cls(start, end)

    @classmethod
    def from_start_and_duration(cls, start: float, duration: float) -> TimeWindow:
        return cls(start, start + duration)

    def __str__(self) -> str:
        return f"{format_seconds(self.start)} - {format_seconds(self.end)}"


@dataclass
class VideoFrameInfo:
    """Per-frame data: timestamp, hash and the marks set by detection passes."""

    pts: int = 0
    phash: int = 0
    silence: bool = False
    black: bool = False
    scscore: float | None = None
    excluded: bool = False
    reusable: bool = False


@dataclass
class SceneChange:
    score: float
    time: float


@dataclass
class VideoInfo:
    """A video file together with its frames and detected events."""

    file_path: str = ""
    duration: float = 0.0
    exact_frame_rate: tuple[int, int] = (1, 1)
    read_packets: int = 0
    frames: list[VideoFrameInfo] = field(default_factory=list)
    silences: list[TimeWindow] = field(default_factory=list)
    blackframes: list[TimeWindow] = field(default_factory=list)
    scenechanges: list[SceneChange] = field(default_factory=list)

    def frame_delta(self) -> float:
        """Duration of one pts unit, in seconds."""
        numerator, denominator = self.exact_frame_rate
        return denominator / numerator

    def frame_timestamp(self, n: int) -> float:
        """Timestamp in seconds of the n-th frame."""
        return self.frames[n].pts * self.frame_delta()

    def nth_frame_pts(self, n: int) -> int:
        """Pts of the n-th frame, or one past the last frame beyond the end."""
        if n < len(self.frames):
            return self.frames[n].pts
        return self.frames[-1].pts + 1


class FFprobeOutputExtractor:
    """Looks up ``key=value`` entries in ffprobe's default output format."""

    def __init__(self, output: str) -> None:
        self.output = output

    def try_extract(self, key: str) -> str | None:
        prefix = key + "="
        start = self.output.find(prefix)
        if start == -1:
            return None
        start += len(prefix)
        stop = self.output.find("\n", start)
        if stop == -1:
            return None
        return " ".join(self.output[start:stop].split())

    def extract(self, key: str) -> str:
        value = self.try_extract(key)
        if value is None:
            raise ValueError(f"no such value: {key}")
        return value


def _to_float(text: str) -> float:
    try:
        return float(text)
    except ValueError:
        return 0.0


def _to_int(text: str) -> int:
    try:
        return int(text)
    except ValueError:
        return 0


def parse_video_info(file_path: str, output: str) -> VideoInfo:
    """Build a VideoInfo from the ffprobe stream and format report of a file."""
    extractor = FFprobeOutputExtractor(output)
    duration = _to_float(extractor.extract("duration"))
    read_packets = _to_int(extractor.extract("nb_read_packets"))

    parts = extractor.extract("r_frame_rate").split("/")
    if len(parts) != 2:
        raise ValueError("bad r_frame_rate value")

    return VideoInfo(
        file_path=file_path,
        duration=duration,
        exact_frame_rate=(_to_int(parts[0]), _to_int(parts[1])),
        read_packets=read_packets,
    )