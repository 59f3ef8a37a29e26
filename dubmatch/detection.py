"""Silence, black-frame and scene-change detection results, their caches and frame marks."""

from __future__ import annotations

import logging
import struct
from bisect import bisect_left
from collections.abc import Iterable
from pathlib import Path

from dubmatch.framespan import mark_frames
from dubmatch.video import SceneChange, TimeWindow, VideoFrameInfo, VideoInfo

logger = logging.getLogger(__name__)

_COUNT = struct.Struct(">Q")
_FRAME = struct.Struct(">iQ")


def _number(value: float) -> str:
    return format(value, "g")


def _to_float(text: str) -> float:
    try:
        return float(text)
    except ValueError:
        return 0.0


def _simplified(text: str) -> str:
    return " ".join(text.split())


# --- ffmpeg filter output parsing ---


def parse_silencedetect_output(output: str) -> list[TimeWindow]:
    """Extract silence windows from the log of ffmpeg's silencedetect filter."""
    lines = [line for line in output.split("\n") if "silencedetect" in line]
    if len(lines) % 2:
        raise ValueError("unpaired silencedetect lines")

    result = []
    for start_line, end_line in zip(lines[::2], lines[1::2]):
        index = start_line.find("silence_start:")
        if index == -1:
            raise ValueError(f"missing silence_start in: {start_line!r}")
        start = _to_float(_simplified(start_line[index + 14 :]))

        index = end_line.find("silence_duration:")
        if index == -1:
            raise ValueError(f"missing silence_duration in: {end_line!r}")
        duration = _to_float(_simplified(end_line[index + 17 :]))

        result.append(TimeWindow.from_start_and_duration(start, duration))
    return result


def parse_blackdetect_output(output: str) -> list[TimeWindow]:
    """Extract black-frame windows from the log of ffmpeg's blackdetect filter."""
    result = []
    for line in output.split("\n"):
        if "[blackdetect @" not in line:
            continue
        start_index = line.find("black_start:")
        if start_index == -1:
            continue
        end_index = line.find("black_end:", start_index)
        if end_index == -1:
            continue
        duration_index = line.find("black_duration:", end_index)
        if duration_index == -1:
            continue

        start = _to_float(line[start_index + 12 : end_index - 1])
        end = _to_float(line[end_index + 10 : duration_index - 1])
        result.append(TimeWindow.from_start_and_end(start, end))
    return result


def parse_scdet_output(output: str) -> list[SceneChange]:
    """Extract scene changes from the log of ffmpeg's scdet filter."""
    result = []
    for line in output.split("\n"):
        if "[scdet @" not in line:
            continue
        score_index = line.find("lavfi.scd.score:")
        if score_index == -1:
            continue
        time_index = line.find(", lavfi.scd.time:", score_index)
        if time_index == -1:
            continue

        score = _to_float(line[score_index + 17 : time_index])
        time = _to_float(_simplified(line[time_index + 17 :]))
        result.append(SceneChange(score=score, time=time))
    return result


# --- caches ---


def read_frames(path: str | Path) -> list[VideoFrameInfo]:
    """Read frame timestamps and hashes from a binary cache file."""
    data = Path(path).read_bytes()
    if len(data) < _COUNT.size:
        raise ValueError(f"truncated frame cache: {path}")
    (count,) = _COUNT.unpack_from(data)
    end = _COUNT.size + count * _FRAME.size
    if len(data) < end:
        raise ValueError(f"truncated frame cache: {path}")
    if len(data) > end:
        logger.warning("not at end of file %s", path)
    return [
        VideoFrameInfo(pts=pts, phash=phash)
        for pts, phash in _FRAME.iter_unpack(data[_COUNT.size : end])
    ]


def write_frames(frames: Iterable[VideoFrameInfo], path: str | Path) -> None:
    """Write frame timestamps and hashes to a binary cache file."""
    frames = list(frames)
    payload = b"".join(_FRAME.pack(frame.pts, frame.phash) for frame in frames)
    Path(path).write_bytes(_COUNT.pack(len(frames)) + payload)


def _read_pairs(path: str | Path) -> list[tuple[float, float]]:
    result = []
    with open(path, encoding="utf-8") as stream:
        for line in stream:
            parts = line.rstrip("\r\n").split(",")
            if len(parts) != 2:
                break
            result.append((_to_float(parts[0]), _to_float(parts[1])))
    return result


def _write_pairs(pairs: Iterable[tuple[float, float]], path: str | Path) -> None:
    with open(path, "w", encoding="utf-8", newline="\n") as stream:
        for first, second in pairs:
            stream.write(f"{_number(first)},{_number(second)}\n")


def read_windows(path: str | Path) -> list[TimeWindow]:
    """Read ``start,end`` time windows from a text cache file."""
    return [TimeWindow.from_start_and_end(s, e) for s, e in _read_pairs(path)]


def write_windows(windows: Iterable[TimeWindow], path: str | Path) -> None:
    """Write time windows as ``start,end`` lines."""
    _write_pairs(((w.start, w.end) for w in windows), path)


def read_scene_changes(path: str | Path) -> list[SceneChange]:
    """Read ``score,time`` scene changes from a text cache file."""
    return [SceneChange(score=s, time=t) for s, t in _read_pairs(path)]


def write_scene_changes(changes: Iterable[SceneChange], path: str | Path) -> None:
    """Write scene changes as ``score,time`` lines."""
    _write_pairs(((c.score, c.time) for c in changes), path)


# --- frame marking ---


def _set_silence(frame: VideoFrameInfo) -> None:
    frame.silence = True


def _clear_silence(frame: VideoFrameInfo) -> None:
    frame.silence = False


def _set_black(frame: VideoFrameInfo) -> None:
    frame.black = True


def _set_excluded(frame: VideoFrameInfo) -> None:
    frame.excluded = True


def _set_reusable(frame: VideoFrameInfo) -> None:
    frame.reusable = True


def _require_frames(video: VideoInfo) -> None:
    if not video.frames:
        raise ValueError("video has no frames")


def mark_silence_frames(video: VideoInfo) -> None:
    """Flag the frames lying in the video's silences."""
    mark_frames(video, video.silences, _set_silence)


def mark_black_frames(video: VideoInfo) -> None:
    """Flag the frames lying in the video's black windows."""
    mark_frames(video, video.blackframes, _set_black)


def _fuzzy_equal(a: float, b: float) -> bool:
    return abs(a - b) * 1e12 <= min(abs(a), abs(b))


def mark_sc_frames(video: VideoInfo) -> None:
    """Attach each scene-change score to the frame showing at its time."""
    _require_frames(video)
    delta = video.frame_delta()
    for change in video.scenechanges:
        index = bisect_left(video.frames, change.time, key=lambda f: f.pts * delta)
        if index == len(video.frames):
            continue
        t = video.frames[index].pts * delta
        if not _fuzzy_equal(t, change.time) and index > 0:
            index -= 1
        video.frames[index].scscore = change.score


def silence_borders(frames: list[VideoFrameInfo], n: int = 10) -> None:
    """Extend silences found within ``n`` frames of either end up to that end."""
    n = min(n, len(frames))
    head = next((i for i in range(n) if frames[i].silence), None)
    if head is not None:
        for frame in frames[:head]:
            frame.silence = True

    tail = next((i for i in range(n) if frames[-1 - i].silence), None)
    if tail is not None:
        for i in range(tail):
            frames[-1 - i].silence = True


def filter_sc(video: VideoInfo, min_score: float) -> None:
    """Drop scene changes scoring below ``min_score``."""
    video.scenechanges = [c for c in video.scenechanges if c.score >= min_score]


def _score(frame: VideoFrameInfo) -> float:
    return float("inf") if frame.scscore is None else frame.scscore


def merge_small_scenes(video: VideoInfo, min_size: int) -> None:
    """Remove the weaker boundary of every scene shorter than ``min_size`` frames."""
    frames = video.frames
    total = len(frames)
    current = 0
    while current < total:
        start = current + 1 if frames[current].scscore is not None else current
        following = next(
            (i for i in range(start, total) if frames[i].scscore is not None), total
        )

        if following - current >= min_size:
            current = following
            continue

        if following == total:
            frames[current].scscore = None
            break

        if _score(frames[following]) < _score(frames[current]):
            frames[following].scscore = None
        else:
            frames[current].scscore = None
            current = following


def mark_excluded_frames(video: VideoInfo, segments: Iterable[TimeWindow]) -> None:
    """Flag the frames lying in ``segments`` as excluded from dubbing."""
    _require_frames(video)
    mark_frames(video, segments, _set_excluded)


def prevent_breaks_at_frames(video: VideoInfo, segments: Iterable[TimeWindow]) -> None:
    """Clear silence on the frames lying in ``segments`` so no break occurs there."""
    _require_frames(video)
    mark_frames(video, segments, _clear_silence)


def mark_reusable_frames(video: VideoInfo, segments: Iterable[TimeWindow]) -> None:
    """Flag the frames lying in ``segments`` as reusable audio."""
    mark_frames(video, segments, _set_reusable)