"""Contiguous runs of frames within a video, and frame-level search helpers."""

from __future__ import annotations

from bisect import bisect_left
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path

from dubmatch.video import TimeWindow, VideoFrameInfo, VideoInfo, format_seconds


class FrameSpan:
    """A half-open range ``[first, first + count)`` of frame indices in a video."""

    __hash__ = None  # type: ignore[assignment]

    def __init__(
        self,
        video: VideoInfo | None = None,
        offset: int = 0,
        count: int | None = 0,
    ) -> None:
        self.video = video
        if video is None:
            self.first = 0
            self.count = 0
            return
        total = len(video.frames)
        self.first = min(max(offset, 0), total)
        remaining = total - self.first
        self.count = remaining if count is None else min(max(count, 0), remaining)

    def _copy(self) -> FrameSpan:
        span = FrameSpan()
        span.video = self.video
        span.first = self.first
        span.count = self.count
        return span

    def _require_video(self) -> VideoInfo:
        if self.video is None:
            raise ValueError("span is not attached to a video")
        return self.video

    def __len__(self) -> int:
        return self.count

    def __iter__(self) -> Iterator[VideoFrameInfo]:
        video = self._require_video() if self.count else None
        if video is None:
            return iter(())
        return iter(video.frames[self.first : self.first + self.count])

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FrameSpan):
            return NotImplemented
        return (
            self.video is other.video
            and self.start_offset == other.start_offset
            and self.end_offset == other.end_offset
        )

    def __repr__(self) -> str:
        return f"FrameSpan(first={self.first}, count={self.count})"

    def __str__(self) -> str:
        video = self._require_video()
        delta = video.frame_delta()
        name = Path(video.file_path).stem
        start = format_seconds(video.nth_frame_pts(self.first) * delta)
        end = format_seconds(video.nth_frame_pts(self.first + self.count) * delta)
        return f"{name}[{start}-{end}]"

    @property
    def start_offset(self) -> int:
        return self.first

    @property
    def end_offset(self) -> int:
        return self.first + self.count

    def at(self, i: int) -> VideoFrameInfo:
        """Return the i-th frame of the span."""
        if not 0 <= i < self.count:
            raise IndexError(f"frame {i} outside span of {self.count} frames")
        return self._require_video().frames[self.first + i]

    def move_start_offset_to(self, dest: int) -> None:
        """Move the start to ``dest``, keeping the end in place."""
        if dest > self.end_offset:
            raise ValueError("start cannot move past the end of the span")
        self.count = self.end_offset - dest
        self.first = dest

    def move_end_offset(self, dest: int) -> None:
        """Move the end to ``dest``, keeping the start in place."""
        if dest <= self.first:
            raise ValueError("end must stay after the start of the span")
        self.count = dest - self.first

    def widen_left(self, num: int) -> None:
        """Extend the span by up to ``num`` frames to the left."""
        num = min(self.first, num)
        self.first -= num
        self.count += num

    def trim_left(self, num: int) -> None:
        """Drop up to ``num`` frames from the start of the span."""
        num = min(num, self.count)
        self.first += num
        self.count -= num

    def left(self, num: int) -> FrameSpan:
        """The first ``num`` frames, or the whole span if it is shorter."""
        result = self._copy()
        if num < self.count:
            result.count = num
        return result

    def right(self, num: int) -> FrameSpan:
        """The last ``num`` frames, or the whole span if it is shorter."""
        result = self._copy()
        if num < self.count:
            result.first = self.end_offset - num
            result.count = num
        return result

    def subspan(self, offset: int, count: int | None) -> FrameSpan:
        """A span starting ``offset`` frames into this one, clamped to the video."""
        return FrameSpan(self._require_video(), self.first + offset, count)

    def contains(self, other: FrameSpan) -> bool:
        """Tell whether ``other`` lies entirely within this span."""
        return (
            other.video is self.video
            and other.start_offset >= self.start_offset
            and other.end_offset <= self.end_offset
        )

    def duration(self) -> float:
        """Length of the span in seconds."""
        return self.count * self._require_video().frame_delta()


def merge(a: FrameSpan, b: FrameSpan) -> FrameSpan:
    """The smallest span covering both ``a`` and ``b``."""
    if b.start_offset < a.start_offset:
        a, b = b, a
    return FrameSpan(a.video, a.start_offset, b.end_offset - a.start_offset)


def _first_frame_at_or_after(video: VideoInfo, t: float) -> int:
    delta = video.frame_delta()
    return bisect_left(video.frames, t, key=lambda frame: frame.pts * delta)


def _frames_in_window(video: VideoInfo, window: TimeWindow) -> tuple[int, int]:
    delta = video.frame_delta()
    begin = _first_frame_at_or_after(video, window.start)
    end = begin
    while end < len(video.frames) and window.contains(video.frames[end].pts * delta):
        end += 1
    return begin, end


def get_span(video: VideoInfo, window: TimeWindow) -> FrameSpan:
    """The frames whose timestamps fall within ``window``."""
    begin, end = _frames_in_window(video, window)
    return FrameSpan(video, begin, end - begin)


def mark_frames(
    video: VideoInfo,
    windows: TimeWindow | Iterable[TimeWindow],
    fun: Callable[[VideoFrameInfo], object],
) -> None:
    """Apply ``fun`` to every frame lying in one of ``windows``."""
    if isinstance(windows, TimeWindow):
        windows = (windows,)
    for window in windows:
        begin, end = _frames_in_window(video, window)
        for frame in video.frames[begin:end]:
            fun(frame)


def find_next_blackframe(video: VideoInfo, index: int) -> int:
    """Index of the next black frame after ``index``, or the frame count."""
    return next(
        (i for i in range(index + 1, len(video.frames)) if video.frames[i].black),
        max(index + 1, len(video.frames)),
    )


def find_next_scframe(video: VideoInfo, index: int) -> int:
    """Index of the next scene-change frame after ``index``, or the frame count."""
    return next(
        (
            i
            for i in range(index + 1, len(video.frames))
            if video.frames[i].scscore is not None
        ),
        max(index + 1, len(video.frames)),
    )


def is_sc_frame_safe(video: VideoInfo, index: int) -> bool:
    """Tell whether a scene starts at ``index``; both ends of the video count."""
    total = len(video.frames)
    if index > total:
        return False
    if index in (0, total):
        return True
    return video.frames[index].scscore is not None


def split_at_scframes(span: FrameSpan) -> list[FrameSpan]:
    """Cut a span into scenes at its scene-change frames."""
    result: list[FrameSpan] = []
    if span.count == 0:
        return result
    video = span._require_video()
    i = span.start_offset
    end = span.end_offset
    while i < end:
        j = min(find_next_scframe(video, i), end)
        result.append(FrameSpan(video, i, j - i))
        i = j
    return result