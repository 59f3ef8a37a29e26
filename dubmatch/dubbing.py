"""Cutting the video to dub into segments and assembling the dubbed audio timeline."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from dubmatch.framespan import (
    FrameSpan,
    find_next_blackframe,
    find_next_scframe,
    get_span,
)
from dubmatch.matching import MatchSettings, find_best_subspan_match
from dubmatch.video import TimeWindow, VideoInfo, format_seconds

logger = logging.getLogger(__name__)

_MIN_FINAL_SEGMENT_SECONDS = 0.250


@dataclass
class InputSegment:
    """A piece of audio taken from one of the sources: 0 is the video, 1 the audio source."""

    src: int = 0
    start: float = 0.0
    end: float = 0.0


@dataclass
class OutputSegment:
    """A run of output frames, starting at ``pts``, and the audio that plays during it."""

    pts: int = 0
    duration: int = 0
    input: InputSegment = field(default_factory=InputSegment)

    def __str__(self) -> str:
        return (
            f"{self.pts} --> {self.pts + self.duration} : stream {self.input.src}"
            f" from {format_seconds(self.input.start)} to {format_seconds(self.input.end)}"
            f" ({self.duration} frames)"
        )


def find_silence_end(video: VideoInfo, i: int) -> int:
    """Index of the first non-silent frame at or after ``i``."""
    frames = video.frames
    while i < len(frames) and frames[i].silence:
        i += 1
    return i


def find_next_silence(video: VideoInfo, start: int = 0) -> int:
    """Index where the next silence begins, skipping any silence ``start`` lies in."""
    frames = video.frames
    i = find_silence_end(video, start)
    while i < len(frames) and not frames[i].silence:
        i += 1
    return i


def find_next_excluded(video: VideoInfo, start: int = 0) -> int:
    """Index of the first excluded frame at or after ``start``, which must not be excluded."""
    frames = video.frames
    if start < len(frames) and frames[start].excluded:
        raise ValueError(f"frame {start} is excluded")
    i = start
    while i < len(frames) and not frames[i].excluded:
        i += 1
    return i


def find_segment_end(video: VideoInfo, start: int) -> int:
    """Exclusive end of the segment starting at ``start``.

    Segments break on a scene change or black frame inside a silence, and at the
    borders of excluded runs.
    """
    frames = video.frames
    total = len(frames)

    if frames[start].excluded:
        while start < total and frames[start].excluded:
            start += 1
        return start

    silence = find_next_silence(video, start)
    excluded = find_next_excluded(video, start)
    if excluded <= silence:
        return excluded

    end = silence
    while end != total:
        scene_change = find_next_scframe(video, end)
        black = find_next_blackframe(video, end)
        silence_end = find_silence_end(video, end)

        if min(scene_change, black) <= silence_end:
            end = scene_change if scene_change <= silence_end else black
            break

        silence = find_next_silence(video, end)
        if excluded <= silence:
            return excluded
        end = silence

    return end


def extract_segments(video: VideoInfo) -> list[FrameSpan]:
    """Cut the whole video into consecutive segments."""
    result = []
    i = 0
    while i < len(video.frames):
        end = find_segment_end(video, i)
        result.append(FrameSpan(video, i, end - i))
        i = end
    return result


def find_forced_matches(
    segment: FrameSpan,
    forced_matches: Iterable[tuple[TimeWindow, TimeWindow]],
    audio: VideoInfo,
) -> list[tuple[FrameSpan, FrameSpan]]:
    """Forced matches whose video side lies within ``segment``, as frame spans."""
    result = []
    for video_window, audio_window in forced_matches:
        spans = (get_span(segment.video, video_window), get_span(audio, audio_window))
        if segment.contains(spans[0]):
            result.append(spans)
    return result


class Dubber:
    """Builds the output timeline, filling gaps with the video's own audio."""

    def __init__(self, video: VideoInfo) -> None:
        self.video = video
        self.result: list[OutputSegment] = []
        self._curpts = 0

    def _append_original(self, duration: int) -> None:
        delta = self.video.frame_delta()
        segment = OutputSegment(
            pts=self._curpts,
            duration=duration,
            input=InputSegment(
                src=0,
                start=self._curpts * delta,
                end=(self._curpts + duration) * delta,
            ),
        )
        self.result.append(segment)
        self._curpts += duration

    def dub(self, video_segment: FrameSpan, audio: FrameSpan) -> None:
        """Play ``audio`` over ``video_segment``, keeping original audio up to it."""
        if video_segment.video is not self.video:
            raise ValueError("segment does not belong to the dubbed video")
        if video_segment.count == 0:
            return

        logger.debug("M: %s ~ %s", video_segment, audio)

        segment_pts = self.video.frames[video_segment.start_offset].pts
        if segment_pts > self._curpts:
            self._append_original(segment_pts - self._curpts)

        audio_video = audio.video
        audio_delta = audio_video.frame_delta()
        segment = OutputSegment(
            pts=self._curpts,
            duration=self.video.nth_frame_pts(video_segment.end_offset) - self._curpts,
            input=InputSegment(
                src=1,
                start=audio_video.frames[audio.start_offset].pts * audio_delta,
                end=audio_video.nth_frame_pts(audio.end_offset) * audio_delta,
            ),
        )
        self.result.append(segment)
        self._curpts += segment.duration

    def write_final_segment(self) -> None:
        """Cover the rest of the video with its own audio, unless it is very short."""
        last_pts = self.video.frames[-1].pts
        if self._curpts >= last_pts:
            return
        duration = last_pts + 1 - self._curpts
        if duration * self.video.frame_delta() >= _MIN_FINAL_SEGMENT_SECONDS:
            self._append_original(duration)


def compute_dub(
    a: VideoInfo,
    b: VideoInfo,
    forced_matches: Sequence[tuple[TimeWindow, TimeWindow]] = (),
    settings: MatchSettings | None = None,
) -> list[OutputSegment]:
    """Compute the output timeline dubbing video ``a`` with audio from video ``b``."""
    settings = settings or MatchSettings()
    dubber = Dubber(a)
    search_area = FrameSpan(b, 0, len(b.frames))

    for segment in extract_segments(a):
        if not segment.at(0).excluded:
            pattern, match = find_best_subspan_match(segment, search_area, settings)
            if pattern.count > 0:
                dubber.dub(pattern, match)
                search_area = FrameSpan(b, match.end_offset, None)
        else:
            forced = find_forced_matches(segment, forced_matches, b)
            for video_span, audio_span in forced:
                dubber.dub(video_span, audio_span)
            if forced:
                search_area = FrameSpan(b, forced[-1][1].end_offset, None)

        while (
            search_area.start_offset > 0
            and b.frames[search_area.start_offset - 1].reusable
        ):
            search_area.widen_left(1)

    dubber.write_final_segment()

    logger.debug("%d segments", len(dubber.result))
    for segment in dubber.result:
        logger.debug("%s", segment)
    return dubber.result