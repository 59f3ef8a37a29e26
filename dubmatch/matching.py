"""Matching of frame sequences between two videos using perceptual hashes."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass

from dubmatch.framespan import FrameSpan, merge, split_at_scframes
from dubmatch.phash import phash_dist
from dubmatch.video import VideoInfo

logger = logging.getLogger(__name__)

_MAX_DISTANCE = 64
_PLAUSIBLE_SPEED_RANGE = (0.95, 1.05)


@dataclass
class MatchSettings:
    """Thresholds steering how frames and areas are matched."""

    area_match_threshold: float = 20.0
    frame_unmatch_threshold: int = 21
    frame_rematch_threshold: int = 16
    debug_matches: bool = False


@dataclass
class MatchingArea:
    """A pattern span, the span it was matched with, and the average hash distance."""

    pattern: FrameSpan
    match: FrameSpan
    score: float


def _clone(span: FrameSpan) -> FrameSpan:
    copy = FrameSpan()
    copy.video = span.video
    copy.first = span.first
    copy.count = span.count
    return copy


def _round(value: float) -> int:
    """Round half away from zero."""
    if value >= 0:
        return math.floor(value + 0.5)
    return -math.floor(-value + 0.5)


def _speed_ratio(frames1: int, delta1: float, frames2: int, delta2: float) -> float:
    realtime1 = frames1 * delta1
    realtime2 = frames2 * delta2
    if realtime1 <= 0 or realtime2 <= 0:
        raise ValueError("cannot estimate the playback speed between the videos")
    return realtime2 / realtime1


def find_best_matching_area_ex(pattern: FrameSpan, search_area: FrameSpan) -> MatchingArea:
    """Slide ``pattern`` over ``search_area`` and keep the lowest average distance."""
    result = MatchingArea(
        pattern=_clone(pattern),
        match=FrameSpan(search_area.video, search_area.end_offset, 0),
        score=float(_MAX_DISTANCE),
    )

    size = pattern.count
    if search_area.count < size or size <= 0:
        return result

    pattern_hashes = [frame.phash for frame in pattern]
    area_hashes = [frame.phash for frame in search_area]

    best = float(_MAX_DISTANCE)
    for i in range(len(area_hashes) - size + 1):
        window = area_hashes[i : i + size]
        total = sum(phash_dist(p, h) for p, h in zip(pattern_hashes, window))
        average = total / size
        if average < best:
            best = average
            result.match = search_area.subspan(i, size)
            result.score = average
    return result


def extend_match(
    match_start: MatchingArea,
    patterns: Sequence[FrameSpan],
    search_area_end: int,
    settings: MatchSettings | None = None,
) -> tuple[int, FrameSpan]:
    """Follow a match through consecutive scenes.

    Returns how many of ``patterns`` were matched and the match of the last one.
    """
    settings = settings or MatchSettings()
    prev_pattern = match_start.pattern
    prev_match = match_start.match
    consumed = 0

    for current in patterns:
        search_area = FrameSpan(prev_match.video, prev_match.end_offset, current.count)
        prev_extra = max(prev_pattern.count // 20, 3)
        search_area.first -= min(prev_extra, search_area.first)
        search_area.count += 2 * prev_extra
        search_area.count += max(current.count // 20, 3)
        if search_area.end_offset > search_area_end:
            search_area.count = search_area_end - search_area.first

        if search_area.count < current.count:
            break

        m = find_best_matching_area_ex(current, search_area)
        if m.score > settings.area_match_threshold:
            break

        if m.match.start_offset != prev_match.end_offset:
            # Re-match including the previous scene so the match does not drift ahead.
            match_concat = merge(prev_match, m.match)
            if m.match.start_offset < prev_match.end_offset:
                diff = prev_match.end_offset - m.match.start_offset
                match_concat.widen_left(diff)
                match_concat.count += diff

            removed_from_current = 0
            if current.count >= prev_pattern.count:
                removed_from_current = current.count - prev_pattern.count
                pattern_concat = _clone(current)
                pattern_concat.count -= removed_from_current
                pattern_concat = merge(prev_pattern, pattern_concat)
                from_previous = prev_pattern.count
            else:
                size_diff = prev_pattern.count - current.count
                pattern_concat = _clone(prev_pattern)
                pattern_concat.first += size_diff
                pattern_concat.count -= size_diff
                from_previous = pattern_concat.count
                pattern_concat = merge(pattern_concat, current)

            refined = find_best_matching_area_ex(pattern_concat, match_concat)
            refined.match.trim_left(from_previous)
            refined.match.count += removed_from_current
            if refined.match.start_offset != m.match.start_offset:
                m.match = refined.match

        prev_pattern = current
        prev_match = m.match
        consumed += 1

    return consumed, prev_match


def compute_symmetric_span_around_keyframe(
    a: FrameSpan, b: FrameSpan, n: int | None = None
) -> FrameSpan:
    """Span of up to ``n`` frames on each side of the boundary between ``a`` and ``b``."""
    if a.end_offset != b.start_offset:
        raise ValueError("spans must be adjacent")
    limit = min(a.count, b.count)
    if n is not None:
        limit = min(limit, n)
    result = _clone(b)
    result.count = limit
    result.widen_left(limit)
    return result


def starts_with_black_frames(span: FrameSpan) -> bool:
    """Tell whether the span starts on, or right after, a black frame."""
    if span.count == 0:
        return False
    if span.at(0).black:
        return True
    video = span.video
    return span.start_offset > 0 and video.frames[span.start_offset - 1].black


def ends_with_black_frames(span: FrameSpan) -> bool:
    """Tell whether the span ends on, or right before, a black frame."""
    if span.count == 0:
        return False
    if span.at(span.count - 1).black:
        return True
    video = span.video
    return span.end_offset < len(video.frames) and video.frames[span.end_offset].black


def likely_same_scene(
    a: FrameSpan, b: FrameSpan, settings: MatchSettings | None = None
) -> bool:
    """Tell whether the shorter span matches somewhere within the longer one."""
    settings = settings or MatchSettings()
    if b.count < a.count:
        a, b = b, a
    return find_best_matching_area_ex(a, b).score <= settings.area_match_threshold


def find_best_match(
    a: FrameSpan, b: FrameSpan, threshold: int | None = None
) -> tuple[int, int] | None:
    """Closest pair of frames between two spans, as absolute indices.

    Ties prefer pairs at similar positions within their spans.
    """
    if threshold is None or threshold < 0:
        threshold = MatchSettings().frame_rematch_threshold

    best_distance = _MAX_DISTANCE
    best_x = best_y = -1
    b_hashes = [frame.phash for frame in b]
    for x, frame_a in enumerate(a):
        for y, hash_b in enumerate(b_hashes):
            distance = phash_dist(frame_a.phash, hash_b)
            if distance < best_distance:
                best_distance, best_x, best_y = distance, x, y
            elif distance == best_distance and abs(x - y) < abs(best_x - best_y):
                best_x, best_y = x, y

    if best_distance <= threshold:
        return a.start_offset + best_x, b.start_offset + best_y
    return None


def find_match_end(
    a: VideoInfo,
    i: int,
    b: VideoInfo,
    j: int,
    speed: float,
    i_end: int,
    j_end: int,
    settings: MatchSettings | None = None,
) -> tuple[int, int]:
    """Walk forward from matching frames ``i``/``j``; return the exclusive end of the match."""
    settings = settings or MatchSettings()
    j_real = float(j)

    while i + 1 < i_end and _round(j_real + speed) < j_end:
        next_a = i + 1
        next_b = _round(j_real + speed)
        diff = phash_dist(a.frames[next_a].phash, b.frames[next_b].phash)
        if diff < settings.frame_unmatch_threshold:
            i, j = next_a, next_b
            j_real += speed
            continue

        near_a = FrameSpan(a, next_a, i_end - next_a).left(4)
        near_b = FrameSpan(b, next_b, j_end - next_b).left(4)
        found = find_best_match(near_a, near_b, settings.frame_rematch_threshold)
        if found is None:
            break
        i, j = found
        j_real = float(j)

    if i + 2 == i_end:
        # only one frame of the first video is left out; try to include it
        if phash_dist(a.frames[i + 1].phash, b.frames[j].phash) < settings.frame_unmatch_threshold:
            i += 1

    return i + 1, j + 1


def find_match_end_backward(
    a: VideoInfo,
    i: int,
    b: VideoInfo,
    j: int,
    speed: float,
    i_min: int,
    j_min: int,
    settings: MatchSettings | None = None,
) -> tuple[int, int]:
    """Walk backward from matching frames ``i``/``j``; return the start of the match."""
    settings = settings or MatchSettings()
    j_real = float(j)

    while i > i_min and _round(j_real - speed) >= j_min:
        prev_a = i - 1
        prev_b = _round(j_real - speed)
        diff = phash_dist(a.frames[prev_a].phash, b.frames[prev_b].phash)
        if diff < settings.frame_unmatch_threshold:
            i, j = prev_a, prev_b
            j_real -= speed
            continue

        near_a = FrameSpan(a, i_min, i - i_min).right(4)
        near_b = FrameSpan(b, j_min, j - j_min).right(4)
        found = find_best_match(near_a, near_b, settings.frame_rematch_threshold)
        if found is None:
            break
        i, j = found
        j_real = float(j)

    if i == i_min + 1:
        # only one frame of the first video is left out; try to include it
        if phash_dist(a.frames[i_min].phash, b.frames[j].phash) < settings.frame_unmatch_threshold:
            i = i_min

    return i, j


def _plausible_frame_range(frames: int) -> tuple[int, int]:
    low, high = _PLAUSIBLE_SPEED_RANGE
    return math.ceil(frames * low), math.floor(frames * high)


def _refine_match_two_scenes(
    first: FrameSpan,
    second: FrameSpan,
    base_match: FrameSpan,
    full_search_area: FrameSpan,
    settings: MatchSettings,
) -> tuple[FrameSpan, FrameSpan]:
    first_video = first.video
    second_video = base_match.video
    base_pattern = merge(first, second)

    transition = compute_symmetric_span_around_keyframe(first, second, 5)
    if base_match.count < transition.count:
        raise ValueError("match is shorter than the scene transition")

    local = find_best_matching_area_ex(transition, base_match)
    vid1_sc = local.pattern.start_offset + local.pattern.count // 2
    vid2_sc = local.match.start_offset + local.match.count // 2

    refined_pattern = _clone(base_pattern)
    refined_match = _clone(base_match)
    speed: float | None = None

    if not ends_with_black_frames(refined_pattern):
        low, high = _plausible_frame_range(second.count)
        search = FrameSpan(second_video, vid2_sc + low, high - low)
        for span in split_at_scframes(search):
            if not likely_same_scene(second, span, settings):
                break
            refined_match.move_end_offset(span.end_offset)

        speed = _speed_ratio(
            base_pattern.end_offset - vid1_sc,
            first_video.frame_delta(),
            refined_match.end_offset - vid2_sc,
            second_video.frame_delta(),
        )

    if not starts_with_black_frames(refined_pattern):
        low, high = _plausible_frame_range(first.count)
        offset = vid2_sc - 1 - high
        if offset < 0:
            offset = len(second_video.frames)
        search = FrameSpan(second_video, offset, high - low)
        for span in reversed(split_at_scframes(search)):
            if not likely_same_scene(second, span, settings):
                break
            refined_match.move_start_offset_to(span.start_offset)

        speed = _speed_ratio(
            vid1_sc - base_pattern.start_offset,
            first_video.frame_delta(),
            vid2_sc - refined_match.start_offset,
            second_video.frame_delta(),
        )

    if speed is not None:
        if starts_with_black_frames(refined_pattern):
            vid1_start, vid2_start = find_match_end_backward(
                first_video,
                vid1_sc - 1,
                second_video,
                vid2_sc - 1,
                speed,
                refined_pattern.start_offset,
                full_search_area.start_offset,
                settings,
            )
            refined_pattern.move_start_offset_to(vid1_start)
            refined_match.move_start_offset_to(vid2_start)

        if ends_with_black_frames(refined_pattern):
            vid1_end, vid2_end = find_match_end(
                first_video,
                vid1_sc,
                second_video,
                vid2_sc,
                speed,
                refined_pattern.end_offset,
                full_search_area.end_offset,
                settings,
            )
            refined_pattern.move_end_offset(vid1_end)
            refined_match.move_end_offset(vid2_end)

    return refined_pattern, refined_match


def _locate_transition(
    before: FrameSpan,
    after: FrameSpan,
    search: FrameSpan,
    settings: MatchSettings,
) -> tuple[int, int]:
    transition = compute_symmetric_span_around_keyframe(before, after, 5)
    local = find_best_matching_area_ex(transition, search)
    if local.score > settings.area_match_threshold:
        logger.warning(
            "please verify the match near %s ~ %s (score=%s)",
            local.pattern,
            local.match,
            local.score,
        )
    return (
        local.pattern.start_offset + local.pattern.count // 2,
        local.match.start_offset + local.match.count // 2,
    )


def refine_match(
    scenes: Sequence[FrameSpan],
    base_match: FrameSpan,
    full_search_area: FrameSpan,
    settings: MatchSettings | None = None,
) -> tuple[FrameSpan, FrameSpan]:
    """Adjust both ends of a rough match between ``scenes`` and ``base_match``."""
    settings = settings or MatchSettings()
    scenes = list(scenes)
    if not scenes:
        raise ValueError("no scenes to refine")

    first_video = scenes[0].video
    second_video = base_match.video
    base_pattern = merge(scenes[0], scenes[-1])

    if len(scenes) == 2:
        return _refine_match_two_scenes(
            scenes[0], scenes[1], base_match, full_search_area, settings
        )
    if len(scenes) == 1:
        return base_pattern, base_match

    head_size = sum(span.count for span in scenes[:3])
    vid1_first_sc, vid2_first_sc = _locate_transition(
        scenes[0], scenes[1], base_match.left(head_size), settings
    )

    tail_size = sum(span.count for span in scenes[-3:])
    vid1_last_sc, vid2_last_sc = _locate_transition(
        scenes[-2], scenes[-1], base_match.right(tail_size), settings
    )

    speed = _speed_ratio(
        vid1_last_sc - vid1_first_sc,
        first_video.frame_delta(),
        vid2_last_sc - vid2_first_sc,
        second_video.frame_delta(),
    )

    refined_pattern = _clone(base_pattern)
    refined_match = _clone(base_match)

    vid1_end, vid2_end = find_match_end(
        first_video,
        vid1_last_sc,
        second_video,
        vid2_last_sc,
        speed,
        refined_pattern.end_offset,
        full_search_area.end_offset,
        settings,
    )
    refined_pattern.move_end_offset(vid1_end)
    refined_match.move_end_offset(vid2_end)

    vid1_start, vid2_start = find_match_end_backward(
        first_video,
        vid1_first_sc - 1,
        second_video,
        vid2_first_sc - 1,
        speed,
        refined_pattern.start_offset,
        full_search_area.start_offset,
        settings,
    )
    refined_pattern.move_start_offset_to(vid1_start)
    refined_match.move_start_offset_to(vid2_start)

    return refined_pattern, refined_match


def find_best_subspan_match(
    pattern: FrameSpan,
    search_area: FrameSpan,
    settings: MatchSettings | None = None,
) -> tuple[FrameSpan, FrameSpan]:
    """Find the longest part of ``pattern`` that matches within ``search_area``."""
    settings = settings or MatchSettings()
    if settings.debug_matches:
        logger.info("S: %s A: %s", pattern, search_area)

    result = (FrameSpan(), FrameSpan())
    scenes = split_at_scframes(pattern)

    i = 0
    while i < len(scenes):
        remaining = sum(span.count for span in scenes[i:])
        if remaining < result[0].count:
            break

        current = scenes[i]
        if i + 1 < len(scenes):
            # A longer pattern is less likely to be matched with the wrong frames.
            following = scenes[i + 1]
            extended = FrameSpan(
                current.video,
                current.start_offset,
                following.end_offset - current.start_offset,
            )
            m = find_best_matching_area_ex(extended, search_area)
            m.pattern.count -= following.count
            m.match.count -= following.count
        else:
            m = find_best_matching_area_ex(current, search_area)

        if m.score > settings.area_match_threshold:
            if settings.debug_matches:
                logger.info("  X %s", current)
            i += 1
            continue

        if settings.debug_matches:
            logger.info(" > %s ~ %s", m.pattern, m.match)

        consumed, last_match = extend_match(
            m, scenes[i + 1 :], search_area.end_offset, settings
        )
        end = i + 1 + consumed
        m.match.count = last_match.end_offset - m.match.start_offset

        if settings.debug_matches:
            logger.info("  >> %s ~ %s", merge(current, scenes[end - 1]), m.match)

        m.pattern, m.match = refine_match(scenes[i:end], m.match, search_area, settings)

        if settings.debug_matches:
            logger.info("  >>> %s ~ %s", m.pattern, m.match)

        if m.pattern.count > result[0].count:
            result = (m.pattern, m.match)

        i = end

    return result