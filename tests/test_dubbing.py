import random

import pytest

from dubmatch.dubbing import (
    Dubber,
    InputSegment,
    OutputSegment,
    compute_dub,
    extract_segments,
    find_forced_matches,
    find_next_excluded,
    find_next_silence,
    find_segment_end,
    find_silence_end,
)
from dubmatch.framespan import FrameSpan
from dubmatch.video import TimeWindow, VideoFrameInfo, VideoInfo


def make_video(count, rate=(1, 1), hashes=None, name="video.mkv"):
    if hashes is None:
        hashes = [0] * count
    frames = [VideoFrameInfo(pts=i, phash=h) for i, h in enumerate(hashes)]
    return VideoInfo(file_path=name, exact_frame_rate=rate, frames=frames)


def random_hashes(count, seed):
    rng = random.Random(seed)
    return [rng.getrandbits(64) for _ in range(count)]


def assert_contiguous(segments, video):
    pts = 0
    for segment in segments:
        assert segment.pts == pts
        pts += segment.duration
    assert pts == video.frames[-1].pts + 1


def test_find_silence_end_skips_silent_frames():
    video = make_video(5)
    for i in (0, 1):
        video.frames[i].silence = True
    assert find_silence_end(video, 0) == 2
    assert find_silence_end(video, 3) == 3


def test_find_next_silence():
    video = make_video(5)
    for i in (2, 3):
        video.frames[i].silence = True
    assert find_next_silence(video, 0) == 2
    assert find_next_silence(video, 2) == 5


def test_find_next_excluded():
    video = make_video(6)
    video.frames[4].excluded = True
    assert find_next_excluded(video, 0) == 4
    with pytest.raises(ValueError):
        find_next_excluded(video, 4)


def test_segments_break_at_scene_change_inside_silence():
    video = make_video(10)
    for i in (4, 5):
        video.frames[i].silence = True
    video.frames[5].scscore = 30.0
    segments = extract_segments(video)
    assert [(s.start_offset, s.end_offset) for s in segments] == [(0, 5), (5, 10)]


def test_segments_break_around_excluded_frames():
    video = make_video(10)
    for i in (3, 4, 5):
        video.frames[i].excluded = True
    assert find_segment_end(video, 3) == 6
    segments = extract_segments(video)
    assert [(s.start_offset, s.end_offset) for s in segments] == [(0, 3), (3, 6), (6, 10)]


def test_silence_without_break_point_gives_single_segment():
    video = make_video(12)
    for i in (3, 4, 7, 8):
        video.frames[i].silence = True
    segments = extract_segments(video)
    assert len(segments) == 1
    assert segments[0].count == 12


def test_find_forced_matches_keeps_contained_windows():
    video = make_video(10)
    audio = make_video(20, name="audio.mkv")
    segment = FrameSpan(video, 0, 6)
    forced = [
        (TimeWindow(2, 5), TimeWindow(10, 13)),
        (TimeWindow(5, 8), TimeWindow(14, 17)),
    ]
    result = find_forced_matches(segment, forced, audio)
    assert len(result) == 1
    video_span, audio_span = result[0]
    assert (video_span.start_offset, video_span.end_offset) == (2, 5)
    assert (audio_span.start_offset, audio_span.end_offset) == (10, 13)
    assert audio_span.video is audio


def test_dubber_fills_gaps_with_original_audio():
    video = make_video(10)
    audio = make_video(20, name="audio.mkv")
    dubber = Dubber(video)
    dubber.dub(FrameSpan(video, 3, 4), FrameSpan(audio, 5, 4))
    dubber.write_final_segment()
    assert dubber.result == [
        OutputSegment(pts=0, duration=3, input=InputSegment(src=0, start=0.0, end=3.0)),
        OutputSegment(pts=3, duration=4, input=InputSegment(src=1, start=5.0, end=9.0)),
        OutputSegment(pts=7, duration=3, input=InputSegment(src=0, start=7.0, end=10.0)),
    ]
    assert_contiguous(dubber.result, video)


def test_dubber_ignores_empty_segment_and_rejects_foreign_video():
    video = make_video(10)
    other = make_video(10, name="other.mkv")
    dubber = Dubber(video)
    dubber.dub(FrameSpan(video, 3, 0), FrameSpan(other, 0, 3))
    assert dubber.result == []
    with pytest.raises(ValueError):
        dubber.dub(FrameSpan(other, 0, 3), FrameSpan(video, 0, 3))


def test_final_segment_skipped_when_too_short():
    video = make_video(10, rate=(100, 1))
    audio = make_video(10, rate=(100, 1), name="audio.mkv")
    dubber = Dubber(video)
    dubber.dub(FrameSpan(video, 0, 5), FrameSpan(audio, 0, 5))
    dubber.write_final_segment()
    assert len(dubber.result) == 1
    assert dubber.result[0].input.src == 1


def test_compute_dub_identical_videos():
    hashes = random_hashes(30, seed=1)
    a = make_video(30, hashes=hashes)
    b = make_video(30, hashes=list(hashes), name="audio.mkv")
    result = compute_dub(a, b, [])
    assert result == [
        OutputSegment(pts=0, duration=30, input=InputSegment(src=1, start=0.0, end=30.0))
    ]


def test_compute_dub_finds_offset_match():
    hashes = random_hashes(30, seed=2)
    junk = random_hashes(5, seed=3)
    a = make_video(30, hashes=hashes)
    b = make_video(35, hashes=junk + hashes, name="audio.mkv")
    result = compute_dub(a, b)
    assert result[0].input.src == 1
    assert result[0].input.start == 5.0
    assert_contiguous(result, a)


def test_compute_dub_fully_excluded_keeps_original_audio():
    a = make_video(20, hashes=random_hashes(20, seed=4))
    b = make_video(20, hashes=random_hashes(20, seed=5), name="audio.mkv")
    for frame in a.frames:
        frame.excluded = True
    result = compute_dub(a, b, [])
    assert len(result) == 1
    assert result[0].input.src == 0
    assert_contiguous(result, a)


def test_compute_dub_uses_forced_match_in_excluded_segment():
    a = make_video(20, hashes=random_hashes(20, seed=6))
    b = make_video(30, hashes=random_hashes(30, seed=7), name="audio.mkv")
    for frame in a.frames:
        frame.excluded = True
    forced = [(TimeWindow(0, 20), TimeWindow(10, 30))]
    result = compute_dub(a, b, forced)
    assert result == [
        OutputSegment(pts=0, duration=20, input=InputSegment(src=1, start=10.0, end=30.0))
    ]