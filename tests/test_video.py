import pytest

from dubmatch.video import (
    FFprobeOutputExtractor,
    SceneChange,
    TimeWindow,
    VideoFrameInfo,
    VideoInfo,
    format_seconds,
    parse_video_info,
)

FFPROBE_OUTPUT = (
    "[STREAM]\n"
    "r_frame_rate=24000/1001\n"
    "nb_read_packets=34567\n"
    "[/STREAM]\n"
    "[FORMAT]\n"
    "duration=1420.5\n"
    "[/FORMAT]\n"
)


def _video(pts_values, rate=(25, 1)):
    return VideoInfo(
        file_path="episode.mkv",
        exact_frame_rate=rate,
        frames=[VideoFrameInfo(pts=p, phash=p * 3) for p in pts_values],
    )


def test_format_seconds_pads_single_digit_seconds():
    assert format_seconds(65.5) == "1:05.5"


def test_format_seconds_whole_minutes():
    assert format_seconds(125) == "2:05"


def test_format_seconds_zero():
    assert format_seconds(0.0) == "0:00"


def test_time_window_contains_is_half_open():
    window = TimeWindow.from_start_and_end(2.0, 5.0)
    assert window.contains(2.0)
    assert window.contains(4.999)
    assert not window.contains(5.0)
    assert not window.contains(1.999)


def test_time_window_from_start_and_duration():
    window = TimeWindow.from_start_and_duration(10.0, 0.4)
    assert window.start == 10.0
    assert window.end == pytest.approx(10.4)
    assert window.duration == pytest.approx(0.4)


def test_time_window_str_uses_format_seconds():
    window = TimeWindow(65.5, 125.0)
    assert str(window) == f"{format_seconds(65.5)} - {format_seconds(125.0)}"


def test_frame_defaults_are_unmarked():
    frame = VideoFrameInfo(pts=4, phash=9)
    assert (frame.silence, frame.black, frame.excluded, frame.reusable) == (
        False,
        False,
        False,
        False,
    )
    assert frame.scscore is None


def test_frame_delta_is_inverse_of_frame_rate():
    video = _video([0, 1, 2])
    assert video.frame_delta() * 25 == pytest.approx(1.0)


def test_frame_timestamp_scales_pts():
    video = _video([0, 10, 20], rate=(24000, 1001))
    assert video.frame_timestamp(2) == pytest.approx(20 * video.frame_delta())


def test_nth_frame_pts_inside_and_beyond():
    video = _video([3, 4, 7])
    assert video.nth_frame_pts(1) == 4
    assert video.nth_frame_pts(3) == 8
    assert video.nth_frame_pts(10) == 8


def test_video_info_lists_are_independent():
    first = VideoInfo()
    second = VideoInfo()
    first.scenechanges.append(SceneChange(score=12.0, time=3.0))
    assert second.scenechanges == []


def test_extractor_try_extract_simplifies_whitespace():
    extractor = FFprobeOutputExtractor("name=  a   b \r\nother=1\n")
    assert extractor.try_extract("name") == "a b"
    assert extractor.try_extract("other") == "1"


def test_extractor_missing_key_or_newline():
    extractor = FFprobeOutputExtractor("duration=12")
    assert extractor.try_extract("duration") is None
    assert extractor.try_extract("missing") is None
    with pytest.raises(ValueError, match="no such value: duration"):
        extractor.extract("duration")


def test_parse_video_info():
    video = parse_video_info("ep01.mkv", FFPROBE_OUTPUT)
    assert video.file_path == "ep01.mkv"
    assert video.duration == 1420.5
    assert video.read_packets == 34567
    assert video.exact_frame_rate == (24000, 1001)
    assert video.frames == []


def test_parse_video_info_bad_frame_rate():
    output = FFPROBE_OUTPUT.replace("24000/1001", "25")
    with pytest.raises(ValueError, match="bad r_frame_rate value"):
        parse_video_info("ep01.mkv", output)


def test_parse_video_info_missing_duration():
    output = FFPROBE_OUTPUT.replace("duration=1420.5\n", "")
    with pytest.raises(ValueError, match="duration"):
        parse_video_info("ep01.mkv", output)