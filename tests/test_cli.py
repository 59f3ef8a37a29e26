import pytest

from dubmatch.cli import (
    DATA_DIR_ENV,
    ProgramOptions,
    UsageError,
    main,
    parse_dub_args,
    parse_forcematch,
    parse_scdet_args,
    parse_timespan,
    parse_timestamp,
    show_help,
)
from dubmatch.detection import write_frames, write_scene_changes, write_windows
from dubmatch.video import SceneChange, TimeWindow, VideoFrameInfo

FFPROBE_REPORT = (
    "[STREAM]\nr_frame_rate=25/1\nnb_read_packets=30\n[/STREAM]\n"
    "[FORMAT]\nduration=1.2\n[/FORMAT]\n"
)


@pytest.fixture
def mkv(tmp_path):
    def make(name):
        path = tmp_path / name
        path.write_bytes(b"")
        return str(path)

    return make


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    directory = tmp_path / "data"
    directory.mkdir()
    monkeypatch.setenv(DATA_DIR_ENV, str(directory))
    return directory


def _write_analysis(data_dir, name, silences=(), blacks=(), scenes=()):
    (data_dir / f"{name}.ffprobe").write_text(FFPROBE_REPORT, encoding="utf-8")
    frames = [VideoFrameInfo(pts=i, phash=(i * 0x9E3779B97F4A7C15) % (1 << 64)) for i in range(30)]
    write_frames(frames, data_dir / f"{name}.30")
    write_windows(list(silences), data_dir / f"{name}.30.silencedetect")
    write_windows(list(blacks), data_dir / f"{name}.30.blackdetect")
    write_scene_changes(list(scenes), data_dir / f"{name}.30.scdet")


def test_timestamp_seconds_only():
    assert parse_timestamp("12.5") == 12.5


def test_timestamp_minutes_and_hours_agree():
    assert parse_timestamp("1:00:00") == parse_timestamp("60:00")
    assert parse_timestamp("2:05") == parse_timestamp("0:125")


def test_timestamp_leading_zero_minutes():
    assert parse_timestamp("01:07") == parse_timestamp("1:07")


@pytest.mark.parametrize("text", ["1:2:3:4", "123:00"])
def test_timestamp_bad_format(text):
    with pytest.raises(UsageError):
        parse_timestamp(text)


def test_timespan():
    window = parse_timespan("0:10 - 0:20")
    assert window == TimeWindow(parse_timestamp("0:10"), parse_timestamp("0:20"))
    assert window.start < window.end


def test_timespan_bad_format():
    with pytest.raises(UsageError):
        parse_timespan("0:10")


def test_forcematch():
    first, second = parse_forcematch("0:01-0:02 ~ 0:03-0:04")
    assert first == parse_timespan("0:01-0:02")
    assert second == parse_timespan("0:03-0:04")


def test_forcematch_bad_format():
    with pytest.raises(UsageError):
        parse_forcematch("0:01-0:02")


def test_parse_dub_args(mkv):
    main_video = mkv("a.mkv")
    other = mkv("b.mkv")
    options = parse_dub_args(
        [
            main_video,
            "--with",
            other,
            "-o",
            "out.mkv",
            "--exclude",
            "0:01-0:02",
            "--sc-threshold",
            "12.5",
            "--frame-unmatch-threshold",
            "18",
            "--dry-run",
        ]
    )
    assert options.command == "dub"
    assert options.first_video == main_video
    assert options.second_video == other
    assert options.output_path == "out.mkv"
    assert options.excluded_segments == [parse_timespan("0:01-0:02")]
    assert options.sc_threshold == 12.5
    assert options.frame_unmatch_threshold == 18
    assert options.dry_run is True
    assert options.debug_matches is False


def test_parse_dub_args_rejects_non_mkv(mkv):
    with pytest.raises(UsageError):
        parse_dub_args([mkv("a.mp4")])


def test_parse_dub_args_rejects_bad_number(mkv):
    with pytest.raises(UsageError):
        parse_dub_args([mkv("a.mkv"), "--sc-threshold", "abc"])


def test_parse_dub_args_rejects_unknown_flag():
    with pytest.raises(UsageError):
        parse_dub_args(["--foo"])


def test_parse_dub_args_missing_value():
    with pytest.raises(UsageError):
        parse_dub_args(["-o"])


def test_parse_scdet_args(mkv):
    video = mkv("v.mkv")
    options = parse_scdet_args(["--sc-threshold", "8", video])
    assert options == ProgramOptions(command="scdet", first_video=video, sc_threshold=8.0)


def test_show_help_dub(capsys):
    show_help(["dub"])
    assert "dub a video using audio from another video." in capsys.readouterr().out


def test_show_help_general(capsys):
    show_help([])
    out = capsys.readouterr().out
    assert "Commands:" in out
    assert "scdet" in out


def test_main_version(capsys):
    assert main(["--version"]) == 0
    assert capsys.readouterr().out.strip() == "1.0"


def test_main_unknown_command(capsys):
    assert main(["bogus"]) == 1
    assert "Unknown command: bogus" in capsys.readouterr().err


def test_main_dub_needs_two_videos(capsys):
    assert main(["dub"]) == 1
    assert "2 videos must be provided" in capsys.readouterr().err


def test_main_missing_analysis(mkv, data_dir, capsys):
    assert main(["silencedetect", mkv("v.mkv")]) == 1
    assert "analysis data not found" in capsys.readouterr().err


def test_main_silencedetect(mkv, data_dir, capsys):
    video = mkv("v.mkv")
    window = TimeWindow(0.5, 1.0)
    _write_analysis(data_dir, "v.mkv", silences=[window])
    assert main(["silencedetect", video]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines == ["detected 1 silences:", str(window)]


def test_main_blackdetect_none(mkv, data_dir, capsys):
    video = mkv("v.mkv")
    _write_analysis(data_dir, "v.mkv")
    assert main(["blackdetect", video]) == 0
    assert capsys.readouterr().out.strip() == "no black frames detected."


def test_main_scdet_filters_by_threshold(mkv, data_dir, capsys):
    video = mkv("v.mkv")
    _write_analysis(
        data_dir,
        "v.mkv",
        scenes=[SceneChange(score=5.0, time=0.2), SceneChange(score=15.0, time=0.8)],
    )
    assert main(["scdet", video, "--sc-threshold", "10"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "detected 1 scene changes:"
    assert len(lines) == 2
    assert lines[1].endswith("(score=15)")


def test_main_dub_identical_videos(mkv, data_dir, capsys):
    first = mkv("a.mkv")
    second = mkv("b.mkv")
    _write_analysis(data_dir, "a.mkv")
    _write_analysis(data_dir, "b.mkv")
    assert main(["dub", first, "--with", second, "--dry-run"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "1 segments"
    assert "stream 1" in lines[1]
    assert lines[1].startswith("0 --> 30")