"""Command-line entry point: argument parsing and the analysis commands."""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from dubmatch.detection import (
    filter_sc,
    mark_black_frames,
    mark_excluded_frames,
    mark_reusable_frames,
    mark_sc_frames,
    mark_silence_frames,
    merge_small_scenes,
    prevent_breaks_at_frames,
    read_frames,
    read_scene_changes,
    read_windows,
    silence_borders,
)
from dubmatch.dubbing import compute_dub
from dubmatch.matching import MatchSettings
from dubmatch.video import TimeWindow, VideoInfo, format_seconds, parse_video_info

VERSION_STRING = "1.0"
DATA_DIR_ENV = "DUBMATCH_DATA_DIR"
_MIN_SCENE_SIZE = 7

logger = logging.getLogger(__name__)


class UsageError(ValueError):
    """Raised for a malformed command line."""


@dataclass
class ProgramOptions:
    """Everything the command line asks for."""

    command: str = ""
    first_video: str = ""
    second_video: str = ""
    output_path: str = ""
    excluded_segments: list[TimeWindow] = field(default_factory=list)
    no_break_segments: list[TimeWindow] = field(default_factory=list)
    forced_matches: list[tuple[TimeWindow, TimeWindow]] = field(default_factory=list)
    reusable_segments: list[TimeWindow] = field(default_factory=list)
    sc_threshold: float | None = None
    area_match_threshold: float | None = None
    frame_unmatch_threshold: int | None = None
    dry_run: bool = False
    debug_matches: bool = False


# --- argument values ---


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


def _simplified(text: str) -> str:
    return " ".join(text.split())


def parse_timestamp(text: str) -> float:
    """Parse ``[[hh:]mm:]ss.zzz`` into seconds."""
    parts = text.split(":")
    if len(parts) > 3:
        raise UsageError("bad timestamp format")

    seconds = _to_float(parts.pop())

    minutes = 0
    if parts:
        part = parts.pop()
        if len(part) > 2:
            raise UsageError("bad timestamp format")
        if part.startswith("0"):
            part = part[1:]
        minutes = _to_int(part)

    hours = 0
    if parts:
        hours = _to_int(parts.pop().lstrip("0"))

    return hours * 3600 + minutes * 60 + seconds


def parse_timespan(text: str) -> TimeWindow:
    """Parse ``<time>-<time>`` into a time window."""
    parts = text.split("-")
    if len(parts) != 2:
        raise UsageError("bad format for timewindow")
    start, end = (_simplified(part) for part in parts)
    return TimeWindow.from_start_and_end(parse_timestamp(start), parse_timestamp(end))


def parse_forcematch(text: str) -> tuple[TimeWindow, TimeWindow]:
    """Parse ``<timewindow>~<timewindow>`` into a pair of windows."""
    parts = text.split("~")
    if len(parts) != 2:
        raise UsageError("bad format for --force-match arg")
    first, second = (_simplified(part) for part in parts)
    return parse_timespan(first), parse_timespan(second)


def _check_video_path(arg: str) -> str:
    path = Path(arg)
    if not (path.exists() and path.suffix == ".mkv"):
        raise UsageError("file does not exist")
    return arg


def _parse_float_value(text: str) -> float:
    try:
        return float(text)
    except ValueError:
        raise UsageError(f"could not parse double argument: {text}") from None


def _parse_int_value(text: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise UsageError(f"could not parse int argument: {text}") from None


# --- command lines ---


def parse_dub_args(args: Sequence[str]) -> ProgramOptions:
    """Parse the arguments following the ``dub`` command."""
    options = ProgramOptions(command="dub")
    items = iter(args)

    def value(flag: str) -> str:
        try:
            return next(items)
        except StopIteration:
            raise UsageError(f"missing value for {flag}") from None

    for arg in items:
        if arg == "-o":
            options.output_path = value(arg)
        elif arg == "--with":
            options.second_video = _check_video_path(value(arg))
        elif arg == "--exclude":
            options.excluded_segments.append(parse_timespan(value(arg)))
        elif arg == "--no-break":
            options.no_break_segments.append(parse_timespan(value(arg)))
        elif arg == "--force-match":
            options.forced_matches.append(parse_forcematch(value(arg)))
        elif arg == "--reusable":
            options.reusable_segments.append(parse_timespan(value(arg)))
        elif arg == "--sc-threshold":
            options.sc_threshold = _parse_float_value(value(arg))
        elif arg == "--area-match-threshold":
            options.area_match_threshold = _parse_float_value(value(arg))
        elif arg == "--frame-unmatch-threshold":
            options.frame_unmatch_threshold = _parse_int_value(value(arg))
        elif arg == "--dry-run":
            options.dry_run = True
        elif arg == "--debug-matches":
            options.debug_matches = True
        elif not arg.startswith("-"):
            options.first_video = _check_video_path(arg)
        else:
            raise UsageError(f"unknown arg: {arg}")
    return options


def _parse_single_video_args(command: str, args: Sequence[str]) -> ProgramOptions:
    options = ProgramOptions(command=command)
    for arg in args:
        if not Path(arg).exists():
            raise UsageError(f"unknown arg: {arg}")
        options.first_video = _check_video_path(arg)
    return options


def parse_scdet_args(args: Sequence[str]) -> ProgramOptions:
    """Parse the arguments following the ``scdet`` command."""
    options = ProgramOptions(command="scdet")
    items = iter(args)
    for arg in items:
        if arg == "--sc-threshold":
            try:
                text = next(items)
            except StopIteration:
                raise UsageError(f"missing value for {arg}") from None
            options.sc_threshold = _parse_float_value(text)
        elif not arg.startswith("-"):
            options.first_video = _check_video_path(arg)
        else:
            raise UsageError(f"unknown arg: {arg}")
    return options


# --- help ---

_DUB_HELP = """\
dub a video using audio from another video.
a perceptual hash (phash) algorithm is used to match frames between the first and \
second video so that audio can be extracted and synced.

Syntax:
dubmatch dub <main-video.mkv> --with <secondary-video.mkv> [options]

Options:
  -o <output.mkv>                      Specify an output file name.
  --exclude <timewindow-spec>          Exclude part of the video from the dubbing process.
  --sc-threshold <value>               Change the scene-change threshold.
  --no-break <timewindow-spec>         Prevent a break within the specified time window.
  --area-match-threshold <value>       Change the area match threshold.
  --frame-unmatch-threshold <value>    Change the frame unmatch threshold.
  --reusable <timewindow-spec>         Specify that some audio can be reused.
  --force-match <match-spec>           Force a match.
  --debug-matches                      Print debugging information about the matches.
  --dry-run                            Do not produce the output file.

Parameter syntax:
  <time-spec>       --> mm:ss.zzz
  <timewindow-spec> --> <time-spec>-<time-spec>
  <match-spec>      --> <timewindow-spec>~<timewindow-spec>
"""

_SILENCEDETECT_HELP = """\
Performs silence detection on a video and prints the result.
Silences are used to split the video to dub into segments that are then
individually dubbed.

Syntax:
dubmatch silencedetect <video.mkv>"""

_BLACKDETECT_HELP = """\
Performs black frame detection on a video and prints the result.
Blacks frames are used to split the video to dub into segments that are then
individually dubbed.

Syntax:
dubmatch blackdetect <video.mkv>"""

_SCDET_HELP = """\
Performs scene-change detection on a video and prints the result.
While silences and black frames are used to split the video into segments,
scene changes are used to split segments into scenes.
Scenes are then matched between the two input videos.

Syntax:
dubmatch scdet <video.mkv>"""

_MAIN_HELP = """\
dubmatch is a commandline program for dubbing a video with audio from another video.
dubmatch uses a perceptual hash (phash) algorithm to find similar frames between the \
video to dub and the video used as audio source in order to extract and sync the audio.
Frame hashes, silences, black frames and scene changes are read from the data directory \
(set with the DUBMATCH_DATA_DIR environment variable).

Main syntax:
dubmatch dub <main-video.mkv> --with <secondary-video.mkv> [-o <output.mkv>]

Commands:
  dub              dub a video with audio from another video
  silencedetect    performs silence detection on a video
  blackdetect      performs black frames detection on a video
  scdet            performs scene-change detection on a video"""

_COMMAND_HELP = {
    "dub": _DUB_HELP,
    "silencedetect": _SILENCEDETECT_HELP,
    "blackdetect": _BLACKDETECT_HELP,
    "scdet": _SCDET_HELP,
}


def show_help(args: Sequence[str]) -> None:
    """Print help for the command named first in ``args``, or the general help."""
    topic = args[0] if args else ""
    print(_COMMAND_HELP.get(topic, _MAIN_HELP))


# --- analysis data ---


def _data_dir() -> Path:
    configured = os.environ.get(DATA_DIR_ENV)
    if configured:
        return Path(configured)
    base = os.environ.get("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(base) / "dubmatch"


def _require(path: Path) -> Path:
    if not path.exists():
        raise FileNotFoundError(f"analysis data not found: {path}")
    return path


def _cache_path(video: VideoInfo, suffix: str = "") -> Path:
    name = Path(video.file_path).name
    return _data_dir() / f"{name}.{video.read_packets}{suffix}"


def _load_video(file_path: str) -> VideoInfo:
    report = _require(_data_dir() / f"{Path(file_path).name}.ffprobe")
    return parse_video_info(file_path, report.read_text(encoding="utf-8"))


def _load_frames(video: VideoInfo) -> None:
    video.frames = read_frames(_require(_cache_path(video)))


def _load_silences(video: VideoInfo) -> None:
    video.silences = read_windows(_require(_cache_path(video, ".silencedetect")))


def _load_black_frames(video: VideoInfo) -> None:
    video.blackframes = read_windows(_require(_cache_path(video, ".blackdetect")))


def _load_scene_changes(video: VideoInfo) -> None:
    video.scenechanges = read_scene_changes(_require(_cache_path(video, ".scdet")))


# --- commands ---


def _run_dub(options: ProgramOptions) -> int:
    if not options.first_video or not options.second_video:
        print("2 videos must be provided", file=sys.stderr)
        return 1

    defaults = MatchSettings()
    settings = MatchSettings(
        area_match_threshold=(
            defaults.area_match_threshold
            if options.area_match_threshold is None
            else options.area_match_threshold
        ),
        frame_unmatch_threshold=(
            defaults.frame_unmatch_threshold
            if options.frame_unmatch_threshold is None
            else options.frame_unmatch_threshold
        ),
        debug_matches=options.debug_matches,
    )

    video = _load_video(options.first_video)
    audio = _load_video(options.second_video)
    _load_frames(video)
    _load_frames(audio)

    _load_silences(video)
    mark_silence_frames(video)
    silence_borders(video.frames)

    _load_black_frames(video)
    mark_black_frames(video)

    _load_scene_changes(video)
    filter_sc(video, options.sc_threshold or 0.0)
    mark_sc_frames(video)
    merge_small_scenes(video, _MIN_SCENE_SIZE)

    mark_excluded_frames(video, options.excluded_segments)
    mark_excluded_frames(video, [window for window, _ in options.forced_matches])
    prevent_breaks_at_frames(video, options.no_break_segments)
    mark_reusable_frames(audio, options.reusable_segments)

    segments = compute_dub(video, audio, options.forced_matches, settings)
    print(f"{len(segments)} segments")
    for segment in segments:
        print(segment)
    return 0


def _print_windows(windows: list[TimeWindow], what: str) -> None:
    if not windows:
        print(f"no {what} detected.")
        return
    print(f"detected {len(windows)} {what}:")
    for window in windows:
        print(window)


def _run_silencedetect(options: ProgramOptions) -> int:
    video = _load_video(options.first_video)
    _load_silences(video)
    _print_windows(video.silences, "silences")
    return 0


def _run_blackdetect(options: ProgramOptions) -> int:
    video = _load_video(options.first_video)
    _load_black_frames(video)
    _print_windows(video.blackframes, "black frames")
    return 0


def _run_scdet(options: ProgramOptions) -> int:
    video = _load_video(options.first_video)
    _load_scene_changes(video)
    filter_sc(video, options.sc_threshold or 0.0)
    print(f"detected {len(video.scenechanges)} scene changes:")
    for change in video.scenechanges:
        print(f"{format_seconds(change.time)} (score={format(change.score, 'g')})")
    return 0


def _parse_command(args: list[str]) -> ProgramOptions:
    command, rest = args[0], args[1:]
    if command == "dub":
        return parse_dub_args(rest)
    if command in ("silencedetect", "blackdetect"):
        return _parse_single_video_args(command, rest)
    if command == "scdet":
        return parse_scdet_args(rest)
    raise UsageError(f"Unknown command: {command}")


_COMMANDS = {
    "dub": _run_dub,
    "silencedetect": _run_silencedetect,
    "blackdetect": _run_blackdetect,
    "scdet": _run_scdet,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line; return the exit status."""
    args = list(sys.argv[1:] if argv is None else argv)

    if "-h" in args or "--help" in args or not args:
        show_help(args)
        return 0

    if "-v" in args or "--version" in args:
        print(VERSION_STRING)
        return 0

    try:
        options = _parse_command(args)
    except UsageError as error:
        print(error, file=sys.stderr)
        return 1

    logging.basicConfig(
        level=logging.INFO if options.debug_matches else logging.WARNING,
        format="%(message)s",
    )

    try:
        return _COMMANDS[options.command](options)
    except (OSError, ValueError) as error:
        print(error, file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())