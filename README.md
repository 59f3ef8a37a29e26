# dubmatch

`dubmatch` finds where the frames of one video appear in another cut of the
same video. From that it works out a timeline that says, for each stretch of
the first video, whether its audio should be kept or taken from a given time
range of the second video. Frames are compared with a 64-bit perceptual hash
(phash). Silences, black frames and scene changes split the video into
segments, and those segments are matched one by one.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Analysis data

The commands do not read the video files themselves. They read analysis data
that was prepared beforehand and stored in a data directory. The data
directory is `$DUBMATCH_DATA_DIR` if that variable is set. Otherwise it is
`$XDG_DATA_HOME/dubmatch`, falling back to `~/.local/share/dubmatch`.

For a video `name.mkv` the directory holds these files:

| File | Content |
| --- | --- |
| `name.mkv.ffprobe` | `key=value` report with `duration`, `nb_read_packets` and `r_frame_rate` (e.g. `24000/1001`) |
| `name.mkv.<packets>` | frame hashes: a big-endian unsigned 64-bit count, then per frame a signed 32-bit pts and an unsigned 64-bit phash |
| `name.mkv.<packets>.silencedetect` | one `start,end` line per silence, in seconds |
| `name.mkv.<packets>.blackdetect` | one `start,end` line per black-frame window |
| `name.mkv.<packets>.scdet` | one `score,time` line per scene change |

In these names, `<packets>` is the `nb_read_packets` value from the `.ffprobe` report.

The functions in `dubmatch.detection` build these lists from the logs of
ffmpeg's `silencedetect`, `blackdetect` and `scdet` filters. They also read and
write the cache files.

## Command line

```
dubmatch --help
dubmatch <command> --help
dubmatch --version
dubmatch dub <main-video.mkv> --with <secondary-video.mkv> [options]
dubmatch silencedetect <video.mkv>
dubmatch blackdetect <video.mkv>
dubmatch scdet <video.mkv> [--sc-threshold <value>]
```

Video arguments must be existing files with the `.mkv` suffix.

- `silencedetect`, `blackdetect` and `scdet` print the silences, black-frame
  windows or scene changes stored for a video.
- `dub` marks the frames of the main video and matches them against the
  secondary video. It then prints the resulting segments, one per line, for
  example:

```
0 --> 120 : stream 0 from 0:00 to 0:05.005 (120 frames)
```

Stream 0 is the main video's own audio and stream 1 is the secondary video's
audio.

Options of `dub`:

| Option | Meaning |
| --- | --- |
| `--exclude <timewindow>` | leave part of the main video out of the matching |
| `--no-break <timewindow>` | prevent a segment break within a time window |
| `--force-match <match>` | force a match between a window of the main video and one of the secondary video |
| `--reusable <timewindow>` | audio in this window of the secondary video may be matched again |
| `--sc-threshold <value>` | drop scene changes scoring below this value |
| `--area-match-threshold <value>` | maximum average phash distance for a matching area (default 20) |
| `--frame-unmatch-threshold <value>` | phash distance from which two frames no longer match (default 21) |
| `--debug-matches` | log details about each match |
| `-o <output.mkv>`, `--dry-run` | accepted, but have no effect (see below) |

Parameter syntax:

```
<time-spec>       --> [[hh:]mm:]ss.zzz
<timewindow-spec> --> <time-spec>-<time-spec>
<match-spec>      --> <timewindow-spec>~<timewindow-spec>
```

The exit status is 0 on success and 1 on a malformed command line or missing
analysis data.

## Library

```python
from dubmatch.phash import PerceptualHash, phash_dist

hasher = PerceptualHash()
a = hasher.hash_file("frame-a.png")
b = hasher.hash_file("frame-b.png")
print(phash_dist(a, b))  # number of differing bits, 0..64
```

`hash_file` returns 0 for an image it cannot read. Images that are not 32x32
grayscale are converted to that before hashing.

The modules:

- `dubmatch.phash`: `PerceptualHash` (`hash`, `hash_file`, `check_image`),
  `compute_hash` and `phash_dist`.
- `dubmatch.video`: `TimeWindow`, `VideoFrameInfo`, `SceneChange`,
  `VideoInfo`, `FFprobeOutputExtractor`, `parse_video_info` and
  `format_seconds`.
- `dubmatch.framespan`: `FrameSpan`, a view on a range of frames, together
  with `merge`, `get_span`, `mark_frames`, `split_at_scframes`,
  `find_next_scframe`, `find_next_blackframe` and `is_sc_frame_safe`.
- `dubmatch.detection`:
  - parsers `parse_silencedetect_output`, `parse_blackdetect_output` and
    `parse_scdet_output`;
  - cache readers and writers (`read_frames`/`write_frames`,
    `read_windows`/`write_windows`,
    `read_scene_changes`/`write_scene_changes`);
  - frame marking: `mark_silence_frames`, `mark_black_frames`,
    `mark_sc_frames`, `silence_borders`, `filter_sc`, `merge_small_scenes`,
    `mark_excluded_frames`, `prevent_breaks_at_frames` and
    `mark_reusable_frames`.
- `dubmatch.matching`: `MatchSettings`, `MatchingArea`,
  `find_best_subspan_match` and the helpers it is built on
  (`find_best_matching_area_ex`, `extend_match`, `refine_match`,
  `find_match_end`, `find_match_end_backward`, `find_best_match`, ...).
- `dubmatch.dubbing`: `extract_segments`, `find_forced_matches`, `Dubber`
  and `compute_dub`. These produce the list of `OutputSegment` /
  `InputSegment` values.
- `dubmatch.cli`: `main`, `ProgramOptions`, `parse_dub_args`,
  `parse_scdet_args`, `parse_timestamp`, `parse_timespan`,
  `parse_forcematch` and `show_help`.

## What it does not do

`dubmatch` does not decode video or audio, and it starts no external programs:

- It does not extract frames.
- It does not run silence, black-frame or scene-change detection on a file.
- It does not write the frame-hash and detection caches by itself. They have
  to be produced separately and placed in the data directory.

The `dub` command stops at the segment list. It does not cut, time-stretch or
concatenate audio, and it does not write an output video. That is why `-o`
and `--dry-run` change nothing.