import pytest

from bdq.parsers.ffmpeg_output import (
    ProgressTracker,
    compute_progress,
    is_progress_line,
    parse_clock,
    parse_container_duration,
    parse_progress,
    parse_stream_lines,
    scan_line,
)

_STATUS = "frame= 2160 fps=240 q=-1.0 size=  102400kB time=00:01:30.00 bitrate=9320.1kbits/s speed=10x"

_PROBE_OUTPUT = """\
Input #0, mpls, from '/discs/Movie/BDMV/PLAYLIST/00800.mpls':
  Duration: 01:52:10.45, start: 0.000000, bitrate: 30000 kb/s
  Chapters:
    Chapter #0:0: start 0.000000, end 300.000000
    Stream #0:0[0x1011]: Video: h264 (High), yuv420p(progressive), 1920x1080, 23.98 fps
    Stream #0:1[0x1100](eng): Audio: dts (DTS-HD MA), 48000 Hz, 7.1, s32p
    Stream #0:2[0x1200](fra): Subtitle: hdmv_pgs_subtitle ([144][0][0][0] / 0x0090), 1920x1080
    Stream #0:3[0x1101]: Audio: ac3, 48000 Hz, 5.1(side), fltp, 640 kb/s
At least one output file must be specified
"""


def test_parse_clock():
    assert parse_clock("00:01:30.00") == 90.0
    assert parse_clock("01:00:00.50") == 3600.5
    assert parse_clock("01:52:10.45,") == pytest.approx(6730.45)
    assert parse_clock("N/A") is None
    assert parse_clock("") is None
    assert parse_clock("12:34") is None


def test_progress_with_prior_duration_is_fifty_percent():
    assert parse_progress("time=00:01:30.00 bitrate=1.0kbits/s", duration=180.0) == 50.0
    tracker = ProgressTracker()
    assert tracker.feed("  Duration: 00:03:00.00, start: 0.000000, bitrate: 1 kb/s") is None
    assert tracker.feed(_STATUS) == 50.0


def test_zero_duration_gives_zero_progress():
    tracker = ProgressTracker()
    tracker.feed("  Duration: 00:00:00.00, start: 0.000000")
    assert tracker.feed(_STATUS) == 0.0
    assert parse_progress(_STATUS, duration=0.0) == 0.0


def test_missing_tokens_give_zero_progress():
    assert parse_progress("Press [q] to stop, [?] for help") == 0.0
    assert parse_progress(_STATUS) == 0.0  # no duration known
    assert parse_progress("  Duration: 00:03:00.00, start: 0.0") == 0.0


def test_duration_on_the_same_line_wins():
    line = "Duration: 00:01:00.00 time=00:00:30.00 bitrate=1k"
    assert parse_progress(line, duration=600.0) == 50.0


def test_progress_is_clamped():
    assert compute_progress(200.0, 100.0) == 100.0
    assert compute_progress(-5.0, 100.0) == 0.0
    assert compute_progress(None, 100.0) == 0.0


def test_padded_time_token():
    assert scan_line("size= 10kB time= 00:00:10.00 bitrate=1k").elapsed == 10.0


def test_tracker_keeps_first_duration():
    tracker = ProgressTracker()
    tracker.feed("  Duration: 00:02:00.00, start: 0.000000")
    tracker.feed("    Duration: 00:10:00.00, start: 0.000000")  # output section repeats it
    assert tracker.feed("time=00:01:00.00 bitrate=1k") == 50.0


def test_is_progress_line():
    assert is_progress_line(_STATUS)
    assert not is_progress_line("  Duration: 00:03:00.00, start: 0.0")


def test_parse_stream_lines():
    tracks = parse_stream_lines(_PROBE_OUTPUT)
    assert [t.id for t in tracks] == [1, 2, 3, 4]
    assert [t.type for t in tracks] == ["video", "audio", "subtitle", "audio"]
    assert [t.codec for t in tracks] == ["h264", "dts", "hdmv_pgs_subtitle", "ac3"]
    assert [t.language for t in tracks] == ["und", "eng", "fra", "und"]
    assert tracks[1].title == "Track 2"
    assert all(t.duration == 0 for t in tracks)


def test_square_bracket_language_tag():
    (track,) = parse_stream_lines("Stream #0:1[jpn]: Audio: aac, 48000 Hz")
    assert track.language == "jpn"
    assert track.codec == "aac"


def test_parse_container_duration():
    assert parse_container_duration(_PROBE_OUTPUT) == pytest.approx(6730.45)
    assert parse_container_duration("nothing here") == 0.0
