# bdq/parsers/ffmpeg_output.py
from typing import NamedTuple

from ..models.task import Track

_STREAM_MARKER = "Stream #"
_TYPE_MARKERS = (("Audio:", "audio"), ("Subtitle:", "subtitle"), ("Video:", "video"))


class LineTokens(NamedTuple):
    duration: float | None
    elapsed: float | None


def parse_clock(token: str | None) -> float | None:
    """'HH:MM:SS.cc' -> seconds. Returns None for N/A or anything malformed."""
    if not token:
        return None
    token = token.strip().rstrip(",")
    parts = token.split(":")
    if len(parts) != 3:
        return None
    try:
        h, m = int(parts[0]), int(parts[1])
        s = float(parts[2])
    except ValueError:
        return None
    if h < 0 or m < 0 or s < 0:
        return None
    return h * 3600 + m * 60 + s


def scan_line(line: str) -> LineTokens:
    """Pick the `Duration:` and `time=` clocks out of one line of ffmpeg output."""
    duration = elapsed = None
    tokens = line.split()
    for i, tok in enumerate(tokens):
        nxt = tokens[i + 1] if i + 1 < len(tokens) else None
        if tok == "Duration:" and duration is None:
            duration = parse_clock(nxt)
        elif tok.startswith("time=") and elapsed is None:
            # ffmpeg pads some fields ("time= 00:00:01.00") on older builds
            elapsed = parse_clock(tok[5:] or nxt)
    return LineTokens(duration, elapsed)


def compute_progress(elapsed: float | None, duration: float | None) -> float:
    if elapsed is None or not duration or duration <= 0:
        return 0.0
    pct = elapsed / duration * 100.0
    if pct < 0:
        return 0.0
    if pct > 100:
        return 100.0
    return pct


def parse_progress(line: str, duration: float | None = None) -> float:
    """Progress percentage for one status line.

    `duration` is the value retained from an earlier `Duration:` line; a
    `Duration:` token on the line itself takes precedence.
    """
    tokens = scan_line(line)
    return compute_progress(tokens.elapsed, tokens.duration if tokens.duration is not None else duration)


def is_progress_line(line: str) -> bool:
    return "time=" in line and "bitrate=" in line


class ProgressTracker:
    """Keeps the input duration seen near the start of output across later lines."""

    def __init__(self, duration: float | None = None):
        self.duration = duration

    def feed(self, line: str) -> float | None:
        tokens = scan_line(line)
        if tokens.duration is not None and self.duration is None:
            self.duration = tokens.duration
        if tokens.elapsed is None:
            return None
        return compute_progress(tokens.elapsed, self.duration)


def _stream_type(line: str) -> tuple[str, int]:
    """Track type and the index just past its marker (-1 when no marker is present)."""
    for marker, kind in _TYPE_MARKERS:
        if (pos := line.find(marker)) >= 0:
            return kind, pos + len(marker)
    return "video", -1


def _codec_after(line: str, start: int) -> str:
    if start < 0:
        return "unknown"
    tok = ""
    for ch in line[start:].lstrip():
        if ch.isalnum() or ch == "_":
            tok += ch
        else:
            break
    return tok or "unknown"


def _language_in(specifier: str) -> str:
    # "#0:1[0x1100](eng)" or "#0:1[eng]": a bracketed 3-letter lowercase tag
    for open_ch, close_ch in (("(", ")"), ("[", "]")):
        pos = 0
        while (i := specifier.find(open_ch, pos)) >= 0:
            j = specifier.find(close_ch, i + 1)
            if j < 0:
                break
            tag = specifier[i + 1:j]
            if len(tag) == 3 and tag.isalpha() and tag.islower():
                return tag
            pos = j + 1
    return "und"


def parse_stream_lines(output: str) -> list[Track]:
    tracks: list[Track] = []
    for line in output.splitlines():
        if (pos := line.find(_STREAM_MARKER)) < 0:
            continue
        kind, marker_end = _stream_type(line)
        # the stream specifier runs up to the ": " before the type marker
        specifier_end = line.find(": ", pos)
        specifier = line[pos + len(_STREAM_MARKER):specifier_end if specifier_end >= 0 else len(line)]
        track_id = len(tracks) + 1
        tracks.append(Track(
            id=track_id,
            type=kind,
            codec=_codec_after(line, marker_end),
            language=_language_in(specifier),
            title=f"Track {track_id}",
        ))
    return tracks


def parse_container_duration(output: str) -> float:
    for line in output.splitlines():
        if (d := scan_line(line).duration) is not None:
            return d
    return 0.0
