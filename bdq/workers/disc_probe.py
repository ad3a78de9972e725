import logging
import subprocess
from pathlib import Path

from PySide6.QtCore import QObject, Signal

from ..errors import ProbeFailed, StructureInvalid
from ..models.task import DiscMediaInfo, Track
from ..parsers.ffmpeg_output import parse_container_duration, parse_stream_lines
from ..utils.paths import detect_structure, find_main_playlist

log = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT_S = 180


def _run_probe(ffmpeg_path: str, input_path: str, timeout: float) -> str:
    # ffmpeg without an output exits 1 after printing stream info to stderr
    try:
        res = subprocess.run(
            [ffmpeg_path, "-hide_banner", "-i", input_path],
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise ProbeFailed(f"{ffmpeg_path} not found (check settings)") from e
    except subprocess.TimeoutExpired as e:
        raise ProbeFailed(f"Probing {input_path} timed out after {timeout}s") from e
    except OSError as e:
        raise ProbeFailed(f"Failed to execute {ffmpeg_path}: {e}") from e
    if "Stream #" not in res.stderr:
        raise ProbeFailed(f"No stream information for {input_path}")
    return res.stderr


def probe_tracks(ffmpeg_path: str, input_path: str,
                 timeout: float = DEFAULT_PROBE_TIMEOUT_S) -> tuple[list[Track], float]:
    """Tracks and container duration of `input_path`; ([], 0.0) when probing fails."""
    try:
        out = _run_probe(ffmpeg_path, input_path, timeout)
    except ProbeFailed as e:
        log.warning("%s", e)
        return [], 0.0
    return parse_stream_lines(out), parse_container_duration(out)


def get_disc_info(root: str | Path, ffmpeg_path: str,
                  timeout: float = DEFAULT_PROBE_TIMEOUT_S) -> DiscMediaInfo:
    root = str(root)
    info = DiscMediaInfo(path=root, name=Path(root.rstrip("/\\")).name)
    if not detect_structure(root):
        log.info("%s", StructureInvalid(root))
        return info
    info.has_bdmv = True
    info.main_playlist = find_main_playlist(root)
    if info.main_playlist:
        info.tracks, info.duration = probe_tracks(ffmpeg_path, info.main_playlist, timeout)
    return info


def verify_disc_folder(root: str | Path, ffmpeg_path: str) -> bool:
    info = get_disc_info(root, ffmpeg_path)
    return info.has_bdmv and info.main_playlist is not None


class DiscProbeWorker(QObject):
    probed = Signal(str, object, str)  # root, DiscMediaInfo, err

    def __init__(self, settings: dict):
        super().__init__()
        self.settings = settings

    def probe(self, root: str):
        err = ""
        info = None
        try:
            info = get_disc_info(root, self.settings["ffmpeg_path"],
                                 float(self.settings.get("probe_timeout_s", DEFAULT_PROBE_TIMEOUT_S)))
            if not info.has_bdmv:
                err = "No BDMV folder found."
            elif not info.main_playlist:
                err = "No playlist found under BDMV/PLAYLIST."
        except Exception as e:
            log.exception("Probing %s failed", root)
            err = str(e)
        self.probed.emit(root, info, err)
