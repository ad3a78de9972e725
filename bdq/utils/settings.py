# bdq/utils/settings.py
import json
import logging
from pathlib import Path

log = logging.getLogger(__name__)

def _top_dir() -> Path:
    # bdq/utils/settings.py: the settings file sits beside the bdq/ package
    return Path(__file__).resolve().parents[2]

APP_SETTINGS_FILE = _top_dir() / "bdq_settings.json"

DEFAULT_SETTINGS = {
    "output_root": str(Path.home() / "BDQ_Out"),
    "ffmpeg_path": "ffmpeg",
    "extra_args": "",
    "overwrite": False,
    "threads_before_output": False,    # -threads after the output path unless set

    # Conversion options used when the queue advances on its own
    "copy_all_tracks": True,
    "include_chapters": True,
    "include_metadata": True,
    "output_format": "matroska",

    # Queue / process behaviour
    "auto_start_next": True,
    "monitor_interval_ms": 5000,
    "terminate_grace_ms": 5000,        # SIGTERM -> kill delay
    "probe_timeout_s": 180,

    # Logging
    "log_level": "INFO",
    "log_file": "",
}

def load_settings(path: Path | None = None) -> dict:
    p = Path(path) if path else APP_SETTINGS_FILE
    if p.exists():
        try:
            data = json.loads(p.read_text())
            return {**DEFAULT_SETTINGS, **data}
        except (OSError, ValueError) as e:
            log.warning("Ignoring unreadable settings file %s: %s", p, e)
    # leave an editable copy of the defaults behind
    try:
        p.write_text(json.dumps(DEFAULT_SETTINGS, indent=2))
    except OSError as e:
        log.warning("Cannot write default settings to %s: %s", p, e)
    return DEFAULT_SETTINGS.copy()

def save_settings(data: dict, path: Path | None = None) -> None:
    p = Path(path) if path else APP_SETTINGS_FILE
    p.write_text(json.dumps(data, indent=2))
