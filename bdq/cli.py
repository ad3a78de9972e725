# bdq/cli.py
import argparse
import logging
import signal
import sys
from pathlib import Path

from PySide6.QtCore import QCoreApplication, QTimer

from .models.task import TaskStatus
from .scheduler import Scheduler
from .utils.logs import setup_logging
from .utils.paths import find_disc_roots
from .utils.settings import load_settings
from .workers.disc_probe import get_disc_info

log = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bdq", description="Remux Blu-ray folders to MKV with ffmpeg, one at a time.")
    parser.add_argument("paths", nargs="+", help="Disc folders, or folders containing them")
    parser.add_argument("-o", "--output", help="Output root (default: output_root setting)")
    parser.add_argument("--settings", type=Path, help="Settings JSON file")
    parser.add_argument("--ffmpeg", help="ffmpeg executable")
    parser.add_argument("--no-chapters", action="store_true", help="Do not copy chapter markers")
    parser.add_argument("--no-metadata", action="store_true", help="Do not copy metadata tags")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args.settings)
    if args.ffmpeg:
        settings["ffmpeg_path"] = args.ffmpeg
    if args.output:
        settings["output_root"] = args.output
    if args.no_chapters:
        settings["include_chapters"] = False
    if args.no_metadata:
        settings["include_metadata"] = False
    setup_logging(args.log_level or settings.get("log_level", "INFO"), settings.get("log_file") or None)

    roots = []
    for p in args.paths:
        if not (found := find_disc_roots(p)):
            log.warning("No BDMV folder under %s", p)
        roots.extend(found)
    if not roots:
        log.error("Nothing to convert")
        return 2

    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    settings["auto_start_next"] = False  # switched on once the event loop runs
    scheduler = Scheduler(settings)

    for root in roots:
        info = get_disc_info(root, settings["ffmpeg_path"], float(settings.get("probe_timeout_s", 180)))
        if not info.main_playlist:
            log.warning("Skipping %s: no playlist found", root)
            continue
        log.info("%s: %d track(s), %.0fs", info.name, len(info.tracks), info.duration)
        scheduler.create_task(str(root), settings["output_root"], info)
    if not scheduler.get_tasks():
        scheduler.shutdown()
        return 2

    last_pct = {}

    def _report(task_id: str):
        if (task := scheduler.get_task(task_id)) is None:
            return
        pct = int(task.progress)
        if task.status == TaskStatus.RUNNING and last_pct.get(task_id) != pct and pct % 5 == 0:
            log.info("%s: %d%%", task.media_info.name, pct)
        last_pct[task_id] = pct

    interrupted = []

    def _on_sigint(*_):
        interrupted.append(True)
        log.warning("Interrupted, cancelling the queue")
        scheduler.set_auto_start_next(False)
        scheduler.cancel_tasks([t.id for t in scheduler.get_tasks()])
        app.quit()

    scheduler.task_updated.connect(_report)
    scheduler.queue_drained.connect(app.quit)
    previous_handler = signal.signal(signal.SIGINT, _on_sigint)
    # give the interpreter a chance to run the SIGINT handler while Qt spins
    wake = QTimer()
    wake.start(250)
    wake.timeout.connect(lambda: None)
    QTimer.singleShot(0, lambda: scheduler.set_auto_start_next(True))
    try:
        app.exec()
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        wake.stop()
    tasks = scheduler.get_tasks()
    scheduler.shutdown()
    for task in tasks:
        line = f"{task.status.value:>9}  {task.output_path}"
        if task.error:
            line += f"  ({task.error})"
        print(line)
    if interrupted:
        return 130
    return 1 if any(t.status == TaskStatus.FAILED for t in tasks) else 0


if __name__ == "__main__":
    sys.exit(main())
