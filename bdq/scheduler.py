# bdq/scheduler.py
import logging
import threading
from datetime import datetime
from pathlib import Path

from PySide6.QtCore import QObject, Signal, Slot

from .errors import ProcessExitedNonZero, SpawnFailed, TerminateFailed
from .models.task import ConversionOptions, DiscMediaInfo, Task, TaskStatus, TERMINAL_STATUSES
from .parsers.ffmpeg_output import ProgressTracker
from .utils.paths import output_path_for
from .workers.ffmpeg_args import build_ffmpeg_args, format_cmdline
from .workers.process_controller import DEFAULT_TERMINATE_GRACE_MS, ProcessController
from .workers.resource_monitor import DEFAULT_INTERVAL_MS, ResourceMonitor

log = logging.getLogger(__name__)


class Scheduler(QObject):
    """Owns the task registry and runs at most one conversion at a time.

    Every mutation goes through `_lock`; the running slot (`_running_id`) is
    only claimed or released while holding it. Completion is driven by the
    controller's `exited` signal, never by polling. When `auto_start_next` is
    on, finishing, failing, pausing or cancelling the running task starts the
    first PENDING task in creation order.
    """

    task_added = Signal(str)
    task_updated = Signal(str)
    task_removed = Signal(str)
    task_output = Signal(str, str)   # task id, line
    queue_drained = Signal()         # nothing running and nothing pending

    def __init__(self, settings: dict, controller: ProcessController | None = None,
                 monitor: ResourceMonitor | None = None, parent=None):
        super().__init__(parent)
        self.settings = settings
        self.controller = controller or ProcessController(
            settings.get("terminate_grace_ms", DEFAULT_TERMINATE_GRACE_MS), self)
        self.monitor = monitor or ResourceMonitor(
            settings.get("monitor_interval_ms", DEFAULT_INTERVAL_MS), parent=self)

        self._lock = threading.RLock()
        self._tasks: dict[str, Task] = {}  # insertion order is creation order
        self._running_id: str | None = None
        self._by_handle: dict[int, str] = {}
        self._trackers: dict[str, ProgressTracker] = {}
        self._auto_start_next = bool(settings.get("auto_start_next", True))

        self.controller.output_line.connect(self._on_output)
        self.controller.progress_line.connect(self._on_progress)
        self.controller.exited.connect(self._on_exited)
        self.monitor.start()

    # --- queries -----------------------------------------------------------

    def get_tasks(self) -> list[Task]:
        with self._lock:
            return list(self._tasks.values())

    def get_task(self, task_id: str) -> Task | None:
        with self._lock:
            return self._tasks.get(task_id)

    def get_running_task(self) -> Task | None:
        with self._lock:
            return self._tasks.get(self._running_id) if self._running_id else None

    @property
    def auto_start_next(self) -> bool:
        return self._auto_start_next

    def default_options(self) -> ConversionOptions:
        return ConversionOptions.from_settings(self.settings)

    # --- creation / removal ----------------------------------------------

    def create_task(self, source_path: str, dest_root: str, media_info: DiscMediaInfo) -> Task:
        ext = self.default_options().extension
        task = Task(
            source_path=str(source_path),
            output_path=output_path_for(dest_root, media_info.path, ext),
            media_info=media_info,
        )
        with self._lock:
            self._tasks[task.id] = task
            log.info("Queued %s -> %s", task.source_path, task.output_path)
            self.task_added.emit(task.id)
            if self._auto_start_next and self._running_id is None:
                self._advance()
        return task

    def create_tasks(self, items) -> list[Task]:
        return [self.create_task(src, dest, info) for src, dest, info in items]

    def delete_task(self, task_id: str) -> bool:
        with self._lock:
            if (task := self._tasks.get(task_id)) is None:
                return False
            if task.pid is not None and not task.is_terminal:
                self._terminate(task)
            del self._tasks[task_id]
            self._trackers.pop(task_id, None)
            freed = self._running_id == task_id
            if freed:
                self._running_id = None
            self.task_removed.emit(task_id)
            if freed:
                self._advance()
            return True

    def delete_tasks(self, task_ids: list[str]) -> list[bool]:
        return [self.delete_task(t) for t in task_ids]

    def cleanup_completed_tasks(self) -> int:
        with self._lock:
            done = [t.id for t in self._tasks.values() if t.status in TERMINAL_STATUSES]
            for task_id in done:
                del self._tasks[task_id]
                self.task_removed.emit(task_id)
        if done:
            log.info("Removed %d finished task(s)", len(done))
        return len(done)

    # --- state transitions -------------------------------------------------

    def start_task(self, task_id: str, options: ConversionOptions | None = None) -> bool:
        with self._lock:
            return self._start(task_id, options)

    def _start(self, task_id: str, options: ConversionOptions | None, advance: bool = True) -> bool:
        if (task := self._tasks.get(task_id)) is None:
            return False
        if task.status == TaskStatus.RUNNING:
            return True
        if task.status not in (TaskStatus.PENDING, TaskStatus.PAUSED):
            return False
        if self._running_id is not None:
            log.debug("Slot busy with %s, not starting %s", self._running_id, task_id)
            return False

        self._running_id = task.id
        was_paused = task.status == TaskStatus.PAUSED
        task.end_time = None

        if was_paused and task.pid is not None and self.controller.resume(task.pid):
            task.status = TaskStatus.RUNNING
            task.append_log(f"Resumed process {task.pid}")
            log.info("Resumed %s", task.source_path)
            self.task_updated.emit(task.id)
            return True

        # fresh pass: a paused task whose process is gone or stuck starts over
        if task.pid is not None:
            self._terminate(task)
            self._by_handle.pop(task.pid, None)
            task.pid = None
        task.progress = 0.0
        task.status = TaskStatus.RUNNING
        task.start_time = datetime.now()
        task.error = None
        options = options or self.default_options()
        self._trackers[task.id] = ProgressTracker(task.media_info.duration or None)

        ffmpeg = self.settings.get("ffmpeg_path", "ffmpeg")
        try:
            args = build_ffmpeg_args(
                task, options, self.monitor.tier(),
                extra_args=self.settings.get("extra_args", ""),
                overwrite=bool(self.settings.get("overwrite", False)),
                threads_before_output=bool(self.settings.get("threads_before_output", False)),
            )
            task.cmdline = format_cmdline(ffmpeg, args)
            task.append_log(f"Starting conversion with command: {task.cmdline}")
            Path(task.output_path).parent.mkdir(parents=True, exist_ok=True)
            pid = self.controller.spawn(ffmpeg, args)
        except (SpawnFailed, OSError) as e:
            self._finish(task, TaskStatus.FAILED, str(e))
            log.warning("Could not start %s: %s", task.source_path, e)
            if advance:
                self._advance()
            return False

        task.pid = pid
        self._by_handle[pid] = task.id
        task.append_log(f"ffmpeg process started with PID: {pid}")
        log.info("Started %s (pid %d)", task.source_path, pid)
        self.task_updated.emit(task.id)
        return True

    def start_tasks(self, task_ids: list[str], options: ConversionOptions | None = None) -> list[bool]:
        return [self.start_task(t, options) for t in task_ids]

    def pause_task(self, task_id: str) -> bool:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status != TaskStatus.RUNNING:
                return False
            if task.pid is not None and self.controller.suspend(task.pid):
                task.append_log(f"Suspended process {task.pid}")
            else:
                if task.pid is not None:
                    self._terminate(task)
                    self._by_handle.pop(task.pid, None)
                    task.pid = None
                task.append_log("Paused; the next resume restarts the pass")
            task.status = TaskStatus.PAUSED
            self._running_id = None
            log.info("Paused %s", task.source_path)
            self.task_updated.emit(task.id)
            self._advance()
            return True

    def pause_tasks(self, task_ids: list[str]) -> list[bool]:
        return [self.pause_task(t) for t in task_ids]

    def resume_task(self, task_id: str, options: ConversionOptions | None = None) -> bool:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status != TaskStatus.PAUSED:
                return False
            return self.start_task(task_id, options)

    def cancel_task(self, task_id: str) -> bool:
        with self._lock:
            if (task := self._tasks.get(task_id)) is None:
                return False
            if task.status == TaskStatus.CANCELLED:
                return True
            if task.status in TERMINAL_STATUSES:
                return False
            was_running = task.status == TaskStatus.RUNNING
            if task.pid is not None:
                self._terminate(task)
            self._finish(task, TaskStatus.CANCELLED, None)
            log.info("Cancelled %s", task.source_path)
            if was_running:
                self._advance()
            return True

    def cancel_tasks(self, task_ids: list[str]) -> list[bool]:
        return [self.cancel_task(t) for t in task_ids]

    def set_auto_start_next(self, enabled: bool):
        with self._lock:
            self._auto_start_next = bool(enabled)
            if enabled and self._running_id is None:
                self._advance()

    def shutdown(self):
        """Cancel whatever is live and stop background work. Blocks until children exit."""
        with self._lock:
            self._auto_start_next = False
            for task in self._tasks.values():
                if task.status in (TaskStatus.RUNNING, TaskStatus.PAUSED):
                    self._finish(task, TaskStatus.CANCELLED, None)
        self.controller.shutdown()
        self.monitor.stop()

    # --- internals (call with _lock held) ---------------------------------

    def _next_pending(self) -> Task | None:
        return next((t for t in self._tasks.values() if t.status == TaskStatus.PENDING), None)

    def _advance(self):
        if self._auto_start_next:
            while self._running_id is None and (nxt := self._next_pending()) is not None:
                self._start(nxt.id, None, advance=False)
        if self._running_id is None and self._next_pending() is None:
            self.queue_drained.emit()

    def _terminate(self, task: Task):
        try:
            self.controller.terminate(task.pid)
        except TerminateFailed as e:
            # the task is still given up on; the process may linger
            task.append_log(f"Error: {e}")
            log.error("%s", e)

    def _finish(self, task: Task, status: TaskStatus, error: str | None):
        task.status = status
        task.end_time = datetime.now()
        task.pid = None
        if error:
            task.error = error
            task.append_log(f"Error: {error}")
        if self._running_id == task.id:
            self._running_id = None
        self._trackers.pop(task.id, None)
        self.task_updated.emit(task.id)

    # --- controller events -------------------------------------------------

    def _task_for(self, handle: int) -> Task | None:
        task_id = self._by_handle.get(handle)
        return self._tasks.get(task_id) if task_id else None

    @Slot(int, str)
    def _on_output(self, handle: int, line: str):
        with self._lock:
            if (task := self._task_for(handle)) is None:
                return
            task.append_log(line)
            if tracker := self._trackers.get(task.id):
                tracker.feed(line)  # keeps the Duration: for later progress lines
            task_id = task.id
        self.task_output.emit(task_id, line)

    @Slot(int, str)
    def _on_progress(self, handle: int, line: str):
        with self._lock:
            task = self._task_for(handle)
            if task is None or task.status != TaskStatus.RUNNING:
                return
            tracker = self._trackers.get(task.id)
            if tracker is None or (pct := tracker.feed(line)) is None:
                return
            if task.set_progress(pct):
                self.task_updated.emit(task.id)

    @Slot(int, int)
    def _on_exited(self, handle: int, rc: int):
        with self._lock:
            task = self._task_for(handle)
            self._by_handle.pop(handle, None)
            if task is None or task.pid != handle:
                return  # cancelled, restarted or deleted meanwhile
            task.pid = None
            if task.status == TaskStatus.PAUSED:
                task.append_log(f"Process {handle} exited with code {rc} while paused")
                self.task_updated.emit(task.id)
                return
            if task.status != TaskStatus.RUNNING:
                return
            if rc == 0:
                task.set_progress(100.0)
                task.append_log("Conversion finished")
                self._finish(task, TaskStatus.COMPLETED, None)
                log.info("Finished %s in %.1fs", task.output_path, task.duration or 0.0)
            else:
                self._finish(task, TaskStatus.FAILED, str(ProcessExitedNonZero(rc)))
                log.error("Conversion of %s failed (rc=%d)", task.source_path, rc)
            self._advance()
