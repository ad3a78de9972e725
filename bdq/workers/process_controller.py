# bdq/workers/process_controller.py
import logging
import subprocess
import threading
from dataclasses import dataclass

import psutil
from PySide6.QtCore import QObject, QThread, QTimer, Signal, Slot

from ..errors import SpawnFailed, TerminateFailed
from ..parsers.ffmpeg_output import is_progress_line

log = logging.getLogger(__name__)

DEFAULT_TERMINATE_GRACE_MS = 5000


class _OutputPump(QObject):
    """Reads one child's merged stdout/stderr until EOF, then reaps it."""

    line_out = Signal(int, str)
    progress = Signal(int, str)
    finished = Signal(int, int)

    def __init__(self, handle: int, proc: subprocess.Popen):
        super().__init__()
        self.handle = handle
        self.proc = proc

    @Slot()
    def run(self):
        try:
            # text mode translates ffmpeg's bare '\r' status updates into lines
            for raw in self.proc.stdout:
                if not (line := raw.rstrip("\n")):
                    continue
                self.line_out.emit(self.handle, line)
                if is_progress_line(line):
                    self.progress.emit(self.handle, line)
        except (OSError, ValueError) as e:
            log.warning("Output of process %d stopped: %s", self.handle, e)
        finally:
            rc = self.proc.wait()
            self.proc.stdout.close()
            self.finished.emit(self.handle, rc)


@dataclass
class _Child:
    proc: subprocess.Popen
    thread: QThread
    pump: _OutputPump
    suspended: bool = False


class ProcessController(QObject):
    """Spawns external engine processes and reports their output and exit.

    Everything is keyed by handle (the child's pid) so several children could
    be tracked at once, although the scheduler only ever runs one.
    """

    output_line = Signal(int, str)
    progress_line = Signal(int, str)
    exited = Signal(int, int)

    def __init__(self, terminate_grace_ms: int = DEFAULT_TERMINATE_GRACE_MS, parent=None):
        super().__init__(parent)
        self.terminate_grace_ms = int(terminate_grace_ms)
        self._lock = threading.Lock()
        self._children: dict[int, _Child] = {}

    def spawn(self, executable: str, args: list[str]) -> int:
        cmd = [executable, *args]
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except FileNotFoundError as e:
            raise SpawnFailed(f"{executable} not found (check settings)") from e
        except (OSError, ValueError) as e:
            raise SpawnFailed(f"Failed to execute {executable}: {e}") from e

        handle = proc.pid
        pump = _OutputPump(handle, proc)
        thread = QThread(self)
        pump.moveToThread(thread)
        pump.line_out.connect(self.output_line)
        pump.progress.connect(self.progress_line)
        pump.finished.connect(self._on_pump_finished)
        thread.started.connect(pump.run)
        with self._lock:
            self._children[handle] = _Child(proc, thread, pump)
        thread.start()
        log.debug("Spawned %s (pid %d)", executable, handle)
        return handle

    @Slot(int, int)
    def _on_pump_finished(self, handle: int, rc: int):
        with self._lock:
            child = self._children.pop(handle, None)
        if child is not None:
            child.thread.quit()
            child.thread.wait()
            child.pump.deleteLater()
        log.debug("Process %d exited with code %d", handle, rc)
        self.exited.emit(handle, rc)

    def _child(self, handle: int) -> _Child | None:
        with self._lock:
            return self._children.get(handle)

    def handles(self) -> list[int]:
        with self._lock:
            return list(self._children)

    def is_alive(self, handle: int) -> bool:
        child = self._child(handle)
        return child is not None and child.proc.poll() is None

    def suspend(self, handle: int) -> bool:
        child = self._child(handle)
        if child is None or child.proc.poll() is not None:
            return False
        try:
            psutil.Process(handle).suspend()
        except psutil.NoSuchProcess:
            return False
        except psutil.Error as e:
            log.warning("Cannot suspend process %d: %s", handle, e)
            return False
        child.suspended = True
        log.info("Suspended process %d", handle)
        return True

    def resume(self, handle: int) -> bool:
        child = self._child(handle)
        if child is None or child.proc.poll() is not None:
            return False
        try:
            psutil.Process(handle).resume()
        except psutil.NoSuchProcess:
            return False
        except psutil.Error as e:
            log.warning("Cannot resume process %d: %s", handle, e)
            return False
        child.suspended = False
        log.info("Resumed process %d", handle)
        return True

    def terminate(self, handle: int) -> bool:
        """Ask a child to stop. The exit itself is reported through `exited`.

        Returns False when the handle is unknown or the child already ended.
        """
        child = self._child(handle)
        if child is None or child.proc.poll() is not None:
            return False
        try:
            if child.suspended:
                # a stopped process cannot act on SIGTERM
                psutil.Process(handle).resume()
                child.suspended = False
            child.proc.terminate()
        except psutil.NoSuchProcess:
            return False
        except (OSError, psutil.Error) as e:
            raise TerminateFailed(f"Failed to stop process {handle}: {e}") from e
        log.info("Terminating process %d", handle)
        proc = child.proc
        QTimer.singleShot(self.terminate_grace_ms, lambda: self._kill_if_alive(proc))
        return True

    def _kill_if_alive(self, proc: subprocess.Popen):
        if proc.poll() is None:
            log.warning("Process %d ignored terminate, killing it", proc.pid)
            try:
                proc.kill()
            except OSError as e:
                log.error("Failed to kill process %d: %s", proc.pid, e)

    def shutdown(self, timeout: float = 5.0):
        """Stop every child and wait for it. Blocks; only meant for application exit."""
        with self._lock:
            children = list(self._children.values())
        for child in children:
            if child.proc.poll() is None:
                try:
                    if child.suspended:
                        psutil.Process(child.proc.pid).resume()
                    child.proc.terminate()
                    child.proc.wait(timeout=timeout)
                except subprocess.TimeoutExpired:
                    child.proc.kill()
                except (OSError, psutil.Error) as e:
                    log.warning("Failed to stop process %d: %s", child.proc.pid, e)
            child.thread.quit()
            child.thread.wait()
