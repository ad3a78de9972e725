"""Shared test fixtures."""

import itertools

import pytest
from PySide6.QtCore import QCoreApplication, QObject, Signal

from bdq.errors import SpawnFailed
from bdq.models.task import DiscMediaInfo, ResourceSample
from bdq.scheduler import Scheduler
from bdq.utils.settings import DEFAULT_SETTINGS
from bdq.workers.resource_monitor import ResourceMonitor


@pytest.fixture(scope="session")
def qapp():
    return QCoreApplication.instance() or QCoreApplication([])


class FakeController(QObject):
    """Stands in for ProcessController; events are emitted synchronously by the test."""

    output_line = Signal(int, str)
    progress_line = Signal(int, str)
    exited = Signal(int, int)

    def __init__(self):
        super().__init__()
        self._pids = itertools.count(1000)
        self.spawned: list[tuple[int, str, list[str]]] = []
        self.alive: set[int] = set()
        self.suspended: set[int] = set()
        self.terminated: list[int] = []
        self.fail_spawn = False
        self.can_suspend = True
        self.can_resume = True

    def spawn(self, executable, args):
        if self.fail_spawn:
            raise SpawnFailed(f"{executable} not found (check settings)")
        pid = next(self._pids)
        self.spawned.append((pid, executable, list(args)))
        self.alive.add(pid)
        return pid

    def is_alive(self, handle):
        return handle in self.alive

    def handles(self):
        return sorted(self.alive)

    def suspend(self, handle):
        if not self.can_suspend or handle not in self.alive:
            return False
        self.suspended.add(handle)
        return True

    def resume(self, handle):
        if not self.can_resume or handle not in self.alive:
            return False
        self.suspended.discard(handle)
        return True

    def terminate(self, handle):
        if handle not in self.alive:
            return False
        self.terminated.append(handle)
        return True

    def shutdown(self):
        self.alive.clear()

    # test helpers
    def last_pid(self):
        return self.spawned[-1][0]

    def say(self, handle, line):
        self.output_line.emit(handle, line)
        if "time=" in line and "bitrate=" in line:
            self.progress_line.emit(handle, line)

    def finish(self, handle, rc=0):
        self.alive.discard(handle)
        self.exited.emit(handle, rc)


@pytest.fixture()
def fake_controller(qapp):
    return FakeController()


def make_monitor(cpu=10.0, mem=10.0):
    return ResourceMonitor(interval_ms=60_000, sampler=lambda: ResourceSample(cpu, mem))


@pytest.fixture()
def settings(tmp_path):
    return {**DEFAULT_SETTINGS, "output_root": str(tmp_path / "out"), "ffmpeg_path": "ffmpeg"}


@pytest.fixture()
def make_scheduler(qapp, fake_controller, settings):
    made = []

    def _make(auto=True, cpu=10.0, mem=10.0, **overrides):
        s = {**settings, "auto_start_next": auto, **overrides}
        scheduler = Scheduler(s, controller=fake_controller, monitor=make_monitor(cpu, mem))
        made.append(scheduler)
        return scheduler

    yield _make
    for scheduler in made:
        scheduler.monitor.stop()


def disc(tmp_path, name="Movie", playlist=True, duration=0.0) -> DiscMediaInfo:
    root = tmp_path / name
    return DiscMediaInfo(
        path=str(root),
        name=name,
        has_bdmv=True,
        main_playlist=str(root / "BDMV" / "PLAYLIST" / "00000.mpls") if playlist else None,
        duration=duration,
    )
