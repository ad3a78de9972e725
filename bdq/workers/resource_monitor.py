# bdq/workers/resource_monitor.py
"""System load sampling.

Samples CPU and memory utilisation with ``psutil`` on a fixed interval and
turns the latest sample into a coarse priority tier:

- low    (>80% CPU or >80% RAM)  -> ffmpeg gets 1 thread
- medium (>60% CPU or >60% RAM)  -> 2 threads
- high   (otherwise)             -> 0 threads, ffmpeg picks all cores
"""
import logging
from typing import Callable

import psutil
from PySide6.QtCore import QObject, QTimer, Signal

from ..models.task import ResourceSample

log = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 5000

_LOW_THRESHOLD = 80.0
_MEDIUM_THRESHOLD = 60.0

THREADS_FOR_TIER = {"low": 1, "medium": 2, "high": 0}

def prime_cpu_counter():
    """The first non-blocking cpu_percent() reading is always 0.0; discard it."""
    psutil.cpu_percent(interval=None)


prime_cpu_counter()


def tier_for(cpu_usage: float, mem_usage: float) -> str:
    if cpu_usage > _LOW_THRESHOLD or mem_usage > _LOW_THRESHOLD:
        return "low"
    if cpu_usage > _MEDIUM_THRESHOLD or mem_usage > _MEDIUM_THRESHOLD:
        return "medium"
    return "high"


def psutil_sample() -> ResourceSample:
    # interval=None compares against the previous call and never blocks
    return ResourceSample(
        cpu_usage=psutil.cpu_percent(interval=None),
        mem_usage=psutil.virtual_memory().percent,
    )


class ResourceMonitor(QObject):
    sampled = Signal(object)  # ResourceSample

    def __init__(self, interval_ms: int = DEFAULT_INTERVAL_MS,
                 sampler: Callable[[], ResourceSample] = psutil_sample, parent=None):
        super().__init__(parent)
        self.interval_ms = int(interval_ms)
        self._sampler = sampler
        self._sample: ResourceSample | None = None
        self._timer: QTimer | None = None

    @property
    def running(self) -> bool:
        return self._timer is not None

    @property
    def sample(self) -> ResourceSample | None:
        return self._sample

    def start(self):
        if self._timer is not None:
            return
        self._timer = QTimer(self)
        self._timer.setInterval(self.interval_ms)
        self._timer.timeout.connect(self.tick)
        self._timer.start()
        log.debug("Resource monitor started (every %d ms)", self.interval_ms)
        self.tick()

    def stop(self):
        if self._timer is None:
            return
        self._timer.stop()
        self._timer.deleteLater()
        self._timer = None
        self._sample = None
        log.debug("Resource monitor stopped")

    def tick(self):
        try:
            sample = self._sampler()
        except Exception:
            log.warning("Failed to read system resources", exc_info=True)
            return
        self._sample = sample
        self.sampled.emit(sample)

    def tier(self) -> str:
        sample = self._sample
        if sample is None:
            return "high"
        return tier_for(sample.cpu_usage, sample.mem_usage)

    def thread_hint(self) -> int:
        return THREADS_FOR_TIER[self.tier()]
