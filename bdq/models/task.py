# bdq/models/task.py
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})

# ffmpeg muxer name -> file extension
_FORMAT_EXTENSIONS = {"matroska": "mkv"}


@dataclass
class Track:
    id: int
    type: str = "video"
    codec: str = "unknown"
    language: str = "und"
    title: str = ""
    duration: float = 0.0  # per-track duration is not extracted yet


@dataclass
class DiscMediaInfo:
    path: str
    name: str
    has_bdmv: bool = False
    main_playlist: str | None = None
    tracks: list[Track] = field(default_factory=list)
    duration: float = 0.0


@dataclass
class DirEntry:
    path: str
    is_directory: bool = False
    name: str | None = None


@dataclass(frozen=True)
class ResourceSample:
    cpu_usage: float
    mem_usage: float
    taken_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ConversionOptions:
    copy_all_tracks: bool = True
    include_chapters: bool = True
    include_metadata: bool = True
    output_format: str = "matroska"  # only Matroska output is supported

    @property
    def extension(self) -> str:
        return _FORMAT_EXTENSIONS.get(self.output_format, self.output_format)

    @classmethod
    def from_settings(cls, settings: dict) -> "ConversionOptions":
        return cls(
            copy_all_tracks=bool(settings.get("copy_all_tracks", True)),
            include_chapters=bool(settings.get("include_chapters", True)),
            include_metadata=bool(settings.get("include_metadata", True)),
            output_format=settings.get("output_format", "matroska") or "matroska",
        )


@dataclass
class Task:
    source_path: str
    output_path: str
    media_info: DiscMediaInfo
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: TaskStatus = TaskStatus.PENDING
    progress: float = 0.0
    pid: int | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    log: list[str] = field(default_factory=list)
    error: str | None = None
    cmdline: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration(self) -> float | None:
        """Seconds between start and end (or now, while the task is still going)."""
        if self.start_time is None:
            return None
        end = self.end_time or datetime.now()
        return (end - self.start_time).total_seconds()

    def append_log(self, line: str) -> None:
        self.log.append(line)

    def set_progress(self, value: float) -> bool:
        """Store a new progress value; returns False when it was refused."""
        value = max(0.0, min(100.0, float(value)))
        if self.status == TaskStatus.RUNNING and value < self.progress:
            return False
        self.progress = value
        return True
