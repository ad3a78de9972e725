# bdq/workers/ffmpeg_args.py
import shlex

from ..errors import SpawnFailed
from ..models.task import ConversionOptions, Task
from .resource_monitor import THREADS_FOR_TIER


def build_ffmpeg_args(
    task: Task,
    options: ConversionOptions,
    tier: str,
    *,
    extra_args: str = "",
    overwrite: bool = False,
    threads_before_output: bool = False,
) -> list[str]:
    """Stream-copy remux invocation for one task.

    Order: input, -c copy, -map 0, [-map_chapters 0], [-map_metadata 0],
    -f <format>, output, -threads <n>. ffmpeg applies trailing options to
    nothing, so `threads_before_output` moves the thread flag in front of
    the output path for builds that warn about it.
    """
    args: list[str] = []
    if overwrite:
        args.append("-y")
    args += ["-i", task.media_info.main_playlist or task.source_path]
    args += ["-c", "copy"]
    # copy_all_tracks is the only mapping supported: every input stream, untouched
    args += ["-map", "0"]
    if options.include_chapters:
        args += ["-map_chapters", "0"]
    if options.include_metadata:
        args += ["-map_metadata", "0"]
    if extra := extra_args.strip():
        try:
            args += shlex.split(extra)
        except ValueError as e:
            raise SpawnFailed(f"Invalid extra arguments {extra!r}: {e}") from e
    args += ["-f", options.output_format]

    threads = ["-threads", str(THREADS_FOR_TIER[tier])]
    if threads_before_output:
        args += threads + [task.output_path]
    else:
        args += [task.output_path] + threads
    return args


def format_cmdline(executable: str, args: list[str]) -> str:
    return " ".join(shlex.quote(c) for c in [executable, *args])
