import logging
from pathlib import Path

from ..errors import PlaylistNotFound
from ..models.task import DirEntry

log = logging.getLogger(__name__)

BDMV_DIR = "BDMV"
PLAYLIST_DIR = "PLAYLIST"
PLAYLIST_SUFFIX = ".mpls"


def base_name(path: str | Path) -> str:
    """File or folder name without its last extension ('Movie.2020.iso' -> 'Movie.2020')."""
    name = Path(str(path).rstrip("/\\")).name
    stem, dot, _ = name.rpartition(".")
    return stem if dot and stem else name


def output_path_for(dest_root: str | Path, media_path: str | Path, extension: str) -> str:
    return str(Path(dest_root) / f"{base_name(media_path)}.{extension}")


def detect_structure(root: str | Path) -> bool:
    return (Path(root) / BDMV_DIR).is_dir()


def list_dir(path: str | Path) -> list[DirEntry]:
    entries: list[DirEntry] = []
    try:
        for item in Path(path).iterdir():
            entries.append(DirEntry(path=str(item), is_directory=item.is_dir(), name=item.name))
    except OSError as e:
        log.debug("Cannot list %s: %s", path, e)
    return entries


def _playlists(playlist_dir: Path) -> list[str]:
    names = sorted(
        e.name for e in list_dir(playlist_dir)
        if e.name and not e.is_directory and e.name.lower().endswith(PLAYLIST_SUFFIX)
    )
    if not names:
        raise PlaylistNotFound(playlist_dir)
    return names


def find_main_playlist(root: str | Path) -> str | None:
    """First playlist by name under BDMV/PLAYLIST.

    Lowest-numbered is only a heuristic; it is not guaranteed to be the main
    feature. Callers that need that should pick by size or duration instead.
    """
    playlist_dir = Path(root) / BDMV_DIR / PLAYLIST_DIR
    try:
        names = _playlists(playlist_dir)
    except PlaylistNotFound as e:
        log.warning("%s", e)
        return None
    return str(playlist_dir / names[0])


def find_disc_roots(path: str | Path, max_depth: int = 5) -> list[Path]:
    """
    Find folders that contain a BDMV structure.

    Args:
        path: Root path to search (may itself be a disc root, or a BDMV folder)
        max_depth: Maximum recursion depth to prevent infinite loops

    Returns:
        Disc roots in sorted traversal order
    """
    path = Path(path)
    if path.name.upper() == BDMV_DIR and path.is_dir():
        return [path.parent]

    roots: list[Path] = []

    def _find_recursive(current: Path, depth: int = 0) -> None:
        if depth > max_depth or not current.is_dir():
            return
        if detect_structure(current):
            roots.append(current)
            return  # Don't recurse into a disc
        try:
            subdirs = sorted(p for p in current.iterdir() if p.is_dir())
        except (PermissionError, OSError):
            return
        for subdir in subdirs:
            _find_recursive(subdir, depth + 1)

    _find_recursive(path)
    return roots
