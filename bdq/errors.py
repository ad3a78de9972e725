# bdq/errors.py


class BdqError(Exception):
    """Base class for conversion queue errors."""


class StructureInvalid(BdqError):
    def __init__(self, root):
        super().__init__(f"No BDMV structure under {root}")
        self.root = root


class PlaylistNotFound(BdqError):
    def __init__(self, playlist_dir):
        super().__init__(f"No .mpls playlists in {playlist_dir}")
        self.playlist_dir = playlist_dir


class ProbeFailed(BdqError):
    pass


class SpawnFailed(BdqError):
    pass


class ProcessExitedNonZero(BdqError):
    def __init__(self, exit_code: int):
        super().__init__(f"ffmpeg exited with code {exit_code}")
        self.exit_code = exit_code


class TerminateFailed(BdqError):
    pass
