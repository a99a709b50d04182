"""Records kept in the video library."""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Directory:
    """A registered video directory."""

    id: int
    path: str


@dataclass(frozen=True)
class Video:
    """A video file known to the library.

    ``directory_id`` is 0 when the owning directory has been removed.
    ``rating`` is 0 (neutral), 1 (liked) or 2 (double-liked).
    """

    id: int
    filename: str
    directory_id: int = 0
    directory_path: str = ""
    display_name: str = ""
    rating: int = 0

    def title(self) -> str:
        """The display name if set, otherwise the filename."""
        return self.display_name or self.filename

    def file_path(self) -> str:
        """The path of the video file on disk."""
        joined = os.path.join(self.directory_path, self.filename)
        return os.path.normpath(joined) if joined else ""


@dataclass(frozen=True)
class Tag:
    """A label that can be applied to videos."""

    id: int
    name: str


@dataclass(frozen=True)
class WatchRecord:
    """The last playback position (seconds) and time for a video."""

    video_id: int
    position: float
    watched_at: str