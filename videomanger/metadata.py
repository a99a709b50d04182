"""Read and write native video-file metadata with ffprobe and ffmpeg."""

from __future__ import annotations

import json
import os
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field

_KEYWORD_SEPARATORS = re.compile(r"[,;]")


class MetadataError(Exception):
    """Raised when metadata cannot be read from or written to a file."""


@dataclass
class Meta:
    """Native metadata read from a video file."""

    title: str = ""
    description: str = ""
    genre: str = ""
    keywords: list[str] = field(default_factory=list)
    artist: str = ""
    date: str = ""
    comment: str = ""
    show: str = ""
    network: str = ""
    episode_id: str = ""
    season_num: str = ""
    episode_num: str = ""

    def has_data(self) -> bool:
        """Report whether any of the descriptive fields is populated."""
        return bool(
            self.title
            or self.description
            or self.genre
            or self.keywords
            or self.artist
            or self.date
            or self.show
            or self.network
            or self.episode_id
        )


@dataclass
class Updates:
    """Metadata fields to write back to a file.

    ``None`` leaves a field unchanged; an empty string (or an empty keyword
    list) clears it.
    """

    title: str | None = None
    description: str | None = None
    genre: str | None = None
    date: str | None = None
    comment: str | None = None
    keywords: list[str] | None = None
    show: str | None = None
    episode_id: str | None = None
    season_num: str | None = None
    episode_num: str | None = None
    network: str | None = None


def read(path: str) -> Meta:
    """Read native metadata with ffprobe; an empty Meta if ffprobe is missing."""
    if shutil.which("ffprobe") is None:
        return Meta()
    command = [
        "ffprobe",
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        path,
    ]
    try:
        result = subprocess.run(command, capture_output=True, check=False)
    except OSError as exc:
        raise MetadataError(f"ffprobe: {exc}") from exc
    if result.returncode != 0:
        raise MetadataError(f"ffprobe: exit status {result.returncode}")
    return parse_ffprobe_output(result.stdout)


def _metadata_args(updates: Updates) -> list[str]:
    pairs = [
        ("title", updates.title),
        ("description", updates.description),
        ("genre", updates.genre),
        ("date", updates.date),
        ("comment", updates.comment),
        ("keywords", None if updates.keywords is None else ",".join(updates.keywords)),
        ("show", updates.show),
        ("episode_id", updates.episode_id),
        ("season_number", updates.season_num),
        ("episode_sort", updates.episode_num),
        ("network", updates.network),
    ]
    args: list[str] = []
    for key, value in pairs:
        if value is not None:
            args += ["-metadata", f"{key}={value}"]
    return args


def write(path: str, updates: Updates) -> None:
    """Rewrite the file's metadata with ffmpeg, copying streams unchanged.

    Does nothing if ffmpeg is not available.
    """
    if shutil.which("ffmpeg") is None:
        return
    directory = os.path.dirname(path) or "."
    ext = os.path.splitext(path)[1]
    try:
        fd, tmp_path = tempfile.mkstemp(prefix=".vm_tmp_", suffix=ext, dir=directory)
    except OSError as exc:
        raise MetadataError(f"create temp file: {exc}") from exc
    os.close(fd)
    try:
        command = [
            "ffmpeg", "-i", path, "-codec", "copy", "-map_metadata", "0", "-y",
            *_metadata_args(updates),
            tmp_path,
        ]
        try:
            result = subprocess.run(
                command, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, check=False
            )
        except OSError as exc:
            raise MetadataError(f"ffmpeg: {exc}") from exc
        if result.returncode != 0:
            output = result.stdout.decode(errors="replace")
            raise MetadataError(f"ffmpeg: exit status {result.returncode}: {output}")
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


def parse_ffprobe_output(data: bytes | str) -> Meta:
    """Build a Meta from ffprobe's JSON ``-show_format`` output."""
    try:
        parsed = json.loads(data)
    except (ValueError, TypeError) as exc:
        raise MetadataError(f"parse ffprobe output: {exc}") from exc
    if not isinstance(parsed, dict):
        raise MetadataError("parse ffprobe output: top level is not an object")
    fmt = parsed.get("format") or {}
    if not isinstance(fmt, dict):
        raise MetadataError("parse ffprobe output: format is not an object")
    tags = fmt.get("tags") or {}
    if not isinstance(tags, dict) or not all(isinstance(v, str) for v in tags.values()):
        raise MetadataError("parse ffprobe output: tags must map strings to strings")

    meta = Meta(
        title=tags.get("title", ""),
        genre=tags.get("genre", ""),
        artist=first_of(tags, "artist", "album_artist"),
        date=first_of(tags, "date", "year"),
        comment=tags.get("comment", ""),
        description=first_of(tags, "description", "desc"),
        show=tags.get("show", ""),
        network=tags.get("network", ""),
        episode_id=tags.get("episode_id", ""),
        season_num=tags.get("season_number", ""),
        episode_num=tags.get("episode_sort", ""),
    )
    keywords = first_of(tags, "keywords", "keyword")
    if keywords:
        meta.keywords = [
            word.strip() for word in _KEYWORD_SEPARATORS.split(keywords) if word.strip()
        ]
    return meta


def first_of(tags: dict[str, str], *args: str) -> str:
    """Return the first non-empty value among the given keys, or ''."""
    for key in args:
        value = tags.get(key, "")
        if value:
            return value
    return ""