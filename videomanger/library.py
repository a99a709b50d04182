"""Library maintenance: scanning directories, tagging files and running video tools."""

from __future__ import annotations

import ipaddress
import logging
import os
import socket
import subprocess
from dataclasses import dataclass

from videomanger import metadata
from videomanger.metadata import MetadataError, Updates
from videomanger.models import Directory, Video
from videomanger.store import SQLiteStore, StoreError

log = logging.getLogger(__name__)

VIDEO_EXTENSIONS = frozenset({".mp4", ".webm", ".ogg", ".mov", ".mkv", ".avi"})

# Large downloads are allowed up to ten minutes.
DOWNLOAD_TIMEOUT = 600.0


class ToolError(Exception):
    """Raised when an external tool such as ffmpeg or yt-dlp fails.

    ``stderr`` holds whatever the tool wrote to its error stream.
    """

    def __init__(self, message: str, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr


@dataclass(frozen=True)
class ConvertFormat:
    """Output extension and ffmpeg codec arguments for a conversion target."""

    ext: str
    video_args: tuple[str, ...]
    audio_args: tuple[str, ...]


CONVERT_FORMATS: dict[str, ConvertFormat] = {
    "mp4": ConvertFormat(".mp4", ("-c:v", "libx264"), ("-c:a", "aac")),
    "webm": ConvertFormat(".webm", ("-c:v", "libvpx-vp9"), ("-c:a", "libopus")),
    "mkv": ConvertFormat(".mkv", ("-c:v", "copy"), ("-c:a", "copy")),
}


def _split_ext(name: str) -> tuple[str, str]:
    """Split a file name at its last dot, keeping the dot with the extension."""
    index = name.rfind(".")
    if index < 0 or "/" in name[index:] or os.sep in name[index:]:
        return name, ""
    return name[:index], name[index:]


def is_video_file(name: str) -> bool:
    """Report whether the name has a recognised video extension."""
    return _split_ext(name)[1].lower() in VIDEO_EXTENSIONS


def local_addresses(port: str | int) -> list[str]:
    """Return ``http://`` URLs for this machine's non-loopback IPv4 addresses."""
    found: list[str] = []

    def add(ip: str) -> None:
        try:
            address = ipaddress.IPv4Address(ip)
        except ValueError:
            return
        if address.is_loopback or address.is_unspecified:
            return
        url = f"http://{address}:{port}"
        if url not in found:
            found.append(url)

    try:
        for info in socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET):
            add(info[4][0])
    except OSError:
        pass
    try:
        # Connecting a UDP socket sends nothing; it only picks the outbound interface.
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
            probe.connect(("192.0.2.1", 9))
            add(probe.getsockname()[0])
    except OSError:
        pass
    return found


def _log_walk_error(error: OSError) -> None:
    log.warning("sync walk %s: %s", error.filename, error)


def _sync_file(
    store: SQLiteStore, directory: Directory, folder: str, name: str, tag_name: str
) -> None:
    path = os.path.join(folder, name)
    try:
        video = store.upsert_video(directory.id, folder, name)
    except StoreError as exc:
        log.warning("upsert %s: %s", path, exc)
        return
    if not video.display_name:
        try:
            native = metadata.read(path)
        except MetadataError:
            native = None
        if native is not None and native.title:
            try:
                store.update_video_name(video.id, native.title)
            except StoreError as exc:
                log.warning("set native title %s: %s", path, exc)
    try:
        tag = store.upsert_tag(tag_name)
    except StoreError as exc:
        log.warning("upsert dir tag %s: %s", directory.path, exc)
        return
    try:
        store.tag_video(video.id, tag.id)
    except StoreError as exc:
        log.warning("tag video %d with dir tag: %s", video.id, exc)


def sync_dir(store: SQLiteStore, directory: Directory) -> None:
    """Register every video file under the directory tree.

    Videos share the registered directory's id but keep their own containing
    folder as their path. A video without a display name takes the file's
    native title when one can be read, and every video is tagged with the
    registered directory's base name.
    """
    tag_name = os.path.basename(os.path.normpath(directory.path))
    for root, dirnames, filenames in os.walk(directory.path, onerror=_log_walk_error):
        dirnames.sort()
        folder = os.path.normpath(root)
        for name in sorted(filenames):
            if is_video_file(name):
                _sync_file(store, directory, folder, name, tag_name)


def sync_tags_to_file(store: SQLiteStore, video: Video) -> None:
    """Write the video's current tags into its file as keywords; failures are logged."""
    try:
        tags = store.list_tags_by_video(video.id)
    except StoreError as exc:
        log.warning("sync tags to file, list tags %d: %s", video.id, exc)
        return
    try:
        metadata.write(video.file_path(), Updates(keywords=[tag.name for tag in tags]))
    except (MetadataError, OSError) as exc:
        log.warning("sync tags to file, write %s: %s", video.file_path(), exc)


def _decode(output: bytes | str | None) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode(errors="replace")
    return output


def _run(command: list[str], action: str, timeout: float | None = None) -> None:
    try:
        result = subprocess.run(command, capture_output=True, timeout=timeout, check=False)
    except subprocess.TimeoutExpired as exc:
        stderr = _decode(exc.stderr)
        log.warning("%s %s timed out: %s", command[0], action, stderr)
        raise ToolError(f"{action} failed: {stderr}", stderr) from exc
    except OSError as exc:
        log.warning("%s %s: %s", command[0], action, exc)
        raise ToolError(f"{action} failed: {exc}") from exc
    if result.returncode != 0:
        stderr = _decode(result.stderr)
        log.warning(
            "%s %s: exit status %d\nstderr: %s", command[0], action, result.returncode, stderr
        )
        raise ToolError(f"{action} failed: {stderr}", stderr)


def download_with_ytdlp(url: str, directory_path: str) -> None:
    """Download a single video with yt-dlp into the directory, named by its title."""
    _run(
        [
            "yt-dlp",
            "--no-playlist",
            "-o", os.path.join(directory_path, "%(title)s.%(ext)s"),
            url,
        ],
        "download",
        timeout=DOWNLOAD_TIMEOUT,
    )


def _sibling_path(video: Video, new_name: str) -> str:
    return os.path.normpath(os.path.join(video.directory_path, new_name))


def convert_video(video: Video, format_name: str) -> str:
    """Convert the video to mp4, webm or mkv beside the original; return the new path."""
    target = CONVERT_FORMATS.get(format_name.strip().lower())
    if target is None:
        raise ValueError("format must be mp4, webm, or mkv")
    base, _ = _split_ext(video.filename)
    out_path = _sibling_path(video, base + target.ext)
    _run(
        ["ffmpeg", "-y", "-i", video.file_path(), *target.video_args, *target.audio_args, out_path],
        "conversion",
    )
    return out_path


def export_usb(video: Video) -> str:
    """Re-encode the video as a widely playable ``_usb.mp4`` file; return its path."""
    base, _ = _split_ext(video.filename)
    out_path = _sibling_path(video, base + "_usb.mp4")
    _run(
        [
            "ffmpeg", "-y",
            "-i", video.file_path(),
            "-c:v", "libx264", "-profile:v", "high", "-level", "4.1",
            "-c:a", "aac", "-b:a", "192k",
            "-movflags", "+faststart",
            out_path,
        ],
        "export",
    )
    return out_path