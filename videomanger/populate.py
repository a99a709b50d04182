"""Fill in TV episode metadata and episode titles in file names for a series on disk."""

from __future__ import annotations

import argparse
import json
import logging
import os
import re
import shutil
import urllib.request
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from videomanger import metadata
from videomanger.metadata import MetadataError, Updates

log = logging.getLogger(__name__)

EPISODES_URL = "https://api.tvmaze.com/shows/{show_id}/episodes"
SHOW_ID = 107
SHOW_NAME = "Bob's Burgers"
GENRE = "Animation"
NETWORK = "Fox"
SEASONS = range(1, 15)

_HTML_TAG = re.compile(r"<[^>]+>")
_ENTITIES = {
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&#39;": "'",
    "&nbsp;": " ",
}
_ENTITY = re.compile("|".join(re.escape(entity) for entity in _ENTITIES))
_EPISODE_KEY = re.compile(r"(S\d+E\d+)", re.IGNORECASE | re.ASCII)
_FILENAME_SAFE = str.maketrans(
    {"/": "-", "\\": "-", ":": "-", "*": "", "?": "", '"': "", "<": "", ">": "", "|": "-"}
)


@dataclass(frozen=True)
class Episode:
    """One episode as listed by the episode guide."""

    season: int
    number: int
    name: str = ""
    airdate: str = ""
    summary: str = ""

    @classmethod
    def from_json(cls, item: Mapping) -> Episode:
        """Build an episode from a guide entry; missing or null fields become empty."""
        return cls(
            season=int(item.get("season") or 0),
            number=int(item.get("number") or 0),
            name=item.get("name") or "",
            airdate=item.get("airdate") or "",
            summary=item.get("summary") or "",
        )

    @property
    def key(self) -> str:
        """The ``S##E##`` key for this episode."""
        return f"S{self.season:02d}E{self.number:02d}"


def fetch_episodes(show_id: int) -> list[Episode]:
    """Fetch every episode of the show from the episode guide."""
    url = EPISODES_URL.format(show_id=show_id)
    with urllib.request.urlopen(url, timeout=30) as response:
        payload = json.load(response)
    if not isinstance(payload, list):
        raise ValueError("episode list is not a JSON array")
    return [Episode.from_json(item) for item in payload]


def episodes_by_key(episodes: Iterable[Episode]) -> dict[str, Episode]:
    """Index episodes by their ``S##E##`` key; later entries win."""
    return {episode.key: episode for episode in episodes}


def strip_html(text: str) -> str:
    """Remove HTML tags, decode common entities and trim whitespace."""
    text = _HTML_TAG.sub("", text)
    text = _ENTITY.sub(lambda match: _ENTITIES[match.group(0)], text)
    return text.strip()


def sanitize(text: str) -> str:
    """Make a string safe to use as part of a file name."""
    return text.translate(_FILENAME_SAFE).strip()


def episode_key(filename: str) -> str | None:
    """Return the upper-cased ``S##E##`` prefix of a file name, or None."""
    match = _EPISODE_KEY.match(filename)
    return match.group(1).upper() if match else None


def _updates_for(episode: Episode, key: str) -> Updates:
    return Updates(
        title=episode.name,
        description=strip_html(episode.summary),
        genre=GENRE,
        date=episode.airdate,
        show=SHOW_NAME,
        episode_id=key,
        season_num=str(episode.season),
        episode_num=str(episode.number),
        network=NETWORK,
        keywords=[SHOW_NAME, GENRE, "Comedy", f"Season {episode.season}", NETWORK],
    )


def _process_season(season_dir: str, episodes: Mapping[str, Episode], tally: Counter) -> None:
    try:
        with os.scandir(season_dir) as listing:
            entries = sorted(listing, key=lambda entry: entry.name)
    except OSError as exc:
        log.info("skip %s: %s", season_dir, exc)
        return

    for entry in entries:
        name = entry.name
        if entry.is_dir() or os.path.splitext(name)[1].lower() != ".mp4":
            continue
        key = episode_key(name)
        if key is None:
            log.info("  skip (no S##E## prefix): %s", name)
            tally["skipped"] += 1
            continue
        episode = episodes.get(key)
        if episode is None:
            log.info("  skip (no episode data): %s", name)
            tally["skipped"] += 1
            continue

        old_path = os.path.join(season_dir, name)
        new_name = f"{key} - {sanitize(episode.name)}.mp4"
        new_path = os.path.join(season_dir, new_name)
        if old_path != new_path:
            try:
                os.rename(old_path, new_path)
            except OSError as exc:
                log.warning("  FAIL rename %s: %s", name, exc)
                tally["failed"] += 1
                continue
            tally["renamed"] += 1

        try:
            metadata.write(new_path, _updates_for(episode, key))
        except (MetadataError, OSError) as exc:
            log.warning("  FAIL metadata %s: %s", new_name, exc)
            tally["failed"] += 1
            continue
        log.info("  ✓ %s — %s (%s)", key, episode.name, episode.airdate)
        tally["tagged"] += 1


def main(argv: list[str] | None = None) -> int:
    """Rename episode files and write their metadata; return the exit status."""
    parser = argparse.ArgumentParser(
        prog="videomanger-populate",
        description="Rename episode files to include their titles and write episode metadata.",
    )
    parser.add_argument(
        "-dir", "--dir", dest="dir", default=".",
        help="root directory containing 'Season N' subdirectories",
    )
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    if shutil.which("ffmpeg") is None:
        log.error("ffmpeg not found in PATH — required for metadata writing")
        return 1

    log.info("Fetching episode data...")
    try:
        episodes = episodes_by_key(fetch_episodes(SHOW_ID))
    except (OSError, ValueError) as exc:
        log.error("fetch episodes: %s", exc)
        return 1
    log.info("Loaded %d episodes", len(episodes))

    tally: Counter = Counter()
    for season in SEASONS:
        _process_season(os.path.join(args.dir, f"Season {season}"), episodes, tally)

    print(
        f"\nDone.\n  renamed: {tally['renamed']}\n  tagged:  {tally['tagged']}"
        f"\n  skipped: {tally['skipped']}\n  failed:  {tally['failed']}"
    )
    return 0