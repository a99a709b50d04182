import io
import json
import sys
from pathlib import Path
from unittest import mock

import pytest

from videomanger.populate import (
    Episode,
    episode_key,
    episodes_by_key,
    fetch_episodes,
    main,
    sanitize,
    strip_html,
)

GUIDE = [
    {
        "season": 1,
        "number": 1,
        "name": "Human Flesh",
        "airdate": "2011-01-09",
        "summary": "<p>The family &amp; the restaurant.</p>",
    },
    {"season": 1, "number": 3, "name": "Sacred Cow", "airdate": "", "summary": None},
]


@pytest.fixture
def bin_dir(tmp_path, monkeypatch):
    path = tmp_path / "bin"
    path.mkdir()
    monkeypatch.setenv("PATH", str(path))
    return path


def _recording_ffmpeg(bin_dir: Path, log_path: Path) -> None:
    script = bin_dir / "ffmpeg"
    script.write_text(
        f"#!{sys.executable}\n"
        "import json\nimport sys\n"
        f"with open({str(log_path)!r}, 'a') as fh:\n"
        "    fh.write(json.dumps(sys.argv[1:]) + '\\n')\n"
        "open(sys.argv[-1], 'ab').close()\n"
    )
    script.chmod(0o755)


def _guide_response():
    return io.BytesIO(json.dumps(GUIDE).encode())


def test_strip_html_removes_tags_and_decodes_entities():
    assert strip_html("<p>Bob &amp; Linda</p>") == "Bob & Linda"


def test_strip_html_leaves_plain_text():
    text = "  A plain summary without markup  "
    assert strip_html(text) == text.strip()


def test_strip_html_output_has_no_tags():
    result = strip_html("<b>bold</b> and <i class='x'>italic</i>")
    assert "<" not in result and ">" not in result
    assert "bold" in result and "italic" in result


def test_sanitize_removes_unsafe_characters():
    result = sanitize('What? A/B: "C" <d> | e*\\f')
    assert not any(ch in result for ch in '/\\:*?"<>|')
    assert result == result.strip()


def test_sanitize_keeps_safe_text():
    assert sanitize("  Plain Title  ") == "Plain Title"


def test_episode_key():
    assert episode_key("s01e01 - pilot.mp4") == "S01E01"
    assert episode_key("S01E01.mp4") == "S01E01"
    assert episode_key("Pilot.mp4") is None
    assert episode_key("xS01E01.mp4") is None


def test_episode_key_round_trip():
    episode = Episode(season=1, number=1, name="Human Flesh")
    assert episode.key == "S01E01"
    assert episode_key(episode.key + " - Human Flesh.mp4") == episode.key


def test_episodes_by_key_later_entries_win():
    first = Episode(season=1, number=1, name="first")
    second = Episode(season=1, number=1, name="second")
    indexed = episodes_by_key([first, second])
    assert list(indexed) == ["S01E01"]
    assert indexed["S01E01"] is second


def test_episode_from_json_handles_nulls():
    episode = Episode.from_json({"season": 1, "number": None, "name": "Special", "summary": None})
    assert episode.number == 0
    assert episode.summary == ""
    assert episode.airdate == ""
    assert episode.name == "Special"


def test_fetch_episodes():
    with mock.patch("urllib.request.urlopen", return_value=_guide_response()) as opened:
        episodes = fetch_episodes(107)
    assert opened.call_args.args[0] == "https://api.tvmaze.com/shows/107/episodes"
    assert [e.name for e in episodes] == ["Human Flesh", "Sacred Cow"]
    assert episodes[1].summary == ""


def test_fetch_episodes_rejects_non_list():
    payload = io.BytesIO(b'{"not": "a list"}')
    with mock.patch("urllib.request.urlopen", return_value=payload):
        with pytest.raises(ValueError):
            fetch_episodes(107)


def test_main_requires_ffmpeg(tmp_path, bin_dir):
    assert main(["--dir", str(tmp_path)]) == 1


def test_main_fails_when_fetch_fails(tmp_path, bin_dir):
    _recording_ffmpeg(bin_dir, tmp_path / "ffmpeg.log")
    with mock.patch("urllib.request.urlopen", side_effect=OSError("offline")):
        assert main(["--dir", str(tmp_path)]) == 1


def test_main_renames_and_tags(tmp_path, bin_dir, capsys):
    log_path = tmp_path / "ffmpeg.log"
    _recording_ffmpeg(bin_dir, log_path)
    season = tmp_path / "show" / "Season 1"
    season.mkdir(parents=True)
    for name in ["s01e01.mp4", "Extra.mp4", "S01E02.mp4", "notes.txt"]:
        (season / name).write_bytes(b"fake")

    with mock.patch("urllib.request.urlopen", return_value=_guide_response()):
        status = main(["--dir", str(tmp_path / "show")])

    assert status == 0
    renamed = season / "S01E01 - Human Flesh.mp4"
    assert renamed.exists()
    assert not (season / "s01e01.mp4").exists()
    assert (season / "Extra.mp4").exists()

    calls = [json.loads(line) for line in log_path.read_text().splitlines()]
    assert len(calls) == 1
    args = calls[0]
    assert args[:2] == ["-i", str(renamed)]
    assert "title=Human Flesh" in args
    assert "show=Bob's Burgers" in args
    assert "episode_id=S01E01" in args
    assert "description=The family & the restaurant." in args

    out = capsys.readouterr().out
    assert "renamed: 1" in out
    assert "skipped: 2" in out
    assert "failed:  0" in out