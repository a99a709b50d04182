import dataclasses

import pytest

from videomanger.models import Directory, Tag, Video, WatchRecord


def test_title_prefers_display_name():
    v = Video(id=1, filename="raw_footage.mp4", display_name="Summer Trip")
    assert v.title() == "Summer Trip"


def test_title_falls_back_to_filename():
    v = Video(id=1, filename="untitled.mp4")
    assert v.title() == "untitled.mp4"


def test_file_path_joins_directory_and_filename():
    v = Video(id=1, filename="film.mp4", directory_id=0, directory_path="/movies")
    assert v.file_path() == "/movies/film.mp4"


def test_file_path_cleans_trailing_separator():
    v = Video(id=1, filename="film.mp4", directory_path="/movies/")
    assert v.file_path() == "/movies/film.mp4"


def test_file_path_without_directory_is_filename():
    v = Video(id=1, filename="clip.mp4")
    assert v.file_path() == "clip.mp4"


def test_video_defaults():
    v = Video(id=3, filename="a.mp4")
    assert (v.directory_id, v.directory_path, v.display_name, v.rating) == (0, "", "", 0)


def test_records_compare_by_value():
    assert Directory(1, "/videos") == Directory(1, "/videos")
    assert Tag(2, "comedy") == Tag(2, "comedy")
    assert WatchRecord(5, 42.5, "2024-01-01 00:00:00").position == 42.5


def test_records_are_immutable():
    tag = Tag(1, "action")
    with pytest.raises(dataclasses.FrozenInstanceError):
        tag.name = "drama"
    assert tag.name == "action"
    assert tag == Tag(1, "action")


def test_replace_keeps_other_fields():
    v = Video(id=7, filename="a.mp4", directory_path="/videos", rating=1)
    renamed = dataclasses.replace(v, display_name="Alpha")
    assert renamed.title() == "Alpha"
    assert renamed.file_path() == v.file_path()
    assert renamed.rating == v.rating