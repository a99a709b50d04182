import sqlite3

import pytest

from videomanger.store import (
    NotFoundError,
    SQLiteStore,
    StoreError,
    list_migrations,
    run_migrations,
)


@pytest.fixture
def store():
    with SQLiteStore(":memory:") as s:
        yield s


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    yield connection
    connection.close()


# --- Migrations ---


def test_run_migrations_fresh(conn):
    run_migrations(conn)
    for table in ["directories", "tags", "videos", "video_tags", "schema_migrations"]:
        (count,) = conn.execute(
            "SELECT COUNT(*) FROM sqlite_master WHERE type='table' AND name=?", (table,)
        ).fetchone()
        assert count == 1, table


def test_run_migrations_idempotent(conn):
    run_migrations(conn)
    first = list_migrations(conn)
    run_migrations(conn)
    second = list_migrations(conn)
    assert first == second
    assert first[0] == "001_initial"


def test_list_migrations_sorted(conn):
    run_migrations(conn)
    versions = list_migrations(conn)
    assert versions == sorted(versions)


# --- Directories ---


def test_add_and_list_directories(store):
    d = store.add_directory("/videos/movies")
    assert d.path == "/videos/movies"
    dirs = store.list_directories()
    assert [x.id for x in dirs] == [d.id]


def test_get_directory(store):
    d = store.add_directory("/videos/movies")
    assert store.get_directory(d.id) == d


def test_get_directory_missing(store):
    with pytest.raises(NotFoundError):
        store.get_directory(999)


def test_add_directory_duplicate_raises(store):
    store.add_directory("/videos")
    with pytest.raises(StoreError):
        store.add_directory("/videos")


def test_delete_directory(store):
    d = store.add_directory("/videos/tmp")
    store.delete_directory(d.id)
    assert store.list_directories() == []


def test_delete_directory_orphans_videos(store):
    d = store.add_directory("/videos")
    store.upsert_video(d.id, d.path, "clip.mp4")
    store.delete_directory(d.id)
    videos = store.list_videos()
    assert len(videos) == 1
    assert videos[0].directory_id == 0
    assert videos[0].directory_path == "/videos"


# --- Videos ---


def test_upsert_video_idempotent(store):
    d = store.add_directory("/videos")
    v1 = store.upsert_video(d.id, d.path, "movie.mp4")
    v2 = store.upsert_video(d.id, d.path, "movie.mp4")
    assert v1.id == v2.id


def test_list_videos(store):
    d = store.add_directory("/videos")
    store.upsert_video(d.id, d.path, "alpha.mp4")
    store.upsert_video(d.id, d.path, "beta.mkv")
    videos = store.list_videos()
    assert len(videos) == 2
    assert videos[0].directory_path == "/videos"
    assert [v.filename for v in videos] == ["alpha.mp4", "beta.mkv"]


def test_get_video(store):
    d = store.add_directory("/videos")
    v = store.upsert_video(d.id, d.path, "film.mp4")
    got = store.get_video(v.id)
    assert got.filename == "film.mp4"
    assert got.directory_path == "/videos"


def test_update_video_name(store):
    d = store.add_directory("/videos")
    v = store.upsert_video(d.id, d.path, "raw_footage.mp4")
    store.update_video_name(v.id, "Summer Trip")
    assert store.get_video(v.id).title() == "Summer Trip"


def test_list_videos_by_directory(store):
    d1 = store.add_directory("/videos/a")
    d2 = store.add_directory("/videos/b")
    store.upsert_video(d1.id, d1.path, "one.mp4")
    store.upsert_video(d1.id, d1.path, "two.mp4")
    store.upsert_video(d2.id, d2.path, "three.mp4")
    vids = store.list_videos_by_directory(d1.id)
    assert len(vids) == 2
    assert all(v.directory_id == d1.id for v in vids)
    assert len(store.list_videos_by_directory(d2.id)) == 1


def test_search_videos(store):
    d = store.add_directory("/videos")
    store.upsert_video(d.id, d.path, "bobs_burgers_s01e01.mp4")
    store.upsert_video(d.id, d.path, "bobs_burgers_s01e02.mp4")
    store.upsert_video(d.id, d.path, "archer_s01e01.mp4")
    assert len(store.search_videos("bobs")) == 2
    assert len(store.search_videos("ARCHER")) == 1
    assert store.search_videos("nomatch") == []


def test_delete_video(store):
    d = store.add_directory("/videos")
    v = store.upsert_video(d.id, d.path, "to_delete.mp4")
    store.delete_video(v.id)
    assert store.list_videos() == []
    with pytest.raises(NotFoundError):
        store.get_video(v.id)


def test_video_title_falls_back_to_filename(store):
    d = store.add_directory("/videos")
    v = store.upsert_video(d.id, d.path, "untitled.mp4")
    assert store.get_video(v.id).title() == "untitled.mp4"


def test_set_rating_and_list_by_rating(store):
    d = store.add_directory("/videos")
    a = store.upsert_video(d.id, d.path, "a.mp4")
    b = store.upsert_video(d.id, d.path, "b.mp4")
    c = store.upsert_video(d.id, d.path, "c.mp4")
    store.set_video_rating(c.id, 2)
    store.set_video_rating(b.id, 1)
    assert store.get_video(c.id).rating == 2
    assert [v.id for v in store.list_videos_by_rating()] == [c.id, b.id, a.id]


# --- Settings ---


def test_get_setting_unset_returns_empty(store):
    assert store.get_setting("video_sort") == ""


def test_set_setting_overwrites(store):
    store.set_setting("video_sort", "name")
    store.set_setting("video_sort", "rating")
    assert store.get_setting("video_sort") == "rating"


# --- Watch history ---


def test_record_and_get_watch(store):
    d = store.add_directory("/videos")
    v = store.upsert_video(d.id, d.path, "ep1.mp4")
    store.record_watch(v.id, 42.5)
    rec = store.get_watch(v.id)
    assert rec.video_id == v.id
    assert rec.position == 42.5
    assert rec.watched_at


def test_get_watch_missing(store):
    with pytest.raises(NotFoundError):
        store.get_watch(1)


def test_list_watched_ids(store):
    d = store.add_directory("/videos")
    v1 = store.upsert_video(d.id, d.path, "watched.mp4")
    store.upsert_video(d.id, d.path, "unwatched.mp4")
    store.record_watch(v1.id, 10.0)
    store.record_watch(v1.id, 20.0)
    assert store.list_watched_ids() == {v1.id}
    assert store.get_watch(v1.id).position == 20.0


# --- Tags ---


def test_upsert_tag_idempotent(store):
    t1 = store.upsert_tag("action")
    t2 = store.upsert_tag("action")
    assert t1.id == t2.id
    assert t1.name == "action"


def test_tag_and_untag_video(store):
    d = store.add_directory("/videos")
    v = store.upsert_video(d.id, d.path, "film.mp4")
    tag = store.upsert_tag("comedy")
    store.tag_video(v.id, tag.id)
    assert [t.name for t in store.list_tags_by_video(v.id)] == ["comedy"]
    store.untag_video(v.id, tag.id)
    assert store.list_tags_by_video(v.id) == []


def test_list_videos_by_tag(store):
    d = store.add_directory("/videos")
    v1 = store.upsert_video(d.id, d.path, "alpha.mp4")
    store.upsert_video(d.id, d.path, "beta.mp4")
    tag = store.upsert_tag("favorites")
    store.tag_video(v1.id, tag.id)
    assert [v.id for v in store.list_videos_by_tag(tag.id)] == [v1.id]


def test_tag_video_idempotent(store):
    d = store.add_directory("/videos")
    v = store.upsert_video(d.id, d.path, "film.mp4")
    tag = store.upsert_tag("drama")
    store.tag_video(v.id, tag.id)
    store.tag_video(v.id, tag.id)
    assert len(store.list_tags_by_video(v.id)) == 1


def test_list_tags_sorted(store):
    store.upsert_tag("zeta")
    store.upsert_tag("alpha")
    assert [t.name for t in store.list_tags()] == ["alpha", "zeta"]