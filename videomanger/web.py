"""HTTP interface of the video library: pages, fragments and file streaming."""

from __future__ import annotations

import argparse
import json
import logging
import os
import random
import re

from flask import Flask, Response, render_template_string, request, send_file

from videomanger import metadata
from videomanger.library import (
    CONVERT_FORMATS,
    ToolError,
    convert_video,
    download_with_ytdlp,
    export_usb,
    local_addresses,
    sync_dir,
    sync_tags_to_file,
)
from videomanger.metadata import Meta, MetadataError, Updates
from videomanger.store import NotFoundError, SQLiteStore, StoreError

log = logging.getLogger(__name__)

# Served from the package's static directory.
HTMX_URL = "/static/htmx.min.js"

_INTEGER = re.compile(r"[+-]?\d+")
_INT64_MIN, _INT64_MAX = -(1 << 63), (1 << 63) - 1

_TEMPLATES = {
    "index.html": """<!doctype html>
<html>
<head>
<meta charset="utf-8">
<title>Video Manger</title>
<script src="{{ htmx_url }}"></script>
</head>
<body>
<header>
  <h1>Video Manger</h1>
  <button id="lib-btn" hx-get="/videos" hx-target="#library">Library</button>
  <button id="tags-btn" hx-get="/tags" hx-target="#panel">Tags</button>
  <button id="dirs-btn" hx-get="/directories" hx-target="#panel">Directories</button>
  <button id="settings-btn" hx-get="/settings" hx-target="#panel">Settings</button>
  <button id="info-btn">Info</button>
</header>
<main>
  <section id="player" hx-get="/play/random" hx-trigger="load"></section>
  <aside id="library" hx-get="/videos" hx-trigger="load"></aside>
  <section id="panel"></section>
</main>
<script>
document.getElementById("info-btn").addEventListener("click", function () {
  fetch("/info").then(function (r) { return r.json(); }).then(function (info) {
    var lines = (info.addresses || []).slice();
    if (info.mdns) { lines.push(info.mdns); }
    document.getElementById("panel").textContent = lines.join("\\n");
  });
});
document.addEventListener("keydown", function (e) {
  var video = document.querySelector("#player video");
  if (!video || e.target.tagName === "INPUT" || e.target.tagName === "TEXTAREA") { return; }
  if (e.key === " ") { e.preventDefault(); if (video.paused) { video.play(); } else { video.pause(); } }
  else if (e.key === "ArrowRight") { video.currentTime += 10; }
  else if (e.key === "ArrowLeft") { video.currentTime -= 10; }
  else if (e.key === "f") { video.requestFullscreen(); }
  else if (e.key === "l") { document.getElementById("lib-btn").click(); }
});
</script>
</body>
</html>""",
    "player.html": """<h2 id="video-title">{{ video.title() }}</h2>
<video id="video" src="/video/{{ video.id }}" data-id="{{ video.id }}" controls autoplay></video>
<div id="rating" hx-get="/videos/{{ video.id }}/metadata" hx-trigger="load" hx-target="#metadata"></div>
<div id="video-tags">
{% for tag in tags %}<span class="tag">{{ tag.name }}</span>{% endfor %}
</div>
<datalist id="all-tags">{% for tag in all_tags %}<option value="{{ tag.name }}">{% endfor %}</datalist>
<div id="metadata"></div>
<script>
(function () {
  var video = document.getElementById("video");
  var url = "/videos/{{ video.id }}/progress";
  fetch(url).then(function (r) { return r.json(); }).then(function (p) {
    if (p.position > 0) { video.currentTime = p.position; }
  });
  var last = 0;
  video.addEventListener("timeupdate", function () {
    if (Math.abs(video.currentTime - last) < 5) { return; }
    last = video.currentTime;
    fetch(url, {method: "POST", body: new URLSearchParams({position: String(last)})});
  });
})();
</script>""",
    "video_list.html": """{% if videos %}<ul class="videos">
{% for v in videos %}<li>
  <a href="#" hx-get="/play/{{ v.id }}" hx-target="#player">{{ v.title() }}</a>
  {% if v.id in watched %}<span class="watched" title="Watched">&#10003; Watched</span>{% endif %}
  <button hx-get="/videos/{{ v.id }}/delete-confirm" hx-target="#panel">Delete</button>
</li>{% endfor %}
</ul>{% else %}<p class="empty">No videos found.</p>{% endif %}""",
    "video_tags.html": """<div id="video-tags-{{ video_id }}">
{% for tag in tags %}<span class="tag">{{ tag.name }}
  <button hx-delete="/videos/{{ video_id }}/tags/{{ tag.id }}" hx-target="#video-tags-{{ video_id }}" hx-swap="outerHTML">&times;</button>
</span>{% endfor %}
<form hx-post="/videos/{{ video_id }}/tags" hx-target="#video-tags-{{ video_id }}" hx-swap="outerHTML">
  <input name="tag" list="all-tags" placeholder="Add tag">
</form>
</div>""",
    "tags.html": """{% if tags %}<ul class="tags">
{% for tag in tags %}<li><a href="#" hx-get="/videos?tag_id={{ tag.id }}" hx-target="#library">{{ tag.name }}</a></li>{% endfor %}
</ul>{% else %}<p class="empty">No tags yet.</p>{% endif %}""",
    "video_delete_confirm.html": """<div class="confirm">
<p>Delete <strong>{{ video.title() }}</strong> ({{ video.filename }})?</p>
<button hx-delete="/videos/{{ video.id }}" hx-target="#library">Remove from library</button>
<button hx-delete="/videos/{{ video.id }}/file" hx-target="#library">Remove and delete file</button>
</div>""",
    "directory_delete_confirm.html": """<div class="confirm">
<p>Remove directory <strong>{{ directory.path }}</strong>?</p>
<button hx-delete="/directories/{{ directory.id }}" hx-target="#panel">Remove from library</button>
<button hx-delete="/directories/{{ directory.id }}/files" hx-target="#panel">Remove and delete files</button>
</div>""",
    "directories.html": """{% if directories %}<ul class="directories">
{% for d in directories %}<li>{{ d.path }}
  <button hx-get="/directories/{{ d.id }}/delete-confirm" hx-target="#panel">Remove</button>
</li>{% endfor %}
</ul>{% else %}<p class="empty">No directories registered.</p>{% endif %}
<form hx-post="/directories" hx-target="#panel">
  <input name="path" placeholder="/path/to/videos">
  <button>Add</button>
  <button hx-post="/directories/create" hx-target="#panel">Create</button>
</form>""",
    "directory_options.html": """{% for d in directories %}<option value="{{ d.id }}">{{ d.path }}</option>
{% endfor %}""",
    "settings.html": """<form hx-post="/settings" hx-target="#panel">
<label><input type="checkbox" name="autoplay_random"{% if autoplay_random %} checked{% endif %}> Play a random video on start</label>
<label>Sort videos by
  <select name="video_sort">
    <option value="name"{% if video_sort != "rating" %} selected{% endif %}>Name</option>
    <option value="rating"{% if video_sort == "rating" %} selected{% endif %}>Rating</option>
  </select>
</label>
<button>Save</button>
</form>""",
    "rating_buttons.html": """<div id="rating-{{ video.id }}" class="rating">
{% for value, label in [(0, "Neutral"), (1, "Like"), (2, "Double like")] %}<button
  class="{% if video.rating == value %}active{% endif %}"
  hx-post="/videos/{{ video.id }}/rating" hx-vals='{"rating": "{{ value }}"}'
  hx-target="#rating-{{ video.id }}" hx-swap="outerHTML">{{ label }}</button>
{% endfor %}</div>""",
    "file_metadata.html": """<div id="file-metadata-{{ video_id }}">
{% if native.has_data() %}<dl>
{% for label, value in [("Title", native.title), ("Description", native.description),
  ("Genre", native.genre), ("Artist", native.artist), ("Date", native.date),
  ("Comment", native.comment), ("Show", native.show), ("Network", native.network),
  ("Episode", native.episode_id), ("Season", native.season_num),
  ("Episode number", native.episode_num), ("Keywords", native.keywords|join(", "))] %}
{% if value %}<dt>{{ label }}</dt><dd>{{ value }}</dd>{% endif %}
{% endfor %}</dl>{% else %}<p class="empty">No embedded metadata.</p>{% endif %}
<button hx-get="/videos/{{ video_id }}/metadata/edit" hx-target="#file-metadata-{{ video_id }}" hx-swap="outerHTML">Edit</button>
</div>""",
    "file_metadata_edit.html": """<form id="file-metadata-{{ video_id }}" hx-put="/videos/{{ video_id }}/metadata" hx-swap="outerHTML">
<label>Title <input name="title" value="{{ native.title }}"></label>
<label>Description <textarea name="description">{{ native.description }}</textarea></label>
<label>Genre <input name="genre" value="{{ native.genre }}"></label>
<label>Date <input name="date" value="{{ native.date }}"></label>
<label>Comment <input name="comment" value="{{ native.comment }}"></label>
<label>Show <input name="show" value="{{ native.show }}"></label>
<label>Network <input name="network" value="{{ native.network }}"></label>
<label>Episode ID <input name="episode_id" value="{{ native.episode_id }}"></label>
<label>Season <input name="season_number" value="{{ native.season_num }}"></label>
<label>Episode number <input name="episode_sort" value="{{ native.episode_num }}"></label>
<button>Save</button>
</form>""",
}


class _HttpError(Exception):
    def __init__(self, message: str, status: int) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


def _plain(message: str, status: int) -> Response:
    return Response(message + "\n", status=status, mimetype="text/plain")


def _parse_int(text: str) -> int:
    if not _INTEGER.fullmatch(text):
        raise ValueError(text)
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(text)
    return value


def _int_or_zero(text: str) -> int:
    try:
        return _parse_int(text)
    except ValueError:
        return 0


def _path_id(raw: str, message: str = "invalid id") -> int:
    try:
        return _parse_int(raw)
    except ValueError:
        raise _HttpError(message, 400) from None


def _render(name: str, **context) -> str:
    return render_template_string(_TEMPLATES[name], **context)


def _read_native(path: str) -> Meta:
    try:
        return metadata.read(path)
    except MetadataError as exc:
        log.warning("ffprobe %s: %s", path, exc)
        return Meta()


def _json(payload: dict) -> Response:
    body = json.dumps(payload, separators=(",", ":"), sort_keys=True) + "\n"
    return Response(body, mimetype="application/json")


def create_app(store: SQLiteStore, port: str = "", mdns_name: str = "") -> Flask:
    """Build the web application serving the given library."""
    app = Flask(__name__)
    port = str(port)

    @app.errorhandler(_HttpError)
    def http_error(exc: _HttpError):
        return _plain(exc.message, exc.status)

    @app.errorhandler(StoreError)
    def store_error(exc: StoreError):
        return _plain(str(exc), 500)

    def video_or_404(video_id: int, message: str | None = None):
        try:
            return store.get_video(video_id)
        except NotFoundError as exc:
            raise _HttpError(message or str(exc), 404) from exc

    def serve_video_list() -> str:
        query = request.args.get("q", "")
        tag_param = request.args.get("tag_id", "")
        sort_order = store.get_setting("video_sort")
        if query:
            videos = store.search_videos(query)
        elif tag_param:
            videos = store.list_videos_by_tag(_int_or_zero(tag_param))
        elif sort_order == "rating":
            videos = store.list_videos_by_rating()
        else:
            videos = store.list_videos()
        try:
            watched = store.list_watched_ids()
        except StoreError:
            watched = set()
        return _render("video_list.html", videos=videos, watched=watched)

    def serve_dir_list() -> str:
        return _render("directories.html", directories=store.list_directories())

    def tags_fragment(video_id: int) -> str:
        tags = store.list_tags_by_video(video_id)
        try:
            video = store.get_video(video_id)
        except StoreError:
            video = None
        if video is not None:
            sync_tags_to_file(store, video)
        return _render("video_tags.html", video_id=video_id, tags=tags)

    def settings_page() -> str:
        return _render(
            "settings.html",
            autoplay_random=store.get_setting("autoplay_random") != "false",
            video_sort=store.get_setting("video_sort"),
        )

    @app.get("/")
    def index():
        return _render("index.html", htmx_url=HTMX_URL)

    @app.get("/info")
    def info():
        mdns = f"http://{mdns_name}:{port}" if mdns_name else ""
        return _json({"port": port, "addresses": local_addresses(port), "mdns": mdns})

    # --- Videos ---

    @app.get("/videos")
    def video_list():
        return serve_video_list()

    @app.get("/play/random")
    def random_player():
        if store.get_setting("autoplay_random") == "false":
            return '<p style="color:#444">Select a video to play.</p>'
        videos = store.list_videos()
        if not videos:
            return '<p style="color:#444">No videos yet — add a directory to get started.</p>'
        video = random.choice(videos)
        try:
            tags = store.list_tags_by_video(video.id)
        except StoreError:
            tags = []
        try:
            all_tags = store.list_tags()
        except StoreError:
            all_tags = []
        return _render("player.html", video=video, tags=tags, all_tags=all_tags)

    @app.get("/play/<raw_id>")
    def player(raw_id: str):
        video = video_or_404(_path_id(raw_id))
        tags = store.list_tags_by_video(video.id)
        all_tags = store.list_tags()
        return _render("player.html", video=video, tags=tags, all_tags=all_tags)

    @app.get("/video/<raw_id>")
    def video_file(raw_id: str):
        video = video_or_404(_path_id(raw_id), "not found")
        path = video.file_path()
        if not os.path.isfile(path):
            raise _HttpError("404 page not found", 404)
        return send_file(os.path.abspath(path), conditional=True)

    @app.put("/videos/<raw_id>/name")
    def update_video_name(raw_id: str):
        video_id = _path_id(raw_id)
        name = request.values.get("name", "")
        store.update_video_name(video_id, name)
        video = store.get_video(video_id)
        if name:
            try:
                metadata.write(video.file_path(), Updates(title=name))
            except (MetadataError, OSError) as exc:
                log.warning("write title metadata %s: %s", video.file_path(), exc)
        return Response(video.title(), mimetype="text/plain")

    @app.get("/videos/<raw_id>/delete-confirm")
    def video_delete_confirm(raw_id: str):
        video = video_or_404(_path_id(raw_id))
        return _render("video_delete_confirm.html", video=video)

    @app.delete("/videos/<raw_id>")
    def delete_video(raw_id: str):
        store.delete_video(_path_id(raw_id))
        return serve_video_list()

    @app.delete("/videos/<raw_id>/file")
    def delete_video_and_file(raw_id: str):
        video = video_or_404(_path_id(raw_id))
        store.delete_video(video.id)
        try:
            os.remove(video.file_path())
        except OSError as exc:
            log.warning("delete file %s: %s", video.file_path(), exc)
        return serve_video_list()

    # --- Watch history ---

    @app.post("/videos/<raw_id>/progress")
    def post_progress(raw_id: str):
        video_id = _path_id(raw_id)
        try:
            position = float(request.values.get("position", ""))
        except ValueError:
            position = 0.0
        store.record_watch(video_id, position)
        return Response(status=204)

    @app.get("/videos/<raw_id>/progress")
    def get_progress(raw_id: str):
        video_id = _path_id(raw_id)
        try:
            record = store.get_watch(video_id)
        except StoreError:
            return Response('{"position":0,"watched_at":""}', mimetype="application/json")
        return _json({"position": record.position, "watched_at": record.watched_at})

    # --- Rating ---

    @app.post("/videos/<raw_id>/rating")
    def set_rating(raw_id: str):
        video_id = _path_id(raw_id)
        rating = _int_or_zero(request.values.get("rating", ""))
        if not 0 <= rating <= 2:
            raise _HttpError("rating must be 0, 1, or 2", 400)
        store.set_video_rating(video_id, rating)
        video = store.get_video(video_id)
        return _render("rating_buttons.html", video=video)

    # --- Export / convert / download ---

    @app.post("/videos/<raw_id>/export/usb")
    def export_for_usb(raw_id: str):
        video = video_or_404(_path_id(raw_id), "video not found")
        try:
            out_path = export_usb(video)
        except ToolError as exc:
            raise _HttpError(str(exc), 500) from exc
        return send_file(
            os.path.abspath(out_path),
            as_attachment=True,
            download_name=os.path.basename(out_path),
            conditional=True,
        )

    @app.post("/videos/<raw_id>/convert")
    def convert(raw_id: str):
        video_id = _path_id(raw_id)
        format_name = request.values.get("format", "").strip().lower()
        if format_name not in CONVERT_FORMATS:
            raise _HttpError("format must be mp4, webm, or mkv", 400)
        video = video_or_404(video_id, "video not found")
        try:
            out_path = convert_video(video, format_name)
        except ToolError as exc:
            raise _HttpError(str(exc), 500) from exc
        if video.directory_id:
            try:
                directory = store.get_directory(video.directory_id)
                store.upsert_video(directory.id, directory.path, os.path.basename(out_path))
            except StoreError as exc:
                log.warning("register converted %s: %s", out_path, exc)
        return serve_video_list()

    @app.post("/ytdlp/download")
    def ytdlp_download():
        url = request.values.get("url", "").strip()
        if not url:
            raise _HttpError("url required", 400)
        dir_param = request.values.get("dir_id", "").strip()
        if not dir_param:
            raise _HttpError("dir_id required", 400)
        directory_id = _path_id(dir_param, "invalid dir_id")
        try:
            directory = store.get_directory(directory_id)
        except StoreError as exc:
            raise _HttpError("directory not found", 404) from exc
        try:
            download_with_ytdlp(url, directory.path)
        except ToolError as exc:
            raise _HttpError(str(exc), 500) from exc
        sync_dir(store, directory)
        return serve_video_list()

    # --- File metadata ---

    @app.get("/videos/<raw_id>/metadata")
    def get_metadata(raw_id: str):
        video = video_or_404(_path_id(raw_id))
        native = _read_native(video.file_path())
        return _render("file_metadata.html", video_id=video.id, native=native)

    @app.get("/videos/<raw_id>/metadata/edit")
    def edit_metadata(raw_id: str):
        video = video_or_404(_path_id(raw_id))
        native = _read_native(video.file_path())
        return _render("file_metadata_edit.html", video_id=video.id, native=native)

    @app.put("/videos/<raw_id>/metadata")
    def update_metadata(raw_id: str):
        video = video_or_404(_path_id(raw_id))
        form = request.values
        updates = Updates(
            title=form.get("title", ""),
            description=form.get("description", ""),
            genre=form.get("genre", ""),
            date=form.get("date", ""),
            comment=form.get("comment", ""),
            show=form.get("show", ""),
            network=form.get("network", ""),
            episode_id=form.get("episode_id", ""),
            season_num=form.get("season_number", ""),
            episode_num=form.get("episode_sort", ""),
        )
        try:
            metadata.write(video.file_path(), updates)
        except (MetadataError, OSError) as exc:
            # The unchanged read view is shown rather than an error.
            log.warning("metadata write %s: %s", video.file_path(), exc)
        native = _read_native(video.file_path())
        return _render("file_metadata.html", video_id=video.id, native=native)

    # --- Tags ---

    @app.get("/videos/<raw_id>/tags")
    def video_tags(raw_id: str):
        video_id = _path_id(raw_id)
        tags = store.list_tags_by_video(video_id)
        return _render("video_tags.html", video_id=video_id, tags=tags)

    @app.post("/videos/<raw_id>/tags")
    def add_video_tag(raw_id: str):
        video_id = _path_id(raw_id)
        tag_name = request.values.get("tag", "").strip()
        if not tag_name:
            raise _HttpError("tag name required", 400)
        tag = store.upsert_tag(tag_name)
        store.tag_video(video_id, tag.id)
        return tags_fragment(video_id)

    @app.delete("/videos/<raw_id>/tags/<raw_tag_id>")
    def remove_video_tag(raw_id: str, raw_tag_id: str):
        video_id = _path_id(raw_id)
        tag_id = _path_id(raw_tag_id, "invalid tag id")
        store.untag_video(video_id, tag_id)
        return tags_fragment(video_id)

    @app.get("/tags")
    def list_tags():
        return _render("tags.html", tags=store.list_tags())

    # --- Settings ---

    @app.get("/settings")
    def get_settings():
        return settings_page()

    @app.post("/settings")
    def save_settings():
        autoplay = "true" if request.values.get("autoplay_random") == "on" else "false"
        sort_order = request.values.get("video_sort", "")
        if sort_order not in ("name", "rating"):
            sort_order = "name"
        for key, value in (("autoplay_random", autoplay), ("video_sort", sort_order)):
            try:
                store.set_setting(key, value)
            except StoreError as exc:
                log.warning("save setting %s: %s", key, exc)
        return settings_page()

    # --- Directories ---

    @app.get("/directories")
    def list_directories():
        return serve_dir_list()

    @app.get("/directories/options")
    def directory_options():
        return _render("directory_options.html", directories=store.list_directories())

    @app.post("/directories")
    def add_directory():
        path = request.values.get("path", "").strip()
        if not path:
            raise _HttpError("path required", 400)
        directory = store.add_directory(path)
        sync_dir(store, directory)
        return serve_dir_list()

    @app.post("/directories/create")
    def create_directory():
        path = request.values.get("path", "").strip()
        if not path:
            raise _HttpError("path required", 400)
        try:
            os.makedirs(path, mode=0o755, exist_ok=True)
        except OSError as exc:
            raise _HttpError(str(exc), 500) from exc
        directory = store.add_directory(path)
        sync_dir(store, directory)
        return serve_dir_list()

    @app.get("/directories/<raw_id>/delete-confirm")
    def directory_delete_confirm(raw_id: str):
        directory_id = _path_id(raw_id)
        directory = next(
            (d for d in store.list_directories() if d.id == directory_id), None
        )
        if directory is None:
            raise _HttpError("directory not found", 404)
        return _render("directory_delete_confirm.html", directory=directory)

    @app.delete("/directories/<raw_id>")
    def delete_directory(raw_id: str):
        store.delete_directory(_path_id(raw_id))
        return serve_dir_list()

    @app.delete("/directories/<raw_id>/files")
    def delete_directory_and_files(raw_id: str):
        directory_id = _path_id(raw_id)
        # Videos are orphaned, not removed, when their directory goes, so
        # they are deleted one by one together with their files.
        for video in store.list_videos_by_directory(directory_id):
            try:
                store.delete_video(video.id)
            except StoreError as exc:
                log.warning("delete video record %d: %s", video.id, exc)
            try:
                os.remove(video.file_path())
            except OSError as exc:
                log.warning("delete file %s: %s", video.file_path(), exc)
        store.delete_directory(directory_id)
        return serve_dir_list()

    return app


def main(argv: list[str] | None = None) -> int:
    """Open the library database and serve the web interface."""
    parser = argparse.ArgumentParser(prog="videomanger", description="Serve a video library.")
    parser.add_argument("-db", "--db", default="video_manger.db", help="path to SQLite database file")
    parser.add_argument("-dir", "--dir", default="", help="video directory to register on startup")
    parser.add_argument("-port", "--port", default="8080", help="port to listen on")
    parser.add_argument(
        "-mdns-name", "--mdns-name", dest="mdns_name", default="",
        help="host name under which the server is advertised on the local network",
    )
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    try:
        port_number = int(args.port)
    except ValueError:
        log.error("invalid port %s", args.port)
        return 1
    try:
        store = SQLiteStore(args.db)
    except StoreError as exc:
        log.error("open db: %s", exc)
        return 1

    with store:
        if args.dir:
            try:
                directory = store.add_directory(args.dir)
            except StoreError as exc:
                log.warning("could not register dir %s: %s", args.dir, exc)
            else:
                sync_dir(store, directory)

        app = create_app(store, args.port, args.mdns_name)
        log.info("Starting server on http://localhost:%s", args.port)
        if args.mdns_name:
            log.info("  mDNS: http://%s:%s", args.mdns_name, args.port)
        for address in local_addresses(args.port):
            log.info("  LAN: %s", address)
        app.run(host="0.0.0.0", port=port_number, threaded=True)
    return 0