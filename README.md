# videomanger

A small self-hosted web application for a local video library. You register
directories of video files, and videomanger indexes them into a SQLite
database. You can then browse, search, tag, rate and play the videos from a
browser.

## Features

- Scans each registered directory and all its subdirectories for `.mp4`,
  `.webm`, `.ogg`, `.mov`, `.mkv` and `.avi` files. Every video found is
  tagged with the base name of the registered directory. Rescanning does not
  add duplicates.
- Streams video files to the browser, with support for range requests. It
  remembers the last playback position of each video and marks watched
  videos in the list.
- Supports display names, tags, and a rating of 0 (neutral), 1 (liked) or
  2 (double-liked).
- Searches titles without regard to case and filters the list by tag. The
  list can be sorted by name or by rating. A setting turns off the random
  video that otherwise plays at start.
- Reads the metadata embedded in a file with `ffprobe` and edits it with
  `ffmpeg`: title, description, genre, date, comment, TV show fields and
  keywords. When you rename a video, the new title is written into the file.
  When you change its tags, they are written into the file as keywords.
- Converts a video to mp4, webm or mkv next to the original and adds the
  result to the library. It can also export an H.264/AAC copy named
  `<name>_usb.mp4` and send it as a download. Both need `ffmpeg`.
- Downloads a single video with `yt-dlp` into a registered directory and then
  rescans that directory.
- Removes a video or directory from the library only, or removes it together
  with its files on disk. When you remove a directory from the library only,
  its videos are kept.

## Installation

```
pip install .
```

`ffmpeg`, `ffprobe` and `yt-dlp` are optional:

- If `ffprobe` is missing, files show no embedded metadata.
- If `ffmpeg` is missing, metadata writes are skipped without error.
- Converting, exporting and downloading report an error (HTTP 500) when the
  tool they need cannot be run.

## Running the server

```
videomanger --db video_manger.db --port 8080 --dir /path/to/videos
```

Options (each also accepted with a single dash, e.g. `-port`):

- `--db`: path to the SQLite database file (default `video_manger.db`).
- `--port`: port to listen on, on all interfaces (default `8080`).
- `--dir`: a video directory to register and scan at startup (optional).
- `--mdns-name`: a host name to report as the server's address. It appears
  in the startup log and in the `/info` response.

At startup the server logs the `http://` URLs of the machine's non-loopback
IPv4 addresses. `GET /info` returns the same URLs as JSON, together with the
port and the `--mdns-name` address.

## Populating TV episode metadata

```
videomanger-populate --dir /path/to/show
```

`--dir` defaults to the current directory. The command does the following:

1. Fetches the episode list of one fixed show, Bob's Burgers, from the
   TVMaze episode guide.
2. Looks through `Season 1` to `Season 14` under the directory for `.mp4`
   files whose names start with an `S##E##` code.
3. Renames each file to `S##E## - Episode Title.mp4`.
4. Writes the episode's title, summary, air date, show, season, episode
   number, network, genre and keywords into the file with `ffmpeg`.

At the end it prints how many files were renamed, tagged, skipped and
failed. It exits with status 1 if `ffmpeg` is not installed or the episode
list cannot be fetched.

## Using it as a library

```python
from videomanger.store import SQLiteStore
from videomanger.library import sync_dir

with SQLiteStore("video_manger.db") as store:
    directory = store.add_directory("/path/to/videos")
    sync_dir(store, directory)
    for video in store.list_videos():
        print(video.title(), video.file_path())
```

Modules:

- `videomanger.store`: the SQLite store (`SQLiteStore`), its schema
  migrations, and `StoreError` / `NotFoundError`.
- `videomanger.models`: the `Directory`, `Video`, `Tag` and `WatchRecord`
  records.
- `videomanger.library`: directory scanning and syncing tags to files
  (`sync_dir`, `sync_tags_to_file`). It also runs the external tools
  (`convert_video`, `export_usb`, `download_with_ytdlp`), which raise
  `ToolError` when they fail.
- `videomanger.metadata`: reads and writes embedded metadata (`read`,
  `write`, `Meta`, `Updates`).
- `videomanger.web`: the web application. `create_app(store, port,
  mdns_name)` returns a Flask application that you can serve with any WSGI
  server.

## What it does not do

- The web pages load htmx from `/static/htmx.min.js`, but the package does
  not ship that file. Until you put `htmx.min.js` in a `static` directory
  next to `videomanger/web.py`, the interactive parts of the pages do not
  work.
- The server does not advertise itself over mDNS/Zeroconf. `--mdns-name`
  only sets the address that is reported.
- There is no authentication. Anyone who can reach the port can browse the
  library and delete files.