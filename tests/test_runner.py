import io
import logging
import os
import stat
import threading
import urllib.request
import zipfile
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest import mock

import pytest

from ndimport.options import Options
from ndimport.runner import (
    Config,
    ImportFailure,
    Runner,
    copy_file,
    resolve_pixeldrain,
    sanitize_artist,
)

QUIET = logging.getLogger("ndimport-tests")
QUIET.addHandler(logging.NullHandler())
QUIET.propagate = False


def make_runner(config=None, **option_values):
    option_values.setdefault("artist", "Artist")
    option_values.setdefault("url", "abc123")
    return Runner(config or Config(), Options(**option_values), QUIET)


def zip_bytes(entries):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in entries.items():
            archive.writestr(name, data)
    return buffer.getvalue()


SAMPLE_ZIP = zip_bytes({"Album/song.mp3": b"music", "Album/notes.txt": b"text"})


class _Handler(BaseHTTPRequestHandler):
    routes = {
        "/ok": (200, "application/zip", SAMPLE_ZIP),
        "/missing": (404, "text/plain", b"not here"),
        "/html": (200, "text/html", b"<html></html>"),
        "/empty": (200, "application/octet-stream", b""),
    }

    def do_GET(self):
        self.server.seen_headers.append(dict(self.headers))
        status, content_type, body = self.routes.get(self.path, (404, "text/plain", b"nope"))
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, *args):
        pass


@pytest.fixture
def server():
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    httpd.seen_headers = []
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    try:
        yield httpd, f"http://127.0.0.1:{httpd.server_address[1]}"
    finally:
        httpd.shutdown()
        httpd.server_close()


@pytest.mark.parametrize(
    "raw, want_id, want_url",
    [
        ("abc123", "abc123", "https://pixeldrain.com/api/file/abc123?download"),
        ("https://pixeldrain.com/u/xyz", "xyz", "https://pixeldrain.com/api/file/xyz?download"),
        ("doubledouble.top/xyz", "xyz", "https://pixeldrain.com/api/file/xyz?download"),
    ],
)
def test_resolve_pixeldrain_valid(raw, want_id, want_url):
    assert resolve_pixeldrain(raw) == (want_id, want_url)


@pytest.mark.parametrize(
    "raw",
    ["", "https://example.com/file.zip", "https://pixeldrain.com/", "https://pixeldrain.com/u/a.b"],
)
def test_resolve_pixeldrain_invalid(raw):
    with pytest.raises(ImportFailure):
        resolve_pixeldrain(raw)


@pytest.mark.parametrize(
    "raw, want",
    [
        ("Artist Name", "Artist Name"),
        ("Artist/Name", "Artist_Name"),
        ("\\Artist\\Name\\", "_Artist_Name_"),
        ("  spaced artist  ", "spaced artist"),
        ("Artist-123_underscore", "Artist-123_underscore"),
    ],
)
def test_sanitize_artist_valid(raw, want):
    assert sanitize_artist(raw) == want


@pytest.mark.parametrize("raw", ["", "/", "../bad", "/abs/path", "..", "."])
def test_sanitize_artist_invalid(raw):
    with pytest.raises(ImportFailure):
        sanitize_artist(raw)


def test_prune_extracted(tmp_path):
    keep = tmp_path / "keep.mp3"
    notes = tmp_path / "notes.txt"
    sample = tmp_path / "Samples" / "kick.wav"
    keep.write_bytes(b"audio")
    notes.write_bytes(b"text")
    sample.parent.mkdir()
    sample.write_bytes(b"wav")

    runner = make_runner(Config(unneeded_patterns=["*.txt", "Samples/**"]))
    runner.prune_extracted(str(tmp_path))

    assert keep.exists()
    assert not notes.exists()
    assert not sample.parent.exists()
    assert runner.stats.pruned == 3


def test_prune_extracted_protects_all_files(tmp_path):
    only = tmp_path / "only.txt"
    only.write_bytes(b"x")
    runner = make_runner(Config(unneeded_patterns=["**"]))
    with pytest.raises(ImportFailure, match="would remove all 1 files"):
        runner.prune_extracted(str(tmp_path))
    assert only.exists()


def test_prune_extracted_dry_run_keeps_files(tmp_path):
    notes = tmp_path / "notes.txt"
    notes.write_bytes(b"text")
    (tmp_path / "song.mp3").write_bytes(b"audio")
    runner = make_runner(Config(unneeded_patterns=["*.txt"]), dry_run=True)
    runner.prune_extracted(str(tmp_path))
    assert notes.exists()
    assert runner.stats.pruned == 1


def test_prune_extracted_invalid_pattern(tmp_path):
    (tmp_path / "song.mp3").write_bytes(b"audio")
    runner = make_runner(Config(unneeded_patterns=["[abc"]))
    with pytest.raises(ImportFailure, match="invalid pattern"):
        runner.prune_extracted(str(tmp_path))


def test_move_into_library_collision(tmp_path):
    src = tmp_path / "src"
    dest = tmp_path / "library"
    src.mkdir()
    dest.mkdir()
    (src / "song.mp3").write_bytes(b"data")
    (dest / "song.mp3").write_bytes(b"existing")

    runner = make_runner()
    with pytest.raises(ImportFailure, match="already exists"):
        runner.move_into_library(str(src), str(dest))
    assert (dest / "song.mp3").read_bytes() == b"existing"


def test_move_into_library_success(tmp_path):
    src = tmp_path / "src"
    dest = tmp_path / "library"
    (src / "Album").mkdir(parents=True)
    (src / "Album" / "song.mp3").write_bytes(b"music")

    runner = make_runner()
    runner.move_into_library(str(src), str(dest))

    assert (dest / "Album" / "song.mp3").read_bytes() == b"music"
    assert runner.stats.moved_files == 1


def test_move_into_library_dry_run_writes_nothing(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    (src / "song.mp3").write_bytes(b"music")
    dest = tmp_path / "library"
    runner = make_runner(dry_run=True)
    runner.move_into_library(str(src), str(dest))
    assert not dest.exists()
    assert runner.stats.moved_files == 0


def test_ensure_no_collisions_directory_vs_file(tmp_path):
    src = tmp_path / "src"
    dest = tmp_path / "dest"
    (src / "Album").mkdir(parents=True)
    dest.mkdir()
    (dest / "Album").write_bytes(b"file")
    with pytest.raises(ImportFailure, match="exists as a file"):
        make_runner().ensure_no_collisions(str(src), str(dest))


def test_ensure_no_collisions_file_vs_directory(tmp_path):
    src = tmp_path / "src"
    dest = tmp_path / "dest"
    src.mkdir()
    (src / "Album").write_bytes(b"file")
    (dest / "Album").mkdir(parents=True)
    with pytest.raises(ImportFailure, match="exists as a directory"):
        make_runner().ensure_no_collisions(str(src), str(dest))


def test_copy_file_sets_mode(tmp_path):
    src = tmp_path / "a"
    src.write_bytes(b"payload")
    dst = tmp_path / "b"
    copy_file(str(src), str(dst), 0o600)
    assert dst.read_bytes() == b"payload"
    assert stat.S_IMODE(dst.stat().st_mode) == 0o600


def test_extract_archive(tmp_path):
    archive = tmp_path / "a.zip"
    archive.write_bytes(zip_bytes({"Album/": b"", "Album/song.mp3": b"music"}))
    runner = make_runner(tmp_dir=str(tmp_path))
    out = runner.extract_archive(str(archive))
    assert open(os.path.join(out, "Album", "song.mp3"), "rb").read() == b"music"
    assert runner.stats.extracted_entries == 2
    assert os.path.dirname(out) == str(tmp_path)


def test_extract_archive_rejects_traversal(tmp_path):
    archive = tmp_path / "a.zip"
    archive.write_bytes(zip_bytes({"../evil.txt": b"x"}))
    with pytest.raises(ImportFailure, match="unsupported path"):
        make_runner(tmp_dir=str(tmp_path)).extract_archive(str(archive))


def test_extract_archive_empty(tmp_path):
    archive = tmp_path / "a.zip"
    archive.write_bytes(zip_bytes({}))
    with pytest.raises(ImportFailure, match="is empty"):
        make_runner().extract_archive(str(archive))


def test_extract_archive_not_a_zip(tmp_path):
    archive = tmp_path / "a.zip"
    archive.write_bytes(b"plain text")
    with pytest.raises(ImportFailure, match="open zip"):
        make_runner().extract_archive(str(archive))


def test_validate_inputs_relative_tmp_dir():
    with pytest.raises(ImportFailure, match="must be absolute"):
        make_runner(tmp_dir="relative").validate_inputs()


def test_validate_inputs_tmp_dir_is_file(tmp_path):
    path = tmp_path / "file"
    path.write_bytes(b"")
    with pytest.raises(ImportFailure, match="is not a directory"):
        make_runner(tmp_dir=str(path)).validate_inputs()


def test_validate_inputs_missing_url():
    with pytest.raises(ImportFailure, match="url is required"):
        make_runner(url="  ").validate_inputs()


def test_destination_path():
    runner = make_runner(Config(navidrome_music_path="/music"))
    runner.artist_dir = "Artist"
    assert runner.destination_path() == os.path.join("/music", "Artist")


def test_cleanup_path_respects_keep_temp(tmp_path):
    target = tmp_path / "dir"
    target.mkdir()
    make_runner(keep_temp=True).cleanup_path(str(target))
    assert target.exists()
    make_runner().cleanup_path(str(target))
    assert not target.exists()


def test_download_archive_success(server, tmp_path):
    httpd, base = server
    runner = make_runner(Config(pixeldrain_token="token"), tmp_dir=str(tmp_path))
    path = runner.download_archive(base + "/ok", "abc123")
    assert open(path, "rb").read() == SAMPLE_ZIP
    assert runner.stats.download_bytes == len(SAMPLE_ZIP)
    assert httpd.seen_headers[0]["Authorization"] == "Bearer token"
    assert httpd.seen_headers[0]["Accept"] == "application/zip"


def test_download_archive_http_error(server, tmp_path):
    _, base = server
    with pytest.raises(ImportFailure, match="status 404.*not here"):
        make_runner(tmp_dir=str(tmp_path)).download_archive(base + "/missing", "abc123")


def test_download_archive_wrong_content_type(server, tmp_path):
    _, base = server
    with pytest.raises(ImportFailure, match="unexpected content-type"):
        make_runner(tmp_dir=str(tmp_path)).download_archive(base + "/html", "abc123")


def test_download_archive_empty_body(server, tmp_path):
    _, base = server
    with pytest.raises(ImportFailure, match="downloaded file is empty"):
        make_runner(tmp_dir=str(tmp_path)).download_archive(base + "/empty", "abc123")


def test_download_archive_requires_url():
    with pytest.raises(ImportFailure, match="download URL is empty"):
        make_runner().download_archive("", "abc123")


def test_execute_end_to_end(server, tmp_path):
    httpd, base = server
    music = tmp_path / "music"
    work = tmp_path / "work"
    work.mkdir()
    original = urllib.request.urlopen
    requested = []

    def redirect(request, *args, **kwargs):
        requested.append(request.full_url)
        request.full_url = base + "/ok"
        return original(request, *args, **kwargs)

    config = Config(
        navidrome_music_path=str(music),
        unneeded_patterns=["**/*.txt"],
        pixeldrain_token="token",
    )
    runner = make_runner(config, artist="Some/Artist", url="abc123", tmp_dir=str(work))
    with mock.patch("urllib.request.urlopen", side_effect=redirect):
        runner.execute()

    assert requested == ["https://pixeldrain.com/api/file/abc123?download"]
    assert (music / "Some_Artist" / "Album" / "song.mp3").read_bytes() == b"music"
    assert not (music / "Some_Artist" / "Album" / "notes.txt").exists()
    assert runner.stats.moved_files == 1
    assert runner.stats.pruned == 1
    assert not any(name.startswith("nd-import-extract-") for name in os.listdir(work))
    assert httpd.seen_headers[0]["Authorization"] == "Bearer token"


def test_execute_rejects_bad_artist(tmp_path):
    runner = make_runner(Config(navidrome_music_path=str(tmp_path)), artist="../bad")
    with pytest.raises(ImportFailure, match="invalid path characters"):
        runner.execute()
    assert os.listdir(tmp_path) == []