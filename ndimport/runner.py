"""The import workflow: download a Pixeldrain archive, unpack, prune and file it."""

from __future__ import annotations

import logging
import os
import re
import shutil
import stat
import tempfile
import urllib.error
import urllib.parse
import urllib.request
import zipfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

from ndimport.options import Options
from ndimport.pathmatch import PatternError, match
from ndimport.progress import ProgressWriter, human_bytes

_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{3,}")
_SUPPORTED_HOSTS = ("pixeldrain.com", "doubledouble.top")
_CHUNK_SIZE = 64 * 1024
_ERROR_BODY_LIMIT = 4 << 10


class ImportFailure(Exception):
    """An import step failed."""


@dataclass
class Config:
    """Settings taken from the environment."""

    navidrome_music_path: str = ""
    unneeded_patterns: list[str] = field(default_factory=list)
    pixeldrain_token: str = ""


@dataclass
class RunStats:
    """Counters reported at the end of an import."""

    download_bytes: int = 0
    extracted_entries: int = 0
    pruned: int = 0
    moved_files: int = 0


@contextmanager
def _step(what: str, *errors: type[BaseException]) -> Iterator[None]:
    """Re-raise OS (and the given) errors as ImportFailure prefixed with ``what``."""
    try:
        yield
    except (OSError, *errors) as err:
        raise ImportFailure(f"{what}: {err}") from err


def _walk(root: str, prune: Optional[Callable[[str], bool]] = None) -> Iterator[tuple[str, bool]]:
    """Yield ``(path, is_dir)`` below ``root`` in lexical order; pruned directories are not entered."""
    with os.scandir(root) as scan:
        entries = sorted(scan, key=lambda entry: entry.name)
    for entry in entries:
        is_dir = entry.is_dir(follow_symlinks=False)
        yield entry.path, is_dir
        if is_dir and not (prune and prune(entry.path)):
            yield from _walk(entry.path, prune)


def _remove_all(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path, ignore_errors=False)
    elif os.path.lexists(path):
        os.remove(path)


def _status_failure(code: int, reason: str, body: bytes) -> ImportFailure:
    text = body.decode("utf-8", "replace").strip()
    return ImportFailure(f"download failed: status {code} {code} {reason}: {text}")


class Runner:
    """Carries one import from download to the music library."""

    def __init__(self, config: Config, options: Options, logger: Optional[logging.Logger] = None) -> None:
        self.config = config
        self.options = options
        self.log = logger or logging.getLogger("ndimport")
        self.artist_dir = ""
        self.stats = RunStats()

    def execute(self) -> None:
        """Run the whole import; raises ImportFailure when a step fails."""
        self.log.info("Importing Pixeldrain archive for artist %r", self.options.artist)
        self.validate_inputs()
        self.artist_dir = sanitize_artist(self.options.artist)

        file_id, download_url = resolve_pixeldrain(self.options.url)
        self.log.info("Resolved Pixeldrain ID: %s", file_id)

        archive_path = self.download_archive(download_url, file_id)
        try:
            extract_dir = self.extract_archive(archive_path)
            try:
                self.prune_extracted(extract_dir)
                dest = self.destination_path()
                self.move_into_library(extract_dir, dest)
            finally:
                self.cleanup_path(extract_dir)
        finally:
            self.cleanup_path(archive_path)

        self.log.info(
            "Import complete -> %s (downloaded %s, extracted %d entries, pruned %d, moved %d files)",
            dest,
            human_bytes(self.stats.download_bytes),
            self.stats.extracted_entries,
            self.stats.pruned,
            self.stats.moved_files,
        )

    def validate_inputs(self) -> None:
        """Check the artist, URL and temporary directory options."""
        if not self.options.artist.strip():
            raise ImportFailure("artist is required")
        if not self.options.url.strip():
            raise ImportFailure("url is required")
        tmp_dir = self.options.tmp_dir
        if not tmp_dir:
            return
        if not os.path.isabs(tmp_dir):
            raise ImportFailure(f"tmp-dir must be absolute: {tmp_dir!r}")
        with _step(f"tmp-dir {tmp_dir!r} not accessible"):
            info = os.stat(tmp_dir)
        if not stat.S_ISDIR(info.st_mode):
            raise ImportFailure(f"tmp-dir {tmp_dir!r} is not a directory")

    def download_archive(self, download_url: str, file_id: str) -> str:
        """Download the archive into a fresh temporary directory and return its path."""
        if not download_url:
            raise ImportFailure("download URL is empty")
        with _step("create temp dir"):
            tmp_dir = tempfile.mkdtemp(prefix="nd-import-download-", dir=self._tmp_base())

        headers = {"User-Agent": "nd-import/0.1", "Accept": "application/zip"}
        if self.config.pixeldrain_token:
            headers["Authorization"] = "Bearer " + self.config.pixeldrain_token
        with _step("build download request", ValueError):
            request = urllib.request.Request(download_url, headers=headers, method="GET")

        self.log.info("Downloading Pixeldrain file %s ...", file_id)
        try:
            response = urllib.request.urlopen(request)
        except urllib.error.HTTPError as err:
            with err:
                raise _status_failure(err.code, err.reason, err.read(_ERROR_BODY_LIMIT)) from err
        except (OSError, ValueError) as err:
            raise ImportFailure(f"download failed: {err}") from err

        with response:
            if response.status != 200:
                raise _status_failure(response.status, response.reason, response.read(_ERROR_BODY_LIMIT))
            content_type = response.headers.get("Content-Type", "")
            if content_type and "zip" not in content_type and "octet-stream" not in content_type:
                raise ImportFailure(f"unexpected content-type {content_type!r} (expected zip) from Pixeldrain")

            with _step("create temp file"):
                fd, out_path = tempfile.mkstemp(prefix="pixeldrain-", suffix=".zip", dir=tmp_dir)
            try:
                total = int(response.headers.get("Content-Length", "-1"))
            except ValueError:
                total = -1

            progress = ProgressWriter(total, f"Downloading {file_id}")
            written = 0
            with os.fdopen(fd, "wb") as out_file, _step("write download"):
                try:
                    for chunk in iter(lambda: response.read(_CHUNK_SIZE), b""):
                        out_file.write(chunk)
                        progress.write(chunk)
                        written += len(chunk)
                finally:
                    progress.finish()

        if written == 0:
            raise ImportFailure("downloaded file is empty")
        self.stats.download_bytes = written
        self.log.info("Downloaded %s to %s", human_bytes(written), out_path)
        return out_path

    def extract_archive(self, archive_path: str) -> str:
        """Unpack the zip into a fresh temporary directory and return its path."""
        if not archive_path:
            raise ImportFailure("archive path is empty")
        with _step("open zip", zipfile.BadZipFile):
            archive = zipfile.ZipFile(archive_path)

        with archive:
            entries = archive.infolist()
            if not entries:
                raise ImportFailure(f"archive {archive_path} is empty")
            with _step("create extract dir"):
                dest_dir = tempfile.mkdtemp(prefix="nd-import-extract-", dir=self._tmp_base())
            for entry in entries:
                self._extract_entry(archive, entry, dest_dir)

        self.stats.extracted_entries = len(entries)
        self.log.info("Extracted %d entries into %s", len(entries), dest_dir)
        return dest_dir

    def _extract_entry(self, archive: zipfile.ZipFile, entry: zipfile.ZipInfo, dest_dir: str) -> None:
        rel = os.path.normpath(entry.filename) if entry.filename else "."
        if rel == ".":
            return
        if os.path.isabs(rel) or rel.startswith(".."):
            raise ImportFailure(f"zip entry {entry.filename!r} uses unsupported path")

        target = os.path.join(dest_dir, rel)
        if entry.is_dir():
            with _step(f"create directory {target!r}"):
                os.makedirs(target, 0o755, exist_ok=True)
            return
        with _step(f"create parent for {target!r}"):
            os.makedirs(os.path.dirname(target), 0o755, exist_ok=True)

        mode = stat.S_IMODE(entry.external_attr >> 16) or 0o644
        with _step(f"open zip entry {entry.filename!r}", zipfile.BadZipFile, RuntimeError):
            source = archive.open(entry)
        with source:
            with _step(f"create file {target!r}"):
                fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
            with os.fdopen(fd, "wb") as dst, _step(f"copy entry {entry.filename!r}", zipfile.BadZipFile):
                shutil.copyfileobj(source, dst)

    def prune_extracted(self, extract_dir: str) -> None:
        """Remove everything matching the unneeded-file patterns, unless that would leave no file."""
        if not extract_dir:
            raise ImportFailure("extract directory is empty")
        patterns = self.config.unneeded_patterns
        if not patterns:
            return

        to_remove: set[str] = set()
        file_count = 0
        for path, is_dir in _walk(extract_dir):
            rel_slash = os.path.relpath(path, extract_dir).replace(os.sep, "/")
            file_count += not is_dir
            for pattern in patterns:
                try:
                    matched = match(pattern, rel_slash)
                except PatternError as err:
                    raise ImportFailure(f"invalid pattern {pattern!r}: {err}") from err
                if matched:
                    to_remove.add(path)
                    break

        remaining_files = sum(
            1
            for path, is_dir in _walk(extract_dir, prune=to_remove.__contains__)
            if not is_dir and path not in to_remove
        )
        if file_count > 0 and remaining_files == 0:
            raise ImportFailure(f"prune patterns would remove all {file_count} files; aborting")
        if not to_remove:
            return

        removed = sorted(to_remove)
        for path in removed:
            if self.options.dry_run:
                self.log.info("dry-run: would remove %s", path)
                continue
            with _step(f"remove {path!r}"):
                _remove_all(path)

        self.stats.pruned = len(removed)
        self.log.info("Pruned %d item(s) matching UNNEEDED_FILES", len(removed))

    def move_into_library(self, extract_dir: str, dest: str) -> None:
        """Merge the extracted tree into ``dest`` without overwriting anything."""
        if not extract_dir:
            raise ImportFailure("extract directory is empty")
        if not dest:
            raise ImportFailure("destination path is empty")

        self.ensure_no_collisions(extract_dir, dest)
        if self.options.dry_run:
            self.log.info("dry-run: would merge extracted files into %s", dest)
            return

        with _step(f"create destination {dest!r}"):
            os.makedirs(dest, 0o755, exist_ok=True)

        for path, is_dir in _walk(extract_dir):
            target = os.path.join(dest, os.path.relpath(path, extract_dir))
            if is_dir:
                os.makedirs(target, 0o755, exist_ok=True)
                continue
            os.makedirs(os.path.dirname(target), 0o755, exist_ok=True)
            copy_file(path, target, stat.S_IMODE(os.lstat(path).st_mode))
            self.stats.moved_files += 1

    def ensure_no_collisions(self, src_root: str, dest_root: str) -> None:
        """Raise ImportFailure if any path under ``src_root`` already exists in ``dest_root``."""
        for path, is_dir in _walk(src_root):
            target = os.path.join(dest_root, os.path.relpath(path, src_root))
            try:
                target_is_dir = stat.S_ISDIR(os.stat(target).st_mode)
            except FileNotFoundError:
                continue
            if is_dir and not target_is_dir:
                raise ImportFailure(f"destination conflict: {target} exists as a file")
            if not is_dir and target_is_dir:
                raise ImportFailure(f"destination conflict: {target} exists as a directory")
            if not is_dir:
                raise ImportFailure(f"destination conflict: {target} already exists")

    def cleanup_path(self, path: str) -> None:
        """Remove a temporary path unless temporary files are to be kept."""
        if not path or self.options.keep_temp:
            return
        try:
            _remove_all(path)
        except OSError as err:
            self.log.warning("warning: failed to clean up %s: %s", path, err)

    def destination_path(self) -> str:
        """The artist's folder inside the music library."""
        return os.path.join(self.config.navidrome_music_path, self.artist_dir)

    def _tmp_base(self) -> Optional[str]:
        return self.options.tmp_dir or None


def sanitize_artist(name: str) -> str:
    """Turn an artist name into a single safe folder name."""
    trimmed = name.strip()
    if not trimmed:
        raise ImportFailure("artist is required")
    cleaned = os.path.normpath(trimmed)
    if os.path.isabs(cleaned) or cleaned.startswith(".."):
        raise ImportFailure(f"artist {name!r} contains invalid path characters")
    cleaned = cleaned.replace("/", "_").replace("\\", "_")
    if cleaned in (".", ""):
        raise ImportFailure(f"artist {name!r} is invalid")
    return cleaned


def _download_url(file_id: str) -> str:
    return f"https://pixeldrain.com/api/file/{urllib.parse.quote(file_id, safe='')}?download"


def resolve_pixeldrain(raw: str) -> tuple[str, str]:
    """Return the file ID and API download URL for a Pixeldrain URL or bare ID."""
    raw = raw.strip()
    if not raw:
        raise ImportFailure("url is required")
    if _ID_PATTERN.fullmatch(raw) and "/" not in raw and "." not in raw:
        return raw, _download_url(raw)

    full = raw if "://" in raw else "https://" + raw
    try:
        parsed = urllib.parse.urlsplit(full)
        host = (parsed.hostname or "").lower()
    except ValueError as err:
        raise ImportFailure(f"invalid URL {raw!r}: {err}") from err

    if not host:
        raise ImportFailure(f"invalid URL {raw!r}: missing host")
    if not any(supported in host for supported in _SUPPORTED_HOSTS):
        raise ImportFailure(f"unsupported host {host!r}; expected Pixeldrain")

    segments = [segment for segment in urllib.parse.unquote(parsed.path).split("/") if segment]
    if not segments:
        raise ImportFailure(f"missing Pixeldrain id in URL {raw!r}")
    file_id = segments[-1].strip()
    if not _ID_PATTERN.fullmatch(file_id):
        raise ImportFailure(f"invalid Pixeldrain id {file_id!r}")
    return file_id, _download_url(file_id)


def copy_file(src: str, dst: str, mode: int) -> None:
    """Copy the contents of ``src`` to ``dst``, creating it with ``mode``."""
    with open(src, "rb") as source:
        fd = os.open(dst, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "wb") as target:
            shutil.copyfileobj(source, target)