# ndimport

`ndimport` imports a zip archive hosted on Pixeldrain into a Navidrome music
library, under a folder named after the artist. It is a Python library: you
build the settings, parse the options and run the import from your own code.

## What an import does

`Runner.execute()` carries out these steps and raises `ImportFailure` as soon
as one of them fails:

1. Checks the inputs. The artist and URL must be non-empty. An optional
   temporary directory must be an absolute path to an existing directory.
   The artist name is turned into a single folder name: it must not be an
   absolute path or start with `..`, and slashes and backslashes become
   underscores.
2. Resolves the link to a Pixeldrain file id. A bare id of at least three
   characters from `A-Z a-z 0-9 _ -` is used as it is. Anything else is read
   as a URL (`https://` is assumed when no scheme is given). Its host must
   contain `pixeldrain.com` or `doubledouble.top`, and its last path segment
   is taken as the id. The download always goes to
   `https://pixeldrain.com/api/file/<id>?download`.
3. Downloads the archive into a new temporary directory and writes progress,
   speed and an estimated time remaining to standard output. When a token is
   configured it is sent as `Authorization: Bearer <token>`. A non-200
   status, a content type that is neither zip nor octet-stream, and an empty
   download are all errors.
4. Extracts the archive into a second temporary directory. Entries with
   absolute paths or paths that climb out with `..` are refused.
5. Prunes files and directories whose slash-separated path relative to the
   archive root matches any of the configured glob patterns. If the patterns
   would remove every file, the import stops instead.
6. Merges what is left into `<music path>/<artist>`. Before anything is
   written, every path is checked against the destination. An existing file,
   or a file where a directory is expected or the other way round, stops the
   import.
7. Removes the temporary download and extraction directories unless
   `keep_temp` is set. A failed clean-up is logged as a warning.

In a dry run, steps 1 to 4 happen as usual. Step 5 only logs what would be
removed and step 6 only logs where the files would be merged. The library is
not touched.

Progress messages go to the `logging` logger named `ndimport`, or to the
logger passed to `Runner`. Configure logging to see them.

## Usage

```python
import logging

from ndimport.options import parse_args
from ndimport.runner import Config, Runner

logging.basicConfig(level=logging.INFO)

options = parse_args(["Some Artist", "abc123", "--dry-run"])
config = Config(
    navidrome_music_path="/srv/music",
    unneeded_patterns=["*.txt", "Samples/**"],
    pixeldrain_token="token",
)
runner = Runner(config, options)
runner.execute()
print(runner.stats)
```

### Options

`parse_args(argv)` turns command-line style arguments into an immutable
`Options` value with the fields `artist`, `url`, `tmp_dir`, `keep_temp` and
`dry_run`. When `argv` is `None`, it reads `sys.argv[1:]`.

- `--artist NAME`: the artist folder name.
- `--url URL`: the Pixeldrain URL or file id.
- `--tmp-dir DIR`: where to create temporary directories.
- `--keep-temp`: keep the downloaded and extracted files.
- `--dry-run`: plan the work without writing to the library.

Each flag can also be written with a single dash, for example `-artist`. The
artist and URL may instead be given as the first two positional arguments;
flags take precedence. Values are stripped of surrounding whitespace.

`parse_args` raises `UsageError` in these cases:

- An argument is invalid.
- The artist or URL is missing. Usage is printed to standard error first.
- Help is requested with `-h`, `-help` or `--help`. Usage is printed to
  standard error first.

### Settings and results

`Config` holds three settings:

- `navidrome_music_path`: the library root.
- `unneeded_patterns`: the prune globs.
- `pixeldrain_token`: optional.

`RunStats`, available as `runner.stats`, counts the downloaded bytes, the
extracted entries, the pruned items and the copied files.

Each step is also available as a `Runner` method:

- `validate_inputs`
- `download_archive`
- `extract_archive`
- `prune_extracted`
- `move_into_library`
- `ensure_no_collisions`
- `cleanup_path`
- `destination_path`

### Building blocks

```python
from ndimport.runner import resolve_pixeldrain, sanitize_artist, copy_file
from ndimport.progress import human_bytes, human_duration, ProgressWriter
from ndimport.pathmatch import match

file_id, download_url = resolve_pixeldrain("abc123")   # ("abc123", "https://pixeldrain.com/api/file/abc123?download")
sanitize_artist("  Artist/Name  ")                     # "Artist_Name"
human_bytes(1536)                                      # "1.5 KB"
human_duration(90, 1.0)                                # "1m30s"
match("Samples/**", "Samples/kick.wav")                # True
```

`match` compares a slash-separated path against a glob pattern:

- `*` and `?` never cross `/`.
- A `**` component matches zero or more whole components.
- Character classes (`[a-z]`, `[!x]`, `[^x]`), alternatives (`{a,b}`) and
  backslash escapes are supported.

Malformed patterns raise `PatternError`.

## What this package does not do

- There is no installed command. Call `parse_args` and `Runner` from Python.
- Settings are not read from environment variables or files. The help text
  printed by `parse_args` mentions `NAVIDROME_MUSIC_PATH`, `UNNEEDED_FILES`
  and `PIXELDRAIN_TOKEN`, but the package never reads them. You must build
  the `Config` yourself.