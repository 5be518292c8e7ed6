"""Command-line options for the nd-import command."""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from typing import NoReturn, Optional, Sequence

PROG = "nd-import"

_USAGE = (
    f"\n  {PROG} --artist <name> --url <pixeldrain-url> [options]"
    f'\n  {PROG} "<artist>" "<pixeldrain-url>" [options]'
)
_EPILOG = (
    "Environment: NAVIDROME_MUSIC_PATH is required; "
    "UNNEEDED_FILES and PIXELDRAIN_TOKEN are optional."
)


@dataclass(frozen=True)
class Options:
    """User-supplied parameters of one import, before configuration is applied."""

    artist: str
    url: str
    tmp_dir: str = ""
    keep_temp: bool = False
    dry_run: bool = False


class UsageError(Exception):
    """The command line could not be turned into Options."""


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        raise UsageError(message)


def _build_parser() -> _Parser:
    parser = _Parser(
        prog=PROG,
        usage=_USAGE,
        epilog=_EPILOG,
        add_help=False,
        allow_abbrev=False,
    )
    parser.add_argument(
        "-artist", "--artist", default="",
        help="Artist folder name to group tracks (required)",
    )
    parser.add_argument(
        "-url", "--url", default="",
        help="Pixeldrain download URL or ID (required)",
    )
    parser.add_argument(
        "-tmp-dir", "--tmp-dir", dest="tmp_dir", default="",
        help="Temporary directory override",
    )
    parser.add_argument(
        "-keep-temp", "--keep-temp", dest="keep_temp", action="store_true",
        help="Keep downloaded and extracted files instead of cleanup",
    )
    parser.add_argument(
        "-dry-run", "--dry-run", dest="dry_run", action="store_true",
        help="Validate and plan actions without writing files",
    )
    parser.add_argument(
        "-h", "-help", "--help", dest="help", action="store_true",
        help="Show this help",
    )
    parser.add_argument("positional", nargs="*", help=argparse.SUPPRESS)
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> Options:
    """Parse command-line arguments into Options.

    The artist and URL may be given as flags or as the first two positional
    arguments; flags win. Raises UsageError when the command line is invalid
    or either value is missing.
    """
    args = list(sys.argv[1:] if argv is None else argv)
    parser = _build_parser()
    namespace = parser.parse_intermixed_args(args)

    if namespace.help:
        parser.print_help(sys.stderr)
        raise UsageError("flag: help requested")

    artist: str = namespace.artist
    url: str = namespace.url
    positional: list[str] = namespace.positional
    if not artist.strip() and len(positional) >= 1:
        artist = positional[0]
    if not url.strip() and len(positional) >= 2:
        url = positional[1]

    missing = [flag for flag, value in (("--artist", artist), ("--url", url)) if not value.strip()]
    if missing:
        parser.print_help(sys.stderr)
        raise UsageError(f"missing required flag(s): {', '.join(missing)}")

    return Options(
        artist=artist.strip(),
        url=url.strip(),
        tmp_dir=namespace.tmp_dir.strip(),
        keep_temp=namespace.keep_temp,
        dry_run=namespace.dry_run,
    )