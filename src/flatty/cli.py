"""flatty: convert a directory into LLM-friendly text documents.

Overview
--------
The tool walks a project, keeps text files, estimates their token count
(about four bytes per token) and writes one or more `.txt` documents that each
stay under a token budget:

1) **directory** grouping (default): directories are kept together and packed
   greedily in path order; a directory too big for one document is split
   file by file.
2) **type** grouping: files of the same family (python, docs, config...) are
   packed together.
3) **size** grouping: files are packed in path order, ignoring directories.

Every document starts with a `#` header (project, part, budget, the whole
repository structure, the content of this part) followed by the files, each
framed as `---` / path / `---` / content.

Usage
-----
Run `flatty --help` (or `python -m flatty`) for full options. Common examples:
    - Current directory, default 100k budget, documents in ~/flattened:
        flatty

    - Only Swift and Objective-C sources:
        flatty -i "*.swift" -i "*.h" -i "*.m"

    - Even 50k-token parts:
        flatty --group-by size -t 50k
"""

from __future__ import annotations

import argparse
import os
import re
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, NamedTuple

from pydantic import ValidationError

from flatty import __version__
from flatty.config import MIN_TOKEN_BUDGET, GroupBy
from flatty.exceptions import (
    ConfigurationError,
    DocumentWriteError,
    FlattyError,
    InvalidBudgetError,
    NoEligibleFilesError,
    OutputNotWritableError,
    PartialOutputError,
    PlanInvariantError,
)
from flatty.file_manipulation import Classifier, scan_repository
from flatty.logging import logger, setup_logging
from flatty.output_construction import now_iso, output_filename, output_name_pattern, run_timestamp, write_chunk
from flatty.planning import plan
from flatty.settings import Settings, env_defaults, load_config_file

if TYPE_CHECKING:
    from collections.abc import Sequence

EXIT_OK = 0
EXIT_CONFIG = 2
EXIT_NO_FILES = 3
EXIT_WRITE = 4
EXIT_INTERNAL = 70
EXIT_INTERRUPTED = 130

_BUDGET_RE = re.compile(r"^(\d+)([kKmM]?)$")
_MULTIPLIERS = {"": 1, "k": 1_000, "m": 1_000_000}


class RunSummary(NamedTuple):
    """What a completed run produced."""

    files: int
    documents: int
    total_tokens: int
    skipped: int
    written: tuple[Path, ...]


def parse_token_budget(value: str | int) -> int:
    """Parse a token budget, accepting `k` (thousands) and `M` (millions) suffixes.

    Args:
        value (str | int): e.g. "100000", "50k", "2M"

    Raises:
        ValueError: if the value is not a non-negative integer with an optional suffix
            (floats, booleans and None included)

    Returns:
        int: the budget in tokens
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    m = _BUDGET_RE.match(value.strip()) if isinstance(value, str) else None
    if not m:
        msg = f"invalid token budget {value!r} (expected e.g. 100000, 50k, 2M)"
        raise ValueError(msg)
    return int(m.group(1)) * _MULTIPLIERS[m.group(2).lower()]


def _budget_arg(value: str) -> int:
    try:
        return parse_token_budget(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="flatty",
        description="Convert a directory into LLM-friendly text documents.",
    )
    p.add_argument("patterns", nargs="*", help="Include patterns (same as --include).")
    p.add_argument("--root", type=str, default=None, help="Directory to flatten (default: cwd).")
    p.add_argument(
        "-o",
        "--output-dir",
        type=str,
        default=None,
        help="Output directory (default: ~/flattened).",
    )
    p.add_argument(
        "-g",
        "--group-by",
        choices=[g.value for g in GroupBy],
        default=None,
        help="Grouping mode: directory (default), type, or size.",
    )
    p.add_argument(
        "-i",
        "--include",
        action="append",
        default=[],
        help="Include only files matching pattern (repeatable).",
    )
    p.add_argument(
        "-x",
        "--exclude",
        action="append",
        default=[],
        help="Exclude files matching pattern (repeatable).",
    )
    p.add_argument(
        "-t",
        "--tokens",
        type=_budget_arg,
        default=None,
        help="Target token limit per file, e.g. 100000 or 50k (default: 100000).",
    )
    p.add_argument("--project-name", type=str, default=None, help="Project name in headers and file names.")
    p.add_argument("--separator", type=str, default=None, help="Separator line framing file paths.")
    p.add_argument(
        "--no-default-excludes",
        action="store_true",
        default=None,
        help="Do not skip VCS metadata, dependency directories and OS files.",
    )
    p.add_argument("-v", "--verbose", action="store_true", default=None, help="Show detailed progress.")
    p.add_argument("--log-file", type=str, default=None, help="Log file path.")
    p.add_argument("--config", type=str, default=None, help="YAML file with default settings.")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    """Parse command line arguments into `Settings`.

    Values are layered: command line over `--config` YAML over `FLATTY_*`
    environment variables (and `.env`) over built-in defaults. Include and
    exclude patterns accumulate across layers.

    Raises:
        ConfigurationError: if the merged values are invalid

    Returns:
        Settings: the run settings
    """
    args = build_parser().parse_args(argv)
    merged: dict[str, Any] = dict(env_defaults())
    if args.config:
        merged.update(load_config_file(Path(args.config)))
    for key in ("include", "exclude"):
        if isinstance(merged.get(key), str):
            merged[key] = [merged[key]]

    cli_values = vars(args)
    patterns = cli_values.pop("patterns")
    cli_values.pop("config")
    merged["include"] = [*(merged.get("include") or []), *cli_values.pop("include"), *patterns]
    merged["exclude"] = [*(merged.get("exclude") or []), *cli_values.pop("exclude")]
    merged.update({k: v for k, v in cli_values.items() if v is not None})

    try:
        if "tokens" in merged:
            merged["tokens"] = parse_token_budget(merged["tokens"])
        return Settings(**merged)
    except (ValueError, ValidationError) as e:
        raise ConfigurationError(reason=str(e)) from e


def validate_settings(settings: Settings) -> Path:
    """Fail fast on configuration problems, before anything is scanned.

    Raises:
        InvalidBudgetError: if the budget is below `MIN_TOKEN_BUDGET`
        ConfigurationError: if the root is not a directory
        OutputNotWritableError: if the output directory cannot be created or written

    Returns:
        Path: the resolved output directory, created if needed
    """
    if settings.tokens < MIN_TOKEN_BUDGET:
        raise InvalidBudgetError(budget=settings.tokens, minimum=MIN_TOKEN_BUDGET)
    root = settings.resolved_root
    if not root.is_dir():
        raise ConfigurationError(reason=f"{root} is not a directory")

    out_dir = settings.resolved_output_dir
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OutputNotWritableError(folder=out_dir, reason=str(e)) from e
    if not out_dir.is_dir() or not os.access(out_dir, os.W_OK | os.X_OK):
        raise OutputNotWritableError(folder=out_dir, reason="permission denied")
    return out_dir


def run(settings: Settings) -> RunSummary:
    """Scan, plan and write the documents of one run.

    Documents are written in plan order. A write failure stops the run but
    keeps the documents already written.

    Raises:
        ConfigurationError: on invalid settings (nothing is scanned)
        NoEligibleFilesError: if nothing is eligible (nothing is written)
        PlanInvariantError: if planning produced an inconsistent plan (nothing is written)
        DocumentWriteError: if the first document could not be written
        PartialOutputError: if a later document could not be written

    Returns:
        RunSummary: counts and paths of the written documents
    """
    out_dir = validate_settings(settings)
    root = settings.resolved_root
    classifier = Classifier(
        root,
        settings.include,
        settings.exclude,
        use_default_excludes=not settings.no_default_excludes,
    )
    # an output directory inside the root is never entered; the root itself can only drop earlier documents
    ignore = output_name_pattern(settings.project) if out_dir == root else None
    scan = scan_repository(root, classifier, skip=[out_dir], ignore=ignore)
    run_plan = plan(scan.buckets, settings.tokens, settings.group_by)

    timestamp = run_timestamp()
    generated_at = now_iso()
    written: list[Path] = []
    for chunk in run_plan.chunks:
        name = output_filename(settings.project, timestamp, chunk.sequence, multi=run_plan.is_multi_document)
        try:
            written.append(
                write_chunk(
                    chunk,
                    run_plan,
                    out_dir / name,
                    project=settings.project,
                    generated_at=generated_at,
                    separator=settings.separator,
                ),
            )
        except DocumentWriteError as e:
            if written:
                raise PartialOutputError(written=tuple(written), cause=e) from e
            raise

    return RunSummary(
        files=sum(len(b.files) for b in scan.buckets),
        documents=len(written),
        total_tokens=scan.total_tokens,
        skipped=scan.skipped,
        written=tuple(written),
    )


def exit_code_for(error: FlattyError) -> int:
    """Map an error to the process exit status."""
    if isinstance(error, ConfigurationError):
        return EXIT_CONFIG
    if isinstance(error, NoEligibleFilesError):
        return EXIT_NO_FILES
    if isinstance(error, (DocumentWriteError, PartialOutputError)):
        return EXIT_WRITE
    if isinstance(error, PlanInvariantError):
        return EXIT_INTERNAL
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    try:
        settings = parse_args(argv)
        setup_logging(settings.log_file or None, verbose=settings.verbose, force=True)
        summary = run(settings)
    except FlattyError as e:
        logger.error("run failed", error=type(e).__name__, reason=e.message)
        print(f"Error: {e.message}", file=sys.stderr)
        return exit_code_for(e)
    except KeyboardInterrupt:
        print("Interrupted; documents already written were kept.", file=sys.stderr)
        return EXIT_INTERRUPTED

    print(
        f"Wrote {summary.documents} document(s) files={summary.files} "
        f"tokens={summary.total_tokens} skipped={summary.skipped}",
    )
    for path in summary.written:
        print(f"  {path}")
    return EXIT_OK


def entrypoint() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    entrypoint()
