from __future__ import annotations

import contextlib
import io
import os
import re
import shutil
import tempfile
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

from flatty.config import DEFAULT_SEPARATOR, ROOT_DIRECTORY, TIMESTAMP_FORMAT
from flatty.exceptions import DocumentWriteError, OutputExistsError
from flatty.logging import logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from flatty.config import Chunk, DirectoryBucket, RunPlan


def now_iso() -> str:
    """Return the current date and time in ISO 8601 format with timezone.

    Returns:
        str: the current date and time in ISO 8601 format with timezone
    """
    return datetime.now(UTC).astimezone().isoformat(timespec="seconds")


def run_timestamp() -> str:
    """Return a sortable, colon-free local timestamp shared by every document of a run."""
    return datetime.now().astimezone().strftime(TIMESTAMP_FORMAT)


def output_filename(project: str, timestamp: str, sequence: int, *, multi: bool) -> str:
    """Build the file name of an output document.

    Args:
        project (str): the project name
        timestamp (str): the run timestamp
        sequence (int): the chunk sequence number
        multi (bool): whether the run produces more than one document

    Returns:
        str: `<project>-<timestamp>.txt`, or `<project>-<timestamp>-part<N>.txt` for multi-document runs
    """
    suffix = f"-part{sequence}" if multi else ""
    return f"{project}-{timestamp}{suffix}.txt"


def output_name_pattern(project: str) -> re.Pattern[str]:
    """Match the names `output_filename` gives to the documents of `project`, from any run."""
    stamp = r"\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2}"
    return re.compile(rf"{re.escape(project)}-{stamp}(?:-part\d+)?\.txt")


def _annotation(bucket: DirectoryBucket | None) -> str:
    if bucket is None:
        return ""
    return f" ({bucket.token_total} tokens, {len(bucket.files)} files)"


def build_structure_lines(root_name: str, buckets: Sequence[DirectoryBucket]) -> list[str]:
    """Build a visual tree of every scanned directory with its token total.

    Directories holding no eligible file but leading to one are shown without totals.

    Args:
        root_name (str): the name to use for the root of the tree
        buckets (Sequence[DirectoryBucket]): every bucket of the scan

    Returns:
        list[str]: the tree lines, suitable for printing
    """
    by_path = {b.path: b for b in buckets}
    tree: dict[str, Any] = {}
    for path in sorted(by_path, key=str.lower):
        if path == ROOT_DIRECTORY:
            continue
        cur = tree
        for part in PurePosixPath(path).parts:
            cur = cur.setdefault(part, {})

    lines: list[str] = [f"{root_name}/{_annotation(by_path.get(ROOT_DIRECTORY))}"]

    def walk(node: dict[str, Any], prefix: str, parent: str) -> None:
        names = sorted(node, key=str.lower)
        for idx, name in enumerate(names):
            last = idx == len(names) - 1
            path = f"{parent}/{name}" if parent else name
            branch = "└── " if last else "├── "
            lines.append(f"{prefix}{branch}{name}/{_annotation(by_path.get(path))}")
            walk(node[name], prefix + ("    " if last else "│   "), path)

    walk(tree, "", "")
    return lines


def render_header(chunk: Chunk, plan: RunPlan, *, project: str, generated_at: str) -> str:
    """Render the `#`-prefixed header block of a document.

    The header carries the run metadata, the structure of the whole repository
    and the list of what this particular document embeds.

    Args:
        chunk (Chunk): the chunk rendered by this document
        plan (RunPlan): the run plan the chunk belongs to
        project (str): the project name
        generated_at (str): the generation timestamp

    Returns:
        str: the header, every line starting with "#"
    """
    out = io.StringIO()
    out.write(f"# Project: {project}\n")
    out.write(f"# Generated: {generated_at}\n")
    out.write(f"# Part: {chunk.sequence} of {len(plan.chunks)}\n")
    out.write(f"# Grouping: {plan.group_by}\n")
    out.write(f"# Token budget: {plan.budget}\n")
    out.write(f"# Chunk tokens: {chunk.token_total}\n")
    out.write(f"# Repository tokens: {plan.total_tokens}\n")
    if chunk.is_oversized(plan.budget):
        out.write("# Note: this document holds a single file larger than the token budget\n")

    out.write("#\n# Repository structure:\n")
    for line in build_structure_lines(project, plan.directories):
        out.write(f"#   {line}\n")

    out.write("#\n# This document contains:\n")
    for section in chunk.sections:
        span = ""
        if section.partial:
            last = section.first_index + len(section.files) - 1
            span = f"files {section.first_index}-{last} of {section.group_size}, "
        out.write(f"#   {section.label} ({span}{section.token_total} tokens)\n")
        for rec in section.files:
            out.write(f"#     - {rec.rel} ({rec.token_count} tokens)\n")
    return out.getvalue()


def _encode(text: str) -> bytes:
    # file names that are not valid UTF-8 reach us as surrogate escapes; write their original bytes
    return text.encode("utf-8", errors="surrogateescape")


def _write_document(fh: Any, chunk: Chunk, header: str, separator: str) -> None:  # noqa: ANN401
    fh.write(_encode(header))
    fh.write(_encode(f"{separator}\n"))
    for rec in chunk.files:
        fh.write(_encode(f"{separator}\n{rec.rel}\n{separator}\n"))
        with rec.path.open("rb") as src:
            shutil.copyfileobj(src, fh)
        fh.write(b"\n")


def write_chunk(
    chunk: Chunk,
    plan: RunPlan,
    destination: Path,
    *,
    project: str,
    generated_at: str | None = None,
    separator: str = DEFAULT_SEPARATOR,
) -> Path:
    """Write one chunk as a document at `destination`.

    The document is assembled in a temporary file next to `destination` and
    linked into place once complete, so an interrupted write leaves nothing
    behind and a document created concurrently at `destination` is never
    replaced. File contents are copied byte for byte.

    Args:
        chunk (Chunk): the chunk to render
        plan (RunPlan): the run plan the chunk belongs to
        destination (Path): the document path; must not exist
        project (str): the project name for the header
        generated_at (str | None): generation timestamp; defaults to now
        separator (str): the separator line framing each file path

    Raises:
        OutputExistsError: if `destination` already exists
        DocumentWriteError: if a source file cannot be read or the document cannot be written

    Returns:
        Path: the written document
    """
    if destination.exists():
        raise OutputExistsError(path=destination)
    header = render_header(chunk, plan, project=project, generated_at=generated_at or now_iso())

    tmp_name = ""
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            dir=destination.parent,
            prefix=".flatty-",
            suffix=".tmp",
            delete=False,
        ) as fh:
            tmp_name = fh.name
            _write_document(fh, chunk, header, separator)
            fh.flush()
            os.fsync(fh.fileno())
        try:
            # link(2) fails on an existing target, unlike rename
            os.link(tmp_name, destination)
        except FileExistsError as e:
            raise OutputExistsError(path=destination) from e
    except OSError as e:
        raise DocumentWriteError(path=destination, reason=str(e)) from e
    finally:
        if tmp_name:
            with contextlib.suppress(FileNotFoundError):
                Path(tmp_name).unlink()

    logger.info("document written", path=str(destination), part=chunk.sequence, tokens=chunk.token_total)
    return destination
