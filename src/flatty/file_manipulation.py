from __future__ import annotations

import codecs
import fnmatch
import os
import stat
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, NamedTuple

from flatty.config import (
    BINARY_EXTENSIONS,
    CHARS_PER_TOKEN,
    DEFAULT_EXCLUDES,
    ROOT_DIRECTORY,
    TEXT_EXTENSIONS,
    TEXT_PROBE_BYTES,
    DirectoryBucket,
    FileRecord,
)
from flatty.exceptions import NoEligibleFilesError
from flatty.logging import logger

if TYPE_CHECKING:
    import re
    from collections.abc import Callable, Iterable, Sequence


def relpath(path: Path, root: Path) -> str:
    """Send the relative path of path from root.

    Args:
        path (Path): the path to "relativise"
        root (Path): the root to relativise from

    Returns:
        str: the relative path from root to path, with POSIX separators.
            If path is not under root, returns the original path as a string.
    """
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)


def normalize_globs(globs: Iterable[str]) -> list[str]:
    """Normalize a sequence of path glob patterns.

    Normalize a sequence of glob patterns by stripping whitespace, dropping
    empty entries, replacing backslashes with forward slashes and removing a
    leading "./" (patterns are always relative to the scan root).

    Args:
        globs (Iterable[str]): the glob patterns to normalize

    Returns:
        list[str]: the normalized glob patterns
    """
    out: list[str] = []
    for g in globs:
        g2 = (g or "").strip().replace("\\", "/")
        g2 = g2.removeprefix("./")
        if not g2:
            continue
        out.append(g2)
    return out


def match_any_glob(rel: str, globs: Sequence[str]) -> bool:
    """Check if a relative path matches any of the provided glob patterns.

    A pattern matches when it matches the whole relative path or any single
    component of it, so `node_modules` excludes every file below such a
    directory and `*.py` matches at any depth.

    Args:
        rel (str): the relative path to check, with POSIX separators
        globs (Sequence[str]): the glob patterns to match against

    Returns:
        bool: True if `rel` matches any pattern in `globs`, False otherwise
    """
    parts = PurePosixPath(rel).parts
    for g in globs:
        if fnmatch.fnmatchcase(rel, g):
            return True
        if any(fnmatch.fnmatchcase(p, g) for p in parts):
            return True
    return False


def is_regular_file(path: Path) -> bool:
    """Check if a file is regular.

    Args:
        path (Path): path to test.

    Raises:
        OSError: if the path cannot be stat-ed (e.g. deleted since it was listed).

    Returns:
        bool: True if the file is regular, False otherwise.
    """
    return stat.S_ISREG(path.stat().st_mode)


def looks_like_text(chunk: bytes) -> bool:
    """Check whether a leading slice of file content looks like text.

    The slice must contain no NUL byte and decode as UTF-8. A multi-byte
    sequence cut at the end of the slice is accepted.

    Args:
        chunk (bytes): the first bytes of a file.

    Returns:
        bool: True if the bytes look like text.
    """
    if b"\x00" in chunk:
        return False
    try:
        codecs.getincrementaldecoder("utf-8")().decode(chunk, final=False)
    except UnicodeDecodeError:
        return False
    return True


def sniff_text_utf8(path: Path, nbytes: int = TEXT_PROBE_BYTES) -> bool:
    """Check if path point to a utf-8 encoded text file.

    Args:
        path (Path): path to test.
        nbytes (int, optional): number of bytes to read for testing. Defaults to 8192.

    Raises:
        OSError: if the file cannot be opened or read.

    Returns:
        bool: True if the file is utf-8 encoded text, False otherwise.
    """
    with path.open("rb") as f:
        chunk = f.read(nbytes)
    return looks_like_text(chunk)


def estimate_tokens(content: bytes) -> int:
    """Estimate the LLM token count of raw file content.

    This is a deliberately crude, stable proxy (about four bytes per token);
    the budget semantics of every run rely on it staying the same.

    Args:
        content (bytes): the raw content

    Returns:
        int: the estimated number of tokens
    """
    return len(content) // CHARS_PER_TOKEN


class Classifier:
    """Decide whether a file under `root` belongs in the export.

    Args:
        root (Path): the scan root; candidate paths are matched relative to it
        includes (Sequence[str]): glob patterns, at least one of which must match when given
        excludes (Sequence[str]): glob patterns that always reject a path
        use_default_excludes (bool): also apply `DEFAULT_EXCLUDES`
    """

    def __init__(
        self,
        root: Path,
        includes: Sequence[str] = (),
        excludes: Sequence[str] = (),
        *,
        use_default_excludes: bool = True,
    ) -> None:
        self.root = root
        self.includes = normalize_globs(includes)
        self.excludes = normalize_globs([*(DEFAULT_EXCLUDES if use_default_excludes else ()), *excludes])

    def matches_patterns(self, rel: str) -> bool:
        """Apply include/exclude patterns to a relative path; excludes override includes."""
        if self.includes and not match_any_glob(rel, self.includes):
            return False
        return not match_any_glob(rel, self.excludes)

    def is_pruned_directory(self, rel_dir: str) -> bool:
        """Whether the walk can skip a directory entirely (it matches an exclude pattern)."""
        return rel_dir != ROOT_DIRECTORY and match_any_glob(rel_dir, self.excludes)

    def is_textual(self, path: Path) -> bool:
        """Confirm text content: binary extensions never pass, known text extensions always do.

        Raises:
            OSError: if the content probe cannot read the file.
        """
        suffix = path.suffix.lower()
        if suffix in BINARY_EXTENSIONS:
            return False
        if suffix in TEXT_EXTENSIONS:
            return True
        return sniff_text_utf8(path)

    def should_include(self, path: Path) -> bool:
        """Check whether `path` is an eligible file.

        Args:
            path (Path): absolute path of a candidate file

        Raises:
            OSError: if the content probe cannot read the file.

        Returns:
            bool: True if the file passes the patterns, is regular and is textual.
        """
        if not self.matches_patterns(relpath(path, self.root)):
            return False
        if not is_regular_file(path):
            return False
        return self.is_textual(path)


def walk_files(
    root: Path,
    classifier: Classifier,
    skip: Sequence[Path] = (),
    on_error: Callable[[OSError], None] | None = None,
) -> list[Path]:
    """Walk the directory tree rooted at `root` and return its files in lexicographic order.

    Directories rejected by `classifier.is_pruned_directory` and the paths in
    `skip` (e.g. the output directory) are not entered.

    Args:
        root (Path): the root directory to walk
        classifier (Classifier): used to prune excluded directories
        skip (Sequence[Path]): absolute directories never to enter
        on_error (Callable[[OSError], None] | None): called with the error of each directory
            that cannot be listed; such directories are left out

    Returns:
        list[Path]: every file found, sorted by POSIX relative path
    """
    skipped = {p.resolve() for p in skip}
    results: list[Path] = []
    for current, dirs, files in os.walk(root, onerror=on_error):
        base = Path(current)
        dirs[:] = [
            d
            for d in dirs
            if (base / d).resolve() not in skipped and not classifier.is_pruned_directory(relpath(base / d, root))
        ]
        results.extend(base / f for f in files)
    return sorted(results, key=lambda p: relpath(p, root))


class ScanResult(NamedTuple):
    """Outcome of a repository scan."""

    buckets: list[DirectoryBucket]
    total_tokens: int
    skipped: int


def scan_repository(
    root: Path,
    classifier: Classifier,
    *,
    skip: Sequence[Path] = (),
    ignore: re.Pattern[str] | None = None,
) -> ScanResult:
    """Scan `root` and aggregate eligible files into per-directory buckets.

    Files are visited once, in lexicographic order of their relative path, so
    repeated scans of an unchanged tree give identical buckets. Unreadable
    files and directories are skipped with a warning and counted in
    `ScanResult.skipped`.

    Args:
        root (Path): the directory to scan (absolute)
        classifier (Classifier): decides which files are eligible
        skip (Sequence[Path]): absolute directories never to enter
        ignore (re.Pattern[str] | None): relative paths fully matching it are left out
            (e.g. documents of earlier runs written into the root)

    Raises:
        NoEligibleFilesError: if no eligible file was found

    Returns:
        ScanResult: buckets in scan order, the total token estimate and the number of skipped entries
    """
    grouped: dict[str, list[FileRecord]] = {}
    skipped = 0

    def unreadable_directory(error: OSError) -> None:
        nonlocal skipped
        skipped += 1
        where = relpath(Path(error.filename), root) if error.filename else str(root)
        logger.warning("skipping unreadable directory", path=where, error=str(error))

    for path in walk_files(root, classifier, skip, unreadable_directory):
        rel = relpath(path, root)
        if ignore is not None and ignore.fullmatch(rel):
            logger.debug("ignoring earlier output", path=rel)
            continue
        try:
            if not classifier.should_include(path):
                continue
            content = path.read_bytes()
        except OSError as e:
            skipped += 1
            logger.warning("skipping unreadable file", path=rel, error=str(e))
            continue
        rec = FileRecord(path=path, rel=rel, size=len(content), token_count=estimate_tokens(content))
        grouped.setdefault(rec.directory, []).append(rec)
        logger.debug("processed file", path=rel, tokens=rec.token_count)

    if not grouped:
        raise NoEligibleFilesError(root=root)

    buckets = [
        DirectoryBucket(path=d, files=tuple(recs), token_total=sum(r.token_count for r in recs))
        for d, recs in grouped.items()
    ]
    total = sum(b.token_total for b in buckets)
    logger.info("scan complete", root=str(root), files=sum(len(b.files) for b in buckets), tokens=total)
    return ScanResult(buckets=buckets, total_tokens=total, skipped=skipped)
