from __future__ import annotations

from enum import StrEnum, auto
from pathlib import Path, PurePosixPath

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

CHARS_PER_TOKEN = 4
MIN_TOKEN_BUDGET = 1_000
DEFAULT_TOKEN_BUDGET = 100_000
DEFAULT_SEPARATOR = "---"
DEFAULT_OUTPUT_DIR = Path("~/flattened")
TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
TEXT_PROBE_BYTES = 8192
ROOT_DIRECTORY = "."


class GroupBy(StrEnum):
    """How the planner forms the groups it packs into documents."""

    DIRECTORY = auto()
    TYPE = auto()
    SIZE = auto()


# Matched against the relative path and against every single path component.
DEFAULT_EXCLUDES = (
    ".git",
    ".hg",
    ".svn",
    ".bzr",
    ".venv",
    "venv",
    "__pycache__",
    ".mypy_cache",
    ".ruff_cache",
    ".pytest_cache",
    ".tox",
    ".ipynb_checkpoints",
    "node_modules",
    "bower_components",
    "vendor",
    ".idea",
    ".vscode",
    ".DS_Store",
    "Thumbs.db",
    "desktop.ini",
)

BINARY_EXTENSIONS = frozenset({
    # images
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".tiff", ".psd",
    # audio / video
    ".mp3", ".wav", ".flac", ".ogg", ".m4a", ".mp4", ".avi", ".mov", ".mkv", ".webm",
    # archives
    ".zip", ".tar", ".gz", ".tgz", ".bz2", ".xz", ".7z", ".rar", ".jar", ".whl",
    # documents
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    # compiled
    ".pyc", ".pyo", ".class", ".o", ".obj", ".a", ".so", ".dylib", ".dll", ".exe", ".bin", ".wasm",
    # fonts
    ".ttf", ".otf", ".woff", ".woff2", ".eot",
    # databases
    ".db", ".sqlite", ".sqlite3",
})  # fmt: skip

TEXT_EXTENSIONS = frozenset({
    ".py", ".pyi", ".js", ".jsx", ".mjs", ".ts", ".tsx", ".go", ".rb", ".java", ".kt",
    ".c", ".h", ".cc", ".cpp", ".hpp", ".cxx", ".swift", ".m", ".mm", ".rs", ".php",
    ".html", ".htm", ".css", ".scss", ".sass", ".md", ".markdown", ".rst", ".txt",
    ".json", ".yaml", ".yml", ".toml", ".ini", ".cfg", ".conf", ".xml", ".svg",
    ".sh", ".bash", ".zsh", ".sql", ".csv",
})  # fmt: skip

# File families used by the "type" grouping mode, in the order they are tested.
TYPE_GROUPS: dict[str, tuple[str, ...]] = {
    "python": (".py", ".pyc"),
    "javascript": (".js", ".jsx", ".ts", ".tsx"),
    "golang": (".go",),
    "ruby": (".rb",),
    "java": (".java", ".class"),
    "c": (".c", ".h"),
    "cpp": (".cpp", ".hpp", ".cc"),
    "swift": (".swift",),
    "objective-c": (".m", ".mm"),
    "html": (".html", ".htm"),
    "css": (".css", ".scss", ".sass"),
    "docs": (".md", ".markdown"),
    "config": (".json", ".yaml", ".yml", ".toml"),
}
OTHER_TYPE_GROUP = "other"


def type_group(rel: str) -> str:
    """Return the file family of a relative path for the "type" grouping mode."""
    suffix = PurePosixPath(rel).suffix.lower()
    for name, suffixes in TYPE_GROUPS.items():
        if suffix in suffixes:
            return name
    return OTHER_TYPE_GROUP


class FileRecord(BaseModel):
    """An eligible file discovered by the scanner.

    Attributes:
        path: Absolute path to the file on disk.
        rel: Path relative to the scan root, with POSIX separators.
        size: File size in bytes at scan time.
        token_count: Estimated token count of the file contents.
    """

    model_config = ConfigDict(frozen=True)

    path: Path = Field(..., description="Absolute file path")
    rel: str = Field(..., description="File path relative to the scan root")
    size: int = Field(..., ge=0, description="File size in bytes")
    token_count: int = Field(..., ge=0, description="Estimated token count")

    @computed_field
    @property
    def directory(self) -> str:
        """Parent directory of the file relative to the root ("." for the root itself)."""
        return str(PurePosixPath(self.rel).parent)


class DirectoryBucket(BaseModel):
    """Aggregated files and token total of one directory."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="Directory path relative to the scan root")
    files: tuple[FileRecord, ...] = Field(default=(), description="Files in scan order")
    token_total: int = Field(default=0, ge=0, description="Sum of the files' token counts")

    @model_validator(mode="after")
    def _check_total(self) -> DirectoryBucket:
        actual = sum(f.token_count for f in self.files)
        if actual != self.token_total:
            msg = f"bucket {self.path!r} declares {self.token_total} tokens but its files sum to {actual}"
            raise ValueError(msg)
        return self


class ChunkSection(BaseModel):
    """The part of one group (directory, file family...) carried by a chunk."""

    model_config = ConfigDict(frozen=True)

    label: str
    files: tuple[FileRecord, ...]
    token_total: int = Field(..., ge=0)
    partial: bool = Field(default=False, description="Only a sub-range of the group's files")
    first_index: int = Field(default=1, ge=1, description="1-based index of the first file in its group")
    group_size: int = Field(default=0, ge=0, description="Number of files in the whole group")


class Chunk(BaseModel):
    """Content assignment of one output document."""

    model_config = ConfigDict(frozen=True)

    sequence: int = Field(..., ge=1)
    sections: tuple[ChunkSection, ...]
    token_total: int = Field(..., ge=0)

    @property
    def files(self) -> list[FileRecord]:
        """Files of the chunk in output order."""
        return [f for s in self.sections for f in s.files]

    def is_oversized(self, budget: int) -> bool:
        """A chunk made of a single file whose own estimate exceeds the budget."""
        files = self.files
        return len(files) == 1 and files[0].token_count > budget


class RunPlan(BaseModel):
    """Ordered chunks produced for one run."""

    model_config = ConfigDict(frozen=True)

    budget: int = Field(..., ge=1)
    group_by: GroupBy = GroupBy.DIRECTORY
    chunks: tuple[Chunk, ...]
    directories: tuple[DirectoryBucket, ...] = Field(
        default=(),
        description="Every scanned directory, used for the structure overview",
    )

    @property
    def total_tokens(self) -> int:
        return sum(c.token_total for c in self.chunks)

    @property
    def is_multi_document(self) -> bool:
        return len(self.chunks) > 1
