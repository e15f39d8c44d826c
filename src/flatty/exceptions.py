from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class FlattyError(Exception):
    """Base exception for errors in the flatty package."""

    @property
    def message(self) -> str:
        """Human readable description of the error."""
        return self.__doc__ or type(self).__name__

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ConfigurationError(FlattyError):
    """Raised when the run configuration is invalid."""

    reason: str

    @property
    def message(self) -> str:
        return f"Invalid configuration: {self.reason}"


@dataclass(frozen=True)
class InvalidBudgetError(ConfigurationError):
    """Raised when the token budget is below the accepted minimum."""

    reason: str = "invalid token budget"
    budget: int = 0
    minimum: int = 1

    @property
    def message(self) -> str:
        return f"Invalid token budget {self.budget}: must be at least {self.minimum}."


@dataclass(frozen=True)
class OutputNotWritableError(ConfigurationError):
    """Raised when the output directory cannot be created or written to."""

    reason: str = "output directory is not writable"
    folder: Path = field(default_factory=Path)

    @property
    def message(self) -> str:
        return f"Output directory {self.folder} is not writable: {self.reason}"


@dataclass(frozen=True)
class NoEligibleFilesError(FlattyError):
    """Raised when a scan finds nothing to write."""

    root: Path

    @property
    def message(self) -> str:
        return f"No eligible text files found under {self.root}."


@dataclass(frozen=True)
class PlanInvariantError(FlattyError):
    """Raised when a computed chunk plan breaks one of its invariants."""

    reason: str

    @property
    def message(self) -> str:
        return f"Internal planning error: {self.reason}"


@dataclass(frozen=True)
class DocumentWriteError(FlattyError):
    """Raised when an output document cannot be written."""

    path: Path
    reason: str

    @property
    def message(self) -> str:
        return f"Could not write {self.path}: {self.reason}"


@dataclass(frozen=True)
class OutputExistsError(DocumentWriteError):
    """Raised instead of overwriting an existing output document."""

    reason: str = "file already exists"


@dataclass(frozen=True)
class PartialOutputError(FlattyError):
    """Raised when a run stops after writing only some of its documents."""

    written: tuple[Path, ...]
    cause: FlattyError

    @property
    def message(self) -> str:
        done = ", ".join(str(p) for p in self.written) or "none"
        return f"{self.cause.message} Output is partial; completed documents: {done}"
