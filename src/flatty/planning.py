"""Chunk planning: split scanned buckets into documents that respect a token budget.

Groups (directories, file families, or the whole corpus) are packed greedily
in scan order. A group larger than the budget is split at file granularity;
a single file larger than the budget becomes a chunk of its own.
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING, NamedTuple

from flatty.config import Chunk, ChunkSection, GroupBy, RunPlan, type_group
from flatty.exceptions import InvalidBudgetError, PlanInvariantError
from flatty.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Sequence

    from flatty.config import DirectoryBucket, FileRecord


class Group(NamedTuple):
    """A labelled run of files the packer keeps together when it can."""

    label: str
    files: tuple[FileRecord, ...]

    @property
    def token_total(self) -> int:
        return sum(f.token_count for f in self.files)


def directory_groups(buckets: Sequence[DirectoryBucket]) -> list[Group]:
    """One group per directory bucket, in scan order."""
    return [Group(b.path, b.files) for b in buckets]


def type_groups(buckets: Sequence[DirectoryBucket]) -> list[Group]:
    """Regroup files by file family, families ordered by first appearance."""
    families: dict[str, list[FileRecord]] = {}
    for bucket in buckets:
        for rec in bucket.files:
            families.setdefault(type_group(rec.rel), []).append(rec)
    return [Group(name, tuple(recs)) for name, recs in families.items()]


def size_groups(buckets: Sequence[DirectoryBucket]) -> list[Group]:
    """A single group of every file, so packing only ever splits by size."""
    return [Group("files", tuple(rec for b in buckets for rec in b.files))]


GROUP_BUILDERS: dict[GroupBy, Callable[[Sequence[DirectoryBucket]], list[Group]]] = {
    GroupBy.DIRECTORY: directory_groups,
    GroupBy.TYPE: type_groups,
    GroupBy.SIZE: size_groups,
}


def split_files(group: Group, budget: int) -> Iterator[ChunkSection]:
    """Partition an oversized group's files into sections that each fit the budget.

    A file whose own estimate exceeds the budget is emitted alone; files are
    never split.

    Args:
        group (Group): the group to split, files in scan order
        budget (int): the token budget per section

    Yields:
        Iterator[ChunkSection]: consecutive partial sections covering every file once
    """
    buf: list[FileRecord] = []
    cur = 0
    first = 1
    for i, rec in enumerate(group.files, start=1):
        if cur + rec.token_count > budget and buf:
            yield _section(group, buf, first_index=first, partial=True)
            buf = []
            cur = 0
            first = i
        buf.append(rec)
        cur += rec.token_count
    if buf:
        yield _section(group, buf, first_index=first, partial=True)


def _section(group: Group, files: Sequence[FileRecord], *, first_index: int = 1, partial: bool = False) -> ChunkSection:
    return ChunkSection(
        label=group.label,
        files=tuple(files),
        token_total=sum(f.token_count for f in files),
        partial=partial,
        first_index=first_index,
        group_size=len(group.files),
    )


def _chunk(sequence: int, sections: Sequence[ChunkSection]) -> Chunk:
    return Chunk(
        sequence=sequence,
        sections=tuple(sections),
        token_total=sum(s.token_total for s in sections),
    )


def pack_groups(groups: Sequence[Group], budget: int) -> list[Chunk]:
    """Greedily pack groups, in order, into chunks of at most `budget` tokens.

    Args:
        groups (Sequence[Group]): the groups in scan order
        budget (int): the token budget per chunk

    Returns:
        list[Chunk]: chunks numbered from 1
    """
    if sum(g.token_total for g in groups) <= budget:
        return [_chunk(1, [_section(g, g.files) for g in groups])]

    chunks: list[Chunk] = []
    acc: list[ChunkSection] = []
    acc_tokens = 0

    def flush() -> None:
        nonlocal acc, acc_tokens
        if acc:
            chunks.append(_chunk(len(chunks) + 1, acc))
            acc = []
            acc_tokens = 0

    for group in groups:
        total = group.token_total
        if total > budget:
            flush()
            for sub in split_files(group, budget):
                chunks.append(_chunk(len(chunks) + 1, [sub]))
            logger.debug("split oversized group", group=group.label, tokens=total, budget=budget)
            continue
        if acc_tokens + total > budget:
            flush()
        acc.append(_section(group, group.files))
        acc_tokens += total
    flush()
    return chunks


def verify_plan(plan: RunPlan, groups: Sequence[Group]) -> None:
    """Check the invariants every plan must hold before anything is written.

    Raises:
        PlanInvariantError: on any numbering, budget or accounting mismatch
    """
    for expected, chunk in enumerate(plan.chunks, start=1):
        if chunk.sequence != expected:
            raise PlanInvariantError(reason=f"chunk {chunk.sequence} found at position {expected}")
        for section in chunk.sections:
            if section.token_total != sum(f.token_count for f in section.files):
                raise PlanInvariantError(reason=f"section {section.label!r} of chunk {expected} miscounts its tokens")
        if chunk.token_total != sum(s.token_total for s in chunk.sections):
            raise PlanInvariantError(reason=f"chunk {expected} total does not match its sections")
        if chunk.token_total > plan.budget and not chunk.is_oversized(plan.budget):
            raise PlanInvariantError(
                reason=f"chunk {expected} holds {chunk.token_total} tokens, over the {plan.budget} budget",
            )

    planned = Counter(f.rel for c in plan.chunks for f in c.files)
    scanned = Counter(f.rel for g in groups for f in g.files)
    if planned != scanned:
        missing = sorted((scanned - planned).keys())
        extra = sorted((planned - scanned).keys())
        raise PlanInvariantError(reason=f"file accounting mismatch (missing={missing}, duplicated={extra})")
    if plan.total_tokens != sum(g.token_total for g in groups):
        raise PlanInvariantError(reason="plan total does not match the scanned total")


def plan(
    buckets: Sequence[DirectoryBucket],
    budget: int,
    group_by: GroupBy = GroupBy.DIRECTORY,
) -> RunPlan:
    """Plan the documents of a run.

    When the whole corpus fits the budget the plan is a single chunk holding
    every group. Otherwise groups are packed in scan order, a group is never
    split unless it alone exceeds the budget, and an exact fit stays in the
    current chunk.

    Args:
        buckets (Sequence[DirectoryBucket]): scanned buckets, in scan order
        budget (int): maximum token estimate per document
        group_by (GroupBy): how files are grouped before packing

    Raises:
        InvalidBudgetError: if `budget` is not positive
        PlanInvariantError: if the computed plan is inconsistent

    Returns:
        RunPlan: the ordered chunks of the run
    """
    if budget < 1:
        raise InvalidBudgetError(budget=budget, minimum=1)
    groups = GROUP_BUILDERS[group_by](buckets)
    run_plan = RunPlan(
        budget=budget,
        group_by=group_by,
        chunks=tuple(pack_groups(groups, budget)),
        directories=tuple(buckets),
    )
    verify_plan(run_plan, groups)
    logger.info(
        "plan ready",
        group_by=str(group_by),
        budget=budget,
        documents=len(run_plan.chunks),
        tokens=run_plan.total_tokens,
    )
    return run_plan
