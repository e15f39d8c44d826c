from __future__ import annotations

from pathlib import Path

import pytest

from flatty.config import DirectoryBucket, FileRecord


def make_bucket(directory: str, tokens: dict[str, int]) -> DirectoryBucket:
    files = tuple(
        FileRecord(
            path=Path("/repo") / directory / name,
            rel=name if directory == "." else f"{directory}/{name}",
            size=count * 4,
            token_count=count,
        )
        for name, count in tokens.items()
    )
    return DirectoryBucket(path=directory, files=files, token_total=sum(tokens.values()))


@pytest.fixture
def bucket_factory():  # noqa: ANN201
    return make_bucket
