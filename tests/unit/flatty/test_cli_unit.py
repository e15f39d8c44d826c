from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from flatty import __version__, cli
from flatty.config import GroupBy
from flatty.exceptions import (
    ConfigurationError,
    DocumentWriteError,
    InvalidBudgetError,
    NoEligibleFilesError,
    OutputNotWritableError,
    PartialOutputError,
    PlanInvariantError,
)
from flatty.settings import Settings

if TYPE_CHECKING:
    from pytest_mock import MockerFixture


@pytest.fixture(autouse=True)
def _no_env_defaults(mocker: MockerFixture) -> None:
    mocker.patch.object(cli, "env_defaults", return_value={})


@pytest.mark.unit
@pytest.mark.parametrize(
    ("raw", "expected"),
    [("100000", 100_000), ("50k", 50_000), ("50K", 50_000), ("2M", 2_000_000), ("  1k ", 1_000), (7, 7)],
)
def test_parse_token_budget_shorthand(raw: str | int, expected: int) -> None:
    assert cli.parse_token_budget(raw) == expected


@pytest.mark.unit
@pytest.mark.parametrize("raw", ["", "abc", "10.5k", "k100", "100x", "-5"])
def test_parse_token_budget_rejects_garbage(raw: str) -> None:
    with pytest.raises(ValueError, match="invalid token budget"):
        cli.parse_token_budget(raw)


@pytest.mark.unit
@pytest.mark.parametrize("raw", [1500.5, None, True, ["1k"]])
def test_parse_token_budget_rejects_non_text_values(raw: object) -> None:
    with pytest.raises(ValueError, match="invalid token budget"):
        cli.parse_token_budget(raw)  # type: ignore[arg-type]


@pytest.mark.unit
def test_parse_args_maps_original_options() -> None:
    settings = cli.parse_args(
        [
            "-o",
            "out",
            "-g",
            "type",
            "-i",
            "*.swift",
            "-x",
            "Pods",
            "-t",
            "50k",
            "-v",
            "*.m",
        ],
    )

    assert settings.output_dir == Path("out")
    assert settings.group_by is GroupBy.TYPE
    assert settings.include == ["*.swift", "*.m"]
    assert settings.exclude == ["Pods"]
    assert settings.tokens == 50_000
    assert settings.verbose is True
    assert settings.no_default_excludes is False


@pytest.mark.unit
def test_parse_args_layers_config_file_under_cli(tmp_path: Path) -> None:
    config = tmp_path / "flatty.yaml"
    config.write_text("tokens: 20k\ngroup_by: size\nexclude: '*.lock'\n", encoding="utf-8")

    settings = cli.parse_args(["--config", str(config), "-t", "30000", "-x", "*.min.js"])

    assert settings.tokens == 30_000
    assert settings.group_by is GroupBy.SIZE
    assert settings.exclude == ["*.lock", "*.min.js"]


@pytest.mark.unit
def test_parse_args_invalid_config_value_is_configuration_error(tmp_path: Path) -> None:
    config = tmp_path / "flatty.yaml"
    config.write_text("group_by: color\n", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        cli.parse_args(["--config", str(config)])


@pytest.mark.unit
@pytest.mark.parametrize("body", ["tokens: 1500.5\n", "tokens: null\n", "tokens: yes\n", "include: 5\n"])
def test_main_reports_badly_typed_config_values(
    tmp_path: Path,
    body: str,
    capsys: pytest.CaptureFixture[str],
) -> None:
    config = tmp_path / "flatty.yaml"
    config.write_text(body, encoding="utf-8")

    assert cli.main(["--root", str(tmp_path), "--config", str(config)]) == cli.EXIT_CONFIG
    assert "Error:" in capsys.readouterr().err


@pytest.mark.unit
def test_parse_args_tolerates_empty_pattern_lists_in_config(tmp_path: Path) -> None:
    config = tmp_path / "flatty.yaml"
    config.write_text("include:\nexclude: []\n", encoding="utf-8")

    settings = cli.parse_args(["--config", str(config), "-x", "build"])

    assert settings.include == []
    assert settings.exclude == ["build"]


@pytest.mark.unit
def test_parse_args_version_flag(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.parse_args(["--version"])

    assert exc_info.value.code == 0
    captured = capsys.readouterr()
    assert __version__ in captured.out


@pytest.mark.unit
def test_validate_settings_rejects_small_budget(tmp_path: Path) -> None:
    settings = Settings(root=tmp_path, output_dir=tmp_path / "out", tokens=999)

    with pytest.raises(InvalidBudgetError) as exc_info:
        cli.validate_settings(settings)

    assert exc_info.value.minimum == 1_000
    assert not (tmp_path / "out").exists()


@pytest.mark.unit
def test_validate_settings_rejects_missing_root(tmp_path: Path) -> None:
    settings = Settings(root=tmp_path / "missing", output_dir=tmp_path / "out")

    with pytest.raises(ConfigurationError, match="not a directory"):
        cli.validate_settings(settings)


@pytest.mark.unit
def test_validate_settings_rejects_output_that_is_a_file(tmp_path: Path) -> None:
    blocker = tmp_path / "out"
    blocker.write_text("", encoding="utf-8")
    settings = Settings(root=tmp_path, output_dir=blocker / "docs")

    with pytest.raises(OutputNotWritableError):
        cli.validate_settings(settings)


@pytest.mark.unit
def test_run_keeps_written_documents_when_a_later_write_fails(tmp_path: Path, mocker: MockerFixture) -> None:
    repo = tmp_path / "repo"
    (repo / "a").mkdir(parents=True)
    (repo / "b").mkdir()
    (repo / "a" / "one.txt").write_text("1" * 4000, encoding="utf-8")
    (repo / "b" / "two.txt").write_text("2" * 4000, encoding="utf-8")
    out_dir = tmp_path / "out"
    real_write = cli.write_chunk

    def fail_second(chunk, *args, **kwargs):  # noqa: ANN001, ANN002, ANN003, ANN202
        if chunk.sequence == 2:  # noqa: PLR2004
            raise DocumentWriteError(path=args[1], reason="disk full")
        return real_write(chunk, *args, **kwargs)

    mocker.patch.object(cli, "write_chunk", side_effect=fail_second)
    settings = Settings(root=repo, output_dir=out_dir, tokens=1_000, project_name="demo")

    with pytest.raises(PartialOutputError) as exc_info:
        cli.run(settings)

    (first,) = exc_info.value.written
    assert first.exists()
    assert first.name.endswith("-part1.txt")
    assert [p.name for p in out_dir.iterdir()] == [first.name]


@pytest.mark.unit
@pytest.mark.parametrize(
    ("error", "code"),
    [
        (InvalidBudgetError(budget=5, minimum=1_000), cli.EXIT_CONFIG),
        (NoEligibleFilesError(root=Path()), cli.EXIT_NO_FILES),
        (DocumentWriteError(path=Path("x"), reason="boom"), cli.EXIT_WRITE),
        (PlanInvariantError(reason="bug"), cli.EXIT_INTERNAL),
    ],
)
def test_main_maps_errors_to_exit_codes(
    error: Exception,
    code: int,
    mocker: MockerFixture,
    capsys: pytest.CaptureFixture[str],
) -> None:
    mocker.patch.object(cli, "setup_logging")
    mocker.patch.object(cli, "run", side_effect=error)

    assert cli.main([]) == code
    assert str(error) in capsys.readouterr().err
