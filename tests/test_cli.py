from __future__ import annotations

from pathlib import Path

import pytest
from git import Repo
from rich.console import Console
from typer.testing import CliRunner

import gitapply.cli as cli
from gitapply.agent import Agent
from gitapply.cli import app
from gitapply.config import DEFAULT_CONFIG_FILENAME, load_config

runner = CliRunner()


@pytest.fixture(autouse=True)
def wide_console(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "console", Console(width=200))


def _write_config(directory: Path, url: str, destination: Path) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    config_path = directory / DEFAULT_CONFIG_FILENAME
    config_path.write_text(
        f"""
[settings]
clone_root = "{directory / 'clones'}"

[targets.web]
url = "{url}"

[targets.web.methods.filetransfer]
target_path = "files"
destination = "{destination}"
"""
    )
    return config_path


def test_cli_init_writes_loadable_config(tmp_path: Path) -> None:
    config_path = tmp_path / "etc" / DEFAULT_CONFIG_FILENAME

    result = runner.invoke(
        app,
        ["init", "--config", str(config_path), "--url", "https://example.com/deploy.git", "--branch", "prod"],
    )

    assert result.exit_code == 0
    assert "Created" in result.stdout
    config = load_config(config_path)
    target = config.target("example")
    assert target.url == "https://example.com/deploy.git"
    assert target.branch == "prod"
    assert target.methods["filetransfer"].target_path == "files"


def test_cli_init_refuses_to_overwrite(tmp_path: Path) -> None:
    config_path = tmp_path / DEFAULT_CONFIG_FILENAME
    config_path.write_text("# existing\n")

    refused = runner.invoke(app, ["init", "--config", str(config_path)])
    assert refused.exit_code == 1
    assert "already exists" in refused.stdout
    assert config_path.read_text() == "# existing\n"

    forced = runner.invoke(app, ["init", "--config", str(config_path), "--force"])
    assert forced.exit_code == 0
    assert "[targets.example]" in config_path.read_text()


def test_cli_missing_config_hints_init(tmp_path: Path) -> None:
    result = runner.invoke(app, ["run", "--config", str(tmp_path / "missing.toml")])

    assert result.exit_code == 1
    assert "does not exist" in result.stdout
    assert "gitapply init" in result.stdout


def test_cli_run_status_reset_flow(tmp_path: Path, upstream) -> None:
    upstream.commit({"files/app.conf": "port = 80\n", "README.md": "docs\n"})
    destination = tmp_path / "deployed"
    config_path = _write_config(tmp_path / "project", upstream.url, destination)

    run_result = runner.invoke(app, ["run", "--config", str(config_path)])
    assert run_result.exit_code == 0
    assert (destination / "app.conf").read_text() == "port = 80\n"
    assert not (destination / "README.md").exists()

    status_result = runner.invoke(app, ["status", "--config", str(config_path)])
    assert status_result.exit_code == 0
    assert "clean" in status_result.stdout

    reset_result = runner.invoke(app, ["reset", "web", "--config", str(config_path)])
    assert reset_result.exit_code == 0
    assert "Reset filetransfer on 'web'" in reset_result.stdout

    clone = Repo(tmp_path / "project" / "clones" / "web")
    assert [tag.name for tag in clone.tags] == []


def test_cli_status_reports_interrupted_apply(tmp_path: Path, upstream) -> None:
    first = upstream.commit({"files/app.conf": "one\n"})
    second = upstream.commit({"files/app.conf": "two\n"})
    config_path = _write_config(tmp_path / "project", upstream.url, tmp_path / "deployed")
    assert runner.invoke(app, ["run", "--config", str(config_path)]).exit_code == 0

    clone = Repo(tmp_path / "project" / "clones" / "web")
    clone.delete_tag("current-filetransfer")
    clone.create_tag("current-filetransfer", ref=first)
    clone.create_tag("progress-filetransfer", ref=second)

    result = runner.invoke(app, ["status", "--config", str(config_path)])

    assert result.exit_code == 0
    assert "interrupted" in result.stdout
    assert "gitapply run" in result.stdout


def test_cli_run_fails_when_clone_fails(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "project", str(tmp_path / "no-such-remote"), tmp_path / "deployed")

    result = runner.invoke(app, ["run", "--config", str(config_path)])

    assert result.exit_code == 1
    assert "Some targets failed" in result.stdout


def test_cli_unknown_target_and_uncloned_reset(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "project", "https://example.com/web.git", tmp_path / "deployed")

    unknown = runner.invoke(app, ["run", "--config", str(config_path), "--target", "api"])
    assert unknown.exit_code == 1
    assert "Unknown target 'api'" in unknown.stdout

    reset_result = runner.invoke(app, ["reset", "web", "--config", str(config_path)])
    assert reset_result.exit_code == 0
    assert "nothing to reset" in reset_result.stdout

    status_result = runner.invoke(app, ["status", "--config", str(config_path)])
    assert status_result.exit_code == 0
    assert "clean" in status_result.stdout


def test_cli_watch_interrupt_prints_latest_results(tmp_path: Path, upstream, monkeypatch: pytest.MonkeyPatch) -> None:
    upstream.commit({"files/app.conf": "port = 80\n"})
    config_path = _write_config(tmp_path / "project", upstream.url, tmp_path / "deployed")

    async def _interrupted(self, targets=None, **kwargs):
        for result in await self.run_once(targets, initial=True):
            self.last_results[(result.target, result.method)] = result
        raise KeyboardInterrupt

    monkeypatch.setattr(Agent, "watch", _interrupted)

    result = runner.invoke(app, ["watch", "--config", str(config_path)])

    assert result.exit_code == 0
    assert "Stopped." in result.stdout
    assert "applied" in result.stdout
    assert (tmp_path / "deployed" / "app.conf").read_text() == "port = 80\n"
