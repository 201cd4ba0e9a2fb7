"""Tests for CLI commands."""

import json
from pathlib import Path

from click.testing import CliRunner

from agentpack.cli.main import cli
from agentpack.codec import extract_package
from agentpack.config import get_settings


def _init(runner: CliRunner, tmp_path: Path) -> None:
    result = runner.invoke(cli, ["init", "--dir", str(tmp_path)])
    assert result.exit_code == 0, result.output


def _generate(runner: CliRunner, tmp_path: Path, *extra: str) -> Path:
    output = tmp_path / "agent.html"
    result = runner.invoke(
        cli,
        [
            "generate",
            "--manifest",
            str(tmp_path / "manifest.json"),
            "--code",
            str(tmp_path / "agent.py"),
            "--output",
            str(output),
            *extra,
        ],
    )
    assert result.exit_code == 0, result.output
    return output


def test_init_writes_templates_and_refuses_overwrite(tmp_path: Path) -> None:
    runner = CliRunner()
    _init(runner, tmp_path)
    manifest = json.loads((tmp_path / "manifest.json").read_text())
    assert manifest["id"] == "my-agent"
    assert "class Agent" in (tmp_path / "agent.py").read_text()

    result = runner.invoke(cli, ["init", "--dir", str(tmp_path)])
    assert result.exit_code != 0
    assert "already exists" in result.output


def test_generate_then_validate(tmp_path: Path) -> None:
    runner = CliRunner()
    _init(runner, tmp_path)
    output = _generate(runner, tmp_path, "--ui", "minimal")

    assert extract_package(output.read_text()).ui == "minimal"
    result = runner.invoke(cli, ["validate", str(output), "--verbose"])
    assert result.exit_code == 0, result.output
    assert "validation passed" in result.output
    assert "id: my-agent" in result.output
    assert "network: api.openai.com" in result.output
    assert "manifest hash: sha256-" in result.output


def test_generate_rejects_invalid_manifest(tmp_path: Path) -> None:
    runner = CliRunner()
    _init(runner, tmp_path)
    (tmp_path / "manifest.json").write_text(json.dumps({"id": "Bad Id"}))
    result = runner.invoke(
        cli,
        [
            "generate",
            "--manifest",
            str(tmp_path / "manifest.json"),
            "--code",
            str(tmp_path / "agent.py"),
        ],
    )
    assert result.exit_code != 0
    assert "Invalid id format" in result.output


def test_validate_detects_tampering(tmp_path: Path) -> None:
    runner = CliRunner()
    _init(runner, tmp_path)
    output = _generate(runner, tmp_path)
    output.write_text(output.read_text().replace('"echo": input', '"echo": "pwned"'))

    result = runner.invoke(cli, ["validate", str(output)])
    assert result.exit_code != 0
    assert "integrity check failed" in result.output


def test_validate_reports_missing_hashes(tmp_path: Path) -> None:
    runner = CliRunner()
    _init(runner, tmp_path)
    output = _generate(runner, tmp_path)
    output.write_text(output.read_text().replace("agent-hash-manifest", "agent-hash-gone"))

    result = runner.invoke(cli, ["validate", str(output)])
    assert result.exit_code != 0
    assert "missing integrity hashes" in result.output


def test_modify_updates_memory_and_stays_valid(tmp_path: Path) -> None:
    runner = CliRunner()
    _init(runner, tmp_path)
    output = _generate(runner, tmp_path)
    memory_path = tmp_path / "memory.json"
    memory_path.write_text(json.dumps({"turns": 3}))

    result = runner.invoke(cli, ["modify", str(output), "--memory", str(memory_path)])
    assert result.exit_code == 0, result.output
    assert extract_package(output.read_text()).memory == {"turns": 3}
    assert runner.invoke(cli, ["validate", str(output)]).exit_code == 0


def test_publish_validates_only(tmp_path: Path) -> None:
    runner = CliRunner()
    _init(runner, tmp_path)
    output = _generate(runner, tmp_path)

    result = runner.invoke(cli, ["publish", str(output), "--registry", "https://registry.test"])
    assert result.exit_code == 0, result.output
    assert "validated my-agent 1.0.0" in result.output
    assert "https://registry.test" in result.output


def test_run_executes_agent_in_sandbox(tmp_path: Path) -> None:
    runner = CliRunner()
    _init(runner, tmp_path)
    output = _generate(runner, tmp_path)

    result = runner.invoke(cli, ["run", str(output), "--input", "hello", "--input", ""])
    assert result.exit_code == 0, result.output
    assert '"echo": "hello"' in result.output
    assert "My AI Agent is ready" in result.output


def test_invalid_settings_abort(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("AGENTPACK_MCP_TIMEOUT_SECONDS", "-1")
    get_settings.cache_clear()
    result = CliRunner().invoke(cli, ["init", "--dir", str(tmp_path)])
    assert result.exit_code != 0
    assert "AGENTPACK_MCP_TIMEOUT_SECONDS" in result.output


def test_quick_builds_valid_package(tmp_path: Path) -> None:
    runner = CliRunner()
    output = tmp_path / "quick.html"
    result = runner.invoke(cli, ["quick", "--name", "Trip Planner", "--output", str(output)])
    assert result.exit_code == 0, result.output

    package = extract_package(output.read_text())
    assert package.manifest["id"] == "trip-planner"
    assert package.manifest["name"] == "Trip Planner"
    assert runner.invoke(cli, ["val", str(output)]).exit_code == 0


def test_quick_rejects_name_without_valid_id(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        cli, ["quick", "--name", "Bot!", "--output", str(tmp_path / "x.html")]
    )
    assert result.exit_code != 0
    assert "Invalid id format" in result.output


def test_short_command_aliases(tmp_path: Path) -> None:
    runner = CliRunner()
    _init(runner, tmp_path)
    output = tmp_path / "agent.html"
    result = runner.invoke(
        cli,
        [
            "gen",
            "--manifest",
            str(tmp_path / "manifest.json"),
            "--code",
            str(tmp_path / "agent.py"),
            "--output",
            str(output),
        ],
    )
    assert result.exit_code == 0, result.output
    assert "validation passed" in runner.invoke(cli, ["val", str(output)]).output

    memory_path = tmp_path / "memory.json"
    memory_path.write_text("[1]")
    assert runner.invoke(cli, ["mod", str(output), "--memory", str(memory_path)]).exit_code == 0
    assert "validated my-agent" in runner.invoke(cli, ["pub", str(output)]).output
