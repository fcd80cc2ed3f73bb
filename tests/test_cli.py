"""Tests for consensus/cli.py."""

from pathlib import Path

import pytest
from click.testing import CliRunner

from config.config_loader import AppConfig, CacheConfig, ConsensusConfig, OutputConfig
from consensus import cli
from consensus.cli import _determine_panel, _effective_config, main
from tests.conftest import ScriptedProvider


@pytest.fixture
def app_config(sample_prompts_config, tmp_path: Path) -> AppConfig:
    consensus = ConsensusConfig(
        models=["a", "b", "c"],
        max_rounds=3,
        min_rounds=2,
        prompts=sample_prompts_config,
        cache=CacheConfig(enabled=True),
        output=OutputConfig(output_dir=tmp_path / "output"),
    )
    return AppConfig(consensus=consensus, models={}, available_providers={"a", "b", "c"})


@pytest.fixture
def patched_cli(monkeypatch, app_config):
    """CLI wired to the in-memory app config and scripted providers."""
    providers = {name: ScriptedProvider(name, ["4 + 4 = 8\nFINAL ANSWER: 8"]) for name in ("a", "b", "c")}

    monkeypatch.setattr(cli, "load_config", lambda: app_config)
    monkeypatch.setattr(
        cli, "build_providers", lambda model_configs, names: {n: providers[n] for n in names if n in providers}
    )
    return providers


def test_determine_panel_default(app_config):
    assert _determine_panel(app_config, models_arg=None) == ["a", "b", "c"]


def test_determine_panel_custom_models_arg(app_config):
    assert _determine_panel(app_config, models_arg="claude, openai,") == ["claude", "openai"]


def test_effective_config_applies_flags(app_config, tmp_path: Path):
    config = _effective_config(
        app_config, ["a", "b"], rounds=1, method="unanimous", no_cache=True, history=True, output_dir=tmp_path
    )
    assert config.models == ["a", "b"]
    assert config.max_rounds == 1
    assert config.min_rounds == 1
    assert config.consensus_method == "unanimous"
    assert config.cache.enabled is False
    assert config.output.include_history is True
    assert config.output.output_dir == tmp_path


def test_effective_config_keeps_defaults(app_config):
    config = _effective_config(
        app_config, ["a"], rounds=None, method=None, no_cache=False, history=False, output_dir=None
    )
    assert config.max_rounds == 3
    assert config.min_rounds == 2
    assert config.consensus_method == "majority"
    assert config.cache.enabled is True


def test_cli_runs_debate_and_saves_transcript(patched_cli, app_config):
    result = CliRunner().invoke(main, ["What is 4+4?", "--skip-health-check", "--history"])

    assert result.exit_code == 0, result.output
    assert "8" in result.output
    saved = list(app_config.consensus.output.output_dir.glob("*.md"))
    assert len(saved) == 1
    assert "## Round 1" in saved[0].read_text(encoding="utf-8")


def test_cli_single_mode_asks_once(patched_cli):
    result = CliRunner().invoke(main, ["What is 4+4?", "--skip-health-check", "--single", "--no-cache"])

    assert result.exit_code == 0, result.output
    assert all(len(p.prompts) == 1 for p in patched_cli.values())


def test_cli_reads_question_from_file(patched_cli, tmp_path: Path):
    question = tmp_path / "question.md"
    question.write_text("What is 4+4?\n", encoding="utf-8")

    result = CliRunner().invoke(main, ["--file", str(question), "--skip-health-check"])

    assert result.exit_code == 0, result.output
    assert "What is 4+4?" in patched_cli["a"].prompts[0]


def test_cli_requires_question(patched_cli):
    result = CliRunner().invoke(main, ["--skip-health-check"])
    assert result.exit_code == 1
    assert "Provide a QUESTION" in result.output


def test_cli_rejects_unknown_method(patched_cli):
    result = CliRunner().invoke(main, ["q", "--method", "plurality"])
    assert result.exit_code == 2


def test_cli_exits_without_providers(monkeypatch, app_config):
    monkeypatch.setattr(cli, "load_config", lambda: app_config)
    monkeypatch.setattr(cli, "build_providers", lambda model_configs, names: {})

    result = CliRunner().invoke(main, ["What is 4+4?", "--skip-health-check"])

    assert result.exit_code == 1
    assert "No providers available" in result.output


def test_cli_drops_models_that_fail_health_check(patched_cli, monkeypatch):
    async def fake_checks(providers):
        return {name: (name != "c", "" if name != "c" else "403 Forbidden") for name in providers}

    monkeypatch.setattr(cli, "run_health_checks", fake_checks)

    result = CliRunner().invoke(main, ["What is 4+4?"], input="y\n")

    assert result.exit_code == 0, result.output
    assert "FAIL" in result.output
    assert patched_cli["c"].prompts == []


def test_cli_clear_cache(patched_cli):
    result = CliRunner().invoke(main, ["--clear-cache"])
    assert result.exit_code == 0, result.output
    assert "Cache cleared." in result.output
