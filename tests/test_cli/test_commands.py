import pytest
from typer.testing import CliRunner

import vault_agent.main as main_module
from vault_agent import __version__

runner = CliRunner()


@pytest.fixture(autouse=True)
def logging_levels(monkeypatch):
    # CliRunner swaps sys.stderr for a stream it closes afterwards; a configured
    # structlog factory would keep writing to it from later tests.
    levels: list[str | None] = []
    monkeypatch.setattr(main_module, "configure_logging", lambda level=None: levels.append(level))
    return levels


def test_version_command():
    result = runner.invoke(main_module.app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_serve_applies_overrides_and_starts_server(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    started = []
    monkeypatch.setattr("vault_agent.server.run_server", lambda cfg: started.append(cfg))

    result = runner.invoke(main_module.app, ["serve", "--mock", "--port", "4100"])

    assert result.exit_code == 0
    assert len(started) == 1
    assert started[0].server.port == 4100
    assert started[0].model.provider == "mock"


def test_serve_reports_bad_config(tmp_path):
    bad = tmp_path / "config.yaml"
    bad.write_text("server: [not, a, mapping]\n", encoding="utf-8")

    result = runner.invoke(main_module.app, ["serve", "--config", str(bad)])

    assert result.exit_code == 1


def test_serve_verbose_configures_debug_logging(monkeypatch, tmp_path, logging_levels):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("vault_agent.server.run_server", lambda cfg: None)

    result = runner.invoke(main_module.app, ["serve", "--mock", "-v"])

    assert result.exit_code == 0
    assert logging_levels == ["DEBUG"]
