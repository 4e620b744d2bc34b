"""Unit Tests for the taskweave CLI."""

import yaml
from typer.testing import CliRunner

from taskweave import __version__
from taskweave.api.cli.main import app

runner = CliRunner()


def make_config(tmp_path):
    config_dir = tmp_path / "configs"
    (config_dir / "agents").mkdir(parents=True)
    (config_dir / "dev.yaml").write_text(
        yaml.safe_dump({"persistence": {"type": "memory"}, "agents_dir": "agents"}),
        encoding="utf-8",
    )
    (config_dir / "agents" / "helper.yaml").write_text(
        yaml.safe_dump({"name": "helper", "description": "Helps out"}), encoding="utf-8"
    )
    return config_dir


class TestCli:
    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_agents_list(self, tmp_path):
        config_dir = make_config(tmp_path)

        result = runner.invoke(app, ["--config-dir", str(config_dir), "agents", "list"])

        assert result.exit_code == 0
        assert "helper" in result.stdout

    def test_agents_show_unknown(self, tmp_path):
        config_dir = make_config(tmp_path)

        result = runner.invoke(app, ["--config-dir", str(config_dir), "agents", "show", "ghost"])

        assert result.exit_code == 1
