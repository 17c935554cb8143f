"""Tests for the command-line interface."""

from pathlib import Path
from typing import Any

import pytest
import yaml
from typer.testing import CliRunner

from bumblesdm import cli

runner = CliRunner()


@pytest.fixture(autouse=True)
def _keep_test_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep structlog off the runner's short-lived output streams."""
    monkeypatch.setattr("bumblesdm.utils.logging.configure_logging", lambda *a, **k: None)


@pytest.fixture
def config_data(tmp_path: Path, layer_dir: Path, occurrence_csv: Path) -> dict[str, Any]:
    """Run configuration without a boundary, over directory layers."""
    return {
        "project": "cli-bees",
        "data_root": str(tmp_path),
        "extent": [-125.0, -115.0, 39.0, 49.0],
        "layers": {"source": "directory", "directory": str(layer_dir)},
        "occurrences": {"path": str(occurrence_csv), "species": "Bombus vosnesenskii"},
        "sampling": {"background_count": 150, "seed": 5},
        "model": {"feature_classes": ["linear", "quadratic"]},
        "output": {"output_root": str(tmp_path / "output"), "dpi": 50},
    }


def _write_config(path: Path, data: dict[str, Any]) -> Path:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestCli:
    """Tests for the typer app."""

    def test_help_lists_commands(self) -> None:
        """Help shows every command."""
        result = runner.invoke(cli.app, ["--help"])
        assert result.exit_code == 0
        for command in ("run", "fetch", "show-config", "version"):
            assert command in result.output

    def test_version(self) -> None:
        """version prints the package version."""
        from bumblesdm import __version__

        result = runner.invoke(cli.app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_show_config(self, tmp_path: Path, config_data: dict[str, Any]) -> None:
        """show-config prints the recognised options."""
        path = _write_config(tmp_path / "bees.yaml", config_data)
        result = runner.invoke(cli.app, ["show-config", "--config", str(path)])
        assert result.exit_code == 0
        assert "Bombus vosnesenskii" in result.output
        assert "background_count" in result.output

    def test_run_without_writing(self, tmp_path: Path, config_data: dict[str, Any]) -> None:
        """run fits the model and prints the summary."""
        path = _write_config(tmp_path / "bees.yaml", config_data)
        result = runner.invoke(cli.app, ["run", "--config", str(path), "--no-write"])
        assert result.exit_code == 0, result.output
        assert "Training AUC" in result.output
        assert not (tmp_path / "output").exists()

    def test_run_writes_outputs(self, tmp_path: Path, config_data: dict[str, Any]) -> None:
        """run writes plots, raster and model by default."""
        path = _write_config(tmp_path / "bees.yaml", config_data)
        result = runner.invoke(cli.app, ["run", "--config", str(path)])
        assert result.exit_code == 0, result.output
        project_dir = tmp_path / "output" / "cli-bees"
        assert (project_dir / "predictions" / "bombus_vosnesenskii_prediction.tif").exists()
        assert (project_dir / "models" / "bombus_vosnesenskii.model.joblib").exists()

    def test_invalid_config_exits_with_error(
        self, tmp_path: Path, config_data: dict[str, Any]
    ) -> None:
        """A config without a species is rejected with exit code 1."""
        del config_data["occurrences"]["species"]
        path = _write_config(tmp_path / "bees.yaml", config_data)
        result = runner.invoke(cli.app, ["run", "--config", str(path)])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    def test_stage_failure_names_stage(self, tmp_path: Path, config_data: dict[str, Any]) -> None:
        """A failing stage is reported by name with exit code 1."""
        config_data["sampling"]["background_count"] = 5000
        path = _write_config(tmp_path / "bees.yaml", config_data)
        result = runner.invoke(cli.app, ["run", "--config", str(path), "--no-write"])
        assert result.exit_code == 1
        assert "Stage 'occurrences' failed" in result.output
        assert "requested: 5000" in result.output

    def test_fetch_lists_layers(self, tmp_path: Path, config_data: dict[str, Any]) -> None:
        """fetch reads and clips the layers and lists them."""
        path = _write_config(tmp_path / "bees.yaml", config_data)
        result = runner.invoke(cli.app, ["fetch", "--config", str(path)])
        assert result.exit_code == 0, result.output
        assert "precip" in result.output
        assert "temp" in result.output

    def test_missing_config_file(self, tmp_path: Path) -> None:
        """A missing config path is a usage error."""
        result = runner.invoke(cli.app, ["run", "--config", str(tmp_path / "none.yaml")])
        assert result.exit_code != 0
