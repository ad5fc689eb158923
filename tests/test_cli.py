"""
Tests for the command line interface
"""

import json

import pytest
from click.testing import CliRunner

from main import cli

LEVEL_ORDER = ["Perfect", "Good", "Marginal", "Too Tight"]


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def base_args(temp_dir):
    return ['--config', str(temp_dir / "config.json")]


class TestCli:
    """Test CLI commands"""

    def test_version(self, runner):
        result = runner.invoke(cli, ['version'])
        assert result.exit_code == 0
        assert "llmfit v1.0.0" in result.output

    def test_models(self, runner, base_args):
        result = runner.invoke(cli, base_args + ['models'])
        assert result.exit_code == 0
        assert "Available Models" in result.output

    def test_models_detail(self, runner, base_args):
        result = runner.invoke(cli, base_args + ['models', 'Qwen/Qwen3-8B'])
        assert result.exit_code == 0
        assert "Q4_K_M" in result.output

    def test_models_unknown(self, runner, base_args):
        result = runner.invoke(cli, base_args + ['models', 'no/such-model'])
        assert result.exit_code == 1

    def test_models_from_file(self, runner, base_args, catalog_file):
        result = runner.invoke(
            cli, ['--models-file', str(catalog_file)] + base_args + ['models', '--use-case', 'embedding']
        )
        assert result.exit_code == 0
        assert "test/Embed" in result.output

    def test_fit_json(self, runner, base_args):
        result = runner.invoke(cli, base_args + [
            'fit', '--memory', '16', '--unified', '--no-check-installed', '--json', '--top-n', '10',
        ])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert len(data) == 10
        ranks = [LEVEL_ORDER.index(row["fit_level"]) for row in data]
        assert ranks == sorted(ranks)

    def test_fit_json_runnable_only(self, runner, base_args):
        result = runner.invoke(cli, base_args + [
            'fit', '--memory', '8', '--no-check-installed', '--json', '--fit', 'runnable', '--top-n', '100',
        ])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data
        assert all(row["fit_level"] != "Too Tight" for row in data)
        assert all(row["run_mode"] == "CPU" for row in data)

    def test_fit_sort_by_name(self, runner, base_args):
        result = runner.invoke(cli, base_args + [
            'fit', '--memory', '64', '--vram', '24', '--no-check-installed', '--json',
            '--sort', 'name', '--fit', 'perfect', '--top-n', '100',
        ])
        assert result.exit_code == 0
        names = [row["name"].lower() for row in json.loads(result.output)]
        assert names == sorted(names)

    def test_fit_table(self, runner, base_args):
        result = runner.invoke(cli, base_args + [
            'fit', '--memory', '32', '--vram', '12', '--no-check-installed', '--top-n', '3',
        ])
        assert result.exit_code == 0
        assert "Hardware" in result.output
        assert "Model Fit" in result.output

    def test_fit_export(self, runner, base_args, temp_dir):
        output = temp_dir / "fits.csv"
        result = runner.invoke(cli, base_args + [
            'fit', '--memory', '16', '--no-check-installed', '--export', 'csv', '--output', str(output),
        ])
        assert result.exit_code == 0
        assert output.exists()
        assert output.read_text().startswith("name,")

    def test_hardware_flags_require_memory(self, runner, base_args):
        result = runner.invoke(cli, base_args + ['fit', '--vram', '8', '--no-check-installed'])
        assert result.exit_code == 2
        assert "require --memory" in result.output

    def test_info(self, runner, base_args):
        result = runner.invoke(cli, base_args + [
            'info', 'mistralai/Mixtral-8x7B-Instruct-v0.1', '--memory', '32', '--vram', '16',
        ])
        assert result.exit_code == 0
        assert "Score Breakdown" in result.output

    def test_info_unknown_model(self, runner, base_args):
        result = runner.invoke(cli, base_args + ['info', 'no/such-model', '--memory', '16'])
        assert result.exit_code == 1

    def test_system_manual(self, runner, base_args):
        result = runner.invoke(cli, base_args + ['system', '--memory', '32', '--vram', '12'])
        assert result.exit_code == 0
        assert "Manual CUDA GPU" in result.output

    def test_clear_cache_without_cache(self, runner, mock_home_dir):
        result = runner.invoke(cli, ['clear-cache'])
        assert result.exit_code == 0
        assert "No cache file found" in result.output

    def test_fit_json_without_memory_is_strict(self, runner, base_args):
        def reject(token):
            raise ValueError(f"non-standard JSON constant {token}")

        result = runner.invoke(cli, base_args + [
            'fit', '--memory', '0', '--no-check-installed', '--json', '--top-n', '3',
        ])
        assert result.exit_code == 0
        data = json.loads(result.output, parse_constant=reject)
        assert len(data) == 3
        assert all(row["utilization_pct"] is None for row in data)
        assert all(row["fit_level"] == "Too Tight" for row in data)

    def test_interactive_hardware_flags_require_memory(self, runner, base_args):
        result = runner.invoke(cli, base_args + ['interactive', '--vram', '8'])
        assert result.exit_code == 2
        assert "require --memory" in result.output
