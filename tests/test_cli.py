"""
Tests for the command line interface
"""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from main import cli
from model_fit.hardware import HardwareDetectionError, HardwareDetector


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def models_file(temp_dir):
    path = temp_dir / "models.json"
    path.write_text(json.dumps([
        {
            "name": "alpha-chat-7b",
            "provider": "Alpha",
            "parameter_count": "7B",
            "min_ram_gb": 8,
            "recommended_ram_gb": 12,
            "min_vram_gb": 6,
            "context_length": 8192,
            "use_case": "Chat",
        },
        {
            "name": "alpha-coder-1b",
            "provider": "Alpha",
            "parameter_count": "1B",
            "min_ram_gb": 2,
            "recommended_ram_gb": 4,
            "min_vram_gb": 1.5,
            "context_length": 16384,
            "use_case": "Code generation",
        },
        {
            "name": "giant-405b",
            "provider": "Giant",
            "parameter_count": "405B",
            "min_ram_gb": 240,
            "recommended_ram_gb": 320,
            "min_vram_gb": 230,
            "context_length": 131072,
            "use_case": "General purpose",
        },
    ]))
    return path


@pytest.fixture
def detected(make_system, make_gpu):
    specs = make_system(ram_gb=32.0, gpus=[make_gpu(vram_gb=8.0, name="NVIDIA GeForce RTX 3070")])
    with patch.object(HardwareDetector, "detect", return_value=specs):
        yield specs


def invoke(runner, models_file, *args):
    return runner.invoke(cli, ["--models-file", str(models_file), *args])


class TestCli:
    """Test CLI commands"""

    def test_version(self, runner):
        result = runner.invoke(cli, ["version"])
        assert result.exit_code == 0
        assert "model-fit v1.0.0" in result.output

    def test_system_json(self, runner, detected):
        result = runner.invoke(cli, ["--json", "system"])
        assert result.exit_code == 0

        data = json.loads(result.output)["system"]
        assert data["total_ram_gb"] == 32.0
        assert data["gpu_name"] == "NVIDIA GeForce RTX 3070"
        assert data["gpu_vram_gb"] == 8.0
        assert data["backend"] == "CUDA"

    def test_system_table(self, runner, detected):
        result = runner.invoke(cli, ["system"])
        assert result.exit_code == 0
        assert "System Specifications" in result.output

    def test_detection_failure_exits_nonzero(self, runner):
        error = HardwareDetectionError("System reported 0 bytes of memory")
        with patch.object(HardwareDetector, "detect", side_effect=error):
            result = runner.invoke(cli, ["system"])
        assert result.exit_code == 1
        assert "Hardware detection failed" in result.output

    def test_fit_json_ranks_too_tight_last(self, runner, models_file, detected):
        result = invoke(runner, models_file, "--json", "fit")
        assert result.exit_code == 0

        models = json.loads(result.output)["models"]
        assert len(models) == 3
        assert models[-1]["name"] == "giant-405b"
        assert models[-1]["fit_level"] == "Too Tight"
        scores = [m["score"] for m in models[:-1]]
        assert scores == sorted(scores, reverse=True)

    def test_default_command_is_fit(self, runner, models_file, detected):
        result = invoke(runner, models_file, "--json")
        assert result.exit_code == 0
        assert len(json.loads(result.output)["models"]) == 3

    def test_fit_limit(self, runner, models_file, detected):
        result = invoke(runner, models_file, "--json", "fit", "-n", "1")
        assert result.exit_code == 0
        assert len(json.loads(result.output)["models"]) == 1

    def test_fit_perfect_only(self, runner, models_file, detected):
        result = invoke(runner, models_file, "--json", "fit", "--perfect")
        assert result.exit_code == 0
        models = json.loads(result.output)["models"]
        assert [m["name"] for m in models] == ["alpha-coder-1b"]
        assert all(m["fit_level"] == "Perfect" for m in models)

    def test_fit_use_case(self, runner, models_file, detected):
        result = invoke(runner, models_file, "--json", "fit", "--use-case", "code")
        assert result.exit_code == 0
        models = json.loads(result.output)["models"]
        assert [m["category"] for m in models] == ["Coding"]

    def test_fit_rejects_unknown_use_case(self, runner, models_file, detected):
        result = invoke(runner, models_file, "fit", "--use-case", "gaming")
        assert result.exit_code == 2

    def test_fit_table(self, runner, models_file, detected):
        result = invoke(runner, models_file, "fit")
        assert result.exit_code == 0
        assert "Model Fit Analysis" in result.output

    def test_recommend(self, runner, models_file, detected):
        result = invoke(runner, models_file, "--json", "recommend", "--limit", "2")
        assert result.exit_code == 0
        models = json.loads(result.output)["models"]
        assert len(models) == 2
        assert "giant-405b" not in [m["name"] for m in models]

    def test_list(self, runner, models_file):
        result = invoke(runner, models_file, "list")
        assert result.exit_code == 0
        assert "Available Models" in result.output

    def test_search(self, runner, models_file):
        result = invoke(runner, models_file, "search", "giant")
        assert result.exit_code == 0
        assert "Search Results" in result.output

    def test_list_json(self, runner, models_file):
        result = invoke(runner, models_file, "--json", "list")
        assert result.exit_code == 0
        models = json.loads(result.output)["models"]
        assert [m["name"] for m in models] == ["alpha-chat-7b", "alpha-coder-1b", "giant-405b"]
        assert models[0]["min_vram_gb"] == 6

    def test_search_json(self, runner, models_file):
        result = invoke(runner, models_file, "--json", "search", "alpha")
        assert result.exit_code == 0
        models = json.loads(result.output)["models"]
        assert [m["name"] for m in models] == ["alpha-chat-7b", "alpha-coder-1b"]

    def test_search_json_no_results(self, runner, models_file):
        result = invoke(runner, models_file, "--json", "search", "nonexistent-xyz")
        assert result.exit_code == 0
        assert json.loads(result.output) == {"models": []}

    def test_search_no_results(self, runner, models_file):
        result = invoke(runner, models_file, "search", "nonexistent-xyz")
        assert result.exit_code == 0
        assert "No models found" in result.output

    def test_info_json(self, runner, models_file, detected):
        result = invoke(runner, models_file, "--json", "info", "alpha-chat-7b")
        assert result.exit_code == 0

        models = json.loads(result.output)["models"]
        assert len(models) == 1
        assert models[0]["run_mode"] == "GPU"
        assert models[0]["memory_required_gb"] == 6.0

    def test_info_ambiguous(self, runner, models_file, detected):
        result = invoke(runner, models_file, "info", "alpha")
        assert result.exit_code == 0
        assert "Multiple models found" in result.output

    def test_info_not_found(self, runner, models_file, detected):
        result = invoke(runner, models_file, "info", "nonexistent-xyz")
        assert result.exit_code == 0
        assert "No model found" in result.output

    def test_invalid_models_file(self, runner, temp_dir):
        broken = temp_dir / "broken.json"
        broken.write_text("[not json")
        result = runner.invoke(cli, ["--models-file", str(broken), "list"])
        assert result.exit_code == 1
        assert "Error loading models" in result.output


if __name__ == "__main__":
    pytest.main([__file__])
