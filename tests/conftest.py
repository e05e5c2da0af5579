"""
Pytest configuration and fixtures
"""

import pytest
import tempfile
from pathlib import Path

from model_fit.hardware import GPUBackend, GPUInfo, SystemSpecs, is_running_in_wsl
from model_fit.models import ModelRecord


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture(autouse=True)
def isolated_cache(temp_dir, monkeypatch):
    """Point the model overlay at an empty temp location"""
    cache_file = temp_dir / "config" / "models.json"
    monkeypatch.setenv("MODEL_FIT_CACHE", str(cache_file))
    return cache_file


@pytest.fixture(autouse=True)
def reset_wsl_flag():
    """The WSL flag is memoized per process"""
    is_running_in_wsl.cache_clear()
    yield
    is_running_in_wsl.cache_clear()


def _make_system(ram_gb=32.0, available_gb=None, cores=8, gpus=(), cpu_name="Test CPU", arch="x86_64"):
    return SystemSpecs(
        os="Linux",
        arch=arch,
        total_ram_gb=ram_gb,
        available_ram_gb=ram_gb * 0.8 if available_gb is None else available_gb,
        cpu_cores=cores,
        cpu_name=cpu_name,
        gpus=tuple(gpus),
    )


def _make_gpu(vram_gb=8.0, unified=False, backend=GPUBackend.CUDA, name="Test GPU"):
    return GPUInfo(name=name, vram_gb=vram_gb, backend=backend, unified_memory=unified)


@pytest.fixture
def make_system():
    """Factory for hardware snapshots"""
    return _make_system


@pytest.fixture
def make_gpu():
    """Factory for GPU descriptors"""
    return _make_gpu


@pytest.fixture
def model_7b():
    return ModelRecord(
        name="test-7b",
        provider="Test",
        parameter_count="7B",
        min_ram_gb=8.0,
        recommended_ram_gb=12.0,
        min_vram_gb=6.0,
        quantization="Q4_K_M",
        context_length=4096,
        use_case="general",
    )


@pytest.fixture
def moe_model():
    return ModelRecord(
        name="test-moe-8x7b",
        provider="Test",
        parameter_count="46.7B",
        parameters_raw=46_700_000_000,
        min_ram_gb=28.0,
        recommended_ram_gb=40.0,
        min_vram_gb=26.0,
        quantization="Q4_K_M",
        context_length=32768,
        use_case="general",
        is_moe=True,
        num_experts=8,
        active_experts=2,
        active_parameters=12_900_000_000,
    )
