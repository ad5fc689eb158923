"""
Pytest configuration and fixtures
"""

import json
import tempfile
from pathlib import Path

import pytest

from llmfit.hardware import GpuBackend, SystemSpecs
from llmfit.models import LlmModel, QuantVariant, UseCase

FP16 = QuantVariant("FP16", 2.0)
Q8 = QuantVariant("Q8_0", 1.0)
Q4 = QuantVariant("Q4_K_M", 0.5)
Q2 = QuantVariant("Q2_K", 0.25)


def make_model(name="test/Model-7B", params_b=7.0, variants=(FP16, Q4), **kwargs):
    """Builds a model descriptor with test defaults"""
    values = dict(
        name=name,
        provider="Test",
        parameter_count=f"{params_b:g}B",
        params_b=params_b,
        context_length=8192,
        use_case=UseCase.GENERAL,
        quant_variants=tuple(variants),
        release_date="2024-06",
    )
    values.update(kwargs)
    return LlmModel(**values)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def mock_home_dir(temp_dir, monkeypatch):
    """Mock home directory for testing"""
    monkeypatch.setattr(Path, 'home', lambda: temp_dir)
    return temp_dir


@pytest.fixture
def unified_16():
    """16 GB Apple Silicon style machine"""
    return SystemSpecs(
        cpu_name="Apple M2",
        cpu_cores=8,
        total_ram_gb=16.0,
        gpu_backend=GpuBackend.METAL,
        gpu_name="Apple M2 GPU",
        gpu_vram_gb=16.0,
        unified_memory=True,
    )


@pytest.fixture
def cpu_8():
    """8 GB machine without a GPU"""
    return SystemSpecs(cpu_name="Intel CPU", cpu_cores=4, total_ram_gb=8.0)


@pytest.fixture
def discrete_16():
    """16 GB NVIDIA card with 32 GB system RAM"""
    return SystemSpecs(
        cpu_name="AMD Ryzen",
        cpu_cores=16,
        total_ram_gb=32.0,
        gpu_backend=GpuBackend.CUDA,
        gpu_name="NVIDIA GeForce RTX 4080",
        gpu_vram_gb=16.0,
    )


@pytest.fixture
def sample_catalog():
    """Sample catalog data for testing"""
    return {
        "models": [
            {
                "name": "meta-llama/Llama-3.1-8B-Instruct",
                "provider": "Meta",
                "parameter_count": "8B",
                "context_length": 131072,
                "use_case": "general",
                "release_date": "2024-07-23",
            },
            {
                "name": "mistralai/Mixtral-8x7B-Instruct-v0.1",
                "provider": "Mistral AI",
                "parameter_count": "46.7B",
                "context_length": 32768,
                "use_case": "general",
                "release_date": "2023-12-11",
                "moe": True,
                "active_parameters": "12.9B",
            },
            {
                "name": "test/Embed",
                "provider": "Test",
                "parameter_count": "335M",
                "context_length": 512,
                "use_case": "embedding",
                "quants": [
                    {"label": "F16", "bytes_per_parameter": 2.0},
                    {"label": "Q8_0", "bytes_per_parameter": 1.0},
                ],
            },
        ]
    }


@pytest.fixture
def catalog_file(temp_dir, sample_catalog):
    """Sample catalog written to disk"""
    path = temp_dir / "models.json"
    path.write_text(json.dumps(sample_catalog))
    return path
