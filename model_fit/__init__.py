"""
model-fit
Detects local hardware and ranks LLM checkpoints by how well they fit it
"""

from .fit import FitLevel, ModelFit, RunMode, analyze, analyze_all, rank_models_by_fit
from .hardware import GPUBackend, GPUInfo, HardwareDetector, HardwareDetectionError, SystemSpecs
from .models import ModelDatabase, ModelRecord, UseCase

__version__ = "1.0.0"
__all__ = [
    "FitLevel",
    "ModelFit",
    "RunMode",
    "analyze",
    "analyze_all",
    "rank_models_by_fit",
    "GPUBackend",
    "GPUInfo",
    "HardwareDetector",
    "HardwareDetectionError",
    "SystemSpecs",
    "ModelDatabase",
    "ModelRecord",
    "UseCase",
]
