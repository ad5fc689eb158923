"""
llmfit
Scores how well language models fit local hardware and ranks them
"""

from .config import DEFAULT_POLICY, FitPolicy
from .exceptions import CatalogError, FitError, InvalidHardwareError, InvalidModelError
from .fit import FitLevel, ModelFit, RunMode, ScoreComponents, SortColumn, analyze, analyze_all, rank
from .hardware import GpuBackend, HardwareDetector, SystemSpecs
from .models import LlmModel, ModelDatabase, QuantVariant, UseCase

__version__ = "1.0.0"
__all__ = [
    "DEFAULT_POLICY",
    "FitPolicy",
    "CatalogError",
    "FitError",
    "InvalidHardwareError",
    "InvalidModelError",
    "FitLevel",
    "ModelFit",
    "RunMode",
    "ScoreComponents",
    "SortColumn",
    "analyze",
    "analyze_all",
    "rank",
    "GpuBackend",
    "HardwareDetector",
    "SystemSpecs",
    "LlmModel",
    "ModelDatabase",
    "QuantVariant",
    "UseCase",
]
