"""
Tunable scoring policy and user configuration
"""

import json
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".llmfit"
CONFIG_FILE = CONFIG_DIR / "config.json"


@dataclass(frozen=True)
class FitPolicy:
    """Numeric constants used by the fit engine.

    The values are empirical policy choices. They shape the verdicts but none
    of the engine's invariants depend on a particular value.
    """
    # Share of system RAM usable by a model (OS and apps keep the rest)
    usable_memory_fraction: float = 0.75
    # Runtime buffers and KV cache on top of raw weights
    overhead_factor: float = 1.15

    scaling_exponent: float = 0.7
    # tok/s of a 1B model; discrete GPUs, keyed by backend
    gpu_rates: Dict[str, float] = field(default_factory=lambda: {
        "cuda": 220.0,
        "rocm": 180.0,
        "vulkan": 150.0,
        "metal": 150.0,
    })
    unified_gpu_rates: Dict[str, float] = field(default_factory=lambda: {
        "metal": 130.0,
    })
    unified_gpu_rate: float = 100.0
    cpu_offload_rate: float = 60.0
    cpu_rate: float = 20.0
    cpu_reference_cores: int = 8
    cpu_core_factor_range: Tuple[float, float] = (0.5, 2.0)
    min_tps_rate: float = 1.0

    ideal_band: Tuple[float, float] = (40.0, 70.0)
    # fit sub-score at 0% utilization and at 100% utilization
    fit_floor: float = 30.0
    fit_at_full: float = 60.0
    # utilization at which an overflowing model's fit sub-score reaches 0
    fit_zero_pct: float = 200.0

    speed_saturation_tps: float = 100.0
    quality_reference_params_b: float = 400.0

    weight_fit: float = 0.35
    weight_speed: float = 0.25
    weight_quality: float = 0.25
    weight_context: float = 0.15

    perfect_max_pct: float = 70.0
    good_max_pct: float = 90.0
    marginal_max_pct: float = 100.0

    def validate(self) -> "FitPolicy":
        """Checks internal consistency and returns self"""
        weights = (self.weight_fit, self.weight_speed, self.weight_quality, self.weight_context)
        if any(w < 0 for w in weights) or abs(sum(weights) - 1.0) > 1e-9:
            raise ValueError(f"Score weights must be non-negative and sum to 1, got {weights}")
        if not 0.0 < self.usable_memory_fraction <= 1.0:
            raise ValueError(f"usable_memory_fraction must be in (0, 1], got {self.usable_memory_fraction}")
        if self.overhead_factor < 1.0:
            raise ValueError(f"overhead_factor must be >= 1, got {self.overhead_factor}")
        if not self.perfect_max_pct <= self.good_max_pct <= self.marginal_max_pct:
            raise ValueError("Fit level thresholds must be ordered perfect <= good <= marginal")
        low, high = self.ideal_band
        if not 0.0 < low <= high < 100.0 < self.fit_zero_pct:
            raise ValueError(f"Invalid ideal utilization band: {self.ideal_band}")
        if self.speed_saturation_tps <= 0 or self.quality_reference_params_b <= 0:
            raise ValueError("Saturation references must be positive")
        return self


DEFAULT_POLICY = FitPolicy()


def load_user_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load user configuration from file"""
    config_file = path or CONFIG_FILE
    if config_file.exists():
        try:
            with open(config_file, 'r') as f:
                data = json.load(f)
            if isinstance(data, dict):
                return data
            logger.warning(f"Ignoring non-object config in {config_file}")
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load user config: {e}")
    return {}


def save_user_config(config: Dict[str, Any], path: Optional[Path] = None) -> None:
    """Save user configuration to file"""
    config_file = path or CONFIG_FILE
    config_file.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(config_file, 'w') as f:
            json.dump(config, f, indent=2)
    except OSError as e:
        logger.warning(f"Failed to save user config: {e}")


def policy_from_config(config: Dict[str, Any]) -> FitPolicy:
    """Builds a FitPolicy from the "policy" section of a user config.

    Unknown keys are logged and skipped. Raises ValueError when the resulting
    policy is inconsistent.
    """
    overrides = config.get("policy") or {}
    if not overrides:
        return DEFAULT_POLICY

    known = {f.name: f for f in fields(FitPolicy)}
    values: Dict[str, Any] = {}
    for key, value in overrides.items():
        if key not in known:
            logger.warning(f"Unknown policy setting ignored: {key}")
            continue
        if key in ("gpu_rates", "unified_gpu_rates"):
            rates = dict(getattr(DEFAULT_POLICY, key))
            rates.update({str(k).lower(): float(v) for k, v in value.items()})
            values[key] = rates
        elif isinstance(getattr(DEFAULT_POLICY, key), tuple):
            values[key] = tuple(float(v) for v in value)
        elif key == "cpu_reference_cores":
            values[key] = int(value)
        else:
            values[key] = float(value)

    policy = replace(DEFAULT_POLICY, **values)
    logger.debug(f"Using policy overrides: {sorted(values)}")
    return policy.validate()
