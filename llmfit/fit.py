"""
Fit scoring engine: memory budgets, quantization choice, run mode, speed and
ranking for one machine against a model catalog
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .config import DEFAULT_POLICY, FitPolicy
from .hardware import GpuBackend, SystemSpecs
from .models import LlmModel, QuantVariant, UseCase

logger = logging.getLogger(__name__)


class RunMode(Enum):
    GPU = "gpu"
    MOE_OFFLOAD = "moe_offload"
    CPU_OFFLOAD = "cpu_offload"
    CPU_ONLY = "cpu_only"

    @property
    def label(self) -> str:
        return _RUN_MODE_LABELS[self]


_RUN_MODE_LABELS = {
    RunMode.GPU: "GPU",
    RunMode.MOE_OFFLOAD: "MoE Offload",
    RunMode.CPU_OFFLOAD: "CPU Offload",
    RunMode.CPU_ONLY: "CPU",
}


class FitLevel(Enum):
    PERFECT = "perfect"
    GOOD = "good"
    MARGINAL = "marginal"
    TOO_TIGHT = "too_tight"

    @property
    def rank(self) -> int:
        """Lower is better"""
        return _FIT_LEVEL_RANKS[self]

    @property
    def label(self) -> str:
        return _FIT_LEVEL_LABELS[self]

    @property
    def emoji(self) -> str:
        return _FIT_LEVEL_EMOJI[self]


_FIT_LEVEL_RANKS = {
    FitLevel.PERFECT: 0,
    FitLevel.GOOD: 1,
    FitLevel.MARGINAL: 2,
    FitLevel.TOO_TIGHT: 3,
}

_FIT_LEVEL_LABELS = {
    FitLevel.PERFECT: "Perfect",
    FitLevel.GOOD: "Good",
    FitLevel.MARGINAL: "Marginal",
    FitLevel.TOO_TIGHT: "Too Tight",
}

_FIT_LEVEL_EMOJI = {
    FitLevel.PERFECT: "🟢",
    FitLevel.GOOD: "🟡",
    FitLevel.MARGINAL: "🟠",
    FitLevel.TOO_TIGHT: "🔴",
}


class SortColumn(Enum):
    SCORE = "score"
    SPEED = "tps"
    PARAMS = "params"
    MEM_PCT = "mem"
    CONTEXT = "ctx"
    NAME = "name"
    DATE = "date"

    @property
    def label(self) -> str:
        return _SORT_COLUMN_LABELS[self]

    def next(self) -> "SortColumn":
        """Following column, wrapping around"""
        columns = list(SortColumn)
        return columns[(columns.index(self) + 1) % len(columns)]


_SORT_COLUMN_LABELS = {
    SortColumn.SCORE: "Score",
    SortColumn.SPEED: "tok/s",
    SortColumn.PARAMS: "Params",
    SortColumn.MEM_PCT: "Mem %",
    SortColumn.CONTEXT: "Ctx",
    SortColumn.NAME: "Name",
    SortColumn.DATE: "Date",
}


@dataclass(frozen=True)
class MemoryPool:
    """A memory budget and the run mode using it implies"""
    size_gb: float
    run_mode: RunMode
    # GPU-local share of size_gb
    gpu_gb: float = 0.0


@dataclass(frozen=True)
class Placement:
    """Chosen quantization and the pool it was measured against"""
    variant: QuantVariant
    pool: MemoryPool
    required_gb: float
    fits: bool


@dataclass
class ScoreComponents:
    fit: float
    speed: float
    quality: float
    context: float


@dataclass
class ModelFit:
    """Result of analysing one model against one machine.

    Scoring fields are never updated in place; re-analysis builds a new
    collection. Only ``installed`` is set afterwards by the caller.
    """
    model: LlmModel
    memory_required_gb: float
    memory_available_gb: float
    utilization_pct: float
    best_quant: str
    run_mode: RunMode
    estimated_tps: float
    fit_level: FitLevel
    score: float
    score_components: ScoreComponents
    installed: bool = False
    notes: List[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.model.name

    @property
    def use_case(self) -> UseCase:
        return self.model.use_case

    @property
    def fit_emoji(self) -> str:
        return self.fit_level.emoji

    @property
    def run_mode_text(self) -> str:
        return self.run_mode.label

    def to_dict(self) -> Dict:
        """Flat, serialisable view of the fit"""
        return {
            "name": self.model.name,
            "provider": self.model.provider,
            "params": self.model.parameter_count,
            "params_b": self.model.params_b,
            "score": round(self.score, 2),
            "fit_level": self.fit_level.label,
            "estimated_tps": round(self.estimated_tps, 2),
            "best_quant": self.best_quant,
            "run_mode": self.run_mode.label,
            "use_case": self.model.use_case.label,
            "memory_required_gb": round(self.memory_required_gb, 2),
            "memory_available_gb": round(self.memory_available_gb, 2),
            # None when no memory is available; JSON has no infinity
            "utilization_pct": round(self.utilization_pct, 1) if math.isfinite(self.utilization_pct) else None,
            "context_length": self.model.context_length,
            "release_date": self.model.release_date,
            "installed": self.installed,
            "score_components": {
                "fit": round(self.score_components.fit, 1),
                "speed": round(self.score_components.speed, 1),
                "quality": round(self.score_components.quality, 1),
                "context": round(self.score_components.context, 1),
            },
            "notes": list(self.notes),
        }


# -- Memory budget ---------------------------------------------------------

def resolve_memory_pools(specs: SystemSpecs, policy: FitPolicy = DEFAULT_POLICY) -> List[MemoryPool]:
    """Candidate memory pools in preference order.

    A discrete GPU yields its own memory first and then GPU + system RAM for a
    split model. Unified and CPU-only machines yield a single pool that keeps
    headroom for the OS.
    """
    usable_ram = max(0.0, specs.total_ram_gb * policy.usable_memory_fraction)

    if specs.has_gpu and not specs.unified_memory and specs.gpu_vram_gb is not None:
        vram = max(0.0, specs.gpu_vram_gb)
        return [
            MemoryPool(size_gb=vram, run_mode=RunMode.GPU, gpu_gb=vram),
            MemoryPool(
                size_gb=vram + max(0.0, specs.total_ram_gb),
                run_mode=RunMode.CPU_OFFLOAD,
                gpu_gb=vram,
            ),
        ]

    if specs.unified_memory and specs.has_gpu:
        return [MemoryPool(size_gb=usable_ram, run_mode=RunMode.GPU, gpu_gb=usable_ram)]

    return [MemoryPool(size_gb=usable_ram, run_mode=RunMode.CPU_ONLY)]


# -- Quantization ----------------------------------------------------------

def required_gb(params_b: float, variant: QuantVariant, policy: FitPolicy = DEFAULT_POLICY) -> float:
    """Memory needed to hold params_b billion parameters at this quantization"""
    return params_b * variant.bytes_per_parameter * policy.overhead_factor


def select_quantization(
    model: LlmModel,
    pools: List[MemoryPool],
    policy: FitPolicy = DEFAULT_POLICY,
) -> Placement:
    """Best-fidelity variant that fits, trying pools in preference order.

    When nothing fits anywhere the smallest variant is measured against the
    largest pool and the placement is flagged as not fitting.
    """
    for pool in pools:
        for variant in model.quant_variants:
            needed = required_gb(model.params_b, variant, policy)
            if needed <= pool.size_gb:
                return Placement(variant=variant, pool=pool, required_gb=needed, fits=True)

    # min() keeps the first of equal candidates: higher fidelity, earlier pool
    smallest = min(model.quant_variants, key=lambda v: required_gb(model.params_b, v, policy))
    largest = max(pools, key=lambda p: p.size_gb)
    return Placement(
        variant=smallest,
        pool=largest,
        required_gb=required_gb(model.params_b, smallest, policy),
        fits=False,
    )


# -- Run mode --------------------------------------------------------------

def classify_run_mode(
    model: LlmModel,
    placement: Placement,
    policy: FitPolicy = DEFAULT_POLICY,
) -> RunMode:
    """Execution placement for the selected quantization"""
    if not placement.fits:
        return RunMode.CPU_ONLY

    tag = placement.pool.run_mode
    if tag is RunMode.GPU:
        return RunMode.GPU
    if tag is RunMode.CPU_OFFLOAD:
        # Only active experts need GPU memory per token; checked before a plain split
        if model.is_moe and model.active_params_b is not None:
            active_gb = required_gb(model.active_params_b, placement.variant, policy)
            if active_gb <= placement.pool.gpu_gb:
                return RunMode.MOE_OFFLOAD
        return RunMode.CPU_OFFLOAD
    if tag is RunMode.CPU_ONLY:
        return RunMode.CPU_ONLY
    raise ValueError(f"Memory pools are never tagged {tag}")


# -- Speed -----------------------------------------------------------------

def _gpu_rate(specs: SystemSpecs, policy: FitPolicy) -> Optional[float]:
    if specs.unified_memory:
        return policy.unified_gpu_rates.get(specs.gpu_backend.value, policy.unified_gpu_rate)
    return policy.gpu_rates.get(specs.gpu_backend.value)


def _cpu_rate(specs: SystemSpecs, policy: FitPolicy) -> float:
    low, high = policy.cpu_core_factor_range
    factor = min(high, max(low, specs.cpu_cores / policy.cpu_reference_cores))
    return policy.cpu_rate * factor


def base_rate(run_mode: RunMode, specs: SystemSpecs, policy: FitPolicy = DEFAULT_POLICY) -> Optional[float]:
    """Tokens per second of a 1B-parameter model, or None when unknown"""
    if run_mode is RunMode.GPU or run_mode is RunMode.MOE_OFFLOAD:
        return _gpu_rate(specs, policy)
    if run_mode is RunMode.CPU_OFFLOAD:
        return policy.cpu_offload_rate
    if run_mode is RunMode.CPU_ONLY:
        return _cpu_rate(specs, policy)
    raise ValueError(f"Unhandled run mode {run_mode}")


def estimate_speed(
    model: LlmModel,
    run_mode: RunMode,
    specs: SystemSpecs,
    policy: FitPolicy = DEFAULT_POLICY,
) -> Tuple[float, Optional[str]]:
    """Heuristic generation speed in tokens per second, plus an optional note"""
    if run_mode is RunMode.MOE_OFFLOAD and model.active_params_b is not None:
        params = model.active_params_b
    else:
        params = model.params_b

    rate = base_rate(run_mode, specs, policy)
    if rate is None or params <= 0:
        logger.debug(f"No speed data for {model.name} ({run_mode.label}, {specs.gpu_backend.label})")
        return policy.min_tps_rate, (
            f"No speed data for {specs.gpu_backend.label} in {run_mode.label} mode; "
            f"assuming {policy.min_tps_rate:g} tok/s"
        )

    return max(0.0, rate / params ** policy.scaling_exponent), None


# -- Scoring ---------------------------------------------------------------

def utilization(required: float, available: float) -> float:
    """Percentage of available memory the model needs"""
    if available > 0:
        return required / available * 100
    return 0.0 if required <= 0 else math.inf


def fit_level_for(utilization_pct: float, policy: FitPolicy = DEFAULT_POLICY) -> FitLevel:
    if utilization_pct <= policy.perfect_max_pct:
        return FitLevel.PERFECT
    if utilization_pct <= policy.good_max_pct:
        return FitLevel.GOOD
    if utilization_pct <= policy.marginal_max_pct:
        return FitLevel.MARGINAL
    return FitLevel.TOO_TIGHT


def fit_score(utilization_pct: float, policy: FitPolicy = DEFAULT_POLICY) -> float:
    """100 inside the ideal band, decaying linearly on either side"""
    low, high = policy.ideal_band
    u = utilization_pct
    if u <= 0:
        return policy.fit_floor
    if u < low:
        return policy.fit_floor + (100.0 - policy.fit_floor) * u / low
    if u <= high:
        return 100.0
    if u <= 100.0:
        return 100.0 - (100.0 - policy.fit_at_full) * (u - high) / (100.0 - high)
    if math.isinf(u):
        return 0.0
    overflow = (u - 100.0) / (policy.fit_zero_pct - 100.0)
    return max(0.0, policy.fit_at_full * (1.0 - overflow))


def speed_score(tps: float, policy: FitPolicy = DEFAULT_POLICY) -> float:
    if tps <= 0:
        return 0.0
    return min(100.0, 100.0 * math.log1p(tps) / math.log1p(policy.speed_saturation_tps))


def quality_score(params_b: float, policy: FitPolicy = DEFAULT_POLICY) -> float:
    if params_b <= 0:
        return 0.0
    return min(100.0, 100.0 * math.log1p(params_b) / math.log1p(policy.quality_reference_params_b))


def context_score(context_length: int, reference: int) -> float:
    if reference <= 0:
        return 0.0
    return min(100.0, 100.0 * context_length / reference)


def compose_score(components: ScoreComponents, policy: FitPolicy = DEFAULT_POLICY) -> float:
    return (
        policy.weight_fit * components.fit
        + policy.weight_speed * components.speed
        + policy.weight_quality * components.quality
        + policy.weight_context * components.context
    )


def _run_mode_note(model: LlmModel, run_mode: RunMode, specs: SystemSpecs) -> Optional[str]:
    if run_mode is RunMode.GPU:
        if specs.unified_memory:
            return "Runs on GPU using unified memory"
        return None
    if run_mode is RunMode.MOE_OFFLOAD:
        return (
            f"Mixture-of-experts: active experts ({model.active_params_b:g}B) in GPU memory, "
            f"remaining weights in system RAM"
        )
    if run_mode is RunMode.CPU_OFFLOAD:
        return "Model split across GPU and system RAM; expect reduced speed"
    if run_mode is RunMode.CPU_ONLY:
        if specs.has_gpu and (specs.unified_memory or specs.gpu_vram_gb is not None):
            return "Does not fit GPU memory; CPU inference only"
        return "No GPU acceleration; CPU inference only"
    raise ValueError(f"Unhandled run mode {run_mode}")


def analyze(
    model: LlmModel,
    specs: SystemSpecs,
    context_limit: Optional[int] = None,
    policy: FitPolicy = DEFAULT_POLICY,
) -> ModelFit:
    """Scores one model against one machine.

    Never fails for well-formed input; a model that cannot run is returned
    with a TooTight verdict. Raises InvalidModelError, InvalidHardwareError or
    ValueError for malformed descriptors or a non-positive context limit.
    """
    model.validate()
    specs.validate()
    if context_limit is not None and context_limit <= 0:
        raise ValueError(f"context_limit must be positive, got {context_limit}")

    notes: List[str] = []
    if specs.has_gpu and not specs.unified_memory and specs.gpu_vram_gb is None:
        notes.append(f"{specs.gpu_name or 'GPU'} memory size unknown; treating as CPU-only")
    if model.is_moe and model.active_params_b is None:
        notes.append("Mixture-of-experts model without an active parameter count; treated as dense")

    pools = resolve_memory_pools(specs, policy)
    placement = select_quantization(model, pools, policy)
    if not placement.fits:
        notes.append(
            f"No quantization fits in {placement.pool.size_gb:.1f} GB; "
            f"using lowest available ({placement.variant.label})"
        )

    run_mode = classify_run_mode(model, placement, policy)
    mode_note = _run_mode_note(model, run_mode, specs)
    if mode_note:
        notes.append(mode_note)

    tps, speed_note = estimate_speed(model, run_mode, specs, policy)
    if speed_note:
        notes.append(speed_note)

    available = placement.pool.size_gb
    utilization_pct = utilization(placement.required_gb, available)
    reference = context_limit if context_limit is not None else model.context_length
    components = ScoreComponents(
        fit=fit_score(utilization_pct, policy),
        speed=speed_score(tps, policy),
        quality=quality_score(model.params_b, policy),
        context=context_score(model.context_length, reference),
    )
    level = fit_level_for(utilization_pct, policy)

    logger.debug(
        f"{model.name}: {placement.variant.label} {run_mode.label} "
        f"{placement.required_gb:.1f}/{available:.1f} GB -> {level.label}"
    )

    return ModelFit(
        model=model,
        memory_required_gb=placement.required_gb,
        memory_available_gb=available,
        utilization_pct=utilization_pct,
        best_quant=placement.variant.label,
        run_mode=run_mode,
        estimated_tps=tps,
        fit_level=level,
        score=compose_score(components, policy),
        score_components=components,
        notes=notes,
    )


def analyze_all(
    models: Iterable[LlmModel],
    specs: SystemSpecs,
    context_limit: Optional[int] = None,
    policy: FitPolicy = DEFAULT_POLICY,
) -> List[ModelFit]:
    """One fresh ModelFit per model, in catalog order"""
    return [analyze(model, specs, context_limit, policy) for model in models]


# -- Ranking ---------------------------------------------------------------

_SORT_KEYS: Dict[SortColumn, Tuple[Callable[[ModelFit], object], bool]] = {
    SortColumn.SCORE: (lambda f: f.score, True),
    SortColumn.SPEED: (lambda f: f.estimated_tps, True),
    SortColumn.PARAMS: (lambda f: f.model.params_b, True),
    SortColumn.MEM_PCT: (lambda f: f.utilization_pct, False),
    SortColumn.CONTEXT: (lambda f: f.model.context_length, True),
    SortColumn.NAME: (lambda f: f.model.name.lower(), False),
    # Undated models last
    SortColumn.DATE: (lambda f: (f.model.release_date is not None, f.model.release_date or ""), True),
}


def rank(
    fits: Iterable[ModelFit],
    installed_first: bool = False,
    sort_column: SortColumn = SortColumn.SCORE,
) -> List[ModelFit]:
    """Orders fits by fit level, then sort column.

    Installed models, when hoisted, only move ahead within their fit level.
    The sort is stable and always starts from the given order.
    """
    key, reverse = _SORT_KEYS[sort_column]
    ranked = sorted(fits, key=key, reverse=reverse)
    if installed_first:
        ranked.sort(key=lambda f: not f.installed)
    ranked.sort(key=lambda f: f.fit_level.rank)
    return ranked
