"""
Model descriptors and catalog loading
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import CatalogError, InvalidModelError

logger = logging.getLogger(__name__)

DEFAULT_CATALOG = Path(__file__).parent / "data" / "models.json"

_PARAMS_RE = re.compile(r"^\s*(?:(\d+)\s*[xX]\s*)?(\d+(?:\.\d+)?)\s*([KMBT])?\s*$", re.IGNORECASE)
_DATE_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])(-(0[1-9]|[12]\d|3[01]))?$")

_PARAM_SCALE = {"K": 1e-6, "M": 1e-3, "B": 1.0, "T": 1e3}


class UseCase(Enum):
    GENERAL = "general"
    CODING = "coding"
    REASONING = "reasoning"
    CHAT = "chat"
    MULTIMODAL = "multimodal"
    EMBEDDING = "embedding"

    @property
    def label(self) -> str:
        return _USE_CASE_LABELS[self]

    @classmethod
    def parse(cls, value: str) -> "UseCase":
        """Maps catalog text such as "Coding" or "code" to a use case"""
        key = value.strip().lower()
        key = _USE_CASE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise InvalidModelError(f"Unknown use case: {value!r}")


_USE_CASE_LABELS = {
    UseCase.GENERAL: "General",
    UseCase.CODING: "Coding",
    UseCase.REASONING: "Reasoning",
    UseCase.CHAT: "Chat",
    UseCase.MULTIMODAL: "Multimodal",
    UseCase.EMBEDDING: "Embedding",
}

_USE_CASE_ALIASES = {
    "code": "coding",
    "vision": "multimodal",
    "embed": "embedding",
    "instruct": "chat",
}


@dataclass(frozen=True)
class QuantVariant:
    """A weight encoding and its size per parameter"""
    label: str
    bytes_per_parameter: float


# Highest to lowest fidelity
DEFAULT_QUANTS: Tuple[QuantVariant, ...] = (
    QuantVariant("F16", 2.0),
    QuantVariant("Q8_0", 1.0),
    QuantVariant("Q6_K", 0.75),
    QuantVariant("Q5_K_M", 0.625),
    QuantVariant("Q4_K_M", 0.5),
    QuantVariant("Q3_K_M", 0.4),
    QuantVariant("Q2_K", 0.3),
)


def parse_params_b(parameter_count: str) -> float:
    """Converts a display count ("8B", "335M", "1.5T", "8x7B") to billions"""
    match = _PARAMS_RE.match(parameter_count or "")
    if not match:
        raise InvalidModelError(f"Unparseable parameter count: {parameter_count!r}")
    experts, number, unit = match.groups()
    value = float(number) * _PARAM_SCALE[(unit or "B").upper()]
    if experts:
        value *= int(experts)
    return value


@dataclass(frozen=True)
class LlmModel:
    """Immutable catalog entry describing one model"""
    name: str
    provider: str
    parameter_count: str
    params_b: float
    context_length: int
    use_case: UseCase
    quant_variants: Tuple[QuantVariant, ...]
    release_date: Optional[str] = None
    is_moe: bool = False
    active_params_b: Optional[float] = None

    def validate(self) -> "LlmModel":
        """Raises InvalidModelError when the descriptor is malformed"""
        if not self.quant_variants:
            raise InvalidModelError("Model has no quantization variants", self.name)
        if not self.params_b > 0:
            raise InvalidModelError(f"Parameter count must be positive, got {self.params_b}", self.name)
        for variant in self.quant_variants:
            if not variant.bytes_per_parameter > 0:
                raise InvalidModelError(
                    f"Quantization {variant.label} has non-positive bytes per parameter", self.name
                )
        if self.active_params_b is not None and not 0 < self.active_params_b <= self.params_b:
            raise InvalidModelError(
                f"Active parameters must be in (0, {self.params_b}], got {self.active_params_b}",
                self.name,
            )
        if self.context_length < 0:
            raise InvalidModelError(f"Negative context length {self.context_length}", self.name)
        if self.release_date is not None and not _DATE_RE.match(self.release_date):
            raise InvalidModelError(f"Malformed release date {self.release_date!r}", self.name)
        return self

    @property
    def release_month(self) -> Optional[str]:
        """Release date truncated to YYYY-MM"""
        return self.release_date[:7] if self.release_date else None


def model_from_dict(entry: Dict[str, Any]) -> LlmModel:
    """Builds and validates a model from one catalog entry"""
    name = entry.get("name")
    if not name:
        raise InvalidModelError("Catalog entry without a name")
    try:
        parameter_count = str(entry["parameter_count"])
        quants = entry.get("quants")
        if quants is None:
            variants = DEFAULT_QUANTS
        else:
            variants = tuple(
                QuantVariant(label=q["label"], bytes_per_parameter=float(q["bytes_per_parameter"]))
                for q in quants
            )
        active = entry.get("active_parameters")
        model = LlmModel(
            name=name,
            provider=entry.get("provider", "Unknown"),
            parameter_count=parameter_count,
            params_b=float(entry["params_b"]) if "params_b" in entry else parse_params_b(parameter_count),
            context_length=int(entry.get("context_length", 0)),
            use_case=UseCase.parse(entry.get("use_case", "general")),
            quant_variants=variants,
            release_date=entry.get("release_date"),
            is_moe=bool(entry.get("moe", False)),
            active_params_b=parse_params_b(str(active)) if active is not None else None,
        )
    except InvalidModelError as e:
        if e.model_name is None:
            raise InvalidModelError(str(e), name) from e
        raise
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidModelError(f"Invalid catalog entry: {e}", name) from e
    return model.validate()


class ModelDatabase:
    """Read-only model catalog"""

    def __init__(self, models_file: Optional[Path] = None):
        self.models_file = models_file or DEFAULT_CATALOG
        self._models: List[LlmModel] = []
        self._load_models()

    def _load_models(self) -> None:
        """Load models from JSON file"""
        try:
            with open(self.models_file, 'r') as f:
                data = json.load(f)
        except FileNotFoundError as e:
            logger.error(f"Models file not found: {self.models_file}")
            raise CatalogError(f"Models file not found: {self.models_file}") from e
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in models file: {e}")
            raise CatalogError(f"Invalid JSON in {self.models_file}: {e}") from e

        entries = data.get("models") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise CatalogError(f"{self.models_file} has no \"models\" list")

        models = [model_from_dict(entry) for entry in entries]
        names = [m.name for m in models]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise CatalogError(f"Duplicate model names in catalog: {', '.join(duplicates)}")

        self._models = models
        logger.info(f"Loaded {len(self._models)} models from {self.models_file}")

    def get_all_models(self) -> List[LlmModel]:
        return list(self._models)

    def get_model(self, name: str) -> Optional[LlmModel]:
        """Get model by exact name, falling back to a case-insensitive match"""
        lowered = name.lower()
        fallback = None
        for model in self._models:
            if model.name == name:
                return model
            if fallback is None and model.name.lower() == lowered:
                fallback = model
        return fallback

    def get_models_by_use_case(self, use_case: UseCase) -> List[LlmModel]:
        return [m for m in self._models if m.use_case is use_case]

    def providers(self) -> List[str]:
        """Distinct providers in catalog order"""
        return list(dict.fromkeys(m.provider for m in self._models))

    def quant_labels(self) -> List[str]:
        """Distinct quantization labels in catalog order"""
        return list(dict.fromkeys(v.label for m in self._models for v in m.quant_variants))

    def __len__(self) -> int:
        return len(self._models)
