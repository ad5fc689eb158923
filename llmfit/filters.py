"""
Presentation-side filters over ranked fits.

The engine never filters; front ends build a FitQuery from user input and
apply it to an already ranked list.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Iterable, List, Optional, Set

from .fit import FitLevel, ModelFit, RunMode
from .models import UseCase

logger = logging.getLogger(__name__)


class FitFilter(Enum):
    ALL = "all"
    RUNNABLE = "runnable"
    PERFECT = "perfect"
    GOOD = "good"
    MARGINAL = "marginal"
    TOO_TIGHT = "too_tight"

    def matches(self, level: FitLevel) -> bool:
        if self is FitFilter.ALL:
            return True
        if self is FitFilter.RUNNABLE:
            return level is not FitLevel.TOO_TIGHT
        return level is _FIT_FILTER_LEVELS[self]

    def next(self) -> "FitFilter":
        members = list(FitFilter)
        return members[(members.index(self) + 1) % len(members)]


_FIT_FILTER_LEVELS = {
    FitFilter.PERFECT: FitLevel.PERFECT,
    FitFilter.GOOD: FitLevel.GOOD,
    FitFilter.MARGINAL: FitLevel.MARGINAL,
    FitFilter.TOO_TIGHT: FitLevel.TOO_TIGHT,
}


@dataclass(frozen=True)
class NumericFilter:
    """Inclusive threshold; None matches everything"""
    threshold: Optional[float] = None
    at_most: bool = False

    def matches(self, value: float) -> bool:
        if self.threshold is None:
            return True
        if self.at_most:
            return value <= self.threshold
        return value >= self.threshold


class DateFilter(Enum):
    ANY = 0
    LAST_2_YEARS = 24
    LAST_YEAR = 12
    LAST_6_MONTHS = 6

    def cutoff(self, today: date) -> Optional[str]:
        """Earliest release month (YYYY-MM) that passes"""
        if self is DateFilter.ANY:
            return None
        total = today.year * 12 + (today.month - 1) - self.value
        return f"{total // 12:04d}-{total % 12 + 1:02d}"

    def matches(self, release_month: Optional[str], today: date) -> bool:
        cutoff = self.cutoff(today)
        if cutoff is None:
            return True
        if release_month is None:
            return False
        return release_month >= cutoff


@dataclass
class FitQuery:
    """Conjunction of every active filter"""
    search: str = ""
    fit: FitFilter = FitFilter.ALL
    min_score: NumericFilter = field(default_factory=NumericFilter)
    min_tps: NumericFilter = field(default_factory=NumericFilter)
    min_params_b: NumericFilter = field(default_factory=NumericFilter)
    max_mem_pct: NumericFilter = field(default_factory=lambda: NumericFilter(at_most=True))
    # thousands of tokens
    min_context_k: NumericFilter = field(default_factory=NumericFilter)
    released: DateFilter = DateFilter.ANY
    run_mode: Optional[RunMode] = None
    use_case: Optional[UseCase] = None
    quant: Optional[str] = None
    providers: Optional[Set[str]] = None
    installed_only: bool = False
    today: Optional[date] = None

    def _matches_search(self, fit: ModelFit) -> bool:
        terms = self.search.lower().split()
        if not terms:
            return True
        model = fit.model
        searchable = " ".join([
            model.name.lower(),
            model.provider.lower(),
            model.parameter_count.lower(),
            model.use_case.label.lower(),
        ])
        return all(term in searchable for term in terms)

    def matches(self, fit: ModelFit) -> bool:
        model = fit.model
        return (
            self._matches_search(fit)
            and self.fit.matches(fit.fit_level)
            and self.min_score.matches(fit.score)
            and self.min_tps.matches(fit.estimated_tps)
            and self.min_params_b.matches(model.params_b)
            and self.max_mem_pct.matches(fit.utilization_pct)
            and self.min_context_k.matches(model.context_length / 1000.0)
            and self.released.matches(model.release_month, self.today or date.today())
            and (self.run_mode is None or fit.run_mode is self.run_mode)
            and (self.use_case is None or model.use_case is self.use_case)
            and (self.quant is None or fit.best_quant == self.quant)
            and (self.providers is None or model.provider in self.providers)
            and (not self.installed_only or fit.installed)
        )

    def apply(self, fits: Iterable[ModelFit]) -> List[ModelFit]:
        """Matching fits, order preserved"""
        fits = list(fits)
        selected = [f for f in fits if self.matches(f)]
        logger.debug(f"Filters kept {len(selected)} of {len(fits)} models")
        return selected
