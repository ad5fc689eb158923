"""
Tests for presentation-side filters
"""

from datetime import date

import pytest

from llmfit.filters import DateFilter, FitFilter, FitQuery, NumericFilter
from llmfit.fit import FitLevel, RunMode, analyze
from llmfit.models import UseCase

from conftest import make_model


@pytest.fixture
def fits(unified_16):
    models = [
        make_model("meta-llama/Llama-3.1-8B-Instruct", params_b=8.0, provider="Meta",
                   context_length=131072, release_date="2024-07-23"),
        make_model("Qwen/Qwen2.5-Coder-7B-Instruct", params_b=7.0, provider="Alibaba",
                   use_case=UseCase.CODING, context_length=32768, release_date="2024-09"),
        make_model("meta-llama/Llama-3.1-70B-Instruct", params_b=70.0, provider="Meta",
                   context_length=131072, release_date="2024-07-23"),
        make_model("old/Undated-3B", params_b=3.0, provider="Other",
                   context_length=4096, release_date=None),
    ]
    results = [analyze(m, unified_16) for m in models]
    results[1].installed = True
    return results


def names(fits):
    return [f.model.name.split("/")[-1] for f in fits]


class TestFitFilter:
    """Test fit level filter"""

    def test_matches(self):
        assert FitFilter.ALL.matches(FitLevel.TOO_TIGHT)
        assert FitFilter.RUNNABLE.matches(FitLevel.MARGINAL)
        assert not FitFilter.RUNNABLE.matches(FitLevel.TOO_TIGHT)
        assert FitFilter.GOOD.matches(FitLevel.GOOD)
        assert not FitFilter.GOOD.matches(FitLevel.PERFECT)

    def test_cycles(self):
        assert FitFilter.TOO_TIGHT.next() is FitFilter.ALL
        assert FitFilter.ALL.next() is FitFilter.RUNNABLE


class TestNumericFilter:
    """Test threshold filters"""

    def test_unset_matches_everything(self):
        assert NumericFilter().matches(-1e9)

    def test_inclusive_minimum(self):
        assert NumericFilter(10.0).matches(10.0)
        assert not NumericFilter(10.0).matches(9.99)

    def test_inclusive_maximum(self):
        assert NumericFilter(80.0, at_most=True).matches(80.0)
        assert not NumericFilter(80.0, at_most=True).matches(80.1)


class TestDateFilter:
    """Test release date filter"""

    def test_cutoff(self):
        today = date(2025, 3, 15)
        assert DateFilter.ANY.cutoff(today) is None
        assert DateFilter.LAST_6_MONTHS.cutoff(today) == "2024-09"
        assert DateFilter.LAST_YEAR.cutoff(today) == "2024-03"
        assert DateFilter.LAST_2_YEARS.cutoff(today) == "2023-03"

    def test_cutoff_wraps_year(self):
        assert DateFilter.LAST_6_MONTHS.cutoff(date(2025, 1, 1)) == "2024-07"

    def test_matches(self):
        today = date(2025, 3, 15)
        assert DateFilter.LAST_6_MONTHS.matches("2024-09", today)
        assert not DateFilter.LAST_6_MONTHS.matches("2024-08", today)
        assert not DateFilter.LAST_6_MONTHS.matches(None, today)
        assert DateFilter.ANY.matches(None, today)


class TestFitQuery:
    """Test combined filters"""

    def test_empty_query_keeps_everything(self, fits):
        assert FitQuery().apply(fits) == fits

    def test_search_terms_all_must_match(self, fits):
        assert names(FitQuery(search="llama 70b").apply(fits)) == ["Llama-3.1-70B-Instruct"]
        assert names(FitQuery(search="META").apply(fits)) == [
            "Llama-3.1-8B-Instruct", "Llama-3.1-70B-Instruct",
        ]
        assert FitQuery(search="llama coder").apply(fits) == []

    def test_search_matches_use_case(self, fits):
        assert names(FitQuery(search="coding").apply(fits)) == ["Qwen2.5-Coder-7B-Instruct"]

    def test_fit_filter(self, fits):
        runnable = FitQuery(fit=FitFilter.RUNNABLE).apply(fits)
        assert "Llama-3.1-70B-Instruct" not in names(runnable)
        assert len(runnable) == 3

    def test_run_mode(self, fits):
        cpu = FitQuery(run_mode=RunMode.CPU_ONLY).apply(fits)
        assert names(cpu) == ["Llama-3.1-70B-Instruct"]

    def test_numeric_filters(self, fits):
        assert names(FitQuery(min_params_b=NumericFilter(8.0)).apply(fits)) == [
            "Llama-3.1-8B-Instruct", "Llama-3.1-70B-Instruct",
        ]
        assert names(FitQuery(min_context_k=NumericFilter(100)).apply(fits)) == [
            "Llama-3.1-8B-Instruct", "Llama-3.1-70B-Instruct",
        ]
        assert "Llama-3.1-70B-Instruct" not in names(
            FitQuery(max_mem_pct=NumericFilter(100, at_most=True)).apply(fits)
        )

    def test_released(self, fits):
        query = FitQuery(released=DateFilter.LAST_YEAR, today=date(2025, 8, 1))
        assert names(query.apply(fits)) == ["Qwen2.5-Coder-7B-Instruct"]

    def test_use_case_provider_and_quant(self, fits):
        assert len(FitQuery(use_case=UseCase.CODING).apply(fits)) == 1
        assert len(FitQuery(providers={"Meta", "Other"}).apply(fits)) == 3
        assert all(f.best_quant == "Q4_K_M" for f in FitQuery(quant="Q4_K_M").apply(fits))

    def test_installed_only(self, fits):
        assert names(FitQuery(installed_only=True).apply(fits)) == ["Qwen2.5-Coder-7B-Instruct"]

    def test_order_preserved(self, fits):
        reordered = list(reversed(fits))
        assert FitQuery(search="meta").apply(reordered) == [reordered[1], reordered[3]]
