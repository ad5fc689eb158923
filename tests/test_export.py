"""
Tests for exporting ranked fits
"""

import csv
import io
import json

import pytest
import yaml

from llmfit.export import export_fits
from llmfit.fit import analyze

from conftest import make_model


@pytest.fixture
def fits(unified_16, cpu_8):
    return [
        analyze(make_model("test/Small-1B", params_b=1.0), unified_16),
        analyze(make_model("test/Huge-70B", params_b=70.0), cpu_8),
    ]


class TestExport:
    """Test export formats"""

    def test_json(self, fits):
        data = json.loads(export_fits(fits, "json"))
        assert [row["name"] for row in data] == ["test/Small-1B", "test/Huge-70B"]
        assert data[1]["fit_level"] == "Too Tight"
        assert data[1]["run_mode"] == "CPU"
        assert data[1]["notes"]

    def test_csv_flattens_nested_values(self, fits):
        rows = list(csv.DictReader(io.StringIO(export_fits(fits, "csv"))))
        assert len(rows) == 2
        assert "score_components_fit" in rows[0]
        assert "score_components" not in rows[0]
        assert "; " in rows[1]["notes"]

    def test_csv_empty(self):
        assert export_fits([], "csv") == ""

    def test_yaml(self, fits):
        data = yaml.safe_load(export_fits(fits, "yaml"))
        assert data[0]["name"] == "test/Small-1B"
        assert list(data[0])[0] == "name"
        assert data[0]["score_components"]["context"] == 100.0

    def test_unsupported_format(self, fits):
        with pytest.raises(ValueError, match="Unsupported format"):
            export_fits(fits, "xml")
