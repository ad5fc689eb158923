"""
Serialisation of ranked fits
"""

import csv
import io
import json
from typing import Dict, List, Sequence

import yaml

from .fit import ModelFit

EXPORT_FORMATS = ("json", "csv", "yaml")


def export_fits(fits: Sequence[ModelFit], format: str = "json") -> str:
    """Export fits in various formats"""
    data = [fit.to_dict() for fit in fits]

    if format == "json":
        return json.dumps(data, indent=2)
    elif format == "csv":
        return _export_csv(data)
    elif format == "yaml":
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)
    else:
        raise ValueError(f"Unsupported format: {format}")


def _export_csv(data: List[Dict]) -> str:
    """Export data as CSV, flattening nested values"""
    if not data:
        return ""

    rows = []
    for row in data:
        flat_row = {}
        for key, value in row.items():
            if isinstance(value, dict):
                for sub_key, sub_value in value.items():
                    flat_row[f"{key}_{sub_key}"] = sub_value
            elif isinstance(value, list):
                flat_row[key] = "; ".join(str(item) for item in value)
            else:
                flat_row[key] = value
        rows.append(flat_row)

    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=list(rows[0].keys()))
    writer.writeheader()
    writer.writerows(rows)
    return output.getvalue()
