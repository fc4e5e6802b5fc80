# tests/conftest.py
"""Shared test fixtures.

Tracker Fixtures:
- tracker_document: Raw camelCase tracker JSON with two grids (one on the
  Shared tab), calculations, validations and dynamic-options functions
- tracker: The same document loaded as a TrackerSchema

The main grid models an invoice line: ``tax = amount * rate`` and
``total = amount + tax``. With amount 60 and rate 0.1 the derived values
are 6 and 66.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

from __future__ import annotations

import copy
import os
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from trackerflow.contracts.tracker import TrackerSchema


def _field(field_id: str, data_type: str, label: str, **config: Any) -> dict[str, Any]:
    return {"id": field_id, "dataType": data_type, "ui": {"label": label}, "config": config}


def field_ref(path: str) -> dict[str, Any]:
    return {"op": "field", "fieldId": path}


def const(value: Any) -> dict[str, Any]:
    return {"op": "const", "value": value}


TRACKER_DOCUMENT: dict[str, Any] = {
    "tabs": [
        {"id": "main_tab", "name": "Main"},
        {"id": "shared_tab", "name": "Shared"},
    ],
    "sections": [
        {"id": "invoice_section", "name": "Invoice", "tabId": "main_tab"},
        {"id": "lookup_section", "name": "Lookups", "tabId": "shared_tab"},
    ],
    "grids": [
        {"id": "main_grid", "name": "Lines", "sectionId": "invoice_section"},
        {"id": "currency_grid", "name": "Currencies", "sectionId": "lookup_section"},
    ],
    "fields": [
        _field("amount", "number", "Amount"),
        _field("rate", "percentage", "Rate"),
        _field("tax", "number", "Tax"),
        _field("total", "number", "Total"),
        _field("status", "string", "Status"),
        _field("title", "string", "Title", isRequired=True, maxLength=20),
        _field("notes", "text", "Notes", isHidden=True),
        _field("code", "string", "Code"),
    ],
    "layoutNodes": [
        {"gridId": "main_grid", "fieldId": "amount"},
        {"gridId": "main_grid", "fieldId": "rate"},
        {"gridId": "main_grid", "fieldId": "tax"},
        {"gridId": "main_grid", "fieldId": "total"},
        {"gridId": "main_grid", "fieldId": "status"},
        {"gridId": "main_grid", "fieldId": "title"},
        {"gridId": "main_grid", "fieldId": "notes"},
        {"gridId": "currency_grid", "fieldId": "code"},
    ],
    "calculations": {
        "main_grid.tax": {
            "expr": {"op": "mul", "args": [field_ref("main_grid.amount"), field_ref("main_grid.rate")]},
        },
        "main_grid.total": {
            "expr": {"op": "add", "args": [field_ref("main_grid.amount"), field_ref("main_grid.tax")]},
        },
    },
    "validations": {
        "main_grid.amount": [
            {"type": "min", "value": 0},
            {
                "type": "expr",
                "expr": {"op": "gte", "left": field_ref("amount"), "right": const(10)},
                "message": "Amount must be at least 10",
            },
        ],
    },
    "dynamicOptions": {
        "connectors": {
            "fx": {
                "id": "fx",
                "name": "FX rates",
                "type": "rest",
                "baseUrl": "https://fx.example.com/api/",
                "auth": {"type": "secret_ref", "secretRefId": "fx-api"},
                "allowHosts": ["fx.example.com"],
            },
        },
        "functions": {
            "currency_codes": {
                "id": "currency_codes",
                "name": "Currency codes",
                "source": {"kind": "grid_rows", "gridId": "currency_grid"},
                "transforms": [
                    {"kind": "unique", "by": "code"},
                    {"kind": "sort", "by": "code"},
                ],
                "output": {"label": "code", "value": "code"},
            },
            "remote_currencies": {
                "id": "remote_currencies",
                "name": "Remote currencies",
                "cache": {"ttlSeconds": 60},
                "source": {
                    "kind": "http_get",
                    "connectorId": "fx",
                    "path": "currencies",
                    "query": {"base": "{{arg.base}}"},
                    "responsePath": "data.items",
                },
                "transforms": [{"kind": "sort", "by": "code"}],
                "output": {"label": "name", "value": "code"},
            },
        },
    },
}


@pytest.fixture
def tracker_document() -> dict[str, Any]:
    """A fresh deep copy of the shared tracker document."""
    return copy.deepcopy(TRACKER_DOCUMENT)


@pytest.fixture
def tracker(tracker_document: dict[str, Any]) -> TrackerSchema:
    return TrackerSchema.from_dict(tracker_document)


@pytest.fixture
def currency_rows() -> dict[str, list[dict[str, Any]]]:
    return {"currency_grid": [{"code": "USD"}, {"code": "EUR"}, {"code": "USD"}, {"code": "GBP"}]}


# =============================================================================
# Hypothesis Configuration
# =============================================================================

# CI profile: Fast tests for continuous integration
settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

# Nightly profile: Thorough testing for scheduled runs
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Debug profile: Minimal examples with verbose output for debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Load profile from environment, default to "ci"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
