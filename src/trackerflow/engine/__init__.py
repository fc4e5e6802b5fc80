"""Computation core: expressions, field validation, calculations and schema checks."""

from trackerflow.engine.calculation import CalculationEngine, CalculationPlan, apply_plan, build_plan
from trackerflow.engine.expression_evaluator import evaluate, is_truthy, to_number
from trackerflow.engine.expression_normalizer import extract_field_refs, normalize
from trackerflow.engine.schema_validator import validate_tracker, validate_tracker_document
from trackerflow.engine.validation import ValidationPlan, ValidationPlanner

__all__ = [
    "CalculationEngine",
    "CalculationPlan",
    "ValidationPlan",
    "ValidationPlanner",
    "apply_plan",
    "build_plan",
    "evaluate",
    "extract_field_refs",
    "is_truthy",
    "normalize",
    "to_number",
    "validate_tracker",
    "validate_tracker_document",
]
