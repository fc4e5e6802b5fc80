"""Core infrastructure: logging, configuration, caches, canonical hashing, paths."""

from trackerflow.core.cache import BoundedCache, CacheStats, TtlCache
from trackerflow.core.canonical import canonical_json, signature, stable_hash
from trackerflow.core.config import TrackerflowSettings, load_settings
from trackerflow.core.paths import MISSING, FieldPath, get_by_path, parse_field_path

__all__ = [
    "MISSING",
    "BoundedCache",
    "CacheStats",
    "FieldPath",
    "TrackerflowSettings",
    "TtlCache",
    "canonical_json",
    "get_by_path",
    "load_settings",
    "parse_field_path",
    "signature",
    "stable_hash",
]
