# src/trackerflow/core/canonical.py
"""
Canonical JSON serialization for structural cache signatures.

Two-phase approach:
1. Normalize: Convert tuples, sets and read-only mappings to JSON primitives
2. Serialize: Produce deterministic JSON per RFC 8785/JCS (rfc8785 package)

Rule sets are authored JSON, but AI output and UI state can smuggle in
values RFC 8785 rejects (NaN, Infinity, integers beyond 2**53). signature()
falls back to repr_hash() for those, which is stable within one process and
therefore good enough for in-memory cache keys.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from typing import Any

import rfc8785


def _normalize_for_canonical(data: Any) -> Any:
    if isinstance(data, Mapping):
        return {str(k): _normalize_for_canonical(v) for k, v in data.items()}
    if isinstance(data, list | tuple):
        return [_normalize_for_canonical(v) for v in data]
    if isinstance(data, set | frozenset):
        return sorted((_normalize_for_canonical(v) for v in data), key=repr)
    return data


def canonical_json(obj: Any) -> str:
    """Produce canonical JSON (no whitespace, sorted keys).

    Raises:
        ValueError: If data contains NaN, Infinity or out-of-range integers
        TypeError: If data contains types that cannot be serialized
    """
    normalized = _normalize_for_canonical(obj)
    result: bytes = rfc8785.dumps(normalized)
    return result.decode("utf-8")


def stable_hash(obj: Any) -> str:
    """SHA-256 hex digest of the canonical JSON of ``obj``."""
    canonical = canonical_json(obj)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def repr_hash(obj: Any) -> str:
    """SHA-256 of repr(obj), for values canonical JSON cannot represent.

    Deterministic within one Python version only.
    """
    return hashlib.sha256(repr(obj).encode("utf-8")).hexdigest()


def signature(obj: Any) -> str:
    """Cache signature: stable_hash, or repr_hash when canonicalization fails."""
    try:
        return stable_hash(obj)
    except (rfc8785.CanonicalizationError, ValueError, TypeError):
        return repr_hash(obj)
