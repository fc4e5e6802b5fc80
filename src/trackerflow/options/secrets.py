# src/trackerflow/options/secrets.py
"""Secret resolution for connector auth.

Connectors never carry credentials, only a ``secretRefId``. The executor
asks an injected resolver for the value right before a request and drops it
afterwards; resolved values are never logged or returned.

A resolver is any callable ``(secret_ref_id) -> str | None`` (sync or
async). None or "" means "not found".

Usage:
    resolver = env_secret_resolver()
    # secretRefId "fx-api" -> $DYNAMIC_OPTION_SECRET_FX_API, then $fx-api
"""

from __future__ import annotations

import os
import re
from collections.abc import Awaitable, Callable, Mapping
from typing import TypeAlias

SecretResolver: TypeAlias = Callable[[str], str | None | Awaitable[str | None]]

DEFAULT_SECRET_ENV_PREFIX = "DYNAMIC_OPTION_SECRET_"


def secret_env_name(secret_ref_id: str, prefix: str = DEFAULT_SECRET_ENV_PREFIX) -> str:
    """Environment variable name for a secret ref (``fx-api`` -> ``PREFIX_FX_API``)."""
    return prefix + re.sub(r"[^A-Za-z0-9]+", "_", secret_ref_id).strip("_").upper()


class EnvSecretResolver:
    """Resolve secret refs from environment variables.

    Looks up the prefixed, normalized name first and then the raw ref id.
    Empty values count as missing.
    """

    def __init__(self, prefix: str = DEFAULT_SECRET_ENV_PREFIX, environ: Mapping[str, str] | None = None) -> None:
        self._prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def __call__(self, secret_ref_id: str) -> str | None:
        for name in (secret_env_name(secret_ref_id, self._prefix), secret_ref_id):
            value = self._environ.get(name)
            if value:
                return value
        return None


def env_secret_resolver(prefix: str = DEFAULT_SECRET_ENV_PREFIX) -> EnvSecretResolver:
    return EnvSecretResolver(prefix)
