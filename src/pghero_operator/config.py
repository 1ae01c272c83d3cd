"""Operator configuration loaded from environment variables."""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

API_GROUP = "pghero.mithucste30.io"
API_VERSION = "v1alpha1"
PLURAL = "databases"
FINALIZER = f"{API_GROUP}/finalizer"

CONFIGMAP_NAME = "pghero-databases"
CONFIGMAP_KEY = "database.yml"
DATABASE_COUNT_ANNOTATION = f"{API_GROUP}/database-count"
CONFIGMAP_LABELS = {
    "app.kubernetes.io/name": "pghero",
    "app.kubernetes.io/component": "database-config",
    "app.kubernetes.io/managed-by": "pghero-operator",
}

REQUIRED_EXTENSIONS = ("pg_stat_statements",)

# Requeue intervals per phase, in seconds
READY_REQUEUE = 300.0
CONFIGURING_REQUEUE = 30.0
ERROR_REQUEUE = 60.0


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {value!r}") from e


def _float_env(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {value!r}") from e


@dataclass(frozen=True)
class OperatorConfig:
    """Runtime settings for the operator process."""

    watch_namespace: Optional[str] = None
    log_level: str = "INFO"
    otlp_endpoint: Optional[str] = None
    max_workers: int = 4
    request_timeout: float = 30.0
    db_connect_timeout: int = 10
    conflict_retries: int = 5

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "OperatorConfig":
        """Build a config from ``env`` (defaults to ``os.environ``)."""
        if env is None:
            env = os.environ
        return cls(
            watch_namespace=env.get("WATCH_NAMESPACE") or None,
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            otlp_endpoint=env.get("OTLP_ENDPOINT") or None,
            max_workers=max(1, _int_env(env, "MAX_WORKERS", 4)),
            request_timeout=_float_env(env, "REQUEST_TIMEOUT", 30.0),
            db_connect_timeout=max(1, _int_env(env, "DB_CONNECT_TIMEOUT", 10)),
            conflict_retries=max(1, _int_env(env, "CONFLICT_RETRIES", 5)),
        )
