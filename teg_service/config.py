"""Configuration helpers for the TEG Influx collector."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_ENV_PATH = Path(__file__).resolve().parent / "teg.env"


@dataclass
class ServiceConfig:
    """Configuration for the gateway polling service."""

    gateway_url: str
    gateway_email: str
    gateway_password: str
    gateway_verify_tls: bool
    request_timeout: float
    poll_interval: float
    exit_on_failure: bool
    log_level: str
    influx_url: str
    influx_token: Optional[str]
    influx_username: Optional[str]
    influx_password: Optional[str]
    influx_org: str
    influx_bucket: Optional[str]
    influx_database: Optional[str]
    influx_retention_policy: Optional[str]
    measurement_prefix: str
    influx_timeout: float
    influx_verify_tls: bool
    flush_interval: float
    batch_size: int

    @property
    def influx_auth(self) -> str:
        """Token, or ``user:password`` for 1.x compatible servers."""
        if self.influx_token:
            return self.influx_token
        if self.influx_username and self.influx_password:
            return f"{self.influx_username}:{self.influx_password}"
        return ""

    @property
    def influx_destination(self) -> str:
        """Bucket, or ``database/retention_policy`` for 1.x compatible servers."""
        if self.influx_bucket:
            return self.influx_bucket
        return f"{self.influx_database}/{self.influx_retention_policy}"


def load_env_file(path: Path) -> None:
    """Populate :mod:`os.environ` with KEY=VALUE pairs from ``path``."""

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.lower().startswith("export "):
            line = line[7:].strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip().strip("'\""))


def _env_str(name: str) -> Optional[str]:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise RuntimeError(f"{name} must be a boolean, got {value!r}")


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {value!r}") from None


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {value!r}") from None


REDACTED = "***redacted***"


def build_config() -> ServiceConfig:
    """Construct a :class:`ServiceConfig` from environment variables."""

    cfg = ServiceConfig(
        gateway_url=os.environ.get("TEG_URL", "https://192.168.91.1").strip(),
        gateway_email=os.environ.get("TEG_EMAIL", "").strip(),
        gateway_password=os.environ.get("TEG_PASSWORD", ""),
        gateway_verify_tls=_env_bool("TEG_VERIFY_TLS", False),
        request_timeout=_env_float("TEG_REQUEST_TIMEOUT", 10.0),
        poll_interval=_env_float("TEG_POLL_INTERVAL", 30.0),
        exit_on_failure=_env_bool("TEG_EXIT_ON_FAILURE", False),
        log_level=os.environ.get("TEG_LOG_LEVEL", "INFO").strip().upper(),
        influx_url=os.environ.get("INFLUX_URL", "http://localhost:8086").strip(),
        influx_token=_env_str("INFLUX_TOKEN"),
        influx_username=_env_str("INFLUX_USERNAME"),
        influx_password=_env_str("INFLUX_PASSWORD"),
        influx_org=os.environ.get("INFLUX_ORG", "").strip(),
        influx_bucket=_env_str("INFLUX_BUCKET"),
        influx_database=_env_str("INFLUX_DATABASE"),
        influx_retention_policy=_env_str("INFLUX_RETENTION_POLICY"),
        measurement_prefix=os.environ.get("INFLUX_MEASUREMENT_PREFIX", "").strip(),
        influx_timeout=_env_float("INFLUX_TIMEOUT", 10.0),
        influx_verify_tls=_env_bool("INFLUX_VERIFY_TLS", True),
        flush_interval=_env_float("INFLUX_FLUSH_INTERVAL", 30.0),
        batch_size=_env_int("INFLUX_BATCH_SIZE", 500),
    )

    if not cfg.gateway_url:
        raise RuntimeError("TEG_URL must be set")
    if not cfg.gateway_password:
        raise RuntimeError("TEG_PASSWORD must be set (use a .env file or environment variable)")
    if cfg.poll_interval <= 0:
        raise RuntimeError("TEG_POLL_INTERVAL must be greater than zero")
    if cfg.request_timeout <= 0:
        raise RuntimeError("TEG_REQUEST_TIMEOUT must be greater than zero")
    if not isinstance(logging.getLevelName(cfg.log_level), int):
        raise RuntimeError(f"TEG_LOG_LEVEL {cfg.log_level!r} is not a logging level")
    if not cfg.influx_bucket and not (cfg.influx_database and cfg.influx_retention_policy):
        raise RuntimeError(
            "INFLUX_BUCKET or both INFLUX_DATABASE and INFLUX_RETENTION_POLICY must be set"
        )
    if cfg.influx_timeout <= 0:
        raise RuntimeError("INFLUX_TIMEOUT must be greater than zero")
    if cfg.flush_interval < 0:
        raise RuntimeError("INFLUX_FLUSH_INTERVAL must not be negative")
    if cfg.batch_size <= 0:
        raise RuntimeError("INFLUX_BATCH_SIZE must be greater than zero")

    return cfg


def redact_config(cfg: ServiceConfig) -> dict:
    """Return a sanitized view of ``cfg`` suitable for logging."""

    return {
        "gateway_url": cfg.gateway_url,
        "gateway_email": cfg.gateway_email,
        "gateway_password": REDACTED if cfg.gateway_password else None,
        "gateway_verify_tls": cfg.gateway_verify_tls,
        "request_timeout": cfg.request_timeout,
        "poll_interval": cfg.poll_interval,
        "exit_on_failure": cfg.exit_on_failure,
        "log_level": cfg.log_level,
        "influx_url": cfg.influx_url,
        "influx_token": REDACTED if cfg.influx_token else None,
        "influx_username": cfg.influx_username,
        "influx_password": REDACTED if cfg.influx_password else None,
        "influx_org": cfg.influx_org,
        "influx_bucket": cfg.influx_bucket,
        "influx_database": cfg.influx_database,
        "influx_retention_policy": cfg.influx_retention_policy,
        "measurement_prefix": cfg.measurement_prefix,
        "influx_timeout": cfg.influx_timeout,
        "influx_verify_tls": cfg.influx_verify_tls,
        "flush_interval": cfg.flush_interval,
        "batch_size": cfg.batch_size,
    }
