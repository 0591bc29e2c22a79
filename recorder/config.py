"""Dialogue Recorder configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_paths(name: str) -> list[Path]:
    value = os.getenv(name, "")
    return [Path(token).expanduser() for token in value.split(os.pathsep) if token.strip()]

# Project root (one level up from recorder/)
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Database
DB_PATH = Path(os.getenv("RECORDER_DB_PATH", str(PROJECT_ROOT / "data" / "dialogue_records.db")))
DB_TIMEOUT_SECONDS = _env_float("RECORDER_DB_TIMEOUT_SECONDS", 5.0)

# Classifier vocabulary override (YAML)
RULES_PATH = os.getenv("RECORDER_RULES_PATH", "").strip()

# Output logs tailed by the watcher
WATCH_PATHS = _env_paths("RECORDER_WATCH_PATHS")

LOG_LEVEL = os.getenv("RECORDER_LOG_LEVEL", "INFO").upper()

# Observability
OTEL_ENABLED = _env_bool("RECORDER_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("RECORDER_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("RECORDER_OTEL_SERVICE_NAME", "dialogue-recorder")
PROM_PORT = _env_int("RECORDER_PROM_PORT", 0)
