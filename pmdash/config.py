"""PMDash configuration."""
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


# Scan root for the server and watch mode (CLI commands take it as an argument)
ROOT_PATH = Path(os.getenv("PMDASH_ROOT", ".")).expanduser()

# Persistence
STATE_FILE = Path(os.getenv("PMDASH_STATE_FILE", str(ROOT_PATH / ".pmdash" / "state.json")))
REGISTRY_FILE = Path(os.getenv("PMDASH_REGISTRY_FILE", str(ROOT_PATH / "features.csv")))
CONFIG_FILE = Path(os.getenv("PMDASH_CONFIG_FILE", "pmdash.yaml"))

# Scanner tuning
COMPLETION_THRESHOLD = _env_int("PMDASH_COMPLETION_THRESHOLD", 70)
MAX_FILE_BYTES = _env_int("PMDASH_MAX_FILE_BYTES", 10 * 1024 * 1024)
STATE_RETENTION_DAYS = _env_int("PMDASH_STATE_RETENTION_DAYS", 60)

LOG_LEVEL = os.getenv("PMDASH_LOG_LEVEL", "INFO").upper()

# Observability
OTEL_ENABLED = _env_bool("PMDASH_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("PMDASH_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("PMDASH_OTEL_SERVICE_NAME", "pmdash")
PROM_PORT = _env_int("PMDASH_PROM_PORT", 9464)

# GitHub
GITHUB_API_URL = os.getenv("PMDASH_GITHUB_API_URL", "https://api.github.com")
GITHUB_TIMEOUT_SECONDS = _env_int("PMDASH_GITHUB_TIMEOUT_SECONDS", 30)

# Server settings
HOST = os.getenv("PMDASH_HOST", "0.0.0.0")
PORT = int(os.getenv("PMDASH_PORT", "8000"))
WATCH_ENABLED = _env_bool("PMDASH_WATCH_ENABLED", False)

# CORS
FRONTEND_ORIGIN = os.getenv("PMDASH_FRONTEND_ORIGIN", "http://localhost:3000")
