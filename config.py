"""
CTV Rollup – config and credentials (from .env in this folder).
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from this project folder
_ROOT = Path(__file__).resolve().parent
_ENV_FILE = _ROOT / ".env"
if _ENV_FILE.exists():
    load_dotenv(_ENV_FILE)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# Storage backend: "memory" (process lifetime) or "snowflake" (durable, falls back to memory on outage)
STORAGE_BACKEND = (os.getenv("STORAGE_BACKEND", "memory") or "memory").strip().lower()
STORAGE_BACKENDS = ("memory", "snowflake")

# Snowflake (AUTH_METHOD PASSWORD | KEYPAIR; KEYPAIR avoids MFA/TOTP)
SNOWFLAKE_ACCOUNT = os.getenv("SNOWFLAKE_ACCOUNT", "")
SNOWFLAKE_USER = os.getenv("SNOWFLAKE_USER", "")
SNOWFLAKE_PASSWORD = os.getenv("SNOWFLAKE_PASSWORD", "")
SNOWFLAKE_AUTH_METHOD = (os.getenv("SNOWFLAKE_AUTH_METHOD", "KEYPAIR") or "KEYPAIR").upper()
SNOWFLAKE_WAREHOUSE = os.getenv("SNOWFLAKE_WAREHOUSE", "")
SNOWFLAKE_DATABASE = os.getenv("SNOWFLAKE_DATABASE", "")
SNOWFLAKE_SCHEMA = os.getenv("SNOWFLAKE_SCHEMA", "PUBLIC")
SNOWFLAKE_ROLE = os.getenv("SNOWFLAKE_ROLE", "")
# KEYPAIR: use SNOWFLAKE_PRIVATE_KEY (inline PEM) or SNOWFLAKE_PRIVATE_KEY_PATH (file path)
SNOWFLAKE_PRIVATE_KEY = os.getenv("SNOWFLAKE_PRIVATE_KEY", "")
SNOWFLAKE_PRIVATE_KEY_PATH = os.getenv("SNOWFLAKE_PRIVATE_KEY_PATH", "")
SNOWFLAKE_PRIVATE_KEY_PASSPHRASE = os.getenv("SNOWFLAKE_PRIVATE_KEY_PASSPHRASE", "")
SNOWFLAKE_LOGIN_TIMEOUT = int(os.getenv("SNOWFLAKE_LOGIN_TIMEOUT", "30"))
SNOWFLAKE_NETWORK_TIMEOUT = int(os.getenv("SNOWFLAKE_NETWORK_TIMEOUT", "60"))

# Campaign id allocation: retries with a fresh random suffix on collision
CAMPAIGN_ID_MAX_ATTEMPTS = int(os.getenv("CAMPAIGN_ID_MAX_ATTEMPTS", "5"))

LOG_LEVEL = (os.getenv("LOG_LEVEL", "INFO") or "INFO").upper()

# Load bundle/genre/alias seed rows when the server starts
SEED_ON_STARTUP = _env_bool("SEED_ON_STARTUP", False)


def snowflake_configured() -> bool:
    """True when the minimum Snowflake connection settings are present."""
    return bool(SNOWFLAKE_ACCOUNT and SNOWFLAKE_USER and SNOWFLAKE_WAREHOUSE and SNOWFLAKE_DATABASE)


def resolve_storage_backend(name: str = "") -> str:
    """Normalize a backend name; unknown values fall back to the in-process store."""
    backend = (name or STORAGE_BACKEND or "memory").strip().lower()
    if backend not in STORAGE_BACKENDS:
        return "memory"
    return backend
