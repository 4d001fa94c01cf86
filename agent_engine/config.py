"""Process-level configuration for the decision & booking engine.

Only deployment concerns live here.  Anything that changes how a company's
turns are answered (thresholds, providers, flags, slots) belongs to that
company's snapshot and is never read from the environment.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/agent-engine/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store, or ``None``."""
    try:
        import boto3  # noqa: PLC0415 (lazy import keeps boto3 out of local runs)

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/agent-engine/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def require_secret(name: str) -> str:
    """Return a secret from env-var or SSM, or raise a clear error.

    Called lazily when a provider that needs the secret is built, so a
    deployment that only uses static providers never needs the key.
    """
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /agent-engine/{name} (AWS)."
    )


# ── Company configuration store ─────────────────────────────────────
COMPANY_CONFIG_DIR: str = os.getenv("COMPANY_CONFIG_DIR", "./companies")
CONFIG_CACHE_MAX_BYTES: int = int(os.getenv("CONFIG_CACHE_MAX_BYTES", str(20 * 1024 * 1024)))

# ── Conversation flag store ─────────────────────────────────────────
FLOW_STATE_MAX_CONVERSATIONS: int = int(os.getenv("FLOW_STATE_MAX_CONVERSATIONS", "10000"))
FLOW_STATE_IDLE_SECONDS: float = float(os.getenv("FLOW_STATE_IDLE_SECONDS", "3600"))

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
