"""Centralized configuration for the Mnemo assistant.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/mnemo/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/mnemo/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /mnemo/{name} (AWS)."
    )


def _optional_env(name: str, default: str = "") -> str:
    """Like ``_require_env`` but falls back to *default* instead of raising."""
    value = os.getenv(name)
    if value:
        return value
    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value
    return default


ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
IS_PRODUCTION: bool = ENVIRONMENT == "production"

# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
# Plain text generation (morning briefings) does not need tools
FAST_MODEL_NAME: str = os.getenv("FAST_MODEL_NAME", "claude-haiku-4-5")

# Upper bound on graph super-steps per turn (each model call or tool batch is one)
AGENT_MAX_STEPS: int = int(os.getenv("AGENT_MAX_STEPS", "25"))

# ── Storage ─────────────────────────────────────────────────────────
DATABASE_URL: str = _optional_env("DATABASE_URL", "sqlite+aiosqlite:///./mnemo.db")

# ── Long-term memory (mem0) ─────────────────────────────────────────
# "memory" = in-process index, "redis" = networked vector store, "disabled"
MEMORY_BACKEND: str = os.getenv("MEMORY_BACKEND", "memory").lower()
REDIS_URL: str = _optional_env("REDIS_URL", "redis://localhost:6379")
MEM0_COLLECTION_NAME: str = os.getenv("MEM0_COLLECTION_NAME", "mnemo-memories")
OPENAI_API_KEY: str = _optional_env("OPENAI_API_KEY")
MEMORY_MAX_ATTEMPTS: int = int(os.getenv("MEMORY_MAX_ATTEMPTS", "3"))
MEMORY_INITIAL_BACKOFF_SECONDS: float = float(
    os.getenv("MEMORY_INITIAL_BACKOFF_SECONDS", "0.5"),
)

# ── OAuth providers ─────────────────────────────────────────────────
GOOGLE_CLIENT_ID: str = _optional_env("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET: str = _optional_env("GOOGLE_CLIENT_SECRET")
GOOGLE_TOKEN_URI: str = "https://oauth2.googleapis.com/token"

# Appended to every outgoing email body by the send tool
EMAIL_SIGNATURE: str = os.getenv("EMAIL_SIGNATURE", "Sent from Mnemo")

# ── WhatsApp Cloud API ──────────────────────────────────────────────
WHATSAPP_API_VERSION: str = os.getenv("WHATSAPP_API_VERSION", "v22.0")
WHATSAPP_PHONE_NUMBER_ID: str = _optional_env("WHATSAPP_PHONE_NUMBER_ID")
WHATSAPP_ACCESS_TOKEN: str = _optional_env("WHATSAPP_ACCESS_TOKEN")
WHATSAPP_VERIFY_TOKEN: str = _optional_env("WHATSAPP_VERIFY_TOKEN")
META_APP_SECRET: str = _optional_env("META_APP_SECRET")
# Background processing budget; the platform request limit is 300s
WHATSAPP_PROCESSING_TIMEOUT_SECONDS: float = float(
    os.getenv("WHATSAPP_PROCESSING_TIMEOUT_SECONDS", "240"),
)

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000",
).split(",")
