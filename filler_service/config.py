"""Environment-variable-driven configuration for the PDF filler service.

All config comes from env vars; nothing is read from disk at import time.
"""

from __future__ import annotations

import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_csv(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


# -- Paths --------------------------------------------------------------------
FILLER_DATA_DIR: str = os.getenv(
    "FILLER_DATA_DIR", os.path.join(os.path.expanduser("~"), ".pdf-filler")
)

# Dedicated HOME per backend so the CLI's credential store does not collide
# with the user's own installation of the same tool.
FILLER_CLAUDE_HOME: str = os.getenv("FILLER_CLAUDE_HOME", os.path.join(FILLER_DATA_DIR, "claude"))
FILLER_GEMINI_HOME: str = os.getenv("FILLER_GEMINI_HOME", os.path.join(FILLER_DATA_DIR, "gemini"))
FILLER_CODEX_HOME: str = os.getenv("FILLER_CODEX_HOME", os.path.join(FILLER_DATA_DIR, "codex"))

# Explicit binary overrides; when unset the binary is looked up on PATH.
FILLER_CLAUDE_BIN: str | None = os.getenv("FILLER_CLAUDE_BIN")
FILLER_GEMINI_BIN: str | None = os.getenv("FILLER_GEMINI_BIN")
FILLER_CODEX_BIN: str | None = os.getenv("FILLER_CODEX_BIN")

# -- Backend environment ------------------------------------------------------
FILLER_GEMINI_PROJECT: str = os.getenv("GOOGLE_CLOUD_PROJECT", "pdf-filler-desktop")
CLAUDE_CODE_OAUTH_TOKEN: str | None = os.getenv("CLAUDE_CODE_OAUTH_TOKEN")

# -- Models -------------------------------------------------------------------
FILLER_GEMINI_PRO_MODEL: str = os.getenv("FILLER_GEMINI_PRO_MODEL", "gemini-2.5-pro")
FILLER_GEMINI_FLASH_MODEL: str = os.getenv("FILLER_GEMINI_FLASH_MODEL", "gemini-2.5-flash")
FILLER_CLAUDE_PRO_MODEL: str = os.getenv("FILLER_CLAUDE_PRO_MODEL", "opus")
FILLER_CLAUDE_FALLBACK_MODEL: str = os.getenv("FILLER_CLAUDE_FALLBACK_MODEL", "sonnet")

# -- Invocation ---------------------------------------------------------------
FILLER_INVOKE_TIMEOUT_S: float = _env_float("FILLER_INVOKE_TIMEOUT_S", 120.0)
FILLER_MAX_ATTEMPTS: int = _env_int("FILLER_MAX_ATTEMPTS", 3)
# Longest per-minute rate-limit window the controller will sleep through
# before surfacing QuotaExhausted. 0 disables waiting.
FILLER_RATE_WAIT_MAX_S: float = _env_float("FILLER_RATE_WAIT_MAX_S", 0.0)

# -- Rate limits (requests per minute / per day) ------------------------------
FILLER_CLAUDE_RPM: int = _env_int("FILLER_CLAUDE_RPM", 30)
FILLER_CLAUDE_RPD: int = _env_int("FILLER_CLAUDE_RPD", 500)
FILLER_GEMINI_RPM: int = _env_int("FILLER_GEMINI_RPM", 50)
FILLER_GEMINI_RPD: int = _env_int("FILLER_GEMINI_RPD", 900)
FILLER_CODEX_RPM: int = _env_int("FILLER_CODEX_RPM", 30)
FILLER_CODEX_RPD: int = _env_int("FILLER_CODEX_RPD", 500)

# -- Output classification ----------------------------------------------------
FILLER_REFUSAL_PHRASES: list[str] = _env_csv(
    "FILLER_REFUSAL_PHRASES",
    "cannot directly,cannot interpret,unable to read,can't read,cannot read,"
    "not able to access,don't have access to",
)
FILLER_QUOTA_SIGNATURES: list[str] = _env_csv(
    "FILLER_QUOTA_SIGNATURES",
    "429,quota,RESOURCE_EXHAUSTED,rate limit,usage limit,too many requests",
)
FILLER_NOISE_PREFIXES: list[str] = _env_csv(
    "FILLER_NOISE_PREFIXES",
    "Loaded cached credentials,Warning:,[ERROR]",
)

# -- Provider selection -------------------------------------------------------
FILLER_PROVIDER_PRIORITY: list[str] = _env_csv("FILLER_PROVIDER_PRIORITY", "claude,gemini,codex")
FILLER_DEFAULT_PROVIDER: str = os.getenv("FILLER_DEFAULT_PROVIDER", "gemini")
FILLER_AUTH_CACHE_S: float = _env_float("FILLER_AUTH_CACHE_S", 60.0)

# -- Prompt sizing ------------------------------------------------------------
FILLER_TEMPLATE_PROMPT_CHARS: int = _env_int("FILLER_TEMPLATE_PROMPT_CHARS", 4000)
FILLER_DATA_PROMPT_CHARS: int = _env_int("FILLER_DATA_PROMPT_CHARS", 8000)

# -- CORS ---------------------------------------------------------------------
FILLER_CORS_ALLOW_ORIGINS: list[str] = _env_csv(
    "FILLER_CORS_ALLOW_ORIGINS",
    "http://localhost:3456,http://127.0.0.1:3456",
)
FILLER_CORS_ALLOW_METHODS: list[str] = _env_csv(
    "FILLER_CORS_ALLOW_METHODS",
    "GET,POST,DELETE,OPTIONS",
)
FILLER_CORS_ALLOW_HEADERS: list[str] = _env_csv(
    "FILLER_CORS_ALLOW_HEADERS",
    "Content-Type,X-Request-Id",
)
FILLER_CORS_ALLOW_CREDENTIALS: bool = _env_bool("FILLER_CORS_ALLOW_CREDENTIALS", False)

# -- Server -------------------------------------------------------------------
FILLER_HOST: str = os.getenv("FILLER_HOST", "127.0.0.1")
FILLER_PORT: int = _env_int("FILLER_PORT", 3456)
FILLER_LOG_LEVEL: str = os.getenv("FILLER_LOG_LEVEL", "INFO")
FILLER_LOG_JSON: bool = _env_bool("FILLER_LOG_JSON", False)

# -- Extraction cache ---------------------------------------------------------
# 0 keeps entries until invalidated or refreshed.
FILLER_CACHE_TTL_S: float = _env_float("FILLER_CACHE_TTL_S", 0.0)
