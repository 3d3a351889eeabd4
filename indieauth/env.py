from __future__ import annotations

import logging
import os
from pathlib import Path
from urllib.parse import urlparse

from dotenv import load_dotenv

from auth.settings import GitHubSettings, Settings

from .constants import LOGGER

MIN_JWT_SECRET_LENGTH = 32


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_csv_env(key: str) -> set[str]:
    raw = os.getenv(key, "")
    if not raw.strip():
        return set()
    return {item.strip() for item in raw.split(",") if item.strip()}


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    required = (
        "INDIEAUTH_BASE_URL",
        "INDIEAUTH_JWT_SECRET",
        "GITHUB_CLIENT_ID",
        "GITHUB_CLIENT_SECRET",
    )
    missing = [key for key in required if not os.getenv(key, "").strip()]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

    base_url = os.getenv("INDIEAUTH_BASE_URL", "").strip()
    parsed_base_url = urlparse(base_url)
    if parsed_base_url.scheme != "https" or not parsed_base_url.netloc:
        raise RuntimeError(
            "INDIEAUTH_BASE_URL must be a valid public HTTPS URL (for example: "
            "https://auth.example.com)."
        )

    if len(os.getenv("INDIEAUTH_JWT_SECRET", "").strip()) < MIN_JWT_SECRET_LENGTH:
        raise RuntimeError(
            f"INDIEAUTH_JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters."
        )

    for key in (
        "INDIEAUTH_ACCESS_TOKEN_MINUTES",
        "INDIEAUTH_CODE_MINUTES",
        "INDIEAUTH_REFRESH_TOKEN_DAYS",
        "INDIEAUTH_PENDING_MINUTES",
    ):
        if _get_env_int(key, 1) <= 0:
            raise RuntimeError(f"{key} must be a positive integer.")

    if _get_env_float("INDIEAUTH_DISCOVERY_TIMEOUT", 10.0) <= 0:
        raise RuntimeError("INDIEAUTH_DISCOVERY_TIMEOUT must be a positive number.")

    if not os.getenv("INDIEAUTH_INTROSPECTION_SECRET", "").strip():
        LOGGER.warning(
            "INDIEAUTH_INTROSPECTION_SECRET is not set; the introspection endpoint will "
            "reject every request."
        )


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("INDIEAUTH_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
    return debug_enabled


def load_settings() -> Settings:
    """Freeze the process environment into the settings passed to every component."""
    github = GitHubSettings(
        client_id=os.getenv("GITHUB_CLIENT_ID", "").strip(),
        client_secret=os.getenv("GITHUB_CLIENT_SECRET", "").strip(),
        authorize_url=os.getenv(
            "GITHUB_AUTHORIZE_URL", "https://github.com/login/oauth/authorize"
        ).strip(),
        token_url=os.getenv(
            "GITHUB_TOKEN_URL", "https://github.com/login/oauth/access_token"
        ).strip(),
        user_url=os.getenv("GITHUB_USER_URL", "https://api.github.com/user").strip(),
    )
    return Settings(
        base_url=os.getenv("INDIEAUTH_BASE_URL", "").strip(),
        jwt_secret=os.getenv("INDIEAUTH_JWT_SECRET", "").strip(),
        jwt_issuer=os.getenv("INDIEAUTH_JWT_ISSUER", "").strip(),
        jwt_audience=os.getenv("INDIEAUTH_JWT_AUDIENCE", "").strip(),
        access_token_minutes=_get_env_int("INDIEAUTH_ACCESS_TOKEN_MINUTES", 15),
        authorization_code_minutes=_get_env_int("INDIEAUTH_CODE_MINUTES", 10),
        refresh_token_days=_get_env_int("INDIEAUTH_REFRESH_TOKEN_DAYS", 30),
        pending_session_minutes=_get_env_int("INDIEAUTH_PENDING_MINUTES", 30),
        introspection_secret=os.getenv("INDIEAUTH_INTROSPECTION_SECRET", "").strip() or None,
        allowed_profile_hosts=tuple(sorted(parse_csv_env("INDIEAUTH_ALLOWED_PROFILE_HOSTS"))),
        cors_origins=frozenset(parse_csv_env("INDIEAUTH_CORS_ORIGINS")),
        discovery_timeout_seconds=_get_env_float("INDIEAUTH_DISCOVERY_TIMEOUT", 10.0),
        github=github,
    )
