"""Configuration for the news clusterer.

All settings are loaded from environment variables with sensible defaults.

Environment Variables:
    Oracle:
        GEMINI_API_KEY: Google Gemini API key used for clustering and duplicate judgment
        GEMINI_MODEL: Model name (default: gemini-2.5-pro)
        GEMINI_BASE_URL: REST endpoint root
        ORACLE_TIMEOUT_SECONDS: Timeout for a single oracle call

    Publishing store:
        WP_URL: WordPress site URL
        WP_USER: WordPress user for application-password auth
        WP_APP_PASSWORD: WordPress application password

    Clustering:
        RULES_PATH: JSON file holding learned merge rules
        MAX_LEARNED_RULES: How many learned rules to keep (default: 200)
        DUPLICATE_WINDOW_HOURS: Recency window for duplicate checks (default: 24)

    Logging:
        LOG_LEVEL: Logging verbosity (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        LOG_FORMAT: 'text' or 'json'
        LOG_FILE: Optional file to write logs to
"""

import os
from dataclasses import dataclass


def _env(key: str, default: str = "") -> str:
    """Get string environment variable with optional default."""
    return os.environ.get(key, default).strip()


def _env_int(key: str, default: int) -> int:
    """Get integer environment variable with default.

    Raises:
        ValueError: If value is set but cannot be parsed as integer
    """
    val = os.environ.get(key)
    if not val:
        return default
    try:
        return int(val)
    except ValueError:
        raise ValueError(f"Invalid integer value for {key}: '{val}'")


def _env_float(key: str, default: float) -> float:
    """Get float environment variable with default.

    Raises:
        ValueError: If value is set but cannot be parsed as float
    """
    val = os.environ.get(key)
    if not val:
        return default
    try:
        return float(val)
    except ValueError:
        raise ValueError(f"Invalid float value for {key}: '{val}'")


@dataclass
class Settings:
    """Runtime settings for the clusterer, its oracle and its stores."""

    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-pro"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    oracle_timeout_seconds: float = 120.0

    wp_url: str = "https://barna.news"
    wp_user: str = ""
    wp_app_password: str = ""

    rules_path: str = "data/learned_merge_rules.json"
    max_learned_rules: int = 200
    duplicate_window_hours: int = 24

    log_level: str = "INFO"
    log_json: bool = False
    log_file: str = ""

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        log_format = _env("LOG_FORMAT", "text").lower()
        if log_format not in ("text", "json"):
            raise ValueError(f"Invalid LOG_FORMAT: '{log_format}' (expected 'text' or 'json')")

        return cls(
            gemini_api_key=_env("GEMINI_API_KEY"),
            gemini_model=_env("GEMINI_MODEL", cls.gemini_model) or cls.gemini_model,
            gemini_base_url=_env("GEMINI_BASE_URL", cls.gemini_base_url) or cls.gemini_base_url,
            oracle_timeout_seconds=_env_float("ORACLE_TIMEOUT_SECONDS", cls.oracle_timeout_seconds),
            wp_url=(_env("WP_URL", cls.wp_url) or cls.wp_url).rstrip("/"),
            wp_user=_env("WP_USER"),
            wp_app_password=_env("WP_APP_PASSWORD"),
            rules_path=_env("RULES_PATH", cls.rules_path) or cls.rules_path,
            max_learned_rules=_env_int("MAX_LEARNED_RULES", cls.max_learned_rules),
            duplicate_window_hours=_env_int("DUPLICATE_WINDOW_HOURS", cls.duplicate_window_hours),
            log_level=_env("LOG_LEVEL", cls.log_level).upper() or cls.log_level,
            log_json=log_format == "json",
            log_file=_env("LOG_FILE"),
        )

    @property
    def has_wp_auth(self) -> bool:
        """Whether WordPress credentials are configured."""
        return bool(self.wp_user and self.wp_app_password)
