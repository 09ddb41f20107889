"""
Global configuration for the Competitor Sentiment Engine.

Environment-driven settings and defaults live here. Pipeline tunables
(batch sizes, caps, thresholds) are grouped in AnalysisSettings, which is
passed into every component instead of being read from module globals.

API keys can be stored in database (preferred) or .env (fallback).
"""

import logging
import os
import sqlite3
from dataclasses import dataclass, fields, replace
from pathlib import Path

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()

# ── Paths ──
PROJECT_ROOT = Path(__file__).parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
DB_PATH = DATA_DIR / "sentiment_engine.db"

# Ensure data directory exists
DATA_DIR.mkdir(parents=True, exist_ok=True)


API_KEY_ENV_VARS = {
    "apify": "APIFY_API_TOKEN",
    "openai": "OPENAI_API_KEY",
}


def _stored_api_key(service: str, db_path: Path) -> str:
    if not db_path.exists():
        return ""
    conn = sqlite3.connect(str(db_path))
    try:
        row = conn.execute(
            "SELECT api_key FROM api_credentials WHERE service = ?", (service,)
        ).fetchone()
    except sqlite3.Error as e:
        logger.debug(f"Credential table unavailable ({e}), using environment for {service}")
        return ""
    finally:
        conn.close()
    return row[0] if row else ""


def get_api_key(service: str, db_path=None) -> str:
    """Credential for `service` ("apify" or "openai"): api_credentials row, else env var."""
    key = _stored_api_key(service, Path(db_path or DB_PATH))
    if key:
        return key

    env_var = API_KEY_ENV_VARS.get(service)
    key = os.getenv(env_var, "") if env_var else ""
    if not key:
        logger.warning(f"No {service} credential configured (table or {env_var or 'env'})")
    return key


# ── OpenAI ──
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_TEMPERATURE = 0.3
OPENAI_TIMEOUT_SECONDS = float(os.getenv("OPENAI_TIMEOUT_SECONDS", "60"))

# ── Apify ──
APIFY_BASE_URL = os.getenv("APIFY_BASE_URL", "https://api.apify.com/v2")
APIFY_REQUEST_TIMEOUT = 30  # seconds per HTTP call, not the run itself

# ── Analysis settings file (optional YAML overrides) ──
ANALYSIS_SETTINGS_FILE = os.getenv("ANALYSIS_SETTINGS_FILE")

# ── Logging ──
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


class SettingsValidationError(Exception):
    """Raised when an analysis settings file has unknown or invalid values."""
    pass


@dataclass(frozen=True)
class AnalysisSettings:
    """Tunables for one analysis run. Every field must be a positive number."""
    posts_limit: int = 10                    # posts kept per profile
    comments_per_post: int = 50              # comments kept per post
    min_comment_length: int = 10             # shorter (trimmed) comments are dropped
    sentiment_batch_size: int = 20           # comments per completion request
    poll_interval_seconds: float = 5
    max_poll_attempts: int = 60              # 60 x 5s = ~5 minutes
    tiktok_min_comments_per_post: int = 10
    top_keywords_limit: int = 10
    default_follower_count: int = 1000       # placeholder when the real count is unknown
    max_platform_workers: int = 1            # 1 = platforms scraped sequentially
    max_classification_workers: int = 1


def load_settings(path=None, **overrides) -> AnalysisSettings:
    """
    Build AnalysisSettings from an optional YAML file plus keyword overrides.

    Falls back to ANALYSIS_SETTINGS_FILE when no path is given. Missing
    file path means defaults only.
    """
    path = path or ANALYSIS_SETTINGS_FILE
    values = {}

    if path:
        settings_path = Path(path)
        if not settings_path.exists():
            raise SettingsValidationError(f"Settings file not found: {settings_path}")
        with open(settings_path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise SettingsValidationError(
                f"Settings file {settings_path} must contain a mapping"
            )
        values.update(data)
        logger.info(f"Loaded analysis settings from {settings_path}")

    values.update(overrides)

    known = {f.name: f for f in fields(AnalysisSettings)}
    unknown = sorted(set(values) - set(known))
    if unknown:
        raise SettingsValidationError(f"Unknown settings: {', '.join(unknown)}")

    for name, value in values.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise SettingsValidationError(f"Setting '{name}' must be a number, got {value!r}")
        if value <= 0:
            raise SettingsValidationError(f"Setting '{name}' must be positive, got {value}")
        if known[name].type in (int, "int"):
            if int(value) != value:
                raise SettingsValidationError(f"Setting '{name}' must be an integer, got {value}")
            values[name] = int(value)

    return replace(AnalysisSettings(), **values)


DEFAULT_SETTINGS = AnalysisSettings()

