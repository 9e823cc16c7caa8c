"""
Environment configuration for the fabric stock checker.

Loads credentials from the .env file next to this module and exposes
small getters so values are read at call time (tests patch os.environ).
"""

import json
import os
from pathlib import Path
from typing import Dict, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv


# Load .env from backend directory
BACKEND_DIR = Path(__file__).parent
load_dotenv(BACKEND_DIR / ".env")


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_TIMEZONE = "America/New_York"
DEFAULT_CRON_SCHEDULE = "0 1 * * *"  # 1 AM every day
DEFAULT_PORT = 3000
DEFAULT_REQUEST_DELAY = 2.0  # Seconds between fabric records

RUN_MODE_DEVELOPMENT = "development"
RUN_MODE_GITHUB_ACTIONS = "github_actions"
RUN_MODE_PRODUCTION = "production"


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() == "true"


def get_run_mode() -> str:
    """Determine run mode from DEV_MODE / GITHUB_ACTIONS flags."""
    if _env_flag("DEV_MODE"):
        return RUN_MODE_DEVELOPMENT
    if _env_flag("GITHUB_ACTIONS"):
        return RUN_MODE_GITHUB_ACTIONS
    return RUN_MODE_PRODUCTION


def get_timezone_name() -> str:
    return os.getenv("TZ") or DEFAULT_TIMEZONE


def get_timezone() -> ZoneInfo:
    """Timezone used for the schedule and Status sheet timestamps."""
    name = get_timezone_name()
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"Unknown timezone in TZ: {name}") from e


def get_cron_schedule() -> str:
    return os.getenv("CRON_SCHEDULE") or DEFAULT_CRON_SCHEDULE


def get_port() -> int:
    value = os.getenv("PORT")
    if not value:
        return DEFAULT_PORT
    try:
        return int(value)
    except ValueError as e:
        raise ConfigError(f"PORT must be an integer, got: {value}") from e


def get_request_delay() -> float:
    value = os.getenv("REQUEST_DELAY")
    if not value:
        return DEFAULT_REQUEST_DELAY
    try:
        return max(0.0, float(value))
    except ValueError as e:
        raise ConfigError(f"REQUEST_DELAY must be a number, got: {value}") from e


def is_headless() -> bool:
    return os.getenv("HEADLESS", "true").strip().lower() != "false"


def get_spreadsheet_id() -> str:
    spreadsheet_id = os.getenv("GOOGLE_SPREADSHEET_ID")
    if not spreadsheet_id:
        raise ConfigError(
            "GOOGLE_SPREADSHEET_ID not found in environment. "
            "Please set it in backend/.env"
        )
    return spreadsheet_id


def load_service_account_info() -> Dict:
    """
    Load Google service-account credentials.

    GOOGLE_SERVICE_ACCOUNT_KEY_JSON (inline JSON, used on hosted deployments)
    takes precedence over GOOGLE_SERVICE_ACCOUNT_KEY_FILE (path to a key file,
    relative paths resolved against the backend directory).
    """
    inline = os.getenv("GOOGLE_SERVICE_ACCOUNT_KEY_JSON")
    if inline:
        try:
            return json.loads(inline)
        except json.JSONDecodeError as e:
            raise ConfigError(f"GOOGLE_SERVICE_ACCOUNT_KEY_JSON is not valid JSON: {e}") from e

    key_file = os.getenv("GOOGLE_SERVICE_ACCOUNT_KEY_FILE")
    if key_file:
        path = Path(key_file)
        if not path.is_absolute():
            path = BACKEND_DIR / path
        if not path.exists():
            raise ConfigError(f"Service account key file not found: {path}")
        return json.loads(path.read_text(encoding="utf-8"))

    raise ConfigError("No Google credentials configured")


def get_credentials(username_env: str, password_env: str) -> Tuple[str, str]:
    """Read a supplier's portal credentials from the given env var names."""
    username = os.getenv(username_env)
    password = os.getenv(password_env)
    if not username or not password:
        raise ConfigError(f"Missing credentials: set {username_env} and {password_env}")
    return username, password
