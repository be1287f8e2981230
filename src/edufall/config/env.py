"""Environment-driven deployment settings."""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .settings import DB_CONFIG, LEADERBOARD_CONFIG

PROFILE_STORES = ("database", "http", "memory")


class ConfigError(Exception):
    """Raised when the environment holds an unusable setting."""
    pass


@dataclass
class AppConfig:
    database_url: str
    profile_store: str = "database"
    profile_store_url: Optional[str] = None
    profile_store_token: Optional[str] = None
    http_timeout: float = 5.0
    log_level: str = "INFO"
    leaderboard_snapshot_interval: int = 300


def load_config() -> AppConfig:
    load_dotenv()

    profile_store = os.getenv('EDUFALL_PROFILE_STORE', 'database').lower()
    if profile_store not in PROFILE_STORES:
        raise ConfigError(f"Unknown profile store: {profile_store}")

    profile_store_url = os.getenv('EDUFALL_PROFILE_STORE_URL')
    if profile_store == "http" and not profile_store_url:
        raise ConfigError("EDUFALL_PROFILE_STORE_URL is required for the http profile store")

    try:
        return AppConfig(
            database_url=os.getenv('EDUFALL_DATABASE_URL', DB_CONFIG["url"]),
            profile_store=profile_store,
            profile_store_url=profile_store_url,
            profile_store_token=os.getenv('EDUFALL_PROFILE_STORE_TOKEN'),
            http_timeout=float(os.getenv('EDUFALL_HTTP_TIMEOUT', '5.0')),
            log_level=os.getenv('EDUFALL_LOG_LEVEL', 'INFO').upper(),
            leaderboard_snapshot_interval=int(os.getenv(
                'EDUFALL_SNAPSHOT_INTERVAL',
                str(LEADERBOARD_CONFIG["snapshot_interval"])
            )),
        )
    except ValueError as e:
        raise ConfigError(f"Invalid numeric setting: {e}")
