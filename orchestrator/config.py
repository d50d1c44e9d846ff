import logging
import os
from dataclasses import dataclass
from typing import Optional

from orchestrator.placement import FIRST_FIT, SCHEDULING_ALGORITHMS

logger = logging.getLogger(__name__)

# Defaults
PORT = 5000
HEARTBEAT_TIMEOUT = 10  # seconds
HEALTH_CHECK_INTERVAL = 5  # seconds
DRIVER_TIMEOUT = 30  # seconds

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _number(env, name, default, cast=float):
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.error(f"Invalid {name} environment variable {raw!r}. Using default ({default}).")
        return default


def _choice(env, name, choices, default, upper=False):
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    if upper:
        raw = raw.upper()
    if raw not in choices:
        logger.error(f"Invalid {name} environment variable {raw!r}. Using default ({default}).")
        return default
    return raw


def _flag(env, name, default=False):
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    port: int = PORT
    heartbeat_timeout: float = HEARTBEAT_TIMEOUT
    health_check_interval: float = HEALTH_CHECK_INTERVAL
    scheduling_algorithm: str = FIRST_FIT
    driver: str = "docker"
    driver_timeout: float = DRIVER_TIMEOUT
    node_image: str = "alpine"
    retry_pending: bool = False
    log_level: str = "INFO"
    log_file: Optional[str] = None
    heartbeat_log_file: Optional[str] = None

    @classmethod
    def from_env(cls, env=None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            port=_number(env, "PORT", PORT, int),
            heartbeat_timeout=_number(env, "HEARTBEAT_TIMEOUT", HEARTBEAT_TIMEOUT),
            health_check_interval=_number(env, "HEALTH_CHECK_INTERVAL", HEALTH_CHECK_INTERVAL),
            scheduling_algorithm=_choice(env, "SCHEDULING_ALGORITHM", SCHEDULING_ALGORITHMS, FIRST_FIT),
            driver=env.get("DRIVER", "docker").lower(),
            driver_timeout=_number(env, "DRIVER_TIMEOUT", DRIVER_TIMEOUT),
            node_image=env.get("NODE_IMAGE", "alpine"),
            retry_pending=_flag(env, "RETRY_PENDING"),
            log_level=_choice(env, "LOG_LEVEL", LOG_LEVELS, "INFO", upper=True),
            log_file=env.get("LOG_FILE") or None,
            heartbeat_log_file=env.get("HEARTBEAT_LOG_FILE") or None,
        )
