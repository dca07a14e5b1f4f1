"""
Configuration for the CIMIS Irrigation Controller
=================================================
Runtime settings for one daily irrigation run, read from environment
variables prefixed ``IRRIGATION_``. Sets up the logging configuration as well.
"""

import logging
import os
from contextlib import suppress
from dataclasses import dataclass, field

from cimis_irrigation.constants import (
    DEFAULT_CONTROLLER_TOPICS,
    DEFAULT_FLOW_RATE_MS_PER_GALLON,
    DEFAULT_LEDGER_PATH,
    DEFAULT_WAIT_MARGIN_SECONDS,
    DEFAULT_WEATHER_WINDOW_DAYS,
    MAX_HISTORY_DAYS,
    MQTT_CLIENT_ID,
    RELAY_DONE_TOPIC,
)
from cimis_irrigation.domain.exceptions import ConfigurationError


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be an integer.") from None


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be a number.") from None


def parse_controller_topics(value: str) -> dict[int, str]:
    """
    Parse ``"1:/back_yard,2:/front_yard"`` into ``{1: "/back_yard", 2: "/front_yard"}``.
    """
    topics: dict[int, str] = {}
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        number, sep, topic = item.partition(":")
        if not sep or not topic.strip():
            raise ConfigurationError(f"Controller topic entry {item!r} must look like '<number>:<topic>'")
        try:
            controller = int(number)
        except ValueError:
            raise ConfigurationError(f"Controller number {number!r} is not an integer") from None
        if controller <= 0:
            raise ConfigurationError(f"Controller number must be positive, got {controller}")
        topics[controller] = topic.strip()
    return topics


def _env_controller_topics() -> dict[int, str]:
    value = os.getenv("IRRIGATION_CONTROLLER_TOPICS")
    if value is None:
        return dict(DEFAULT_CONTROLLER_TOPICS)
    return parse_controller_topics(value)


@dataclass
class AppConfig:
    """Runtime configuration loaded from environment variables."""

    # CIMIS weather station
    cimis_station: str = field(default_factory=lambda: os.getenv("IRRIGATION_CIMIS_STATION", ""))
    cimis_app_key: str = field(default_factory=lambda: os.getenv("IRRIGATION_CIMIS_APP_KEY", ""))
    weather_window_days: int = field(
        default_factory=lambda: _env_int("IRRIGATION_WEATHER_WINDOW_DAYS", DEFAULT_WEATHER_WINDOW_DAYS)
    )
    weather_cache_dir: str = field(default_factory=lambda: os.getenv("IRRIGATION_WEATHER_CACHE_DIR", "."))
    http_timeout: int = field(default_factory=lambda: _env_int("IRRIGATION_HTTP_TIMEOUT", 30))

    # Ledger
    ledger_path: str = field(default_factory=lambda: os.getenv("IRRIGATION_LEDGER_PATH", DEFAULT_LEDGER_PATH))
    max_history_days: float = field(
        default_factory=lambda: _env_float("IRRIGATION_MAX_HISTORY_DAYS", MAX_HISTORY_DAYS)
    )

    # MQTT
    mqtt_broker_host: str = field(default_factory=lambda: os.getenv("IRRIGATION_MQTT_HOST", "localhost"))
    mqtt_broker_port: int = field(default_factory=lambda: _env_int("IRRIGATION_MQTT_PORT", 1883))
    mqtt_username: str = field(default_factory=lambda: os.getenv("IRRIGATION_MQTT_USERNAME", ""))
    mqtt_password: str = field(default_factory=lambda: os.getenv("IRRIGATION_MQTT_PASSWORD", ""))
    mqtt_client_id: str = field(default_factory=lambda: os.getenv("IRRIGATION_MQTT_CLIENT_ID", MQTT_CLIENT_ID))
    mqtt_connect_retries: int = field(default_factory=lambda: _env_int("IRRIGATION_MQTT_CONNECT_RETRIES", 3))
    mqtt_connect_backoff_seconds: float = field(
        default_factory=lambda: _env_float("IRRIGATION_MQTT_CONNECT_BACKOFF", 2.0)
    )
    relay_done_topic: str = field(default_factory=lambda: os.getenv("IRRIGATION_RELAY_DONE_TOPIC", RELAY_DONE_TOPIC))
    controller_topics: dict[int, str] = field(default_factory=_env_controller_topics)

    # Dispatch pacing
    flow_rate_ms_per_gallon: float = field(
        default_factory=lambda: _env_float("IRRIGATION_FLOW_RATE_MS_PER_GALLON", DEFAULT_FLOW_RATE_MS_PER_GALLON)
    )
    wait_margin_seconds: float = field(
        default_factory=lambda: _env_float("IRRIGATION_WAIT_MARGIN_SECONDS", DEFAULT_WAIT_MARGIN_SECONDS)
    )

    DEBUG: bool = field(default_factory=lambda: _env_bool("IRRIGATION_DEBUG", False))
    log_dir: str = field(default_factory=lambda: os.getenv("IRRIGATION_LOG_DIR", "logs"))

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if self.weather_window_days <= 0:
            raise ConfigurationError("IRRIGATION_WEATHER_WINDOW_DAYS must be positive")
        if self.flow_rate_ms_per_gallon <= 0:
            raise ConfigurationError("IRRIGATION_FLOW_RATE_MS_PER_GALLON must be positive")
        if self.wait_margin_seconds < 0:
            raise ConfigurationError("IRRIGATION_WAIT_MARGIN_SECONDS must not be negative")


# ==================== CONFIGURATION VALIDATION ====================


def validate_config(config: AppConfig) -> list[str]:
    """
    Validate the configuration and return a list of warnings.

    Args:
        config: AppConfig instance

    Returns:
        List of warning messages (empty if all valid)
    """
    warnings = []

    if not config.cimis_station or not config.cimis_app_key:
        warnings.append(
            "IRRIGATION_CIMIS_STATION or IRRIGATION_CIMIS_APP_KEY is empty; only cached weather data can be used"
        )

    if config.flow_rate_ms_per_gallon == DEFAULT_FLOW_RATE_MS_PER_GALLON:
        warnings.append(
            f"Flow rate is {DEFAULT_FLOW_RATE_MS_PER_GALLON} ms/gallon (1 gal/s test shortcut). "
            "Confirm the emitters' real rate before watering a production garden"
        )

    if config.wait_margin_seconds < 1:
        warnings.append(
            f"Wait margin ({config.wait_margin_seconds}s) is under one second; relays may overlap on a slow network"
        )

    if not config.controller_topics:
        warnings.append("No controller topics configured; every zone will be skipped")

    if not config.mqtt_username:
        warnings.append("IRRIGATION_MQTT_USERNAME is empty; connecting to the broker anonymously")

    return warnings


def setup_logging(debug: bool = False, log_dir: str = "logs") -> None:
    """Setup logging configuration."""
    import sys
    from logging.handlers import RotatingFileHandler

    log_level = logging.DEBUG if debug else logging.INFO

    # Root logger
    root = logging.getLogger()
    root.setLevel(log_level)

    # Avoid adding duplicates when called more than once in a process
    has_console = any(getattr(h, "name", "") == "irrigation_console" for h in root.handlers)
    has_file = any(getattr(h, "name", "") == "irrigation_file" for h in root.handlers)
    added_handler = False

    stream = sys.stdout
    with suppress(AttributeError, ValueError):
        stream.reconfigure(encoding="utf-8", errors="replace")
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if not has_console:
        console_handler = logging.StreamHandler(stream=stream)
        console_handler.name = "irrigation_console"
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)
        added_handler = True

    if not has_file:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "irrigation.log"),
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.name = "irrigation_file"
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        added_handler = True

    for handler in root.handlers:
        if getattr(handler, "name", "") in {"irrigation_console", "irrigation_file"}:
            handler.setLevel(log_level)

    if added_handler:
        root.info(f"Logging initialized at level: {logging.getLevelName(log_level)}")

    # paho logs every PINGREQ at DEBUG
    logging.getLogger("paho").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def load_config(debug: bool = False) -> AppConfig:
    """
    Load the configuration, set up logging from it, then log validation warnings.

    Args:
        debug: Force debug logging regardless of IRRIGATION_DEBUG
    """
    config = AppConfig()
    setup_logging(debug=debug or config.DEBUG, log_dir=config.log_dir)
    logger = logging.getLogger("config_loader")
    for warning in validate_config(config):
        logger.warning(warning)
    return config
