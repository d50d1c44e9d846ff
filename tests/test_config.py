from unittest.mock import patch

from orchestrator.config import Settings
from orchestrator.logging_config import configure_logging, heartbeat_logger


def test_defaults():
    settings = Settings.from_env({})
    assert settings.port == 5000
    assert settings.heartbeat_timeout == 10
    assert settings.health_check_interval == 5
    assert settings.scheduling_algorithm == "first-fit"
    assert settings.driver == "docker"
    assert settings.retry_pending is False
    assert settings.log_file is None


def test_values_from_environment():
    settings = Settings.from_env(
        {
            "PORT": "3000",
            "HEARTBEAT_TIMEOUT": "2.5",
            "SCHEDULING_ALGORITHM": "best-fit",
            "DRIVER": "Simulated",
            "RETRY_PENDING": "yes",
            "LOG_LEVEL": "debug",
            "HEARTBEAT_LOG_FILE": "heartbeats.log",
        }
    )
    assert settings.port == 3000
    assert settings.heartbeat_timeout == 2.5
    assert settings.scheduling_algorithm == "best-fit"
    assert settings.driver == "simulated"
    assert settings.retry_pending is True
    assert settings.log_level == "DEBUG"
    assert settings.heartbeat_log_file == "heartbeats.log"


def test_invalid_numbers_fall_back_to_defaults(caplog):
    settings = Settings.from_env({"PORT": "eighty", "DRIVER_TIMEOUT": "soon"})
    assert settings.port == 5000
    assert settings.driver_timeout == 30
    assert "Invalid PORT" in caplog.text


def test_configure_logging_routes_heartbeats_to_their_own_file(tmp_path):
    path = tmp_path / "heartbeats.log"
    with patch("orchestrator.logging_config.logging.basicConfig") as basic_config:
        configure_logging(Settings(log_level="DEBUG", heartbeat_log_file=str(path)))
    try:
        assert basic_config.call_args.kwargs["level"] == "DEBUG"
        heartbeat_logger.info("Heartbeat from node n1")
        for handler in heartbeat_logger.handlers:
            handler.flush()
        assert "Heartbeat from node n1" in path.read_text()
        assert heartbeat_logger.propagate is False
    finally:
        for handler in heartbeat_logger.handlers:
            handler.close()
        heartbeat_logger.handlers = []


def test_invalid_choices_fall_back_to_defaults(caplog):
    settings = Settings.from_env({"SCHEDULING_ALGORITHM": "random-fit", "LOG_LEVEL": "chatty"})
    assert settings.scheduling_algorithm == "first-fit"
    assert settings.log_level == "INFO"
    assert "Invalid SCHEDULING_ALGORITHM" in caplog.text
    assert "Invalid LOG_LEVEL" in caplog.text
