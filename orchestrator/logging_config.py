import logging

LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(threadName)s] - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Heartbeats are frequent; they go to their own logger so they can be kept
# out of the main log.
heartbeat_logger = logging.getLogger("HeartbeatLogger")
heartbeat_logger.propagate = False


def configure_logging(settings):
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    handlers = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file, mode="a"))
    for handler in handlers:
        handler.setFormatter(formatter)
    logging.basicConfig(level=settings.log_level, handlers=handlers, force=True)

    logging.getLogger("werkzeug").setLevel(logging.ERROR)
    logging.getLogger("engineio").setLevel(logging.WARNING)
    logging.getLogger("socketio").setLevel(logging.WARNING)

    heartbeat_logger.setLevel(logging.INFO)
    heartbeat_logger.handlers = []
    if settings.heartbeat_log_file:
        heartbeat_handler = logging.FileHandler(settings.heartbeat_log_file, mode="a")
        heartbeat_handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(message)s", DATE_FORMAT))
        heartbeat_logger.addHandler(heartbeat_handler)
    else:
        heartbeat_logger.addHandler(logging.NullHandler())
