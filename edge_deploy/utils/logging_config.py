import logging
import logging.handlers
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Libraries that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def _file_handler(log_file_path: str) -> logging.Handler:
    Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)
    return logging.handlers.RotatingFileHandler(log_file_path, maxBytes=10 * 1024 * 1024, backupCount=5)


def setup_logging(log_to_file: bool = False, log_file_path: str = "edge-deploy.log", debug: bool = True) -> None:
    """
    Configure the root logger for the service.

    Records go to stdout and, when requested, to a rotating file (10MB, five
    backups). Calling this again replaces the handlers of the previous call.

    Args:
        log_to_file: Also write to log_file_path
        log_file_path: Path of the rotating log file
        debug: Log edge_deploy modules at DEBUG rather than INFO
    """
    formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(logging.INFO)

    logging.getLogger("edge_deploy").setLevel(logging.DEBUG if debug else logging.INFO)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_to_file:
        try:
            handlers.append(_file_handler(log_file_path))
        except OSError as e:
            logging.exception(f"Failed to setup file logging to {log_file_path}: {e}")

    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    if len(handlers) > 1:
        logging.info(f"File logging enabled: {log_file_path}")
