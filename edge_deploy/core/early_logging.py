"""
Logging set up from the raw environment, before settings are loaded.

Importing this module configures logging, so config.py can already report
which env files it reads. Settings loading then configures it again with the
validated values.
"""

import logging
import os

from edge_deploy.utils.logging_config import setup_logging

_TRUE = ("1", "true", "yes", "on")


def initialize_logging() -> None:
    setup_logging(
        log_to_file=os.environ.get("LOG_TO_FILE", "false").lower() in _TRUE,
        log_file_path=os.environ.get("LOG_FILE_PATH", "edge-deploy.log"),
        debug=os.environ.get("DEBUG", "false").lower() in _TRUE,
    )
    logging.getLogger(__name__).debug("Early logging initialized")


initialize_logging()
