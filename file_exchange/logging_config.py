# file_exchange/logging_config.py

import logging
import sys

from file_exchange.config import LOG_LEVEL

logger = logging.getLogger("file-exchange")


def setup_logging(level=LOG_LEVEL):
    """
    Configures the root logger for the service.
    Call once at startup, from main().
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - [%(levelname)s] - %(message)s",
        stream=sys.stdout,
    )
    # Werkzeug logs every request at INFO
    if level != "DEBUG":
        logging.getLogger("werkzeug").setLevel(logging.WARNING)
