# -*- coding: utf-8 -*-
"""
Logging setup for kgforge.

Entry points (CLI scripts, services) call setup_logging() once; library modules
only ever do logger = logging.getLogger(__name__) and never configure handlers.

Examples:
    from kgforge.utils.logger import setup_logging
    setup_logging(log_file="logs/ingestion.log")

    import logging
    logger = logging.getLogger(__name__)
    logger.info("Parsed %d blocks", 12)

"""
# Standard library
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Third-party loggers that flood INFO with connection/HTTP chatter
NOISY_LOGGERS = ('neo4j', 'httpx', 'urllib3', 'sentence_transformers', 'faiss')

_logging_configured = False


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    format_string: str = DEFAULT_FORMAT,
    quiet_loggers: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """
    Configure root logging with a console handler and an optional file handler.

    Only the first call has an effect, so scripts and services can both call
    it without stacking handlers.

    Args:
        level: Root logging level
        log_file: Optional log file path; parent directories are created
        format_string: Formatter pattern shared by all handlers
        quiet_loggers: Third-party logger names raised to WARNING
    """
    global _logging_configured

    if _logging_configured:
        return

    formatter = logging.Formatter(format_string)
    handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    for name in quiet_loggers:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _logging_configured = True


def get_logger(name: str) -> logging.Logger:
    """Return the module logger (same as logging.getLogger(name))."""
    return logging.getLogger(name)
