#!/usr/bin/env python3
"""
Logger setup for the savings pipeline
Console plus a per-run log file; HTTP client chatter from the Ollama tiers is kept at WARNING
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
NOISY_LOGGERS = ('urllib3', 'requests')


def setup_logger(log_level: str = 'INFO', log_dir: Optional[Path] = None, log_name: str = 'workflow',
                 log_format: str = DEFAULT_FORMAT, quiet: Sequence[str] = NOISY_LOGGERS) -> logging.Logger:
    """
    Setup logging configuration

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for log files (defaults to 'logs/')
        log_name: Log file stem, written as <log_dir>/<log_name>.log
        log_format: Record format (config.LOGGING['format'])
        quiet: Library loggers held at WARNING regardless of log_level

    Returns:
        Configured logger instance
    """
    log_dir = Path(log_dir) if log_dir else Path('logs')
    log_dir.mkdir(parents=True, exist_ok=True)

    # force=True so a second run in the same process re-targets the log file
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=log_format,
        handlers=[
            logging.FileHandler(log_dir / f'{log_name}.log', encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ],
        force=True,
    )
    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger(log_name)
