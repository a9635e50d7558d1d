"""
Log setup for the volume driver daemon.

Records from every module land on stdout tagged with the component name;
a log file can be added for hosts where stdout is not collected.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Per-request lines from the HTTP listeners
NOISY_LOGGERS = ("uvicorn.access",)


def _component_format(component_name: str) -> str:
    return f'[%(asctime)s] [{component_name.upper()}] %(levelname)s - %(message)s'


def setup_logging(
    component_name: str,
    level=logging.INFO,
    log_file: Optional[str] = None,
    format_string: Optional[str] = None
):
    """
    Route driver logging to stdout (and optionally a file).

    Args:
        component_name: Tag printed on every line (e.g., 'driver')
        level: Root level; the launcher passes DEBUG for --debug
        log_file: Extra file to append records to
        format_string: Replaces the tagged default format

    Returns:
        The component's logger
    """
    format_string = format_string or _component_format(component_name)

    logging.basicConfig(
        level=level,
        format=format_string,
        datefmt=LOG_DATE_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    logging.getLogger().setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(format_string, datefmt=LOG_DATE_FORMAT))
        logging.getLogger().addHandler(file_handler)

    logger = logging.getLogger(component_name)
    logger.debug(f"Logging for {component_name} at {logging.getLevelName(level)}")
    return logger
