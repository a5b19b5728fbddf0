"""Shared logger construction for :mod:`precip_rank`."""

from __future__ import annotations

import logging


def build_logger(name: str, log_file: str = "precip_rank.log") -> logging.Logger:
    """Create a logger with the shared handlers if it has not been configured."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')

    # delay=True: the file only appears once something is logged
    file_handler = logging.FileHandler(log_file, delay=True)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(logging.INFO)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    return logger


LOGGER = build_logger("precip_rank")
align_logger = LOGGER.getChild("align")
table_logger = LOGGER.getChild("table")
stats_logger = LOGGER.getChild("stats")
pipeline_logger = LOGGER.getChild("pipeline")
plot_logger = LOGGER.getChild("plot")
