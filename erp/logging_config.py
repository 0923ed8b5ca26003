from __future__ import annotations

import logging
from typing import Union

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
ROOT_LOGGER = "erp"


def _coerce_level(raw_level: Union[int, str, None]) -> int:
    if isinstance(raw_level, int):
        return raw_level
    if isinstance(raw_level, str):
        return getattr(logging, raw_level.strip().upper(), logging.INFO)
    return logging.INFO


def configure_logging(level: Union[int, str, None] = "INFO") -> logging.Logger:
    """Attach one console handler to the ``erp`` logger tree. Safe to call on every rerun."""
    erp_logger = logging.getLogger(ROOT_LOGGER)
    erp_logger.setLevel(_coerce_level(level))

    if not any(getattr(h, "_erp_handler", False) for h in erp_logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._erp_handler = True  # type: ignore[attr-defined]
        erp_logger.addHandler(handler)
        erp_logger.propagate = False

    return erp_logger
