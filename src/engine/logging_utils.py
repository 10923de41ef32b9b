"""Logging helpers for MutaView sessions."""
from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Tuple


def setup_run_logger(output_dir: str, name: str = "mutaview") -> Tuple[logging.Logger, str]:
    os.makedirs(output_dir, exist_ok=True)
    log_path = os.path.join(output_dir, "mutaview.log")

    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    # Replace file handlers left over from an earlier session in this process.
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()

    handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Module loggers (engine.*, app.*) report through the same file.
    for module_root in ("engine", "app"):
        module_logger = logging.getLogger(module_root)
        module_logger.setLevel(logging.INFO)
        for existing in list(module_logger.handlers):
            if isinstance(existing, logging.FileHandler):
                module_logger.removeHandler(existing)
                existing.close()
        module_logger.addHandler(handler)

    logger.info("=== MutaView session started %s ===", datetime.now().isoformat())
    return logger, log_path
