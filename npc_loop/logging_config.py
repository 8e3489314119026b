"""
LOGGING
=======

All npc_loop modules log through ``logging.getLogger(__name__)``; this
module attaches handlers to the ``npc_loop`` parent logger once, so child
loggers (npc_loop.nodes.reason, npc_loop.orchestrator, ...) inherit them.

Handlers
--------
- console: always on
- file: rotating, 10 MB x 5 backups, utf-8
    log_file=None    → data/npcLoop/LOGS/npcloop.log
    log_file="none"  → no file handler
    anything else    → that path

``NPC_LOOP_LOG_LEVEL`` overrides the configured level. Below DEBUG the
HTTP stack (urllib3, used by the completion client) is kept at WARNING.
"""

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
LOG_LEVEL_ENV = "NPC_LOOP_LOG_LEVEL"
LOG_FILE_NAME = "npcloop.log"
MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 5

PACKAGE_LOGGER = "npc_loop"
NOISY_LOGGERS = ("urllib3",)

_logging_configured = False


def _resolve_level(level: str) -> int:
    name = os.environ.get(LOG_LEVEL_ENV) or level or "INFO"
    return getattr(logging, name.upper(), logging.INFO)


def _resolve_log_file(log_file: Optional[str]) -> Optional[str]:
    if isinstance(log_file, str) and log_file.lower() == "none":
        return None
    if log_file is None:
        from npc_loop.config.loader import _get_data_dir

        log_dir = _get_data_dir() / "LOGS"
        log_dir.mkdir(parents=True, exist_ok=True)
        return str(log_dir / LOG_FILE_NAME)
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    return log_file


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Attach console and (optionally) file handlers to the npc_loop logger.

    Only the first call has an effect until ``reset_logging`` runs.
    """
    global _logging_configured
    if _logging_configured:
        return
    _logging_configured = True

    numeric_level = _resolve_level(level)
    parent_logger = logging.getLogger(PACKAGE_LOGGER)
    parent_logger.setLevel(numeric_level)
    parent_logger.propagate = False
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    handlers = [logging.StreamHandler()]
    path = _resolve_log_file(log_file)
    if path:
        handlers.append(logging.handlers.RotatingFileHandler(
            path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8",
        ))
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        parent_logger.addHandler(handler)

    if numeric_level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging_from_config(config) -> None:
    """``setup_logging`` driven by a GlobalConfig's logging section."""
    setup_logging(config.logging_level, config.logging_file)


def reset_logging() -> None:
    """Detach and close npc_loop handlers so ``setup_logging`` can run again."""
    global _logging_configured
    parent_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(parent_logger.handlers):
        parent_logger.removeHandler(handler)
        handler.close()
    parent_logger.propagate = True
    _logging_configured = False
