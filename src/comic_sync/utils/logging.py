from __future__ import annotations
import logging
import logging.config
import os
from pathlib import Path
from typing import Optional
import yaml

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LEVEL_ENV = "COMIC_SYNC_LOG_LEVEL"


def setup_logging(config_path: str = "configs/logging.yaml", level: Optional[str] = None) -> None:
    """
    Configure logging from a dictConfig YAML file, or basicConfig when it is missing.

    ``level`` (or the COMIC_SYNC_LOG_LEVEL environment variable) overrides the
    level of the ``comic_sync`` logger after the file is applied.
    """
    path = Path(config_path)
    if path.exists():
        with path.open("r", encoding="utf-8") as f:
            logging.config.dictConfig(yaml.safe_load(f))
    else:
        logging.basicConfig(level=logging.INFO, format=DEFAULT_FORMAT)

    override = level or os.environ.get(LEVEL_ENV)
    if override:
        logging.getLogger("comic_sync").setLevel(override.upper())


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
