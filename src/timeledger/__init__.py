"""timeledger: time tracking and invoicing over a single Excel workbook.

Importing the package wires up the ``timeledger`` logger once. Records go to
stderr and to a size-rotated file under ``.logs/`` at the project root. The
log directory and file are created on the first record written, not on
import.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = PROJECT_ROOT / ".logs"
LOGGER_NAME = "timeledger"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUPS = 5


class _LazyRotatingFileHandler(RotatingFileHandler):
    """Rotating file handler that creates its directory when first opened."""

    def __init__(self, filename: Path) -> None:
        super().__init__(filename, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8", delay=True)

    def _open(self):
        Path(self.baseFilename).parent.mkdir(parents=True, exist_ok=True)
        return super()._open()


def _build_handler(kind: str, log_dir: Path) -> logging.Handler:
    if kind == "file":
        return _LazyRotatingFileHandler(log_dir / f"{LOGGER_NAME}.log")
    if kind == "stderr":
        return logging.StreamHandler(sys.stderr)
    raise ValueError(f"Unknown log handler kind: {kind}")


def configure_logging(level: int = logging.INFO, log_dir: Path | None = None) -> logging.Logger:
    """Attach the file and stderr handlers to the package logger.

    Calling this again is a no-op once handlers are in place, so embedding
    applications may call it first with their own ``level`` and ``log_dir``.
    An unwritable ``log_dir`` surfaces through :meth:`logging.Handler.handleError`
    on the first record rather than failing the import.
    """

    logger = logging.getLogger(LOGGER_NAME)
    if logger.handlers:
        return logger

    logger.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    for kind in ("file", "stderr"):
        handler = _build_handler(kind, log_dir if log_dir is not None else LOG_DIR)
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


log = configure_logging()
log.debug("timeledger logging ready")
