"""Append-only per-gateway event log."""

import json
import logging
import os
from collections import deque
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class GatewayLogger:
    """
    Writes one timestamped line per gateway event, followed by its JSON context.

    The file handler is attached to a dedicated ``bkash_sdk.gateway.<name>``
    logger with propagation disabled, so the file only ever receives gateway
    events. Every event is also mirrored on this module's logger at DEBUG.
    """

    def __init__(self, name: str = "bkash", log_file: Optional[str] = None, enabled: bool = True):
        self.name = name
        self.log_file = log_file
        self.enabled = enabled and bool(log_file)
        self._file_logger = logging.getLogger(f"bkash_sdk.gateway.{name}")
        self._file_logger.propagate = False
        self._file_logger.setLevel(logging.INFO)
        if self.enabled:
            self._attach_file_handler()

    def _attach_file_handler(self) -> None:
        path = os.path.abspath(self.log_file)
        for handler in self._file_logger.handlers:
            if isinstance(handler, logging.FileHandler) and handler.baseFilename == path:
                return
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, mode=0o755, exist_ok=True)
        handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        self._file_logger.addHandler(handler)

    def log(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        """Record a gateway event with optional structured context."""
        encoded = json.dumps(context or {}, default=str, indent=4)
        logger.debug(f"[{self.name}] {message} {encoded}")
        if self.enabled:
            self._file_logger.info(f"{message} {encoded}")

    def close(self) -> None:
        for handler in list(self._file_logger.handlers):
            handler.close()
            self._file_logger.removeHandler(handler)

    def tail(self, lines: int = 100) -> List[str]:
        """Return the last ``lines`` non-empty lines of the log file."""
        if not self.log_file or not os.path.exists(self.log_file):
            return []
        with open(self.log_file, encoding="utf-8") as f:
            return list(deque((line.rstrip("\n") for line in f if line.strip()), maxlen=lines))


class NullGatewayLogger(GatewayLogger):
    """Gateway logger that writes nothing to disk."""

    def __init__(self):
        super().__init__(name="null", log_file=None, enabled=False)
