import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(node)s] %(message)s"


class NodeNameFilter(logging.Filter):
    """Stamp every record with the node name used in LOG_FORMAT."""

    def __init__(self, node_name: str):
        super().__init__()
        self.node_name = node_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.node = self.node_name
        return True


def _attach(logger: logging.Logger, handler: logging.Handler, node_name: str) -> None:
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(NodeNameFilter(node_name))
    logger.addHandler(handler)


def setup_logger(node_name: str, level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(f"marker_link.{node_name}")
    logger.setLevel(level)
    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
               for h in logger.handlers):
        _attach(logger, logging.StreamHandler(), node_name)
    return logger


def add_file_handler(logger: logging.Logger, node_name: str, log_path: str,
                     level: Optional[int] = None) -> None:
    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path)
    if level is not None:
        handler.setLevel(level)
    _attach(logger, handler, node_name)
