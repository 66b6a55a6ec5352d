import logging
from pathlib import Path
from typing import Union

"""
logs.py - where the server's log lines go.

Library modules only ever call logging.getLogger(__name__); the launcher
calls configure_logging() once with the path from the server config.
"""

LOG_FORMAT = "%(asctime)s %(levelname)-5s [%(name)s] %(message)s"


def configure_logging(log_file: Union[str, Path], level: int = logging.INFO) -> logging.Handler:
    """Append INFO+ records from the `scp` loggers to log_file."""
    path = Path(log_file)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger("scp")
    for old in list(root.handlers):
        root.removeHandler(old)
        old.close()
    root.addHandler(handler)
    root.setLevel(level)
    return handler
