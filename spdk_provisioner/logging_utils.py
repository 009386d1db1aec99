from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .lib.env import PATHS

DEFAULT_LOG_PATH = PATHS.log_default
FALLBACK_LOG_NAME = "spdk-provisioner.log"

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"


def _open_log(path: str) -> Optional[logging.FileHandler]:
    try:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(path)
    except OSError:
        return None


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Configure the root logger for a provisioning run.

    The log file records everything down to DEBUG (command output included);
    the console shows ``level`` and above. If ``log_path`` cannot be opened
    (read-only /var/log, missing privileges) the file goes to the current
    working directory instead.

    Safe to call more than once. Returns the file path actually in use.
    """

    root = logging.getLogger()
    if getattr(root, "_spdk_provisioner_configured", False):
        return getattr(root, "_spdk_provisioner_log_path", log_path)

    root.setLevel(logging.DEBUG)
    fmt = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    chosen_path = log_path
    file_handler = _open_log(log_path)
    if file_handler is None:
        chosen_path = str(Path.cwd() / FALLBACK_LOG_NAME)
        file_handler = logging.FileHandler(chosen_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(fmt)
        root.addHandler(console)

    setattr(root, "_spdk_provisioner_configured", True)
    setattr(root, "_spdk_provisioner_log_path", chosen_path)

    logging.getLogger(__name__).info("Logging to %s (requested %s)", chosen_path, log_path)
    return chosen_path
