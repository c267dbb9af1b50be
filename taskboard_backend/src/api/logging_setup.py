from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the console readable:
    - allow all of our own logs ('src.api.*')
    - third-party loggers (uvicorn, httpx, ...) only at WARNING+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("src.api"):
            return True
        return record.levelno >= logging.WARNING


# PUBLIC_INTERFACE
def setup_logging(
    *,
    level: Union[int, str] = logging.INFO,
    log_dir: Optional[Union[str, Path]] = None,
    file_level: int = logging.DEBUG,
) -> None:
    """
    Configure root logging with:
    - Console handler: filtered, at `level`
    - File handler (only when `log_dir` is given): rotating, full logs at `file_level`

    Safe to call more than once; previously installed handlers are replaced.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(min(level, file_level) if log_dir else level)

    # Only our own handlers are replaced; test harness handlers stay attached.
    for h in list(root.handlers):
        if getattr(h, "_taskboard_handler", False):
            root.removeHandler(h)
            h.close()

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(level)
    ch.setFormatter(fmt)
    ch.addFilter(_ConsoleNoiseFilter())
    ch._taskboard_handler = True  # type: ignore[attr-defined]
    root.addHandler(ch)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(
            str(path / "taskboard.log"), maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
        )
        fh.setLevel(file_level)
        fh.setFormatter(fmt)
        fh._taskboard_handler = True  # type: ignore[attr-defined]
        root.addHandler(fh)

    logging.captureWarnings(True)
