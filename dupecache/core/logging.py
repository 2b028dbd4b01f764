from __future__ import annotations

import logging

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    resolved = logging.getLevelName(level.upper().strip())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    root = logging.getLogger()
    if not any(getattr(handler, "_dupecache", False) for handler in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handler._dupecache = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(resolved)
    logging.getLogger("dupecache").setLevel(resolved)
