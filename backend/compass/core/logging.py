from __future__ import annotations

import json
import logging
import sys
import time
from typing import Literal, Union

LogFormat = Literal["console", "json"]


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record; session/flow ids ride along when present."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for extra in ("session_id", "flow_id", "node_id"):
            val = getattr(record, extra, None)
            if val is not None:
                payload[extra] = val
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _coerce_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(level: Union[int, str] = logging.INFO, fmt: LogFormat = "console") -> None:
    """
    Configure root + uvicorn/fastapi loggers. Idempotent.
    """
    root = logging.getLogger()
    if getattr(root, "_compass_logging_inited", False):
        return

    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(JsonLineFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("[%(levelname)s] %(asctime)s %(name)s: %(message)s", datefmt="%H:%M:%S")
        )

    lvl = _coerce_level(level)
    root.setLevel(lvl)
    root.addHandler(handler)

    # align uvicorn if present so we don't double log
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        logger = logging.getLogger(name)
        logger.setLevel(lvl)
        for h in list(logger.handlers):
            logger.removeHandler(h)
        logger.addHandler(handler)
        logger.propagate = False

    root._compass_logging_inited = True  # type: ignore[attr-defined]
