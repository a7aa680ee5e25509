from __future__ import annotations

import json
import logging
from datetime import datetime, timezone


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    return logger


def log_action(
    logger: logging.Logger,
    module: str,
    action: str,
    *,
    role: str | None = None,
    tenant_id: str | None = None,
    tab_id: str | None = None,
    trace_id: str | None = None,
    outcome: str,
    level: int = logging.INFO,
    **extra: object,
) -> None:
    payload = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "level": logging.getLevelName(level),
        "module": module,
        "action": action,
        "role": role,
        "tenant_id": tenant_id,
        "tab_id": tab_id,
        "trace_id": trace_id,
        "outcome": outcome,
    }
    payload.update(extra)
    logger.log(level, json.dumps(payload, default=str))
