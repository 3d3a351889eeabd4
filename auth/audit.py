from __future__ import annotations

import json
import logging
import time
from typing import Any

audit_logger = logging.getLogger("indieauth.audit")


def redact(value: str | None) -> str | None:
    """Keep only a short prefix of a secret so log lines can be correlated."""
    if not value:
        return value
    return f"{value[:6]}..."


def audit(event: str, **kwargs: Any) -> None:
    """Emit a structured JSON audit log entry."""
    entry = {"ts": time.time(), "event": event, **kwargs}
    audit_logger.info(json.dumps(entry))
