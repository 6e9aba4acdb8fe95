"""Logging helpers with redaction."""

from __future__ import annotations

import logging
import re
import sys
from typing import Any, Dict


_SENSITIVE_KEYS = re.compile(
    r"(token|secret|api[_-]?key|password|authorization|cookie|code_verifier)", re.IGNORECASE
)
REDACTED = "***REDACTED***"


def configure_logging(level: str) -> None:
    # stdout belongs to the stdio transport.
    logging.basicConfig(
        level=level.upper(),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def redact_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Copy ``payload`` with credential-looking keys masked, at any depth."""
    return {
        key: REDACTED if _SENSITIVE_KEYS.search(str(key)) else _redact_value(value)
        for key, value in payload.items()
    }


def _redact_value(value: Any) -> Any:
    if isinstance(value, dict):
        return redact_payload(value)
    if isinstance(value, list):
        return [_redact_value(item) for item in value]
    return value
