# cuprite/utils/redact.py
"""
Lightweight log redaction helpers.

Command params routinely carry cookie values and authorization headers.
`redact_for_log` masks those before the dispatcher logs outbound traffic.

Usage:
    from cuprite.utils.redact import redact_for_log

    logger.debug("Sending command", extra={"params": redact_for_log(params)})

Notes:
- This is **for logs only**. Never redact the frame actually sent.
- Remote identifiers (frame ids, target ids, session ids) are long opaque
  strings; they are deliberately not treated as secrets.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Mapping

# Case-insensitive key substrings that imply sensitive values
KEY_PATTERNS = [
    "password",
    "passwd",
    "secret",
    "token",
    "apikey",
    "api_key",
    "authorization",
    "cookie",
    "credential",
    "jwt",
    "bearer",
]

# Regexes that suggest a value *content* is sensitive
VALUE_PATTERNS = [
    re.compile(r"^Bearer\s+[A-Za-z0-9\-\._~\+\/]+=*$", re.IGNORECASE),
    re.compile(r"^Basic\s+[A-Za-z0-9\+\/]+=*$", re.IGNORECASE),
    re.compile(
        r"^eyJ[a-zA-Z0-9_\-]+?\.[a-zA-Z0-9_\-]+?\.[a-zA-Z0-9_\-]+$"
    ),  # naive JWT
]

REDACTED = "********"


def _looks_sensitive_key(key: str) -> bool:
    k = key.lower()
    return any(p in k for p in KEY_PATTERNS)


def _looks_sensitive_value(val: Any) -> bool:
    if not isinstance(val, str):
        return False
    s = val.strip()
    if not s:
        return False
    return any(rx.search(s) for rx in VALUE_PATTERNS)


def _redact_primitive(val: Any) -> Any:
    if isinstance(val, str):
        # Keep length hint (to preserve structure in logs)
        if len(val) <= 8:
            return REDACTED
        return f"{REDACTED}({len(val)})"
    return REDACTED


def _redact_cookie_entry(entry: Mapping[str, Any]) -> Dict[str, Any]:
    # Cookie params are {name, value, ...}; only the value is secret.
    out = dict(entry)
    if "value" in out:
        out["value"] = _redact_primitive(out["value"])
    return out


def redact_for_log(obj: Any) -> Any:
    """
    Return a structurally similar object with sensitive material masked.

    - Dict: redact by key heuristics; recurse values.
    - Cookie-shaped dict (has ``name`` and ``value``): mask the value.
    - Sequence: recurse each element.
    - String: redact if it matches sensitive value patterns; else pass through.
    - Everything else: pass through.
    """
    if isinstance(obj, Mapping):
        if "name" in obj and "value" in obj and ("domain" in obj or "url" in obj):
            return _redact_cookie_entry(obj)
        out: Dict[str, Any] = {}
        for k, v in obj.items():
            if _looks_sensitive_key(str(k)) and not isinstance(v, (Mapping, list)):
                out[k] = _redact_primitive(v)
            elif _looks_sensitive_value(v):
                out[k] = _redact_primitive(v)
            else:
                out[k] = redact_for_log(v)
        return out
    if isinstance(obj, (list, tuple)):
        t = type(obj)
        return t(redact_for_log(x) for x in obj)
    if isinstance(obj, str):
        return _redact_primitive(obj) if _looks_sensitive_value(obj) else obj
    return obj
