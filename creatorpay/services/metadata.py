"""Pack small key/value payloads into PayPal's ``custom_id`` field.

``custom_id`` is a free-text string capped at 255 characters. Payloads are
form-encoded (``purchase_type=ai_credits&user_id=U1``) and truncated to the
cap, so an oversized payload can lose or mangle its last pair. Decoding is
tolerant and never raises.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote, unquote

CUSTOM_ID_MAX_LENGTH = 255

# Left unescaped alongside alphanumerics.
_SAFE = "-_.!~*'()"


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def encode_custom_metadata(payload: Mapping[str, Any]) -> str:
    pairs = []
    for key, value in payload.items():
        if value is None:
            continue
        pairs.append(f"{quote(str(key), safe=_SAFE)}={quote(_stringify(value), safe=_SAFE)}")
    return "&".join(pairs)[:CUSTOM_ID_MAX_LENGTH]


def decode_custom_metadata(raw: Optional[str]) -> Dict[str, str]:
    metadata: Dict[str, str] = {}
    if not raw or not isinstance(raw, str):
        return metadata
    for segment in raw.split("&"):
        key, _, value = segment.partition("=")
        if not key:
            continue
        metadata[unquote(key)] = unquote(value)
    return metadata
