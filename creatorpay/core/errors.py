"""Typed failures for the commerce pipeline.

Every error carries a ``kind`` so routes can branch on what went wrong
(bad configuration, a gateway protocol failure, an unresolvable entity or a
failed storage call) without catching generic exceptions.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

KIND_CONFIGURATION = "configuration"
KIND_PROTOCOL = "protocol"
KIND_RESOLUTION = "resolution"
KIND_BACKEND = "backend"


class CommerceError(Exception):
    kind = "commerce"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"error": self.message, "kind": self.kind}
        if self.details:
            out["details"] = self.details
        return out


class ConfigurationError(CommerceError):
    """Required configuration is missing; raised before any network call."""

    kind = KIND_CONFIGURATION


class GatewayError(CommerceError):
    """PayPal answered with a non-2xx status."""

    kind = KIND_PROTOCOL

    def __init__(self, message: str, *, status_code: int, body: str):
        super().__init__(f"{message} ({status_code}): {body}", details={"status_code": status_code})
        self.status_code = status_code
        self.body = body


class EntityStoreError(CommerceError):
    def __init__(self, message: str, *, entity: str, table: Optional[str] = None, cause: Any = None):
        details: Dict[str, Any] = {"entity": entity}
        if table:
            details["table"] = table
        super().__init__(message, details=details)
        self.entity = entity
        self.table = table
        self.cause = cause


class EntityNotResolvedError(EntityStoreError):
    kind = KIND_RESOLUTION


class EntityBackendError(EntityStoreError):
    kind = KIND_BACKEND


ERROR_KIND_STATUS = {
    KIND_CONFIGURATION: 500,
    KIND_PROTOCOL: 502,
    KIND_RESOLUTION: 500,
    KIND_BACKEND: 500,
}


def error_kind_status(err: CommerceError) -> int:
    return ERROR_KIND_STATUS.get(err.kind, 500)
