"""Cloud provider adapter contract shared by every provider implementation."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Protocol, runtime_checkable

from cloudrecon.core.exceptions import AdapterInitError


class ProviderTag:
    """Closed set of provider tags stored on credentials."""

    AWS = "AWS"
    ALIYUN = "阿里云"
    GCP = "GCP"
    AZURE = "Azure"
    TENCENT = "腾讯云"

    ALL = (AWS, ALIYUN, GCP, AZURE, TENCENT)


RESOURCE_TYPE_ALL = "all"


@runtime_checkable
class CloudProvider(Protocol):
    """Capability set every adapter satisfies.

    Adapters are built per request or per task and never shared across
    threads. ``enumerate`` aggregates per-service failures into an ``errors``
    key and only raises when nothing could be listed at all.
    """

    tag: str
    region: str

    def enumerate(self, resource_type: str) -> Dict[str, Any]: ...

    def escalate(self) -> Dict[str, Any]: ...

    def operate(
        self,
        resource_type: str,
        action: str,
        resource_id: str,
        params: Dict[str, Any],
    ) -> Dict[str, Any]: ...

    def takeover(self) -> Dict[str, Any]: ...

    def validate_credentials(self) -> bool: ...

    def get_permissions(self) -> Dict[str, Any]: ...


def require_keys(provider: str, access_key: str, secret_key: str) -> None:
    """Reject obviously unusable credentials before touching any SDK."""
    if not (access_key or "").strip() or not (secret_key or "").strip():
        raise AdapterInitError(
            "invalid credentials: access key and secret key are required",
            provider=provider,
        )


def operation_attempted(
    resource_type: str,
    action: str,
    resource_id: str,
    params: Dict[str, Any],
) -> Dict[str, Any]:
    """Uniform reply for operations a provider does not implement."""
    return {
        "message": "Resource operation attempted",
        "resourceType": resource_type,
        "action": action,
        "resourceID": resource_id,
        "params": params,
    }


def takeover_attempted(actions: list[str] | None = None) -> Dict[str, Any]:
    result: Dict[str, Any] = {"message": "Cloud platform takeover attempted"}
    if actions:
        result["actions"] = list(actions)
    return result


def format_timestamp(value: Any) -> str:
    """Render SDK datetimes as ``YYYY-MM-DDTHH:MM:SSZ``; pass strings through."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.strftime("%Y-%m-%dT%H:%M:%SZ")
    return str(value)
