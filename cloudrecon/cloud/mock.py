"""Deterministic mock adapter for CI and demos (``PROVIDER_MODE=mock``).

Accepts the AWS resource type set and returns one fixed record per service,
without any network access.
"""

from typing import Optional

from cloudrecon.cloud.aws import RESOURCE_KEYS
from cloudrecon.cloud.static import InventoryService, ProviderProfile, StaticInventoryAdapter
from cloudrecon.config import Settings

_GLOBAL_KEYS = {"buckets", "users", "roles"}


def _record(key: str):
    return lambda region: [{"id": f"mock-{key}-1", "name": f"mock {key}"}]


def _profile(tag: str) -> ProviderProfile:
    keys = [key for group in RESOURCE_KEYS.values() for key in group]
    return ProviderProfile(
        tag=tag,
        default_region="mock-region-1",
        resource_keys=dict(RESOURCE_KEYS),
        services=tuple(
            InventoryService(key, key, _record(key), regional=key not in _GLOBAL_KEYS) for key in keys
        ),
        escalation={
            "user": "mock-user",
            "userType": "IAM User",
            "role": "None",
            "permissions": ["mock:Read"],
            "potentialEscalation": [],
            "riskLevel": "Low",
            "message": "Privilege escalation attempted",
            "actions": ["Checked mock policies"],
        },
        takeover_actions=("Mock takeover step",),
        permissions=("mock:Read",),
    )


def build_mock_provider(
    tag: str,
    access_key: str,
    secret_key: str,
    region: str = "",
    settings: Optional[Settings] = None,
) -> StaticInventoryAdapter:
    return StaticInventoryAdapter(_profile(tag), access_key, secret_key, region, settings=settings)
