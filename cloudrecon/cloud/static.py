"""Fixed-inventory adapters for providers without a live SDK integration.

The inventory data goes through the same fan-out engine as AWS, so result
shape, region stamping and ``errors`` handling are identical across providers.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from cloudrecon.cloud.base import (
    RESOURCE_TYPE_ALL,
    operation_attempted,
    require_keys,
    takeover_attempted,
)
from cloudrecon.cloud.fanout import FanOut, Service, plan_units
from cloudrecon.config import Settings, get_settings
from cloudrecon.core.exceptions import UnsupportedResourceTypeError


@dataclass(frozen=True)
class InventoryService:
    key: str
    label: str
    records: Callable[[str], List[Dict[str, Any]]]
    regional: bool = True


@dataclass(frozen=True)
class ProviderProfile:
    """Everything that distinguishes one fixed-inventory provider from another."""

    tag: str
    default_region: str
    resource_keys: Dict[str, Tuple[str, ...]]
    services: Tuple[InventoryService, ...]
    escalation: Dict[str, Any]
    takeover_actions: Tuple[str, ...] = ()
    permissions: Tuple[str, ...] = ()


class StaticInventoryAdapter:
    """Cloud provider adapter serving a provider profile's fixed inventory."""

    def __init__(
        self,
        profile: ProviderProfile,
        access_key: str,
        secret_key: str,
        region: str = "",
        *,
        settings: Optional[Settings] = None,
    ):
        require_keys(profile.tag, access_key, secret_key)
        settings = settings or get_settings()
        self.profile = profile
        self.tag = profile.tag
        self.region = (region or "").strip()
        self._fanout = FanOut(settings.cloud_fanout_workers, provider=profile.tag)
        self._services = {
            svc.key: Service(
                svc.key,
                svc.label,
                self._lister(svc),
                regional=svc.regional,
                timeout=settings.cloud_call_timeout_seconds,
            )
            for svc in profile.services
        }

    def _lister(self, svc: InventoryService):
        def lister(region: Optional[str]) -> List[Dict[str, Any]]:
            return copy.deepcopy(svc.records(region or self.region or self.profile.default_region))

        return lister

    def enumerate(self, resource_type: str) -> Dict[str, Any]:
        keys = self.profile.resource_keys
        if resource_type == RESOURCE_TYPE_ALL:
            selected = [key for group in keys.values() for key in group]
        elif resource_type in keys:
            selected = list(keys[resource_type])
        else:
            raise UnsupportedResourceTypeError(resource_type)

        regions = [self.region or self.profile.default_region]
        return self._fanout.run(plan_units([self._services[key] for key in selected], regions))

    def escalate(self) -> Dict[str, Any]:
        return copy.deepcopy(self.profile.escalation)

    def operate(
        self,
        resource_type: str,
        action: str,
        resource_id: str,
        params: Dict[str, Any],
    ) -> Dict[str, Any]:
        return operation_attempted(resource_type, action, resource_id, dict(params or {}))

    def takeover(self) -> Dict[str, Any]:
        return takeover_attempted(list(self.profile.takeover_actions))

    def validate_credentials(self) -> bool:
        return True

    def get_permissions(self) -> Dict[str, Any]:
        return {"message": "Permissions retrieved", "permissions": list(self.profile.permissions)}
