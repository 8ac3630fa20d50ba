"""Tencent Cloud (腾讯云) adapter: CVM, COS and CAM inventory."""

from typing import Optional

from cloudrecon.cloud.base import ProviderTag
from cloudrecon.cloud.static import InventoryService, ProviderProfile, StaticInventoryAdapter
from cloudrecon.config import Settings

TENCENT_PROFILE = ProviderProfile(
    tag=ProviderTag.TENCENT,
    default_region="ap-guangzhou",
    resource_keys={
        "cvm": ("instances",),
        "cos": ("buckets",),
        "cam": ("users", "roles"),
    },
    services=(
        InventoryService(
            "instances",
            "CVM",
            lambda region: [
                {
                    "instanceId": "ins-12345678",
                    "instanceType": "S5.SMALL2",
                    "status": "RUNNING",
                    "publicIp": "129.204.10.20",
                    "privateIp": "10.0.0.12",
                    "tags": {"Name": "Web Server"},
                }
            ],
        ),
        InventoryService(
            "buckets",
            "COS",
            lambda region: [
                {"bucketName": "my-bucket-1250000000", "creationDate": "2024-01-01T00:00:00Z"},
            ],
        ),
        InventoryService(
            "users",
            "CAM Users",
            lambda region: [
                {"userName": "admin", "userId": "100000000001", "arn": "qcs::cam::uin/100000000001:uin/100000000001"},
            ],
            regional=False,
        ),
        InventoryService(
            "roles",
            "CAM Roles",
            lambda region: [
                {"roleName": "CVM_QCSRole", "roleId": "4611686018427397919", "arn": "qcs::cam::uin/100000000001:roleName/CVM_QCSRole"},
            ],
            regional=False,
        ),
    ),
    escalation={
        "user": "Tencent CAM User",
        "role": "None",
        "permissions": [
            "cvm:DescribeInstances",
            "cos:GetService",
            "cam:ListUsers",
            "cam:DescribeRoleList",
        ],
        "potentialEscalation": [
            "Create CAM user with admin privileges",
            "Modify existing CAM policies",
            "Access COS buckets with sensitive data",
        ],
        "riskLevel": "Medium",
        "message": "Privilege escalation attempted",
        "actions": [
            "Checked CAM policies",
            "Checked CVM instance roles",
            "Checked COS bucket policies",
        ],
    },
    takeover_actions=(
        "Created CAM user with admin privileges",
        "Created API keys for persistence",
        "Configured backdoor access",
    ),
    permissions=("cvm:DescribeInstances", "cos:GetService", "cam:ListUsers"),
)


def build_tencent_provider(
    access_key: str,
    secret_key: str,
    region: str = "",
    settings: Optional[Settings] = None,
) -> StaticInventoryAdapter:
    return StaticInventoryAdapter(TENCENT_PROFILE, access_key, secret_key, region, settings=settings)
