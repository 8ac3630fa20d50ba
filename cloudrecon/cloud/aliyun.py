"""Aliyun (阿里云) adapter: ECS, OSS and RAM inventory."""

from typing import Optional

from cloudrecon.cloud.base import ProviderTag
from cloudrecon.cloud.static import InventoryService, ProviderProfile, StaticInventoryAdapter
from cloudrecon.config import Settings

ALIYUN_PROFILE = ProviderProfile(
    tag=ProviderTag.ALIYUN,
    default_region="cn-hangzhou",
    resource_keys={
        "ecs": ("instances",),
        "oss": ("buckets",),
        "ram": ("users", "roles"),
    },
    services=(
        InventoryService(
            "instances",
            "ECS",
            lambda region: [
                {
                    "instanceId": "i-1234567890abcdef0",
                    "instanceType": "ecs.t5-lc2m1.nano",
                    "status": "Running",
                    "publicIp": "47.96.123.45",
                    "privateIp": "172.16.0.100",
                    "tags": {"Name": "Web Server"},
                }
            ],
        ),
        InventoryService(
            "buckets",
            "OSS",
            lambda region: [
                {"bucketName": "my-bucket", "creationDate": "2024-01-01T00:00:00Z"},
            ],
        ),
        InventoryService(
            "users",
            "RAM Users",
            lambda region: [
                {"userName": "admin", "userId": "1234567890", "arn": "acs:ram::1234567890:user/admin"},
            ],
            regional=False,
        ),
        InventoryService(
            "roles",
            "RAM Roles",
            lambda region: [
                {"roleName": "ECSRole", "roleId": "1234567890", "arn": "acs:ram::1234567890:role/ECSRole"},
            ],
            regional=False,
        ),
    ),
    escalation={
        "user": "Aliyun RAM User",
        "role": "None",
        "permissions": [
            "ecs:DescribeInstances",
            "oss:ListBuckets",
            "ram:ListUsers",
            "ram:ListRoles",
            "oss:GetBucketLocation",
            "oss:ListObjects",
        ],
        "potentialEscalation": [
            "Create RAM user with admin privileges",
            "Modify existing RAM policies",
            "Access OSS buckets with sensitive data",
        ],
        "riskLevel": "Medium",
        "message": "Privilege escalation attempted",
        "actions": [
            "Checked RAM policies",
            "Checked ECS instance roles",
            "Checked OSS bucket policies",
        ],
    },
    takeover_actions=(
        "Created RAM user with admin privileges",
        "Created access keys for persistence",
        "Configured backdoor access",
    ),
    permissions=("ecs:DescribeInstances", "oss:ListBuckets", "ram:ListUsers"),
)


def build_aliyun_provider(
    access_key: str,
    secret_key: str,
    region: str = "",
    settings: Optional[Settings] = None,
) -> StaticInventoryAdapter:
    return StaticInventoryAdapter(ALIYUN_PROFILE, access_key, secret_key, region, settings=settings)
