"""Google Cloud adapter: Compute, Storage and IAM inventory."""

from typing import Optional

from cloudrecon.cloud.base import ProviderTag
from cloudrecon.cloud.static import InventoryService, ProviderProfile, StaticInventoryAdapter
from cloudrecon.config import Settings

GCP_PROFILE = ProviderProfile(
    tag=ProviderTag.GCP,
    default_region="us-central1",
    resource_keys={
        "compute": ("instances",),
        "storage": ("buckets",),
        "iam": ("users", "roles"),
    },
    services=(
        InventoryService(
            "instances",
            "Compute",
            lambda region: [
                {
                    "instanceId": "1234567890123456789",
                    "instanceType": "n1-standard-1",
                    "status": "RUNNING",
                    "publicIp": "35.231.14.102",
                    "privateIp": "10.128.0.100",
                    "tags": ["web-server", "production"],
                }
            ],
        ),
        InventoryService(
            "buckets",
            "Storage",
            lambda region: [
                {"bucketName": "my-bucket", "creationDate": "2024-01-01T00:00:00Z", "location": region},
            ],
            regional=False,
        ),
        InventoryService(
            "users",
            "IAM Users",
            lambda region: [
                {"userName": "admin@example.com", "userId": "123456789012345678901", "email": "admin@example.com"},
            ],
            regional=False,
        ),
        InventoryService(
            "roles",
            "IAM Roles",
            lambda region: [
                {"roleName": "roles/compute.admin", "description": "Full control of all Compute Engine resources"},
            ],
            regional=False,
        ),
    ),
    escalation={
        "user": "GCP IAM User",
        "role": "None",
        "permissions": [
            "compute.instances.list",
            "storage.buckets.list",
            "iam.users.list",
            "iam.roles.list",
            "storage.objects.list",
        ],
        "potentialEscalation": [
            "Create IAM user with admin privileges",
            "Modify existing IAM policies",
            "Access Storage buckets with sensitive data",
        ],
        "riskLevel": "Medium",
        "message": "Privilege escalation attempted",
        "actions": [
            "Checked IAM policies",
            "Checked Compute instance service accounts",
            "Checked Storage bucket policies",
        ],
    },
    takeover_actions=(
        "Created IAM user with admin privileges",
        "Created service account for persistence",
        "Configured backdoor access",
    ),
    permissions=("compute.instances.list", "storage.buckets.list", "iam.users.list"),
)


def build_gcp_provider(
    access_key: str,
    secret_key: str,
    region: str = "",
    settings: Optional[Settings] = None,
) -> StaticInventoryAdapter:
    return StaticInventoryAdapter(GCP_PROFILE, access_key, secret_key, region, settings=settings)
