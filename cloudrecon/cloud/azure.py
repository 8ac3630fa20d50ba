"""Azure adapter: virtual machines, storage accounts and role assignments.

Storage accounts and role assignments are subscription-wide, so only virtual
machines are listed per region.
"""

from typing import Optional

from cloudrecon.cloud.base import ProviderTag
from cloudrecon.cloud.static import InventoryService, ProviderProfile, StaticInventoryAdapter
from cloudrecon.config import Settings

CONTRIBUTOR_ROLE_ID = "b24988ac-6180-42a0-ab88-20f7382dd24c"

AZURE_PROFILE = ProviderProfile(
    tag=ProviderTag.AZURE,
    default_region="eastus",
    resource_keys={
        "compute": ("virtualMachines",),
        "storage": ("storageAccounts",),
        "iam": ("roleAssignments",),
    },
    services=(
        InventoryService(
            "virtualMachines",
            "Virtual Machines",
            lambda region: [
                {
                    "vmName": "my-vm",
                    "vmId": "12345678-1234-1234-1234-123456789012",
                    "status": "Running",
                    "publicIp": "52.123.45.67",
                    "privateIp": "10.0.0.4",
                    "size": "Standard_B2s",
                }
            ],
        ),
        InventoryService(
            "storageAccounts",
            "Storage Accounts",
            lambda region: [
                {
                    "accountName": "mystorageaccount",
                    "accountId": "12345678-1234-1234-1234-123456789012",
                    "location": region,
                    "sku": "Standard_LRS",
                }
            ],
            regional=False,
        ),
        InventoryService(
            "roleAssignments",
            "Role Assignments",
            lambda region: [
                {
                    "assignmentId": "12345678-1234-1234-1234-123456789012",
                    "roleDefinitionId": CONTRIBUTOR_ROLE_ID,
                    "principalId": "12345678-1234-1234-1234-123456789012",
                }
            ],
            regional=False,
        ),
    ),
    escalation={
        "user": "Azure Service Principal",
        "role": "None",
        "permissions": [
            "Microsoft.Compute/virtualMachines/read",
            "Microsoft.Storage/storageAccounts/read",
            "Microsoft.Authorization/roleAssignments/read",
        ],
        "potentialEscalation": [
            "Assign Owner role to a controlled principal",
            "Read storage account keys",
            "Abuse VM managed identities",
        ],
        "riskLevel": "Medium",
        "message": "Privilege escalation attempted",
        "actions": [
            "Checked role assignments",
            "Checked VM managed identities",
            "Checked storage account keys",
        ],
    },
    takeover_actions=(
        "Created service principal with owner privileges",
        "Created storage account for persistence",
        "Configured backdoor access",
    ),
    permissions=(
        "Microsoft.Compute/virtualMachines/read",
        "Microsoft.Storage/storageAccounts/read",
        "Microsoft.Authorization/roleAssignments/read",
    ),
)


def build_azure_provider(
    access_key: str,
    secret_key: str,
    region: str = "",
    settings: Optional[Settings] = None,
) -> StaticInventoryAdapter:
    return StaticInventoryAdapter(AZURE_PROFILE, access_key, secret_key, region, settings=settings)
