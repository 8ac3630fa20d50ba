"""Cloud provider adapters and the factory that selects them."""

from cloudrecon.cloud.base import CloudProvider, ProviderTag
from cloudrecon.cloud.factory import create_provider, is_supported_provider

__all__ = ["CloudProvider", "ProviderTag", "create_provider", "is_supported_provider"]
