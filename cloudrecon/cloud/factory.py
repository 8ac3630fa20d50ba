"""Provider factory: provider tag + raw credentials -> adapter.

Adapters are constructed per call and never cached, so a failed
construction is reported to the caller and retried on the next request.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional

from cloudrecon.cloud.aliyun import build_aliyun_provider
from cloudrecon.cloud.aws import AWSProvider
from cloudrecon.cloud.azure import build_azure_provider
from cloudrecon.cloud.base import CloudProvider, ProviderTag
from cloudrecon.cloud.gcp import build_gcp_provider
from cloudrecon.cloud.mock import build_mock_provider
from cloudrecon.cloud.tencent import build_tencent_provider
from cloudrecon.config import Settings, get_settings
from cloudrecon.core.exceptions import UnsupportedProviderError
from cloudrecon.core.logging import get_logger

logger = get_logger(__name__)

ProviderBuilder = Callable[..., CloudProvider]


def _build_aws(access_key: str, secret_key: str, region: str = "", settings: Optional[Settings] = None):
    return AWSProvider(access_key, secret_key, region, settings=settings)


PROVIDER_BUILDERS: Dict[str, ProviderBuilder] = {
    ProviderTag.AWS: _build_aws,
    ProviderTag.ALIYUN: build_aliyun_provider,
    ProviderTag.GCP: build_gcp_provider,
    ProviderTag.AZURE: build_azure_provider,
    ProviderTag.TENCENT: build_tencent_provider,
}


def is_supported_provider(tag: str) -> bool:
    return tag in PROVIDER_BUILDERS


def create_provider(
    tag: str,
    access_key: str,
    secret_key: str,
    region: str = "",
    settings: Optional[Settings] = None,
) -> CloudProvider:
    """Build an adapter for ``tag``.

    Raises:
        UnsupportedProviderError: unknown tag.
        AdapterInitError: the SDK rejected the credentials during bootstrap.
    """
    settings = settings or get_settings()
    builder = PROVIDER_BUILDERS.get(tag)
    if builder is None:
        raise UnsupportedProviderError(tag)

    if settings.provider_mode == "mock":
        logger.debug("Using deterministic mock provider", data={"provider": tag})
        return build_mock_provider(tag, access_key, secret_key, region, settings=settings)

    return builder(access_key, secret_key, region, settings=settings)
