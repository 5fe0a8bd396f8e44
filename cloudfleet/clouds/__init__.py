"""Cloud Provider Abstraction Module.

Provides a unified interface for managing instances across DigitalOcean,
Linode and Azure.
"""

from __future__ import annotations

import logging
from typing import Any

from .base import (
    AccountInfo,
    AccountOverview,
    BalanceInfo,
    BaseCloud,
    CapabilityNotSupportedError,
    CloudAuthError,
    CloudError,
    CloudImage,
    CloudInstance,
    CloudNotFoundError,
    CloudPlan,
    CloudQuotaError,
    CloudRegion,
    CloudTimeoutError,
    CloudValidationError,
    CreateInstanceConfig,
    CredentialFormatError,
    FloatingIP,
    FloatingIPCapability,
    InstanceAction,
    IPChangeCapability,
    IPVersion,
)

log = logging.getLogger(__name__)

# Registry of available cloud providers
CLOUD_REGISTRY: dict[str, type[BaseCloud]] = {}


def register_cloud(name: str):
    """Decorator to register a cloud provider."""
    def decorator(cls: type[BaseCloud]):
        CLOUD_REGISTRY[name] = cls
        return cls
    return decorator


# Import providers to trigger registration
from .digitalocean import DigitalOceanCloud  # noqa: E402
from .linode import LinodeCloud  # noqa: E402
from .azure import AzureCloud  # noqa: E402


def get_cloud_provider(
    provider_type: str,
    credential: str,
    config: Any = None,
    **kwargs: Any,
) -> BaseCloud:
    """Factory function to get a cloud provider instance.

    Args:
        provider_type: Provider type (digitalocean, linode, azure)
        credential: Plaintext vendor credential
        config: Settings class or instance (defaults to Config)
        **kwargs: Passed through to the adapter (e.g. clock)

    Returns:
        Initialized cloud provider instance

    Raises:
        CloudValidationError: If provider type is not supported
    """
    key = (provider_type or "").strip().lower()
    if key not in CLOUD_REGISTRY:
        available = ", ".join(sorted(CLOUD_REGISTRY.keys()))
        raise CloudValidationError(
            f"Unsupported cloud provider: {provider_type}. Available: {available}",
            provider=provider_type or "unknown",
        )

    provider_class = CLOUD_REGISTRY[key]
    log.debug(f"Creating {key} cloud provider")
    return provider_class(credential, config=config, **kwargs)


def list_available_providers() -> list[str]:
    """List available cloud provider types."""
    return sorted(CLOUD_REGISTRY.keys())


__all__ = [
    "AccountInfo",
    "AccountOverview",
    "AzureCloud",
    "BalanceInfo",
    "BaseCloud",
    "CLOUD_REGISTRY",
    "CapabilityNotSupportedError",
    "CloudAuthError",
    "CloudError",
    "CloudImage",
    "CloudInstance",
    "CloudNotFoundError",
    "CloudPlan",
    "CloudQuotaError",
    "CloudRegion",
    "CloudTimeoutError",
    "CloudValidationError",
    "CreateInstanceConfig",
    "CredentialFormatError",
    "DigitalOceanCloud",
    "FloatingIP",
    "FloatingIPCapability",
    "IPChangeCapability",
    "IPVersion",
    "InstanceAction",
    "LinodeCloud",
    "get_cloud_provider",
    "list_available_providers",
    "register_cloud",
]
