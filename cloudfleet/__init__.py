"""cloudfleet - Multi-cloud instance lifecycle orchestration.

One operation surface for virtual machines on DigitalOcean, Linode and
Azure: create, list, delete, power actions, public IP replacement,
floating IPs, account data and catalogs.
"""

from .clouds import (
    CLOUD_REGISTRY,
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
    InstanceAction,
    IPVersion,
    get_cloud_provider,
    list_available_providers,
)
from .config import Config
from .credentials import decrypt_credential, encrypt_credential
from .orchestrator import (
    InstanceOrchestrator,
    create_orchestrator,
    create_orchestrator_from_encrypted,
)

__version__ = "1.0.0"

__all__ = [
    "AccountInfo",
    "AccountOverview",
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
    "Config",
    "CreateInstanceConfig",
    "CredentialFormatError",
    "FloatingIP",
    "IPVersion",
    "InstanceAction",
    "InstanceOrchestrator",
    "create_orchestrator",
    "create_orchestrator_from_encrypted",
    "decrypt_credential",
    "encrypt_credential",
    "get_cloud_provider",
    "list_available_providers",
]
