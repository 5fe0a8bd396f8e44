"""cloudfleet Configuration."""

import os


def _float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


class Config:
    """Base configuration.

    Values are read once at import time. Adapters accept either this class,
    a subclass, or an instance, so tests can override individual settings.
    """

    # HTTP
    HTTP_TIMEOUT = int(os.getenv("CLOUDFLEET_HTTP_TIMEOUT", "30"))

    # DigitalOcean
    DIGITALOCEAN_API_URL = os.getenv(
        "DIGITALOCEAN_API_URL", "https://api.digitalocean.com/v2"
    )
    DIGITALOCEAN_ACTION_POLL_ATTEMPTS = int(
        os.getenv("DIGITALOCEAN_ACTION_POLL_ATTEMPTS", "30")
    )
    DIGITALOCEAN_ACTION_POLL_INTERVAL = _float("DIGITALOCEAN_ACTION_POLL_INTERVAL", "10")
    DIGITALOCEAN_IPV6_POLL_ATTEMPTS = int(os.getenv("DIGITALOCEAN_IPV6_POLL_ATTEMPTS", "3"))
    DIGITALOCEAN_IPV6_POLL_INTERVAL = _float("DIGITALOCEAN_IPV6_POLL_INTERVAL", "10")
    DIGITALOCEAN_DEFAULT_DROPLET_LIMIT = int(
        os.getenv("DIGITALOCEAN_DEFAULT_DROPLET_LIMIT", "25")
    )

    # Linode
    LINODE_API_URL = os.getenv("LINODE_API_URL", "https://api.linode.com/v4")
    LINODE_MAX_RETRIES = int(os.getenv("LINODE_MAX_RETRIES", "3"))
    LINODE_RETRY_INTERVAL = _float("LINODE_RETRY_INTERVAL", "1")
    LINODE_RETRY_JITTER = _float("LINODE_RETRY_JITTER", "0")
    LINODE_IPV6_SETTLE_SECONDS = _float("LINODE_IPV6_SETTLE_SECONDS", "30")
    LINODE_IPV6_POLL_ATTEMPTS = int(os.getenv("LINODE_IPV6_POLL_ATTEMPTS", "3"))
    LINODE_IPV6_POLL_INTERVAL = _float("LINODE_IPV6_POLL_INTERVAL", "15")
    LINODE_SUPPORT_URL = os.getenv(
        "LINODE_SUPPORT_URL", "https://cloud.linode.com/support/tickets"
    )

    # Azure
    AZURE_TOKEN_REFRESH_MARGIN = int(os.getenv("AZURE_TOKEN_REFRESH_MARGIN", "300"))
    AZURE_CACHE_TTL = int(os.getenv("AZURE_CACHE_TTL", "300"))
    AZURE_PROVISION_TIMEOUT = _float("AZURE_PROVISION_TIMEOUT", "300")
    AZURE_PROVISION_INTERVAL = _float("AZURE_PROVISION_INTERVAL", "5")
    AZURE_VM_PROVISION_TIMEOUT = _float("AZURE_VM_PROVISION_TIMEOUT", "600")
    AZURE_IP_POLL_ATTEMPTS = int(os.getenv("AZURE_IP_POLL_ATTEMPTS", "30"))
    AZURE_IP_POLL_INTERVAL = _float("AZURE_IP_POLL_INTERVAL", "3")
    AZURE_VNET_SETTLE_SECONDS = _float("AZURE_VNET_SETTLE_SECONDS", "10")
    AZURE_FALLBACK_REGIONS = [
        r.strip()
        for r in os.getenv(
            "AZURE_FALLBACK_REGIONS", "eastus,westus2,westeurope,southeastasia"
        ).split(",")
        if r.strip()
    ]
    AZURE_FOCUS_REGION = os.getenv("AZURE_FOCUS_REGION", "eastus")
    AZURE_RESOURCE_GROUP_PREFIX = os.getenv("AZURE_RESOURCE_GROUP_PREFIX", "cloudfleet-")
    AZURE_MANAGED_BY_TAG = os.getenv("AZURE_MANAGED_BY_TAG", "cloudfleet")
    AZURE_ADMIN_USERNAME = os.getenv("AZURE_ADMIN_USERNAME", "azureuser")
    AZURE_DEFAULT_DISK_GB = int(os.getenv("AZURE_DEFAULT_DISK_GB", "64"))
    AZURE_DEFAULT_PUBLIC_IP_LIMIT = int(os.getenv("AZURE_DEFAULT_PUBLIC_IP_LIMIT", "3"))

    # Credential decryption
    ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY", "")

    # Orchestrator
    CATALOG_WORKERS = int(os.getenv("CLOUDFLEET_CATALOG_WORKERS", "3"))
