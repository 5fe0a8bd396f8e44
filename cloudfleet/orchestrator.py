"""Instance Orchestrator.

Single entry point for callers: given a vendor tag and a plaintext (or
encrypted) credential it builds the matching adapter and exposes one
operation surface for instance lifecycle, IP management, account data
and catalogs.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from .clouds import (
    AccountInfo,
    AccountOverview,
    BalanceInfo,
    BaseCloud,
    CapabilityNotSupportedError,
    CloudError,
    CloudImage,
    CloudInstance,
    CloudPlan,
    CloudRegion,
    CreateInstanceConfig,
    FloatingIP,
    FloatingIPCapability,
    InstanceAction,
    IPChangeCapability,
    IPVersion,
    get_cloud_provider,
)
from .config import Config
from .credentials import decrypt_credential

log = logging.getLogger(__name__)


class InstanceOrchestrator:
    """Vendor-neutral facade over one cloud adapter.

    Attributes:
        provider: The adapter every call is delegated to
    """

    def __init__(self, provider: BaseCloud) -> None:
        self.provider = provider

    @property
    def provider_type(self) -> str:
        return self.provider.provider_type

    def _ip_changer(self) -> IPChangeCapability:
        changer = self.provider.ip_changer
        if changer is None:
            raise CapabilityNotSupportedError(
                f"{self.provider_type} does not support changing instance IPs",
                provider=self.provider_type,
            )
        return changer

    def _floating_ips(self) -> FloatingIPCapability:
        floating = self.provider.floating_ips
        if floating is None:
            raise CapabilityNotSupportedError(
                f"{self.provider_type} does not support floating IPs",
                provider=self.provider_type,
            )
        return floating

    # Instances

    def list_instances(self) -> list[CloudInstance]:
        return self.provider.list_instances()

    def create_instance(self, spec: CreateInstanceConfig) -> CloudInstance:
        log.info(f"Creating {self.provider_type} instance {spec.name} in {spec.region}")
        return self.provider.create_instance(spec)

    def delete_instance(self, instance_id: str) -> bool:
        log.info(f"Deleting {self.provider_type} instance {instance_id}")
        return self.provider.delete_instance(instance_id)

    def perform_instance_action(self, instance_id: str, action: InstanceAction | str) -> bool:
        return self.provider.perform_instance_action(instance_id, action)

    def start_instance(self, instance_id: str) -> bool:
        return self.perform_instance_action(instance_id, InstanceAction.POWER_ON)

    def stop_instance(self, instance_id: str) -> bool:
        return self.perform_instance_action(instance_id, InstanceAction.POWER_OFF)

    def reboot_instance(self, instance_id: str) -> bool:
        return self.perform_instance_action(instance_id, InstanceAction.REBOOT)

    def change_instance_ip(
        self, instance_id: str, ip_version: IPVersion | str = IPVersion.IPV4
    ) -> str:
        """Replace an instance's public address.

        Raises:
            CapabilityNotSupportedError: If the vendor cannot change IPs
        """
        changer = self._ip_changer()
        version = IPVersion.parse(ip_version)
        log.info(f"Changing {version.value} address of {self.provider_type} instance {instance_id}")
        return changer.change_instance_ip(instance_id, version)

    # Account

    def get_account_info(self) -> AccountInfo:
        return self.provider.get_account_info()

    def get_balance(self) -> BalanceInfo:
        return self.provider.get_balance()

    def get_account_overview(self) -> AccountOverview:
        return self.provider.get_account_overview()

    # Floating IPs

    def list_floating_ips(self) -> list[FloatingIP]:
        return self._floating_ips().list_floating_ips()

    def delete_floating_ip(self, ip: str) -> bool:
        return self._floating_ips().delete_floating_ip(ip)

    def assign_floating_ip(self, ip: str, instance_id: str) -> bool:
        return self._floating_ips().assign_floating_ip(ip, instance_id)

    def unassign_floating_ip(self, ip: str) -> bool:
        return self._floating_ips().unassign_floating_ip(ip)

    def cleanup_unassigned_floating_ips(self) -> list[str]:
        """Release every floating IP not bound to an instance.

        Failures on individual addresses are logged and skipped.

        Returns:
            Addresses that were deleted
        """
        floating = self._floating_ips()
        deleted: list[str] = []
        for fip in floating.list_floating_ips():
            if fip.is_assigned:
                continue
            try:
                floating.delete_floating_ip(fip.ip)
                deleted.append(fip.ip)
            except CloudError as e:
                log.warning(f"Failed to delete unassigned floating IP {fip.ip}: {e}")
        log.info(f"Released {len(deleted)} unassigned {self.provider_type} floating IPs")
        return deleted

    # Catalogs

    def get_regions(self) -> list[CloudRegion]:
        return self.provider.get_regions()

    def get_images(self) -> list[CloudImage]:
        return self.provider.get_images()

    def get_plans(self) -> list[CloudPlan]:
        return self.provider.get_plans()

    def get_available_options(self, max_workers: int | None = None) -> dict[str, list[Any]]:
        """Fetch regions, images and plans concurrently.

        Returns:
            Dict with ``regions``, ``images`` and ``plans`` lists

        Raises:
            CloudError: The first catalog failure, after all fetches finish
        """
        fetchers: dict[str, Callable[[], list[Any]]] = {
            "regions": self.provider.get_regions,
            "images": self.provider.get_images,
            "plans": self.provider.get_plans,
        }
        workers = max_workers or getattr(self.provider.config, "CATALOG_WORKERS", 3)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {name: executor.submit(fetch) for name, fetch in fetchers.items()}
            return {name: future.result() for name, future in futures.items()}


def create_orchestrator(
    provider: str,
    credential: str,
    config: Any = None,
    **kwargs: Any,
) -> InstanceOrchestrator:
    """Build an orchestrator for a vendor tag and plaintext credential.

    Raises:
        CloudValidationError: If the vendor is unknown
        CredentialFormatError: If the credential is malformed
    """
    return InstanceOrchestrator(get_cloud_provider(provider, credential, config=config, **kwargs))


def create_orchestrator_from_encrypted(
    provider: str,
    ciphertext: str,
    key: str | bytes | None = None,
    decrypt: Callable[[str, Any], str] = decrypt_credential,
    config: Any = None,
    **kwargs: Any,
) -> InstanceOrchestrator:
    """Decrypt a stored credential, then build an orchestrator for it.

    Args:
        provider: Vendor tag
        ciphertext: Encrypted credential
        key: Decryption key (defaults to ``ENCRYPTION_KEY`` from config)
        decrypt: ``decrypt(ciphertext, key) -> plaintext`` callable
        config: Settings class or instance

    Raises:
        CloudAuthError: If decryption fails
    """
    settings = config or Config
    credential = decrypt(ciphertext, key if key is not None else settings.ENCRYPTION_KEY)
    return create_orchestrator(provider, credential, config=config, **kwargs)
