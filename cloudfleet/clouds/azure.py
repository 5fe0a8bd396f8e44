"""Azure Cloud Provider Implementation.

Provides Azure Virtual Machine management via the Azure Resource Manager
SDKs using service principal authentication.

Every instance lives in its own resource group so that creation can be
rolled back, and deletion completed, by removing the group. The instance
ID is the VM name; the group and network resources are found with
``AzureLocator``.
"""

from __future__ import annotations

import dataclasses
import logging
import re
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
)
from azure.identity import ClientSecretCredential
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.compute.models import (
    DiskCreateOptionTypes,
    HardwareProfile,
    ImageReference,
    LinuxConfiguration,
    ManagedDiskParameters,
    NetworkInterfaceReference,
    NetworkProfile,
    OSDisk,
    OSProfile,
    SshConfiguration,
    SshPublicKey,
    StorageAccountTypes,
    StorageProfile,
    VirtualMachine,
)
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.network.models import NetworkInterfaceIPConfiguration, PublicIPAddress
from azure.mgmt.resource import ResourceManagementClient, SubscriptionClient

from . import azure_catalog, register_cloud
from .azure_auth import CachedTokenCredential, parse_azure_credential
from .azure_locator import AzureLocator, VmPlacement, resource_group_of, resource_name
from .base import (
    AccountInfo,
    AccountOverview,
    BalanceInfo,
    BaseCloud,
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
    InstanceAction,
    IPChangeCapability,
    IPVersion,
    OverviewAccount,
    OverviewMoney,
    QuotaUsage,
    ResourceCounts,
)
from .userdata import encode_custom_data, extract_root_password, generate_password
from ..cache import TTLCache
from ..retry import BackoffPolicy, poll

log = logging.getLogger(__name__)

IPV4_VNET_PREFIX = "10.0.0.0/16"
IPV4_SUBNET_PREFIX = "10.0.0.0/24"
IPV6_VNET_PREFIX = "ace:cab:deca::/48"
IPV6_SUBNET_PREFIX = "ace:cab:deca:deed::/64"

VM_RESOURCE_FILTER = "resourceType eq 'Microsoft.Compute/virtualMachines'"

# Vendor error code -> (error class, status, guidance)
ERROR_GUIDANCE: dict[str, tuple[type[CloudError], int, str]] = {
    "PublicIPCountLimitReached": (
        CloudQuotaError,
        429,
        "The public IP address limit for this region has been reached. "
        "Delete unused public IPs or request a quota increase.",
    ),
    "RequestDisallowedByAzure": (
        CloudAuthError,
        403,
        "The subscription policy does not allow resources in this region. "
        "Student subscriptions only allow specific regions; try another region.",
    ),
    "QuotaExceeded": (
        CloudQuotaError,
        429,
        "The vCPU quota for this region is exhausted. Pick a smaller size or "
        "another region, or request a quota increase.",
    ),
    "SkuNotAvailable": (
        CloudValidationError,
        400,
        "The requested VM size is not available in this region. "
        "Pick another size or region.",
    ),
}

ALLOW_ALL_RULES = [
    ("AllowAllInbound", "*", 100, "Inbound"),
    ("AllowAllOutbound", "*", 110, "Outbound"),
    ("AllowAllInboundIPv6", "::/0", 120, "Inbound"),
    ("AllowAllOutboundIPv6", "::/0", 130, "Outbound"),
]

REGION_NAMES = dict(azure_catalog.REGIONS)

NAME_TIMESTAMP_RE = re.compile(r"-(\d+)$")


def _provisioning_state(resource: Any) -> str | None:
    state = getattr(resource, "provisioning_state", None)
    if state is None:
        state = getattr(getattr(resource, "properties", None), "provisioning_state", None)
    return state


def _has_ipv6(prefixes: list[str]) -> bool:
    return any(":" in p for p in prefixes)


def _name_timestamp(name: str | None) -> int:
    match = NAME_TIMESTAMP_RE.search(name or "")
    return int(match.group(1)) if match else 0


def _tags_to_dict(tags: tuple[str, ...] | list[str]) -> dict[str, str]:
    result = {}
    for tag in tags:
        key, _, value = tag.partition(":")
        if key:
            result[key] = value
    return result


@register_cloud("azure")
class AzureCloud(BaseCloud, IPChangeCapability):
    """Azure cloud provider for Virtual Machine management.

    The credential is ``tenant:client:secret`` or
    ``subscription:tenant:client:secret``. Without a subscription ID the
    first enabled subscription visible to the service principal is used.
    """

    provider_type: str = "azure"

    ACTION_MAP: dict[InstanceAction, str] = {
        InstanceAction.POWER_ON: "start",
        InstanceAction.POWER_OFF: "power_off",
        InstanceAction.REBOOT: "restart",
        InstanceAction.SHUTDOWN: "deallocate",
    }

    def __init__(
        self,
        credential: str,
        config: Any = None,
        clock: Any = None,
        token_credential: Any = None,
        subscription_client: Any = None,
        resource_client: Any = None,
        compute_client: Any = None,
        network_client: Any = None,
    ) -> None:
        """Initialize Azure cloud provider.

        Args:
            credential: Service principal credential string
            config: Settings class or instance (defaults to Config)
            clock: Time source used for polling and caches
            token_credential: Pre-built azure.core TokenCredential
            subscription_client: Pre-built SubscriptionClient
            resource_client: Pre-built ResourceManagementClient
            compute_client: Pre-built ComputeManagementClient
            network_client: Pre-built NetworkManagementClient

        Raises:
            CredentialFormatError: If the credential string is malformed
        """
        super().__init__(credential, config=config, clock=clock)
        parsed = parse_azure_credential(credential)
        self.subscription_id: str | None = parsed.subscription_id
        self.tenant_id = parsed.tenant_id
        self.client_id = parsed.client_id
        self._client_secret = parsed.client_secret

        self._credential = token_credential
        self._subscription_client = subscription_client
        self._resource_client = resource_client
        self._compute_client = compute_client
        self._network_client = network_client
        self._locator: AzureLocator | None = None
        self._client_lock = threading.RLock()

        self.catalog_cache = TTLCache(self.config.AZURE_CACHE_TTL, self.clock)
        self.provision_policy = BackoffPolicy.for_timeout(
            self.config.AZURE_PROVISION_TIMEOUT, self.config.AZURE_PROVISION_INTERVAL
        )
        self.vm_policy = BackoffPolicy.for_timeout(
            self.config.AZURE_VM_PROVISION_TIMEOUT, self.config.AZURE_PROVISION_INTERVAL
        )
        self.ip_policy = BackoffPolicy(
            max_attempts=self.config.AZURE_IP_POLL_ATTEMPTS,
            interval=self.config.AZURE_IP_POLL_INTERVAL,
        )

    @property
    def ip_changer(self) -> IPChangeCapability:
        return self

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    @property
    def credential(self) -> Any:
        with self._client_lock:
            if self._credential is None:
                self._credential = CachedTokenCredential(
                    ClientSecretCredential(
                        tenant_id=self.tenant_id,
                        client_id=self.client_id,
                        client_secret=self._client_secret,
                    ),
                    clock=self.clock,
                    margin=self.config.AZURE_TOKEN_REFRESH_MARGIN,
                )
            return self._credential

    @property
    def subscription_client(self) -> Any:
        with self._client_lock:
            if self._subscription_client is None:
                self._subscription_client = SubscriptionClient(self.credential)
            return self._subscription_client

    def _resolve_subscription_id(self) -> str:
        """Return the configured subscription or discover the default one."""
        with self._client_lock:
            if self.subscription_id:
                return self.subscription_id

            with self._azure_errors("list subscriptions"):
                subscriptions = list(self.subscription_client.subscriptions.list())
            enabled = [s for s in subscriptions if s.state == "Enabled"] or subscriptions
            if not enabled:
                raise self.error(
                    "No Azure subscription is visible to this service principal", 403, CloudAuthError
                )
            self.subscription_id = enabled[0].subscription_id
            log.info(f"Using Azure subscription {self.subscription_id}")
            return self.subscription_id

    @property
    def resource_client(self) -> Any:
        with self._client_lock:
            if self._resource_client is None:
                self._resource_client = ResourceManagementClient(
                    self.credential, self._resolve_subscription_id()
                )
            return self._resource_client

    @property
    def compute_client(self) -> Any:
        with self._client_lock:
            if self._compute_client is None:
                self._compute_client = ComputeManagementClient(
                    self.credential, self._resolve_subscription_id()
                )
            return self._compute_client

    @property
    def network_client(self) -> Any:
        with self._client_lock:
            if self._network_client is None:
                self._network_client = NetworkManagementClient(
                    self.credential, self._resolve_subscription_id()
                )
            return self._network_client

    @property
    def locator(self) -> AzureLocator:
        with self._client_lock:
            if self._locator is None:
                self._locator = AzureLocator(
                    self.resource_client,
                    self.compute_client,
                    self.network_client,
                    prefix=self.config.AZURE_RESOURCE_GROUP_PREFIX,
                    managed_tag=self.config.AZURE_MANAGED_BY_TAG,
                )
            return self._locator

    def _locate(self, instance_id: str) -> VmPlacement:
        with self._azure_errors(f"locate VM {instance_id}"):
            return self.locator.locate(instance_id)

    def _resource_id(self, resource_group: str, kind: str, name: str) -> str:
        return (
            f"/subscriptions/{self._resolve_subscription_id()}/resourceGroups/{resource_group}"
            f"/providers/{kind}/{name}"
        )

    # ------------------------------------------------------------------
    # Errors and polling
    # ------------------------------------------------------------------

    def _translate(self, e: AzureError, action: str) -> CloudError:
        """Map an azure.core exception onto the CloudError hierarchy."""
        message = getattr(e, "message", None) or str(e)
        status = getattr(e, "status_code", None)
        error = getattr(e, "error", None)
        code = getattr(error, "code", None) if error is not None else None
        if code is None:
            code = next((known for known in ERROR_GUIDANCE if known in message), None)

        if code in ERROR_GUIDANCE:
            cls, default_status, guidance = ERROR_GUIDANCE[code]
            return cls(
                f"Azure {action} failed: {guidance} ({code})",
                provider=self.provider_type,
                status_code=default_status,
                vendor_code=code,
            )

        text = f"Azure {action} failed: {message}"
        if isinstance(e, ClientAuthenticationError):
            return CloudAuthError(text, self.provider_type, status or 401, code)
        if isinstance(e, ResourceNotFoundError):
            return CloudNotFoundError(text, self.provider_type, 404, code)
        if isinstance(e, HttpResponseError) and status:
            if status in (401, 403):
                return CloudAuthError(text, self.provider_type, status, code)
            if status == 404:
                return CloudNotFoundError(text, self.provider_type, status, code)
            if status in (402, 429):
                return CloudQuotaError(text, self.provider_type, status, code)
            if status < 500:
                return CloudValidationError(text, self.provider_type, status, code)
            return CloudError(text, self.provider_type, status, code)
        if isinstance(e, ServiceRequestError):
            return CloudError(f"Failed to connect to Azure during {action}: {message}", self.provider_type, 0)
        return CloudError(text, self.provider_type, 500, code)

    @contextmanager
    def _azure_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except AzureError as e:
            raise self._translate(e, action) from e

    def _read_or_none(self, fetch: Callable[[], Any], description: str) -> Any:
        """Read a resource, treating 404 as not-there-yet."""
        try:
            with self._azure_errors(f"read {description}"):
                return fetch()
        except CloudNotFoundError:
            return None

    def _wait_succeeded(
        self,
        fetch: Callable[[], Any],
        description: str,
        policy: BackoffPolicy | None = None,
    ) -> Any:
        """Poll until the resource reports ``Succeeded``.

        A missing resource keeps the wait going; ``Failed`` aborts it.

        Raises:
            CloudError: If provisioning failed
            CloudTimeoutError: If the budget is exhausted
        """
        def done(resource: Any) -> bool:
            if resource is None:
                return False
            state = _provisioning_state(resource)
            if state == "Failed":
                raise self.error(f"Azure provisioning of {description} failed", 500)
            return state == "Succeeded"

        return poll(
            lambda: self._read_or_none(fetch, description),
            done,
            policy or self.provision_policy,
            self.clock,
            description,
            self.provider_type,
        )

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    def _subscription(self) -> Any:
        subscription_id = self._resolve_subscription_id()
        with self._azure_errors("read subscription"):
            return self.subscription_client.subscriptions.get(subscription_id)

    def get_account_info(self) -> AccountInfo:
        sub = self._subscription()
        policies = getattr(sub, "subscription_policies", None)
        return AccountInfo(
            email=getattr(policies, "quota_id", None) or None,
            status="active" if sub.state == "Enabled" else str(sub.state or "unknown").lower(),
            uuid=sub.subscription_id,
            name=sub.display_name or "Azure subscription",
        )

    def get_balance(self) -> BalanceInfo:
        # Azure exposes no balance to service principals
        return BalanceInfo(balance=0.0, currency="USD")

    def _focus_quotas(self, region: str) -> list[QuotaUsage]:
        quotas = []
        try:
            with self._azure_errors(f"read compute usage in {region}"):
                cores = next(
                    (u for u in self.compute_client.usage.list(region) if u.name.value == "cores"),
                    None,
                )
            if cores is not None:
                quotas.append(QuotaUsage("vcpus", "vCPU", cores.current_value or 0, cores.limit or 0))
        except CloudError as e:
            log.warning(f"Failed to read Azure vCPU quota: {e}")

        try:
            with self._azure_errors(f"read network usage in {region}"):
                pips = next(
                    (
                        u for u in self.network_client.usages.list(region)
                        if u.name.value == "PublicIPAddresses"
                    ),
                    None,
                )
            if pips is not None:
                quotas.append(QuotaUsage("public_ip", "Public IP", pips.current_value or 0, pips.limit or 0))
        except CloudError as e:
            log.warning(f"Failed to read Azure public IP quota: {e}")
        return quotas

    def get_account_overview(self) -> AccountOverview:
        """Subscription, VM count and focus-region quotas.

        Any failure yields a minimal overview instead of an error.
        """
        focus = self.config.AZURE_FOCUS_REGION
        try:
            sub = self._subscription()

            vm_count = 0
            try:
                with self._azure_errors("count virtual machines"):
                    vm_count = sum(1 for _ in self.resource_client.resources.list(filter=VM_RESOURCE_FILTER))
            except CloudError as e:
                log.warning(f"Failed to count Azure VMs: {e}")

            quota_id = getattr(getattr(sub, "subscription_policies", None), "quota_id", None) or ""
            display_name = sub.display_name or ""
            plan = "-"
            if "AzureForStudents" in quota_id or "Student" in display_name:
                plan = "Azure for Students"
            elif "PAYG" in quota_id or "Pay-As-You-Go" in display_name:
                plan = "PAYG"

            return AccountOverview(
                provider=self.provider_type,
                account=OverviewAccount(
                    name=display_name or "Azure subscription",
                    status="active" if sub.state == "Enabled" else "inactive",
                    plan=plan,
                ),
                money=OverviewMoney(currency="USD", balance=0.0),
                quotas=self._focus_quotas(focus),
                resources=ResourceCounts(instances=vm_count),
                region_focus=focus,
                last_sync=datetime.now(timezone.utc).isoformat(),
            )
        except CloudError as e:
            log.warning(f"Failed to build Azure account overview, returning fallback: {e}")
            return AccountOverview(
                provider=self.provider_type,
                account=OverviewAccount(name="Azure subscription"),
                money=OverviewMoney(currency="USD", balance=0.0),
                last_sync=datetime.now(timezone.utc).isoformat(),
            )

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    def _power_state(self, resource_group: str, vm_name: str) -> str:
        try:
            with self._azure_errors(f"read instance view of {vm_name}"):
                view = self.compute_client.virtual_machines.instance_view(resource_group, vm_name)
        except CloudError as e:
            log.warning(f"Failed to get power state for {vm_name}: {e}")
            return "unknown"
        for status in view.statuses or []:
            if status.code and status.code.startswith("PowerState/"):
                return status.code.split("/", 1)[1]
        return "unknown"

    def _vm_addresses(self, resource_group: str, vm: Any) -> dict[str, str | None]:
        """Public IPv4, public IPv6 and private IPv4 of a VM's NICs."""
        addresses: dict[str, str | None] = {"ipv4": None, "ipv6": None, "private": None}
        nic_refs = (vm.network_profile.network_interfaces or []) if vm.network_profile else []
        for nic_ref in nic_refs:
            nic = self.network_client.network_interfaces.get(
                resource_group_of(nic_ref.id) or resource_group, resource_name(nic_ref.id)
            )
            for config in nic.ip_configurations or []:
                if config.private_ip_address and (config.private_ip_address_version or "IPv4") == "IPv4":
                    addresses["private"] = config.private_ip_address
                pip_ref = config.public_ip_address
                if pip_ref is None or not pip_ref.id:
                    continue
                pip = self.network_client.public_ip_addresses.get(
                    resource_group_of(pip_ref.id) or resource_group, resource_name(pip_ref.id)
                )
                if not pip.ip_address:
                    continue
                if pip.public_ip_address_version == "IPv6":
                    addresses["ipv6"] = pip.ip_address
                else:
                    addresses["ipv4"] = pip.ip_address
        return addresses

    def _vm_to_instance(self, vm: Any) -> CloudInstance:
        resource_group = resource_group_of(vm.id) or ""
        size = vm.hardware_profile.vm_size if vm.hardware_profile else ""

        addresses: dict[str, str | None] = {"ipv4": None, "ipv6": None, "private": None}
        try:
            with self._azure_errors(f"read addresses of {vm.name}"):
                addresses = self._vm_addresses(resource_group, vm)
        except CloudError as e:
            log.warning(f"Failed to get IPs for Azure VM {vm.name}: {e}")

        storage = vm.storage_profile
        image_ref = storage.image_reference if storage else None
        os_disk = storage.os_disk if storage else None
        created = getattr(vm, "time_created", None)

        return CloudInstance(
            id=vm.name,
            name=vm.name,
            status=self._power_state(resource_group, vm.name),
            provider=self.provider_type,
            region=vm.location,
            image=(image_ref.offer if image_ref is not None else None) or "unknown",
            size=size or "unknown",
            ip_address=addresses["ipv4"],
            ipv6_address=addresses["ipv6"],
            private_ip=addresses["private"],
            vcpus=azure_catalog.size_vcpus(size),
            memory=azure_catalog.size_memory(size),
            disk=(os_disk.disk_size_gb if os_disk is not None else None) or self.config.AZURE_DEFAULT_DISK_GB,
            created_at=created.isoformat() if created else None,
            tags=[f"{k}:{v}" if v else k for k, v in (vm.tags or {}).items()],
        )

    def list_instances(self) -> list[CloudInstance]:
        with self._azure_errors("list virtual machines"):
            vms = list(self.compute_client.virtual_machines.list_all())
        instances = [self._vm_to_instance(vm) for vm in vms]
        log.info(f"Listed {len(instances)} Azure VMs")
        return instances

    def _allowed_locations(self) -> set[str]:
        cached = self.catalog_cache.get("locations")
        if cached is not None:
            return cached
        subscription_id = self._resolve_subscription_id()
        with self._azure_errors("list locations"):
            locations = {
                loc.name
                for loc in self.subscription_client.subscriptions.list_locations(subscription_id)
                if loc.metadata is None or loc.metadata.region_category == "Recommended"
            }
        self.catalog_cache.set("locations", locations)
        return locations

    def _validate_region(self, spec: CreateInstanceConfig) -> CreateInstanceConfig:
        """Keep the requested region if allowed, else fall back to a known-good one.

        Raises:
            CloudValidationError: If neither the region nor any fallback is allowed
        """
        allowed = self._allowed_locations()
        if spec.region in allowed:
            return spec

        log.warning(f"Azure region {spec.region} is not available, trying fallbacks")
        for fallback in self.config.AZURE_FALLBACK_REGIONS:
            if fallback != spec.region and fallback in allowed:
                log.info(f"Using fallback Azure region {fallback} instead of {spec.region}")
                return dataclasses.replace(spec, region=fallback)

        raise self.error(
            f"Azure region {spec.region} is not available to this subscription "
            "and no fallback region is available",
            400,
            CloudValidationError,
        )

    def _region_disallowed(self, region: str) -> CloudError:
        region_name = REGION_NAMES.get(region, region)
        return self.error(
            f"Region \"{region_name}\" is not allowed by your subscription. Azure for Students "
            "subscriptions usually only allow specific regions; try another region or "
            "contact Azure support.",
            403,
            CloudAuthError,
        )

    def _compensate(self, resource_group: str) -> None:
        log.warning(f"Rolling back Azure resource group {resource_group}")
        try:
            with self._azure_errors(f"delete resource group {resource_group}"):
                self.resource_client.resource_groups.begin_delete(resource_group)
        except CloudError as e:
            log.error(f"Failed to clean up Azure resource group {resource_group}: {e}")

    def create_instance(self, spec: CreateInstanceConfig) -> CloudInstance:
        """Create a VM and its network in a dedicated resource group.

        Steps run in order: resource group, NSG, public IP(s), virtual
        network, NIC, VM. Each is polled until provisioned. If any step
        fails the resource group is deleted and the original error is
        raised. A VM that is still provisioning when the wait budget runs
        out is left in place and reported with CloudTimeoutError.

        Args:
            spec: Instance specification

        Returns:
            CloudInstance with status ``creating``

        Raises:
            CloudValidationError: On unusable region or image/size mismatch
            CloudAuthError: If the subscription forbids the region (403)
            CloudTimeoutError: If the VM did not finish provisioning in time
            CloudError: On other API errors
        """
        spec = self._validate_region(spec)
        spec = azure_catalog.ensure_architecture_compatible(spec)

        region = spec.region
        suffix = str(int(self.clock.time() * 1000))[-6:]
        group = f"{self.config.AZURE_RESOURCE_GROUP_PREFIX}{spec.name}-{suffix}"
        nsg_name = f"{spec.name}-nsg-{suffix}"
        pip_name = f"{spec.name}-ip-{suffix}"
        pip6_name = f"{spec.name}-ipv6-{suffix}"
        vnet_name = f"{spec.name}-vnet-{suffix}"
        subnet_name = f"{spec.name}-subnet-{suffix}"
        nic_name = f"{spec.name}-nic-{suffix}"
        disk_size = spec.disk_size or self.config.AZURE_DEFAULT_DISK_GB

        network = self.network_client
        group_requested = False
        vm_submitted = False
        ipv6 = None
        log.info(f"Creating Azure VM {spec.name} in {region} (resource group {group})")

        try:
            group_requested = True
            with self._azure_errors(f"create resource group {group}"):
                self.resource_client.resource_groups.create_or_update(
                    group,
                    {"location": region, "tags": {"managed-by": self.config.AZURE_MANAGED_BY_TAG}},
                )

            with self._azure_errors(f"create network security group {nsg_name}"):
                network.network_security_groups.begin_create_or_update(
                    group, nsg_name, {"location": region, "security_rules": self._security_rules()}
                )
            self._wait_succeeded(
                lambda: network.network_security_groups.get(group, nsg_name),
                f"network security group {nsg_name}",
            )

            ipv4 = self._create_public_ip(group, pip_name, region, IPVersion.IPV4)
            if spec.enable_ipv6:
                ipv6 = self._create_public_ip(group, pip6_name, region, IPVersion.IPV6)

            vnet_prefixes = [IPV4_VNET_PREFIX]
            subnet_prefixes = [IPV4_SUBNET_PREFIX]
            if spec.enable_ipv6:
                vnet_prefixes.append(IPV6_VNET_PREFIX)
                subnet_prefixes.append(IPV6_SUBNET_PREFIX)

            nsg_id = self._resource_id(group, "Microsoft.Network/networkSecurityGroups", nsg_name)
            with self._azure_errors(f"create virtual network {vnet_name}"):
                network.virtual_networks.begin_create_or_update(group, vnet_name, {
                    "location": region,
                    "address_space": {"address_prefixes": vnet_prefixes},
                    "subnets": [{
                        "name": subnet_name,
                        "address_prefixes": subnet_prefixes,
                        "network_security_group": {"id": nsg_id},
                    }],
                })
            self._wait_succeeded(
                lambda: network.virtual_networks.get(group, vnet_name),
                f"virtual network {vnet_name}",
            )
            self._wait_succeeded(
                lambda: network.subnets.get(group, vnet_name, subnet_name),
                f"subnet {subnet_name}",
            )

            subnet_id = self._resource_id(
                group, "Microsoft.Network/virtualNetworks", f"{vnet_name}/subnets/{subnet_name}"
            )
            ip_configurations = [{
                "name": "ipconfig1",
                "primary": True,
                "subnet": {"id": subnet_id},
                "public_ip_address": {
                    "id": self._resource_id(group, "Microsoft.Network/publicIPAddresses", pip_name)
                },
                "private_ip_allocation_method": "Dynamic",
                "private_ip_address_version": "IPv4",
            }]
            if spec.enable_ipv6:
                ip_configurations.append({
                    "name": "ipconfig2",
                    "primary": False,
                    "subnet": {"id": subnet_id},
                    "public_ip_address": {
                        "id": self._resource_id(group, "Microsoft.Network/publicIPAddresses", pip6_name)
                    },
                    "private_ip_allocation_method": "Dynamic",
                    "private_ip_address_version": "IPv6",
                })
            with self._azure_errors(f"create network interface {nic_name}"):
                network.network_interfaces.begin_create_or_update(
                    group, nic_name, {"location": region, "ip_configurations": ip_configurations}
                )
            self._wait_succeeded(
                lambda: network.network_interfaces.get(group, nic_name),
                f"network interface {nic_name}",
            )

            nic_id = self._resource_id(group, "Microsoft.Network/networkInterfaces", nic_name)
            vm_params = self._vm_parameters(spec, nic_id, disk_size)
            with self._azure_errors(f"create virtual machine {spec.name}"):
                self.compute_client.virtual_machines.begin_create_or_update(group, spec.name, vm_params)
            vm_submitted = True
            self._wait_succeeded(
                lambda: self.compute_client.virtual_machines.get(group, spec.name),
                f"virtual machine {spec.name}",
                self.vm_policy,
            )
        except Exception as e:
            if isinstance(e, CloudTimeoutError) and vm_submitted:
                log.warning(f"Azure VM {spec.name} is still provisioning; leaving resource group {group}")
                raise
            log.error(f"Failed to create Azure VM {spec.name}: {e}")
            if group_requested:
                self._compensate(group)
            if isinstance(e, CloudError) and e.vendor_code == "RequestDisallowedByAzure":
                raise self._region_disallowed(region) from e
            raise

        log.info(f"Azure VM created: {spec.name}")
        return CloudInstance(
            id=spec.name,
            name=spec.name,
            status="creating",
            provider=self.provider_type,
            region=region,
            ip_address=ipv4.ip_address,
            ipv6_address=ipv6.ip_address if ipv6 is not None else None,
            image=spec.image,
            size=spec.size,
            vcpus=azure_catalog.size_vcpus(spec.size),
            memory=azure_catalog.size_memory(spec.size),
            disk=disk_size,
            created_at=datetime.now(timezone.utc).isoformat(),
            tags=list(spec.tags),
        )

    @staticmethod
    def _security_rules() -> list[dict[str, Any]]:
        return [
            {
                "name": name,
                "protocol": "*",
                "source_port_range": "*",
                "destination_port_range": "*",
                "source_address_prefix": prefix,
                "destination_address_prefix": prefix,
                "access": "Allow",
                "priority": priority,
                "direction": direction,
            }
            for name, prefix, priority, direction in ALLOW_ALL_RULES
        ]

    def _create_public_ip(
        self, resource_group: str, name: str, region: str, version: IPVersion
    ) -> Any:
        with self._azure_errors(f"create public IP {name}"):
            self.network_client.public_ip_addresses.begin_create_or_update(resource_group, name, {
                "location": region,
                "sku": {"name": "Standard"},
                "public_ip_allocation_method": "Static",
                "public_ip_address_version": version.value,
            })
        return self._wait_succeeded(
            lambda: self.network_client.public_ip_addresses.get(resource_group, name),
            f"public IP {name}",
        )

    def _vm_parameters(self, spec: CreateInstanceConfig, nic_id: str, disk_size: int) -> VirtualMachine:
        admin = self.config.AZURE_ADMIN_USERNAME
        os_profile = OSProfile(
            computer_name=spec.name,
            admin_username=admin,
            admin_password=extract_root_password(spec.user_data) or generate_password(),
            custom_data=encode_custom_data(spec.user_data),
        )
        if not spec.image.startswith("Win"):
            os_profile.linux_configuration = LinuxConfiguration(
                disable_password_authentication=False,
                ssh=SshConfiguration(public_keys=[
                    SshPublicKey(path=f"/home/{admin}/.ssh/authorized_keys", key_data=key)
                    for key in spec.ssh_keys
                ]) if spec.ssh_keys else None,
            )

        return VirtualMachine(
            location=spec.region,
            tags=_tags_to_dict(spec.tags),
            hardware_profile=HardwareProfile(vm_size=spec.size),
            storage_profile=StorageProfile(
                image_reference=ImageReference(**azure_catalog.image_reference(spec.image)),
                os_disk=OSDisk(
                    create_option=DiskCreateOptionTypes.FROM_IMAGE,
                    disk_size_gb=disk_size,
                    managed_disk=ManagedDiskParameters(
                        storage_account_type=StorageAccountTypes.STANDARD_LRS,
                    ),
                ),
            ),
            os_profile=os_profile,
            network_profile=NetworkProfile(
                network_interfaces=[NetworkInterfaceReference(id=nic_id, primary=True)]
            ),
        )

    def delete_instance(self, instance_id: str) -> bool:
        """Delete the VM's resource group and wait until it is gone."""
        placement = self._locate(instance_id)
        group = placement.resource_group
        groups = self.resource_client.resource_groups

        with self._azure_errors(f"check resource group {group}"):
            exists = groups.check_existence(group)
        if not exists:
            self.locator.invalidate(instance_id)
            return True

        log.info(f"Deleting Azure VM {instance_id} (resource group {group})")
        with self._azure_errors(f"delete resource group {group}"):
            groups.begin_delete(group)

        def still_exists() -> bool:
            with self._azure_errors(f"check resource group {group}"):
                return groups.check_existence(group)

        poll(
            still_exists,
            lambda present: not present,
            self.provision_policy,
            self.clock,
            f"deletion of resource group {group}",
            self.provider_type,
        )
        self.locator.invalidate(instance_id)
        log.info(f"Azure VM deleted: {instance_id}")
        return True

    def perform_instance_action(self, instance_id: str, action: InstanceAction | str) -> bool:
        vendor_action = self.resolve_action(action)
        placement = self._locate(instance_id)
        log.info(f"Running {vendor_action} on Azure VM {instance_id}")
        operation = getattr(self.compute_client.virtual_machines, f"begin_{vendor_action}")
        with self._azure_errors(f"{vendor_action} VM {instance_id}"):
            operation(placement.resource_group, placement.vm_name)
        return True

    # ------------------------------------------------------------------
    # IP change
    # ------------------------------------------------------------------

    def change_instance_ip(
        self, instance_id: str, ip_version: IPVersion | str = IPVersion.IPV4
    ) -> str:
        """Replace the VM's public IP of the given version.

        A new Standard static public IP is created and attached before the
        old one is deleted, so the VM is never left without an address.

        Raises:
            CloudQuotaError: If the region's public IP quota cannot be freed
            CloudTimeoutError: If the new address does not materialize
        """
        version = IPVersion.parse(ip_version)
        placement = self._locate(instance_id)
        if not placement.nic_name:
            raise self.error(f"Azure VM {instance_id} has no network interface", 404, CloudNotFoundError)

        group = placement.resource_group
        config_name = "ipconfig2" if version is IPVersion.IPV6 else "ipconfig1"
        stamp = int(self.clock.time() * 1000)
        new_name = f"{instance_id}-ipv6-{stamp}" if version is IPVersion.IPV6 else f"{instance_id}-ip-{stamp}"

        with self._azure_errors(f"read network interface {placement.nic_name}"):
            nic = self.network_client.network_interfaces.get(group, placement.nic_name)
        old_pip_id = next(
            (
                c.public_ip_address.id for c in nic.ip_configurations or []
                if c.name == config_name and c.public_ip_address is not None
            ),
            None,
        )

        self._ensure_public_ip_capacity(placement.location)

        log.info(f"Creating {version.value} public IP {new_name} for Azure VM {instance_id}")
        with self._azure_errors(f"create public IP {new_name}"):
            self.network_client.public_ip_addresses.begin_create_or_update(group, new_name, {
                "location": placement.location,
                "sku": {"name": "Standard"},
                "public_ip_allocation_method": "Static",
                "public_ip_address_version": version.value,
            })
        new_pip_id = self._resource_id(group, "Microsoft.Network/publicIPAddresses", new_name)
        try:
            new_ip = self._wait_for_address(group, new_name)

            self._ensure_no_mixed_sku(group, placement.nic_name)
            if version is IPVersion.IPV6:
                self._ensure_subnet_ipv6(placement)

            self._attach_public_ip(group, placement.nic_name, config_name, new_pip_id, version)
        except Exception as e:
            log.error(f"Failed to move Azure VM {instance_id} to public IP {new_name}: {e}")
            self._delete_public_ip(new_pip_id)
            raise

        if old_pip_id and resource_name(old_pip_id) != new_name:
            self._delete_public_ip(old_pip_id)

        log.info(f"Azure VM {instance_id} now has {version.value} address {new_ip}")
        return new_ip

    def _wait_for_address(self, resource_group: str, name: str) -> str:
        def done(pip: Any) -> bool:
            if pip is None:
                return False
            state = _provisioning_state(pip)
            if state == "Failed":
                raise self.error(f"Azure public IP {name} failed to provision", 500)
            return state == "Succeeded" and bool(pip.ip_address)

        pip = poll(
            lambda: self._read_or_none(
                lambda: self.network_client.public_ip_addresses.get(resource_group, name),
                f"public IP {name}",
            ),
            done,
            self.ip_policy,
            self.clock,
            f"address of public IP {name}",
            self.provider_type,
        )
        return pip.ip_address

    def _ensure_public_ip_capacity(self, location: str) -> None:
        """Free the oldest unattached public IP in the region when the quota is full."""
        with self._azure_errors(f"read network usage in {location}"):
            usage = next(
                (u for u in self.network_client.usages.list(location) if u.name.value == "PublicIPAddresses"),
                None,
            )
        current = usage.current_value if usage is not None else 0
        limit = usage.limit if usage is not None else self.config.AZURE_DEFAULT_PUBLIC_IP_LIMIT
        if current < limit:
            return

        with self._azure_errors("list public IPs"):
            candidates = [
                pip for pip in self.network_client.public_ip_addresses.list_all()
                if pip.location == location and pip.ip_configuration is None
            ]
        if not candidates:
            raise self.error(
                f"Public IP limit ({limit}) reached in {location} and no unattached public IP "
                "can be released. Delete one manually or request a quota increase.",
                429,
                CloudQuotaError,
            )

        target = min(candidates, key=lambda pip: _name_timestamp(pip.name))
        target_group = resource_group_of(target.id)
        log.info(f"Public IP quota full in {location}; releasing unattached {target.name}")
        with self._azure_errors(f"delete public IP {target.name}"):
            self.network_client.public_ip_addresses.begin_delete(target_group, target.name)
        poll(
            lambda: self._read_or_none(
                lambda: self.network_client.public_ip_addresses.get(target_group, target.name),
                f"public IP {target.name}",
            ),
            lambda pip: pip is None,
            self.provision_policy,
            self.clock,
            f"deletion of public IP {target.name}",
            self.provider_type,
        )

    def _ensure_no_mixed_sku(self, resource_group: str, nic_name: str) -> None:
        """Detach Basic public IPs if the NIC mixes Basic and Standard SKUs.

        Standard addresses stay attached, so the VM keeps its address of
        the other IP family while the new Standard IP is attached.
        """
        with self._azure_errors(f"read network interface {nic_name}"):
            nic = self.network_client.network_interfaces.get(resource_group, nic_name)
            skus = {}
            for config in nic.ip_configurations or []:
                if config.public_ip_address is None or not config.public_ip_address.id:
                    continue
                pip_id = config.public_ip_address.id
                pip = self.network_client.public_ip_addresses.get(
                    resource_group_of(pip_id) or resource_group, resource_name(pip_id)
                )
                skus[config.name] = (pip.sku.name if pip.sku is not None else "Basic").lower()

        if not {"basic", "standard"} <= set(skus.values()):
            return

        basic = [c for c in nic.ip_configurations if skus.get(c.name) == "basic"]
        log.warning(
            f"Network interface {nic_name} mixes Basic and Standard public IPs; "
            f"detaching Basic IPs from {', '.join(c.name for c in basic)}"
        )
        for config in basic:
            config.public_ip_address = None
        with self._azure_errors(f"update network interface {nic_name}"):
            self.network_client.network_interfaces.begin_create_or_update(resource_group, nic_name, nic)
        self._wait_succeeded(
            lambda: self.network_client.network_interfaces.get(resource_group, nic_name),
            f"network interface {nic_name}",
        )

    def _ensure_subnet_ipv6(self, placement: VmPlacement) -> None:
        """Add IPv6 prefixes to the VM's virtual network and subnet if missing.

        Raises:
            CloudNotFoundError: If the subnet cannot be found
            CloudValidationError: If the subnet still lacks IPv6 afterwards
        """
        group, vnet_name, subnet_name = placement.resource_group, placement.vnet_name, placement.subnet_name
        if not vnet_name or not subnet_name:
            raise self.error(f"Azure VM {placement.vm_name} has no subnet", 404, CloudNotFoundError)

        with self._azure_errors(f"read virtual network {vnet_name}"):
            vnet = self.network_client.virtual_networks.get(group, vnet_name)
        subnet = next((s for s in vnet.subnets or [] if s.name == subnet_name), None)
        if subnet is None:
            raise self.error(f"Subnet {subnet_name} not found", 404, CloudNotFoundError)

        vnet_prefixes = list(vnet.address_space.address_prefixes or [])
        subnet_prefixes = list(subnet.address_prefixes or ([subnet.address_prefix] if subnet.address_prefix else []))
        if _has_ipv6(vnet_prefixes) and _has_ipv6(subnet_prefixes):
            return
        if not subnet_prefixes:
            raise self.error(f"Subnet {subnet_name} has no address prefix", 400, CloudValidationError)

        if not _has_ipv6(vnet_prefixes):
            vnet_prefixes.append(IPV6_VNET_PREFIX)
        if not _has_ipv6(subnet_prefixes):
            subnet_prefixes.append(IPV6_SUBNET_PREFIX)
        vnet.address_space.address_prefixes = vnet_prefixes
        subnet.address_prefixes = subnet_prefixes
        subnet.address_prefix = None

        log.info(f"Enabling IPv6 on virtual network {vnet_name}")
        with self._azure_errors(f"update virtual network {vnet_name}"):
            self.network_client.virtual_networks.begin_create_or_update(group, vnet_name, vnet)
        self._wait_succeeded(
            lambda: self.network_client.virtual_networks.get(group, vnet_name),
            f"virtual network {vnet_name}",
        )
        self.clock.sleep(self.config.AZURE_VNET_SETTLE_SECONDS)

        with self._azure_errors(f"read subnet {subnet_name}"):
            updated = self.network_client.subnets.get(group, vnet_name, subnet_name)
        updated_prefixes = list(updated.address_prefixes or ([updated.address_prefix] if updated.address_prefix else []))
        if not _has_ipv6(updated_prefixes):
            raise self.error(
                f"IPv6 configuration of subnet {subnet_name} did not take effect", 400, CloudValidationError
            )

    def _attach_public_ip(
        self,
        resource_group: str,
        nic_name: str,
        config_name: str,
        pip_id: str,
        version: IPVersion,
    ) -> None:
        with self._azure_errors(f"read network interface {nic_name}"):
            nic = self.network_client.network_interfaces.get(resource_group, nic_name)
        configs = nic.ip_configurations or []
        target = next((c for c in configs if c.name == config_name), None)
        if target is None:
            if version is not IPVersion.IPV6:
                raise self.error(
                    f"Network interface {nic_name} has no {config_name} configuration", 404, CloudNotFoundError
                )
            target = NetworkInterfaceIPConfiguration(
                name=config_name,
                primary=False,
                subnet=configs[0].subnet if configs else None,
                private_ip_allocation_method="Dynamic",
                private_ip_address_version="IPv6",
            )
            configs.append(target)
            nic.ip_configurations = configs

        target.public_ip_address = PublicIPAddress(id=pip_id)
        log.info(f"Attaching {resource_name(pip_id)} to {nic_name}/{config_name}")
        with self._azure_errors(f"update network interface {nic_name}"):
            self.network_client.network_interfaces.begin_create_or_update(resource_group, nic_name, nic)
        self._wait_succeeded(
            lambda: self.network_client.network_interfaces.get(resource_group, nic_name),
            f"network interface {nic_name}",
        )

    def _delete_public_ip(self, pip_id: str) -> None:
        name = resource_name(pip_id)
        try:
            with self._azure_errors(f"delete public IP {name}"):
                self.network_client.public_ip_addresses.begin_delete(resource_group_of(pip_id), name)
            log.info(f"Deleted public IP {name}")
        except CloudError as e:
            log.warning(f"Failed to delete public IP {name}: {e}")

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def get_regions(self) -> list[CloudRegion]:
        return azure_catalog.regions()

    def get_images(self) -> list[CloudImage]:
        images = self.catalog_cache.get("images")
        if images is None:
            images = azure_catalog.images()
            self.catalog_cache.set("images", images)
        return images

    def get_plans(self) -> list[CloudPlan]:
        plans = self.catalog_cache.get("plans")
        if plans is None:
            plans = azure_catalog.plans()
            self.catalog_cache.set("plans", plans)
        return plans
