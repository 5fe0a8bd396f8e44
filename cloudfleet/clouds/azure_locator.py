"""Azure resource locator.

An Azure instance ID is the VM name. Everything else an operation needs
(resource group, NIC, virtual network, subnet) is discovered from it by
walking resource groups this package manages.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any

from azure.core.exceptions import ResourceNotFoundError

from .base import CloudNotFoundError, CloudValidationError

log = logging.getLogger(__name__)


def resource_name(resource_id: str | None) -> str:
    """Last path segment of an ARM resource ID."""
    return (resource_id or "").rstrip("/").split("/")[-1]


def resource_group_of(resource_id: str | None) -> str | None:
    """Resource group segment of an ARM resource ID."""
    parts = (resource_id or "").split("/")
    for i, part in enumerate(parts[:-1]):
        if part.lower() == "resourcegroups":
            return parts[i + 1]
    return None


def parent_name(resource_id: str | None, collection: str) -> str | None:
    """Name following ``collection`` in an ARM resource ID."""
    parts = (resource_id or "").split("/")
    for i, part in enumerate(parts[:-1]):
        if part.lower() == collection.lower():
            return parts[i + 1]
    return None


@dataclass(slots=True)
class VmPlacement:
    """Where a VM and its primary network resources live."""

    resource_group: str
    vm_name: str
    location: str
    nic_name: str | None = None
    nic_id: str | None = None
    vnet_name: str | None = None
    subnet_name: str | None = None


class AzureLocator:
    """Find the resource group and network resources of a VM by name.

    Results are memoized per instance ID until ``invalidate`` is called.
    """

    def __init__(
        self,
        resource_client: Any,
        compute_client: Any,
        network_client: Any,
        prefix: str,
        managed_tag: str,
    ) -> None:
        self.resource_client = resource_client
        self.compute_client = compute_client
        self.network_client = network_client
        self.prefix = prefix
        self.managed_tag = managed_tag
        self._cache: dict[str, VmPlacement] = {}
        self._lock = threading.Lock()

    def _is_managed(self, group: Any) -> bool:
        tags = getattr(group, "tags", None) or {}
        return (group.name or "").startswith(self.prefix) or tags.get("managed-by") == self.managed_tag

    def managed_groups(self) -> list[Any]:
        return [g for g in self.resource_client.resource_groups.list() if self._is_managed(g)]

    def locate(self, instance_id: str) -> VmPlacement:
        """Find the placement of a VM.

        Every managed resource group is searched. A name found in more than
        one group is rejected rather than guessed, since callers go on to
        modify or delete the group.

        Args:
            instance_id: VM name

        Returns:
            VmPlacement for the VM

        Raises:
            CloudNotFoundError: If no managed resource group holds the VM
            CloudValidationError: If several managed resource groups hold it
        """
        with self._lock:
            cached = self._cache.get(instance_id)
            if cached is not None:
                return cached

            matches = []
            for group in self.managed_groups():
                try:
                    vm = self.compute_client.virtual_machines.get(group.name, instance_id)
                except ResourceNotFoundError:
                    continue
                matches.append((group.name, vm))

            if len(matches) > 1:
                groups = ", ".join(name for name, _ in matches)
                log.warning(f"Azure VM name {instance_id} exists in several resource groups: {groups}")
                raise CloudValidationError(
                    f"Azure VM {instance_id} is ambiguous: found in resource groups {groups}",
                    provider="azure",
                    status_code=400,
                )

            if matches:
                group_name, vm = matches[0]
                placement = self._placement(group_name, vm)
                self._cache[instance_id] = placement
                log.debug(f"Located Azure VM {instance_id} in resource group {group_name}")
                return placement

        raise CloudNotFoundError(
            f"Azure VM {instance_id} not found in any managed resource group",
            provider="azure",
            status_code=404,
        )

    def _placement(self, resource_group: str, vm: Any) -> VmPlacement:
        placement = VmPlacement(
            resource_group=resource_group,
            vm_name=vm.name,
            location=vm.location,
        )
        nics = (vm.network_profile.network_interfaces or []) if vm.network_profile else []
        if not nics:
            return placement

        nic_ref = next((n for n in nics if getattr(n, "primary", False)), nics[0])
        placement.nic_id = nic_ref.id
        placement.nic_name = resource_name(nic_ref.id)

        nic = self.network_client.network_interfaces.get(
            resource_group_of(nic_ref.id) or resource_group, placement.nic_name
        )
        configs = nic.ip_configurations or []
        if configs and configs[0].subnet is not None:
            subnet_id = configs[0].subnet.id
            placement.vnet_name = parent_name(subnet_id, "virtualNetworks")
            placement.subnet_name = resource_name(subnet_id)
        return placement

    def invalidate(self, instance_id: str) -> None:
        with self._lock:
            self._cache.pop(instance_id, None)
