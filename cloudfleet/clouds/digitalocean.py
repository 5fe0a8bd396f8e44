"""DigitalOcean Cloud Provider Implementation.

Provides integration with DigitalOcean droplets using the REST API v2.
Reserved IPs (formerly floating IPs) are managed both as a standalone
capability and as the mechanism behind IPv4 address changes.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from . import register_cloud
from .base import (
    AccountInfo,
    AccountOverview,
    BalanceInfo,
    CloudError,
    CloudImage,
    CloudInstance,
    CloudPlan,
    CloudRegion,
    CloudTimeoutError,
    CloudValidationError,
    CreateInstanceConfig,
    FloatingIP,
    FloatingIPCapability,
    InstanceAction,
    IPChangeCapability,
    IPVersion,
    OverviewAccount,
    OverviewMoney,
    QuotaUsage,
    ResourceCounts,
)
from .rest import RestCloud
from ..retry import BackoffPolicy, poll

log = logging.getLogger(__name__)


def _to_float(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


@register_cloud("digitalocean")
class DigitalOceanCloud(RestCloud, IPChangeCapability, FloatingIPCapability):
    """DigitalOcean cloud provider implementation using REST API v2.

    The credential is a personal access token sent as a Bearer header.
    """

    provider_type: str = "digitalocean"
    VENDOR_LABEL: str = "DigitalOcean"

    ACTION_MAP: dict[InstanceAction, str] = {
        InstanceAction.POWER_ON: "power_on",
        InstanceAction.POWER_OFF: "power_off",
        InstanceAction.REBOOT: "reboot",
        InstanceAction.SHUTDOWN: "shutdown",
    }

    # Collection page size
    PAGE_SIZE: int = 200

    def __init__(self, credential: str, config: Any = None, **kwargs: Any) -> None:
        super().__init__(credential, config=config, **kwargs)
        self.API_BASE_URL = self.config.DIGITALOCEAN_API_URL
        self.action_policy = BackoffPolicy(
            max_attempts=self.config.DIGITALOCEAN_ACTION_POLL_ATTEMPTS,
            interval=self.config.DIGITALOCEAN_ACTION_POLL_INTERVAL,
        )
        self.ipv6_policy = BackoffPolicy(
            max_attempts=self.config.DIGITALOCEAN_IPV6_POLL_ATTEMPTS,
            interval=self.config.DIGITALOCEAN_IPV6_POLL_INTERVAL,
        )

    @property
    def ip_changer(self) -> IPChangeCapability:
        return self

    @property
    def floating_ips(self) -> FloatingIPCapability:
        return self

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
        json_data: dict | None = None,
    ) -> dict[str, Any]:
        return self._send(method, endpoint, params=params, json_data=json_data)

    def _paginate(self, endpoint: str, key: str, params: dict | None = None) -> list[dict]:
        """Collect every item of a paginated collection."""
        items: list[dict] = []
        query: dict | None = {"per_page": self.PAGE_SIZE, **(params or {})}
        url = endpoint

        while url:
            response = self._request("GET", url, params=query)
            items.extend(response.get(key) or [])
            # The next link already carries the query string
            url = ((response.get("links") or {}).get("pages") or {}).get("next", "")
            query = None

        return items

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    def get_account_info(self) -> AccountInfo:
        account = self._request("GET", "/account").get("account", {})
        return AccountInfo(
            email=account.get("email"),
            status=account.get("status", "active"),
            email_verified=account.get("email_verified"),
            uuid=account.get("uuid"),
            name=account.get("email"),
            instance_limit=account.get("droplet_limit"),
        )

    def get_balance(self) -> BalanceInfo:
        """Get the account balance and month-to-date usage.

        ``month_to_date_usage`` is left unset when the billing endpoint is
        not readable by the token.
        """
        account = self._request("GET", "/account").get("account", {})
        usage = None
        try:
            billing = self._request("GET", "/customers/my/balance")
            usage = _to_float(billing.get("month_to_date_usage"))
        except CloudError as e:
            log.warning(f"Failed to read DigitalOcean billing balance: {e}")

        return BalanceInfo(
            balance=_to_float(account.get("account_balance")),
            currency="USD",
            month_to_date_usage=usage,
        )

    def get_account_overview(self) -> AccountOverview:
        account = self._request("GET", "/account").get("account", {})
        billing = self._request("GET", "/customers/my/balance")
        droplets = self._paginate("/droplets", "droplets")

        try:
            reserved_ips = len(self._paginate("/reserved_ips", "reserved_ips"))
        except CloudError as e:
            log.warning(f"Failed to count DigitalOcean reserved IPs: {e}")
            reserved_ips = 0

        try:
            volumes = len(self._paginate("/volumes", "volumes"))
        except CloudError as e:
            log.warning(f"Failed to count DigitalOcean volumes: {e}")
            volumes = 0

        raw_status = account.get("status")
        status = raw_status if raw_status in ("active", "warning") else "inactive"

        return AccountOverview(
            provider=self.provider_type,
            account=OverviewAccount(
                name=account.get("email"),
                email=account.get("email"),
                status=status,
                plan="-",
            ),
            money=OverviewMoney(
                currency="USD",
                balance=_to_float(account.get("account_balance")),
                monthly_used=_to_float(billing.get("month_to_date_usage")),
            ),
            quotas=[
                QuotaUsage(
                    key="instances",
                    label="Droplets",
                    used=len(droplets),
                    limit=account.get("droplet_limit")
                    or self.config.DIGITALOCEAN_DEFAULT_DROPLET_LIMIT,
                )
            ],
            resources=ResourceCounts(
                instances=len(droplets),
                floating_ips=reserved_ips,
                volumes=volumes,
            ),
            last_sync=datetime.now(timezone.utc).isoformat(),
        )

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    def _parse_droplet(
        self, droplet: dict[str, Any], reserved_ip: str | None = None
    ) -> CloudInstance:
        """Parse DigitalOcean droplet data into a CloudInstance.

        Args:
            droplet: Raw droplet data from the API
            reserved_ip: Reserved IP bound to the droplet, if any

        Returns:
            CloudInstance with normalized data
        """
        networks = droplet.get("networks") or {}
        v4 = networks.get("v4") or []
        v6 = networks.get("v6") or []

        public_v4 = next((n.get("ip_address") for n in v4 if n.get("type") == "public"), None)
        private_v4 = next((n.get("ip_address") for n in v4 if n.get("type") == "private"), None)
        public_v6 = next((n.get("ip_address") for n in v6 if n.get("type") == "public"), None)

        image = droplet.get("image") or {}
        size = droplet.get("size") or {}
        transfer_tb = size.get("transfer")

        return CloudInstance(
            id=str(droplet.get("id", "")),
            name=droplet.get("name", ""),
            status=droplet.get("status", "unknown"),
            provider=self.provider_type,
            region=(droplet.get("region") or {}).get("slug", ""),
            image=image.get("slug") or image.get("name") or "",
            size=size.get("slug") or droplet.get("size_slug", ""),
            ip_address=reserved_ip or public_v4,
            ipv6_address=public_v6,
            private_ip=private_v4,
            vcpus=droplet.get("vcpus", 0),
            memory=droplet.get("memory", 0),
            disk=droplet.get("disk", 0),
            created_at=droplet.get("created_at"),
            tags=list(droplet.get("tags") or []),
            transfer_quota=int(transfer_tb * 1000) if transfer_tb else 1000,
        )

    def _reserved_ips_by_droplet(self) -> dict[str, list[str]]:
        bound: dict[str, list[str]] = {}
        for rip in self._paginate("/reserved_ips", "reserved_ips"):
            droplet = rip.get("droplet") or {}
            if droplet.get("id") is not None:
                bound.setdefault(str(droplet["id"]), []).append(rip["ip"])
        return bound

    def list_instances(self) -> list[CloudInstance]:
        """List droplets, preferring a bound reserved IP as the public IPv4.

        Returns:
            List of CloudInstance objects

        Raises:
            CloudError: On API errors
        """
        droplets = self._paginate("/droplets", "droplets")
        bound = self._reserved_ips_by_droplet()

        instances = []
        for droplet in droplets:
            reserved = bound.get(str(droplet.get("id")))
            instances.append(self._parse_droplet(droplet, reserved[0] if reserved else None))

        log.info(f"Listed {len(instances)} DigitalOcean droplets")
        return instances

    def create_instance(self, spec: CreateInstanceConfig) -> CloudInstance:
        """Create a droplet.

        Args:
            spec: Instance specification

        Returns:
            Created CloudInstance (status "new" until the droplet boots)

        Raises:
            CloudError: On API errors
        """
        payload: dict[str, Any] = {
            "name": spec.name,
            "region": spec.region,
            "size": spec.size,
            "image": spec.image,
            "ssh_keys": list(spec.ssh_keys),
            "tags": list(spec.tags),
            "ipv6": spec.enable_ipv6,
        }
        if spec.user_data:
            payload["user_data"] = spec.user_data

        log.info(f"Creating DigitalOcean droplet: {spec.name} in {spec.region}")
        response = self._request("POST", "/droplets", json_data=payload)

        droplet = response.get("droplet")
        if not droplet:
            raise self.error("Failed to create droplet: empty response")

        instance = self._parse_droplet(droplet)
        # New droplets have no public address yet
        instance.ip_address = None
        log.info(f"Created DigitalOcean droplet: {instance.id}")
        return instance

    def delete_instance(self, instance_id: str) -> bool:
        """Destroy a droplet after releasing its reserved IPs.

        Reserved IP release is best-effort: each failure is logged and the
        droplet is deleted regardless.

        Args:
            instance_id: Droplet ID

        Returns:
            True if destroyed successfully

        Raises:
            CloudNotFoundError: If droplet not found
            CloudError: On API errors
        """
        log.info(f"Destroying DigitalOcean droplet: {instance_id}")

        try:
            bound = [f for f in self.list_floating_ips() if f.instance_id == str(instance_id)]
        except CloudError as e:
            log.warning(f"Failed to list reserved IPs for droplet {instance_id}: {e}")
            bound = []

        for floating in bound:
            try:
                self.delete_floating_ip(floating.ip)
                log.info(f"Released reserved IP {floating.ip} from droplet {instance_id}")
            except CloudError as e:
                log.warning(f"Failed to release reserved IP {floating.ip}: {e}")

        self._request("DELETE", f"/droplets/{instance_id}")

        log.info(f"Destroyed DigitalOcean droplet: {instance_id}")
        return True

    def perform_instance_action(self, instance_id: str, action: InstanceAction | str) -> bool:
        vendor_action = self.resolve_action(action)
        log.info(f"Running {vendor_action} on DigitalOcean droplet {instance_id}")
        self._request(
            "POST", f"/droplets/{instance_id}/actions", json_data={"type": vendor_action}
        )
        return True

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def get_regions(self) -> list[CloudRegion]:
        return [
            CloudRegion(slug=r["slug"], name=r.get("name", r["slug"]), available=True)
            for r in self._paginate("/regions", "regions")
            if r.get("available")
        ]

    def get_images(self) -> list[CloudImage]:
        """List public distribution images, one per slug, sorted by distribution."""
        unique: dict[str, dict] = {}
        for image in self._paginate("/images", "images", params={"type": "distribution"}):
            slug = image.get("slug")
            if not slug or not image.get("public") or image.get("status") != "available":
                continue
            unique.setdefault(slug, image)

        images = []
        for slug, image in unique.items():
            name = image.get("name") or slug
            distribution = image.get("distribution") or ""
            if distribution and distribution.lower() not in name.lower():
                name = f"{distribution} {name}"
            images.append(CloudImage(id=slug, slug=slug, name=name, distribution=distribution))

        return sorted(images, key=lambda i: (i.distribution, i.name))

    def get_plans(self) -> list[CloudPlan]:
        plans = []
        for size in self._paginate("/sizes", "sizes"):
            if not size.get("available"):
                continue
            plans.append(CloudPlan(
                slug=size["slug"],
                description=f"{size.get('memory')}MB / {size.get('vcpus')} CPU / {size.get('disk')}GB SSD",
                memory=size.get("memory", 0),
                vcpus=size.get("vcpus", 0),
                disk=size.get("disk", 0),
                price_monthly=_to_float(size.get("price_monthly")),
                price_hourly=_to_float(size.get("price_hourly")),
                regions=list(size.get("regions") or []),
                transfer=size.get("transfer"),
            ))
        return plans

    # ------------------------------------------------------------------
    # Reserved (floating) IPs
    # ------------------------------------------------------------------

    def list_floating_ips(self) -> list[FloatingIP]:
        result = []
        for rip in self._paginate("/reserved_ips", "reserved_ips"):
            droplet_id = (rip.get("droplet") or {}).get("id")
            result.append(FloatingIP(
                ip=rip["ip"],
                region=(rip.get("region") or {}).get("slug", ""),
                instance_id=str(droplet_id) if droplet_id is not None else None,
            ))
        return result

    def delete_floating_ip(self, ip: str) -> bool:
        try:
            self.unassign_floating_ip(ip)
        except CloudError as e:
            # Unbound addresses reject unassign
            log.debug(f"Unassign before delete of {ip} failed: {e}")

        self._request("DELETE", f"/reserved_ips/{ip}")
        log.info(f"Deleted DigitalOcean reserved IP: {ip}")
        return True

    def assign_floating_ip(self, ip: str, instance_id: str) -> bool:
        log.info(f"Assigning reserved IP {ip} to droplet {instance_id}")
        self._ip_action(ip, {"type": "assign", "droplet_id": self.numeric_id(instance_id)})
        return True

    def unassign_floating_ip(self, ip: str) -> bool:
        log.info(f"Unassigning reserved IP {ip}")
        self._ip_action(ip, {"type": "unassign"})
        return True

    def _ip_action(self, ip: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", f"/reserved_ips/{ip}/actions", json_data=body).get(
            "action", {}
        )

    # ------------------------------------------------------------------
    # Actions and IP change
    # ------------------------------------------------------------------

    def _wait_for_action(
        self, action: dict[str, Any], droplet_id: str | None = None, action_type: str = ""
    ) -> None:
        """Wait until a DigitalOcean action completes.

        Uses the action ID when the API returned one, otherwise scans the
        droplet's action history for a completed action of ``action_type``.

        Raises:
            CloudError: If the action errored
            CloudTimeoutError: If the action did not finish in time
        """
        action_id = action.get("id")
        description = f"DigitalOcean action {action_type or action.get('type') or action_id}"

        if action_id is not None:
            def fetch() -> dict:
                return self._request("GET", f"/actions/{action_id}").get("action", {})
        elif droplet_id is not None:
            def fetch() -> dict:
                actions = self._request("GET", f"/droplets/{droplet_id}/actions").get("actions", [])
                matching = [a for a in actions if a.get("type") == action_type]
                return matching[0] if matching else {}
        else:
            return

        def is_done(current: dict) -> bool:
            status = current.get("status")
            if status == "errored":
                raise self.error(f"{description} failed")
            return status == "completed"

        poll(fetch, is_done, self.action_policy, self.clock, description, self.provider_type)

    def _get_droplet(self, instance_id: str) -> dict[str, Any]:
        return self._request("GET", f"/droplets/{instance_id}").get("droplet", {})

    def change_instance_ip(
        self, instance_id: str, ip_version: IPVersion | str = IPVersion.IPV4
    ) -> str:
        version = IPVersion.parse(ip_version)
        if version is IPVersion.IPV4:
            return self._change_ipv4(instance_id)
        return self._change_ipv6(instance_id)

    def _change_ipv4(self, instance_id: str) -> str:
        """Move the droplet to a freshly reserved IPv4.

        The new address is reserved before the old one is touched. A droplet
        holds one reserved IP at a time, so the old binding is removed
        before the new one is assigned. If any later step fails the new
        reservation is released again.
        """
        droplet_id = self.numeric_id(instance_id)
        region = (self._get_droplet(instance_id).get("region") or {}).get("slug")
        if not region:
            raise self.error(f"Cannot determine region of droplet {instance_id}")

        created = self._request("POST", "/reserved_ips", json_data={"region": region})
        new_ip = (created.get("reserved_ip") or {}).get("ip")
        if not new_ip:
            raise self.error("Failed to reserve a new IPv4 address: empty response")
        log.info(f"Reserved new IPv4 {new_ip} in {region} for droplet {instance_id}")

        try:
            for floating in self.list_floating_ips():
                if floating.instance_id != str(instance_id) or floating.ip == new_ip:
                    continue
                action = self._ip_action(floating.ip, {"type": "unassign"})
                self._wait_for_action(action)
                self._request("DELETE", f"/reserved_ips/{floating.ip}")
                log.info(f"Released old reserved IP {floating.ip} from droplet {instance_id}")

            action = self._ip_action(new_ip, {"type": "assign", "droplet_id": droplet_id})
            self._wait_for_action(action)
        except CloudError as e:
            log.error(f"Failed to move droplet {instance_id} to reserved IP {new_ip}: {e}")
            self._release_reserved_ip(new_ip)
            raise

        log.info(f"Droplet {instance_id} now uses reserved IP {new_ip}")
        return new_ip

    def _release_reserved_ip(self, ip: str) -> None:
        try:
            self._request("DELETE", f"/reserved_ips/{ip}")
            log.info(f"Released reserved IP {ip}")
        except CloudError as e:
            log.warning(f"Failed to release reserved IP {ip}: {e}")

    @staticmethod
    def _public_ipv6(droplet: dict[str, Any]) -> str | None:
        for net in (droplet.get("networks") or {}).get("v6") or []:
            if net.get("type") == "public" and net.get("ip_address"):
                return net["ip_address"]
        return None

    def _change_ipv6(self, instance_id: str) -> str:
        """Enable IPv6 on a droplet that has none and return the new address."""
        if self._public_ipv6(self._get_droplet(instance_id)):
            raise self.error(
                "DigitalOcean cannot change an existing IPv6 address", cls=CloudValidationError
            )

        log.info(f"Enabling IPv6 on DigitalOcean droplet {instance_id}")
        response = self._request(
            "POST", f"/droplets/{instance_id}/actions", json_data={"type": "enable_ipv6"}
        )
        self._wait_for_action(response.get("action") or {}, instance_id, "enable_ipv6")

        try:
            droplet = poll(
                lambda: self._get_droplet(instance_id),
                lambda d: self._public_ipv6(d) is not None,
                self.ipv6_policy,
                self.clock,
                f"IPv6 address on droplet {instance_id}",
                self.provider_type,
            )
        except CloudTimeoutError as e:
            raise self.error(
                f"IPv6 not available on droplet {instance_id}: IPv6 was enabled but no public "
                "address appeared. Check the droplet's network settings.",
                500,
            ) from e
        return self._public_ipv6(droplet)
