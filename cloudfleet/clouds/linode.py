"""Linode Cloud Provider Implementation.

Provides integration with Linode (Akamai) compute instances using the
REST API v4. Every request goes through a bounded retry policy for
gateway errors and transport failures.
"""

from __future__ import annotations

import ipaddress
import logging
import re
from datetime import datetime, timezone
from typing import Any

from . import register_cloud
from .base import (
    AccountInfo,
    AccountOverview,
    BalanceInfo,
    BillingDetails,
    CloudError,
    CloudImage,
    CloudInstance,
    CloudNotFoundError,
    CloudPlan,
    CloudRegion,
    CloudTimeoutError,
    CloudValidationError,
    CreateInstanceConfig,
    InstanceAction,
    IPChangeCapability,
    IPVersion,
    OverviewAccount,
    OverviewMoney,
    PromotionInfo,
    QuotaUsage,
    ResourceCounts,
)
from .rest import RestCloud
from .userdata import extract_root_password, generate_password
from ..retry import BackoffPolicy, poll, retry_call

log = logging.getLogger(__name__)

# Statuses worth retrying
TRANSIENT_STATUSES = frozenset({502, 503, 504})

# Placeholder Linode reports before an IPv6 address is assigned
LINK_LOCAL_PLACEHOLDER = "fe80::/10"

PLAN_CLASSES = frozenset({"standard", "nanode"})


def _to_float(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _is_private_ipv4(address: str) -> bool:
    try:
        ip = ipaddress.IPv4Address(address)
    except ValueError:
        return False
    return ip.is_private or ip.is_loopback


def _linode_time(value: str | None) -> str | None:
    """Linode timestamps are UTC but carry no zone designator."""
    if not value:
        return None
    if value.endswith("Z") or re.search(r"[+-]\d\d:\d\d$", value):
        return value
    return f"{value}Z"


def _usable_ipv6(value: str | None) -> str | None:
    if not value or value == LINK_LOCAL_PLACEHOLDER:
        return None
    return value.split("/")[0]


@register_cloud("linode")
class LinodeCloud(RestCloud, IPChangeCapability):
    """Linode cloud provider implementation using REST API v4.

    The credential is a personal access token sent as a Bearer header.
    """

    provider_type: str = "linode"
    VENDOR_LABEL: str = "Linode"

    ACTION_MAP: dict[InstanceAction, str] = {
        InstanceAction.POWER_ON: "boot",
        InstanceAction.POWER_OFF: "shutdown",
        InstanceAction.REBOOT: "reboot",
        InstanceAction.SHUTDOWN: "shutdown",
    }

    PAGE_SIZE: int = 500

    def __init__(self, credential: str, config: Any = None, **kwargs: Any) -> None:
        super().__init__(credential, config=config, **kwargs)
        self.API_BASE_URL = self.config.LINODE_API_URL
        self.retry_policy = BackoffPolicy(
            max_attempts=self.config.LINODE_MAX_RETRIES + 1,
            interval=self.config.LINODE_RETRY_INTERVAL,
            jitter=self.config.LINODE_RETRY_JITTER,
        )
        self.ipv6_policy = BackoffPolicy(
            max_attempts=self.config.LINODE_IPV6_POLL_ATTEMPTS,
            interval=self.config.LINODE_IPV6_POLL_INTERVAL,
        )

    @property
    def ip_changer(self) -> IPChangeCapability:
        return self

    def _error_message(self, status_code: int, body: str) -> str:
        if status_code == 502:
            return (
                "Linode API is temporarily unavailable (502 Bad Gateway); "
                "please try again in a few minutes"
            )
        return super()._error_message(status_code, body)

    @staticmethod
    def _is_transient(error: Exception) -> bool:
        return isinstance(error, CloudError) and (
            error.status_code in TRANSIENT_STATUSES or error.status_code == 0
        )

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
        json_data: dict | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated request, retrying gateway and network errors.

        Raises:
            CloudError: With status 0 when the network stays unreachable
        """
        try:
            return retry_call(
                lambda: self._send(method, endpoint, params=params, json_data=json_data),
                self.retry_policy,
                self.clock,
                self._is_transient,
                description=f"Linode {method} {endpoint}",
            )
        except CloudError as e:
            if e.status_code == 0:
                raise self.error(
                    f"Linode API network connection failed after "
                    f"{self.retry_policy.max_attempts} attempts: {e.message}",
                    0,
                ) from e
            raise

    def _paginate(self, endpoint: str) -> list[dict]:
        items: list[dict] = []
        page = 1
        while True:
            response = self._request(
                "GET", endpoint, params={"page": page, "page_size": self.PAGE_SIZE}
            )
            items.extend(response.get("data") or [])
            if page >= int(response.get("pages") or 1):
                return items
            page += 1

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    def get_account_info(self) -> AccountInfo:
        account = self._request("GET", "/account")
        return AccountInfo(
            email=account.get("email"),
            status="active" if account.get("active", True) else "inactive",
            email_verified=account.get("email_verified"),
            uuid=account.get("euuid"),
            name=" ".join(
                p for p in (account.get("first_name"), account.get("last_name")) if p
            ) or account.get("email"),
            active_since=_linode_time(account.get("active_since")),
        )

    def get_balance(self) -> BalanceInfo:
        account = self._request("GET", "/account")
        balance = _to_float(account.get("balance"))
        return BalanceInfo(
            balance=balance,
            currency="USD",
            credits_remaining=_to_float(account.get("credit_remaining")),
            is_credit_account=balance < 0,
        )

    def _optional(self, endpoint: str, paginated: bool = False) -> Any:
        """Fetch an endpoint whose failure must not sink the overview."""
        try:
            return self._paginate(endpoint) if paginated else self._request("GET", endpoint)
        except CloudError as e:
            log.warning(f"Failed to read Linode {endpoint}: {e}")
            return [] if paginated else {}

    def get_account_overview(self) -> AccountOverview:
        """Aggregate account, transfer pool, addresses and promotions."""
        account = self._request("GET", "/account")
        transfer = self._request("GET", "/account/transfer")
        instances = self._paginate("/linode/instances")
        ips = self._optional("/networking/ips", paginated=True)
        profile = self._optional("/profile")
        promotions = account.get("active_promotions") or self._optional(
            "/account/promotions", paginated=True
        )

        promotion = PromotionInfo(balance_uninvoiced=_to_float(account.get("balance_uninvoiced")))
        if promotions:
            active = promotions[0]
            promotion.code = active.get("summary") or active.get("description")
            promotion.expires_at = _linode_time(active.get("expire_dt") or active.get("expires_at"))
            promotion.remaining = _to_float(
                active.get("credit_remaining") or active.get("this_month_so_far")
            )

        card = account.get("credit_card") or {}
        billing = BillingDetails(
            balance=_to_float(account.get("balance")),
            credit_card=(
                f"**** **** **** {card.get('last_four')} (expires {card.get('expiry')})"
                if card.get("last_four") else None
            ),
            created_at=_linode_time(account.get("active_since")),
        )

        plan = "-"
        if profile.get("restricted"):
            plan = "restricted user"

        return AccountOverview(
            provider=self.provider_type,
            account=OverviewAccount(
                name=account.get("email"),
                email=account.get("email"),
                status="active" if account.get("active", True) else "inactive",
                plan=plan,
            ),
            money=OverviewMoney(
                currency="USD",
                balance=_to_float(account.get("balance")),
                credits_remaining=_to_float(account.get("credit_remaining")) or None,
            ),
            quotas=[
                QuotaUsage(
                    key="transfer",
                    label="Transfer pool (GB)",
                    used=transfer.get("used") or 0,
                    limit=transfer.get("quota") or 1000,
                )
            ],
            resources=ResourceCounts(
                instances=len(instances),
                public_ipv4=sum(1 for ip in ips if ip.get("type") == "ipv4" and ip.get("public")),
                ipv6_prefixes=sum(1 for ip in ips if ip.get("type") == "ipv6"),
            ),
            promotion=promotion,
            billing=billing,
            last_sync=datetime.now(timezone.utc).isoformat(),
        )

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    def _parse_linode(self, linode: dict[str, Any], image_labels: dict[str, str]) -> CloudInstance:
        """Parse Linode instance data into a CloudInstance.

        Args:
            linode: Raw instance data from the API
            image_labels: Image ID to label lookup

        Returns:
            CloudInstance with normalized data
        """
        ipv4 = linode.get("ipv4") or []
        specs = linode.get("specs") or {}
        image = linode.get("image") or "unknown"

        return CloudInstance(
            id=str(linode.get("id", "")),
            name=linode.get("label", ""),
            status=linode.get("status", "unknown"),
            provider=self.provider_type,
            region=linode.get("region", ""),
            image=image_labels.get(image, image),
            size=linode.get("type", ""),
            ip_address=next((ip for ip in ipv4 if not _is_private_ipv4(ip)), None),
            ipv6_address=_usable_ipv6(linode.get("ipv6")),
            private_ip=next((ip for ip in ipv4 if _is_private_ipv4(ip)), None),
            vcpus=specs.get("vcpus", 0),
            memory=specs.get("memory", 0),
            disk=specs.get("disk", 0),
            created_at=_linode_time(linode.get("created")),
            tags=list(linode.get("tags") or []),
            transfer_quota=specs.get("transfer") or 1000,
        )

    def list_instances(self) -> list[CloudInstance]:
        linodes = self._paginate("/linode/instances")

        image_labels: dict[str, str] = {}
        try:
            image_labels = {
                img["id"]: img.get("label") or img["id"] for img in self._paginate("/images")
            }
        except CloudError as e:
            log.warning(f"Failed to load Linode image labels: {e}")

        instances = [self._parse_linode(linode, image_labels) for linode in linodes]
        log.info(f"Listed {len(instances)} Linode instances")
        return instances

    def create_instance(self, spec: CreateInstanceConfig) -> CloudInstance:
        """Create a Linode instance.

        The root password is taken from a ``chpasswd`` line in the user-data
        when present, otherwise a random one is generated.

        Args:
            spec: Instance specification

        Returns:
            Created CloudInstance (addresses appear once provisioning ends)

        Raises:
            CloudError: On API errors
        """
        payload: dict[str, Any] = {
            "label": spec.name,
            "region": spec.region,
            "type": spec.size,
            "image": spec.image,
            "authorized_keys": list(spec.ssh_keys),
            "tags": list(spec.tags),
            "root_pass": extract_root_password(spec.user_data) or generate_password(),
        }
        if spec.enable_ipv6:
            payload["interfaces"] = [
                {"purpose": "public", "ipam_address": None, "ipv4": {"vpc": None}}
            ]
            payload["private_ip"] = False

        log.info(f"Creating Linode instance: {spec.name} in {spec.region}")
        linode = self._request("POST", "/linode/instances", json_data=payload)
        if not linode.get("id"):
            raise self.error("Failed to create instance: empty response")

        instance = self._parse_linode(linode, {})
        instance.ip_address = None
        instance.private_ip = None
        log.info(f"Created Linode instance: {instance.id}")
        return instance

    def delete_instance(self, instance_id: str) -> bool:
        log.info(f"Destroying Linode instance: {instance_id}")
        self._request("DELETE", f"/linode/instances/{instance_id}")
        log.info(f"Destroyed Linode instance: {instance_id}")
        return True

    def perform_instance_action(self, instance_id: str, action: InstanceAction | str) -> bool:
        vendor_action = self.resolve_action(action)
        log.info(f"Running {vendor_action} on Linode instance {instance_id}")
        self._request("POST", f"/linode/instances/{instance_id}/{vendor_action}")
        return True

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def get_regions(self) -> list[CloudRegion]:
        return [
            CloudRegion(
                slug=r["id"],
                name=f"{r.get('label', r['id'])} ({r.get('country', '').upper()})",
                available=r.get("status") == "ok",
            )
            for r in self._paginate("/regions")
        ]

    def get_images(self) -> list[CloudImage]:
        return [
            CloudImage(
                id=img["id"],
                slug=img["id"],
                name=img.get("label", img["id"]),
                distribution=img.get("vendor") or "",
            )
            for img in self._paginate("/images")
            if img.get("is_public") and img.get("status") == "available"
        ]

    def get_plans(self) -> list[CloudPlan]:
        plans = []
        for linode_type in self._paginate("/linode/types"):
            if linode_type.get("class") not in PLAN_CLASSES:
                continue
            price = linode_type.get("price") or {}
            plans.append(CloudPlan(
                slug=linode_type["id"],
                description=linode_type.get("label", linode_type["id"]),
                memory=linode_type.get("memory", 0),
                vcpus=linode_type.get("vcpus", 0),
                disk=linode_type.get("disk", 0),
                price_monthly=_to_float(price.get("monthly")),
                price_hourly=_to_float(price.get("hourly")),
                transfer=linode_type.get("transfer"),
            ))
        return plans

    # ------------------------------------------------------------------
    # IP change
    # ------------------------------------------------------------------

    def _get_linode(self, instance_id: str) -> dict[str, Any]:
        return self._request("GET", f"/linode/instances/{instance_id}")

    def change_instance_ip(
        self, instance_id: str, ip_version: IPVersion | str = IPVersion.IPV4
    ) -> str:
        version = IPVersion.parse(ip_version)
        if version is IPVersion.IPV4:
            return self._change_ipv4(instance_id)
        return self._change_ipv6(instance_id)

    def _change_ipv4(self, instance_id: str) -> str:
        """Attach a spare pool IPv4, reboot, then release the previous extra address.

        Raises:
            CloudValidationError: If the account has no spare IPv4 in the region
        """
        linode_id = self.numeric_id(instance_id)
        linode = self._get_linode(instance_id)
        region = linode.get("region")
        public = [ip for ip in linode.get("ipv4") or [] if not _is_private_ipv4(ip)]
        # The first public address is the instance's default and cannot be released
        previous = public[1:]

        spare = next(
            (
                ip for ip in self._paginate("/networking/ips")
                if ip.get("type") == "ipv4"
                and ip.get("public")
                and ip.get("linode_id") is None
                and ip.get("region") in (None, region)
            ),
            None,
        )
        if spare is None:
            raise self.error(
                "The Linode account has no spare IPv4 address in this region. "
                "Request an additional IPv4 through a support ticket "
                f"({self.config.LINODE_SUPPORT_URL}); extra addresses are billed monthly "
                "and require a justification.",
                cls=CloudValidationError,
            )

        new_ip = spare["address"]
        log.info(f"Assigning IPv4 {new_ip} to Linode instance {instance_id}")
        self._request("POST", "/networking/ipv4/assign", json_data={
            "region": region,
            "assignments": [{"address": new_ip, "linode_id": linode_id}],
        })

        self._request("POST", f"/linode/instances/{instance_id}/reboot")

        for old_ip in previous:
            try:
                self._request("POST", "/networking/ipv4/assign", json_data={
                    "region": region,
                    "assignments": [{"address": old_ip, "linode_id": None}],
                })
                log.info(f"Released IPv4 {old_ip} from Linode instance {instance_id}")
            except CloudError as e:
                log.warning(f"Failed to release old IPv4 {old_ip}: {e}")

        return new_ip

    def _change_ipv6(self, instance_id: str) -> str:
        """Reboot an instance without IPv6 and wait for the platform to assign one."""
        linode = self._get_linode(instance_id)
        if _usable_ipv6(linode.get("ipv6")):
            raise self.error(
                "Linode cannot change an existing IPv6 address", cls=CloudValidationError
            )

        has_pool = False
        try:
            has_pool = bool(self._request("GET", "/networking/ipv6/pools").get("data"))
        except CloudNotFoundError:
            pass
        except CloudError as e:
            log.warning(f"Failed to read Linode IPv6 pools: {e}")

        log.info(f"Rebooting Linode instance {instance_id} to obtain an IPv6 address")
        self._request("POST", f"/linode/instances/{instance_id}/reboot")
        self.clock.sleep(self.config.LINODE_IPV6_SETTLE_SECONDS)

        try:
            linode = poll(
                lambda: self._get_linode(instance_id),
                lambda data: _usable_ipv6(data.get("ipv6")) is not None,
                self.ipv6_policy,
                self.clock,
                f"IPv6 address on Linode instance {instance_id}",
                self.provider_type,
            )
            return _usable_ipv6(linode.get("ipv6"))
        except CloudTimeoutError:
            log.warning(f"No IPv6 address appeared on Linode instance {instance_id}")

        if has_pool:
            hint = "Configure IPv6 routing for the instance in the Linode console or contact support."
        else:
            hint = (
                "The account may have no IPv6 resources; request an IPv6 routed range "
                "in the Linode console or through a support ticket."
            )
        raise self.error(
            f"IPv6 configuration failed. {hint} ({self.config.LINODE_SUPPORT_URL})", 500
        )
