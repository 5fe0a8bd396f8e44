"""Base Cloud Provider Abstraction.

Defines the contract that every cloud adapter implements for unified
instance management across DigitalOcean, Linode and Azure, together with
the normalized data model. The error hierarchy is re-exported from
``cloudfleet.errors``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from ..config import Config
from ..errors import (  # noqa: F401 re-exported for adapters
    CapabilityNotSupportedError,
    CloudAuthError,
    CloudError,
    CloudNotFoundError,
    CloudQuotaError,
    CloudTimeoutError,
    CloudValidationError,
    CredentialFormatError,
)
from ..retry import Clock


class InstanceAction(str, Enum):
    """Power actions accepted by every adapter."""

    POWER_ON = "power_on"
    POWER_OFF = "power_off"
    REBOOT = "reboot"
    SHUTDOWN = "shutdown"


class IPVersion(str, Enum):
    """Address family for IP change operations."""

    IPV4 = "IPv4"
    IPV6 = "IPv6"

    @classmethod
    def parse(cls, value: IPVersion | str) -> IPVersion:
        """Accept an enum member or a case-insensitive string."""
        if isinstance(value, IPVersion):
            return value
        normalized = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == normalized:
                return member
        raise CloudValidationError(
            f"IP version must be IPv4 or IPv6, got {value!r}", status_code=400
        )


@dataclass(slots=True)
class CloudInstance:
    """Unified instance representation across all providers."""

    id: str
    name: str
    status: str                          # Vendor-native status string
    provider: str
    region: str = ""
    image: str = ""
    size: str = ""
    ip_address: str | None = None        # Public IPv4
    ipv6_address: str | None = None
    private_ip: str | None = None
    vcpus: int = 0
    memory: int = 0                      # MB
    disk: int = 0                        # GB
    created_at: str | None = None        # ISO-8601
    tags: list[str] = field(default_factory=list)
    transfer_quota: int | None = None    # GB

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "provider": self.provider,
            "region": self.region,
            "image": self.image,
            "size": self.size,
            "ip_address": self.ip_address,
            "ipv6_address": self.ipv6_address,
            "private_ip": self.private_ip,
            "vcpus": self.vcpus,
            "memory": self.memory,
            "disk": self.disk,
            "created_at": self.created_at,
            "tags": list(self.tags),
            "transfer": {"quota": self.transfer_quota},
        }


@dataclass(frozen=True, slots=True)
class CreateInstanceConfig:
    """Caller-owned specification for a new instance."""

    name: str
    region: str
    image: str
    size: str
    ssh_keys: tuple[str, ...] = ()
    disk_size: int | None = None         # GB, None = provider default
    enable_ipv6: bool = False
    tags: tuple[str, ...] = ()
    user_data: str = ""


@dataclass(slots=True)
class CloudRegion:
    slug: str
    name: str
    available: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class CloudImage:
    id: str
    slug: str
    name: str
    distribution: str = ""
    architectures: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class CloudPlan:
    slug: str
    description: str
    memory: int = 0
    vcpus: int = 0
    disk: int = 0
    price_monthly: float = 0.0
    price_hourly: float = 0.0
    regions: list[str] = field(default_factory=list)
    transfer: float | None = None
    architecture: str = "x64"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class FloatingIP:
    """A vendor-managed public address that outlives instances."""

    ip: str
    region: str = ""
    instance_id: str | None = None

    @property
    def is_assigned(self) -> bool:
        return self.instance_id is not None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class AccountInfo:
    email: str | None = None
    status: str = "active"
    email_verified: bool | None = None
    uuid: str | None = None
    name: str | None = None
    active_since: str | None = None
    instance_limit: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class BalanceInfo:
    balance: float = 0.0
    currency: str = "USD"
    month_to_date_usage: float | None = None
    credits_remaining: float | None = None
    is_credit_account: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class QuotaUsage:
    key: str
    label: str
    used: float
    limit: float


@dataclass(slots=True)
class OverviewAccount:
    name: str | None = None
    email: str | None = None
    status: str = "active"               # active | warning | inactive
    plan: str = "-"


@dataclass(slots=True)
class OverviewMoney:
    currency: str = "USD"
    balance: float = 0.0
    monthly_used: float | None = None
    credits_remaining: float | None = None


@dataclass(slots=True)
class ResourceCounts:
    instances: int = 0
    floating_ips: int | None = None
    volumes: int | None = None
    public_ipv4: int | None = None
    ipv6_prefixes: int | None = None


@dataclass(slots=True)
class PromotionInfo:
    balance_uninvoiced: float = 0.0
    code: str | None = None
    expires_at: str | None = None
    remaining: float = 0.0


@dataclass(slots=True)
class BillingDetails:
    balance: float = 0.0
    credit_card: str | None = None
    created_at: str | None = None


@dataclass(slots=True)
class AccountOverview:
    """Point-in-time account snapshot aggregated from several endpoints."""

    provider: str
    account: OverviewAccount
    money: OverviewMoney
    quotas: list[QuotaUsage] = field(default_factory=list)
    resources: ResourceCounts = field(default_factory=ResourceCounts)
    promotion: PromotionInfo | None = None
    billing: BillingDetails | None = None
    region_focus: str | None = None
    last_sync: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


class IPChangeCapability(ABC):
    """Optional capability: replace an instance's public address."""

    @abstractmethod
    def change_instance_ip(
        self, instance_id: str, ip_version: IPVersion | str = IPVersion.IPV4
    ) -> str:
        """Replace the public address of the requested family.

        Args:
            instance_id: Provider-specific instance ID
            ip_version: IPv4 or IPv6

        Returns:
            The new address

        Raises:
            CloudValidationError: If the change is not possible
            CloudTimeoutError: If the vendor did not converge in time
        """


class FloatingIPCapability(ABC):
    """Optional capability: manage reassignable public addresses."""

    @abstractmethod
    def list_floating_ips(self) -> list[FloatingIP]:
        """List floating IPs owned by the account."""

    @abstractmethod
    def delete_floating_ip(self, ip: str) -> bool:
        """Release a floating IP, unassigning it first if needed."""

    @abstractmethod
    def assign_floating_ip(self, ip: str, instance_id: str) -> bool:
        """Bind a floating IP to an instance."""

    @abstractmethod
    def unassign_floating_ip(self, ip: str) -> bool:
        """Detach a floating IP from whatever instance holds it."""


class BaseCloud(ABC):
    """Abstract base class for cloud providers.

    All cloud provider implementations must inherit from this class and
    implement all abstract methods. Optional capabilities are exposed via
    the ``ip_changer`` and ``floating_ips`` slots, which are ``None`` unless
    the adapter provides them.
    """

    # Class-level attributes
    provider_type: str = "unknown"

    # Vendor action names keyed by InstanceAction
    ACTION_MAP: dict[InstanceAction, str] = {}

    def __init__(
        self,
        credential: str,
        config: type[Config] | Config | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize cloud provider.

        Args:
            credential: Plaintext vendor credential
            config: Settings class or instance (defaults to Config)
            clock: Time source used for retries and polling
        """
        if not credential:
            raise CloudAuthError(
                f"{self.provider_type} credential is required",
                provider=self.provider_type,
            )
        self.config = config or Config
        self.clock = clock or Clock()

    @property
    def ip_changer(self) -> IPChangeCapability | None:
        return None

    @property
    def floating_ips(self) -> FloatingIPCapability | None:
        return None

    def error(
        self, message: str, status_code: int | None = None, cls: type[CloudError] = CloudError
    ) -> CloudError:
        """Build an error tagged with this provider."""
        return cls(message, provider=self.provider_type, status_code=status_code)

    def resolve_action(self, action: InstanceAction | str) -> str:
        """Map a unified action to the vendor's action name.

        Raises:
            CloudValidationError: If the action is unknown
        """
        try:
            key = InstanceAction(action)
        except ValueError:
            raise self.error(
                f"Unsupported instance action: {action}", cls=CloudValidationError
            ) from None
        vendor_action = self.ACTION_MAP.get(key)
        if vendor_action is None:
            raise self.error(
                f"Unsupported instance action: {action}", cls=CloudValidationError
            )
        return vendor_action

    @abstractmethod
    def get_account_info(self) -> AccountInfo:
        """Get account identity and status."""

    @abstractmethod
    def get_balance(self) -> BalanceInfo:
        """Get account balance."""

    @abstractmethod
    def get_account_overview(self) -> AccountOverview:
        """Aggregate account, billing, quota and resource counts."""

    @abstractmethod
    def list_instances(self) -> list[CloudInstance]:
        """List all instances.

        Returns:
            List of CloudInstance objects

        Raises:
            CloudError: On API errors
        """

    @abstractmethod
    def create_instance(self, spec: CreateInstanceConfig) -> CloudInstance:
        """Create a new instance.

        Args:
            spec: Instance specification

        Returns:
            Created CloudInstance (status may still be provisioning)

        Raises:
            CloudQuotaError: If quota exceeded
            CloudError: On API errors
        """

    @abstractmethod
    def delete_instance(self, instance_id: str) -> bool:
        """Destroy an instance and release addresses bound to it.

        Args:
            instance_id: Provider-specific instance ID

        Returns:
            True if destroyed successfully
        """

    @abstractmethod
    def perform_instance_action(self, instance_id: str, action: InstanceAction | str) -> bool:
        """Run a power action on an instance.

        Args:
            instance_id: Provider-specific instance ID
            action: One of power_on, power_off, reboot, shutdown

        Returns:
            True if the vendor accepted the action

        Raises:
            CloudValidationError: If the action is unknown
        """

    @abstractmethod
    def get_regions(self) -> list[CloudRegion]:
        """List regions."""

    @abstractmethod
    def get_images(self) -> list[CloudImage]:
        """List images usable for new instances."""

    @abstractmethod
    def get_plans(self) -> list[CloudPlan]:
        """List instance sizes."""
