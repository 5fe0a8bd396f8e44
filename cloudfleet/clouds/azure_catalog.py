"""Azure static catalog.

Azure has no cheap public catalog endpoint that maps to the simplified
image and size identifiers this package exposes, so regions, images,
plans and size specifications are kept as tables here. The module also
owns the ARM64/x64 compatibility rules applied before a VM is created.
"""

from __future__ import annotations

import dataclasses
import logging
import re

from .base import (
    CloudImage,
    CloudPlan,
    CloudRegion,
    CloudValidationError,
    CreateInstanceConfig,
)

log = logging.getLogger(__name__)

ARCH_X64 = "x64"
ARCH_ARM64 = "arm64"

ARM64_SIZE_RE = re.compile(r"_?B\d+.*pts_v2$", re.IGNORECASE)
SIZE_CPU_RE = re.compile(r"Standard_[A-Z]+(\d+)[a-z]*(_v\d+)?$", re.IGNORECASE)


def _ref(publisher: str, offer: str, sku: str) -> dict[str, str]:
    return {"publisher": publisher, "offer": offer, "sku": sku, "version": "latest"}


IMAGE_REFERENCES: dict[str, dict[str, str]] = {
    "Debian_9": _ref("Debian", "debian-9", "9"),
    "Debian_10": _ref("Debian", "debian-10", "10-gen2"),
    "Debian_11": _ref("Debian", "debian-11", "11-gen2"),
    "Debian_10_gen1": _ref("Debian", "debian-10", "10"),
    "Debian_11_gen1": _ref("Debian", "debian-11", "11"),
    "Ubuntu_16_04": _ref("Canonical", "0001-com-ubuntu-server-xenial", "16_04-lts-gen2"),
    "Ubuntu_18_04": _ref("Canonical", "0001-com-ubuntu-server-bionic", "18_04-lts-gen2"),
    "Ubuntu_20_04": _ref("Canonical", "0001-com-ubuntu-server-focal", "20_04-lts-gen2"),
    "Ubuntu_16_04_gen1": _ref("Canonical", "UbuntuServer", "16.04-LTS"),
    "Ubuntu_18_04_gen1": _ref("Canonical", "UbuntuServer", "18.04-LTS"),
    "Ubuntu_20_04_gen1": _ref("Canonical", "UbuntuServer", "20.04-LTS"),
    "Ubuntu_22_04_gen1": _ref("Canonical", "0001-com-ubuntu-server-jammy", "22_04-lts"),
    "Centos_79": _ref("OpenLogic", "CentOS", "7_9-gen2"),
    "Centos_79_gen1": _ref("OpenLogic", "CentOS", "7.9"),
    "Centos_85": _ref("OpenLogic", "CentOS", "8_5-gen2"),
    "Centos_85_gen1": _ref("OpenLogic", "CentOS", "8.5"),
    "WinData_2022": _ref("MicrosoftWindowsServer", "WindowsServer", "2022-datacenter-g2"),
    "WinData_2019": _ref("MicrosoftWindowsServer", "WindowsServer", "2019-datacenter-gensecond"),
    "WinData_2016": _ref("MicrosoftWindowsServer", "WindowsServer", "2016-datacenter-gensecond"),
    "WinData_2012": _ref("MicrosoftWindowsServer", "WindowsServer", "2012-R2-datacenter-gensecond"),
    "WinDesk_10": _ref("MicrosoftWindowsDesktop", "Windows-10", "win10-21h2-pro-g2"),
    "WinDesk_11": _ref("MicrosoftWindowsDesktop", "Windows-11", "win11-21h2-pro"),
    "Ubuntu_22_04_arm64": _ref("Canonical", "0001-com-ubuntu-server-jammy", "22_04-lts-arm64"),
    "Ubuntu_20_04_arm64": _ref("Canonical", "0001-com-ubuntu-server-focal", "20_04-lts-arm64"),
    "Debian_11_arm64": _ref("Debian", "debian-11", "11-arm64"),
}

DEFAULT_IMAGE_REFERENCE = _ref("Canonical", "0001-com-ubuntu-server-focal", "20_04-lts-gen2")

# x64 image prefix -> ARM64 equivalent
ARM64_IMAGE_SWAPS: dict[str, str] = {
    "Ubuntu_22_04": "Ubuntu_22_04_arm64",
    "Ubuntu_22_04_gen1": "Ubuntu_22_04_arm64",
    "Ubuntu_20_04": "Ubuntu_20_04_arm64",
    "Ubuntu_20_04_gen1": "Ubuntu_20_04_arm64",
    "Debian_11": "Debian_11_arm64",
    "Debian_11_gen1": "Debian_11_arm64",
}

# size -> (vcpus, memory MB)
SIZE_SPECS: dict[str, tuple[int, int]] = {
    "Standard_B1ls": (1, 512),
    "Standard_B1s": (1, 1024),
    "Standard_B1ms": (1, 2048),
    "Standard_B2s": (2, 4096),
    "Standard_B2ms": (2, 8192),
    "Standard_B4ms": (4, 16384),
    "Standard_B8ms": (8, 32768),
    "Standard_B12ms": (12, 49152),
    "Standard_B16ms": (16, 65536),
    "Standard_B20ms": (20, 81920),
    "Standard_B1ats_v2": (1, 1024),
    "Standard_B1s_v2": (1, 1024),
    "Standard_B2ats_v2": (2, 1024),
    "Standard_B2pts_v2": (2, 1024),
    "Standard_B2s_v2": (2, 4096),
    "Standard_B4ats_v2": (4, 2048),
    "Standard_B4pts_v2": (4, 2048),
    "Standard_B4s_v2": (4, 16384),
    "Standard_D1": (1, 3584),
    "Standard_D2": (2, 7168),
    "Standard_D11": (2, 14336),
    "Standard_D1_v2": (1, 3584),
    "Standard_D2_v2": (2, 7168),
    "Standard_D3_v2": (4, 14336),
    "Standard_D4_v2": (8, 28672),
    "Standard_D5_v2": (16, 57344),
    "Standard_DS1_v2": (1, 3584),
    "Standard_DS2_v2": (2, 7168),
    "Standard_DS3_v2": (4, 14336),
    "Standard_D2s_v3": (2, 8192),
    "Standard_D4s_v3": (4, 16384),
    "Standard_D8s_v3": (8, 32768),
    "Standard_D16s_v3": (16, 65536),
    "Standard_D32s_v3": (32, 131072),
    "Standard_D48s_v3": (48, 196608),
    "Standard_D64s_v3": (64, 262144),
    "Standard_F1": (1, 2048),
    "Standard_F2": (2, 4096),
    "Standard_F4": (4, 8192),
    "Standard_F8": (8, 16384),
    "Standard_F16": (16, 32768),
    "Standard_F1s": (1, 2048),
    "Standard_F2s": (2, 4096),
    "Standard_F4s": (4, 8192),
    "Standard_F8s": (8, 16384),
    "Standard_F16s": (16, 32768),
    "Standard_F2s_v2": (2, 4096),
    "Standard_F4s_v2": (4, 8192),
    "Standard_F8s_v2": (8, 16384),
    "Standard_A1": (1, 1792),
    "Standard_A2": (2, 3584),
    "Standard_A3": (4, 7168),
    "Standard_A4": (8, 14336),
    "Standard_A1_v2": (1, 2048),
    "Standard_A2_v2": (2, 4096),
    "Standard_A4_v2": (4, 8192),
    "Standard_A8_v2": (8, 16384),
    "Standard_E2s_v3": (2, 16384),
    "Standard_E4s_v3": (4, 32768),
    "Standard_E8s_v3": (8, 65536),
    "Standard_E16s_v3": (16, 131072),
    "Standard_E32s_v3": (32, 262144),
    "Standard_E48s_v3": (48, 393216),
    "Standard_E64s_v3": (64, 442368),
}

REGIONS: list[tuple[str, str]] = [
    ("eastus", "East US, Virginia (recommended)"),
    ("westus2", "West US 2, Washington (recommended)"),
    ("westeurope", "West Europe, Netherlands (recommended)"),
    ("southeastasia", "Southeast Asia, Singapore (recommended)"),
    ("eastasia", "East Asia, Hong Kong"),
    ("japaneast", "Japan East, Tokyo"),
    ("japanwest", "Japan West, Osaka"),
    ("koreacentral", "Korea Central, Seoul"),
    ("australiaeast", "Australia East, New South Wales"),
    ("australiasoutheast", "Australia Southeast, Victoria"),
    ("australiacentral", "Australia Central, Canberra"),
    ("centralindia", "Central India, Pune"),
    ("southindia", "South India, Chennai"),
    ("jioindiawest", "Jio India West, Jamnagar"),
    ("eastus2", "East US 2, Virginia"),
    ("westus", "West US, California"),
    ("westus3", "West US 3, Phoenix"),
    ("centralus", "Central US, Iowa"),
    ("southcentralus", "South Central US, Texas"),
    ("westcentralus", "West Central US, Wyoming"),
    ("northcentralus", "North Central US, Illinois"),
    ("canadacentral", "Canada Central, Toronto"),
    ("canadaeast", "Canada East, Quebec"),
    ("northeurope", "North Europe, Ireland"),
    ("uksouth", "UK South, London"),
    ("ukwest", "UK West, Cardiff"),
    ("francecentral", "France Central, Paris"),
    ("germanywestcentral", "Germany West Central, Frankfurt"),
    ("norwayeast", "Norway East, Oslo"),
    ("switzerlandnorth", "Switzerland North, Zurich"),
    ("swedencentral", "Sweden Central, Stockholm"),
    ("brazilsouth", "Brazil South, Sao Paulo"),
    ("southafricanorth", "South Africa North, Johannesburg"),
    ("uaenorth", "UAE North, Dubai"),
]

IMAGES: list[tuple[str, str, str]] = [
    ("Debian_9", "Debian 9 (x64)", ARCH_X64),
    ("Debian_10", "Debian 10 (gen2, x64)", ARCH_X64),
    ("Debian_11", "Debian 11 (gen2, x64)", ARCH_X64),
    ("Debian_10_gen1", "Debian 10 (x64)", ARCH_X64),
    ("Debian_11_gen1", "Debian 11 (x64)", ARCH_X64),
    ("Ubuntu_16_04", "Ubuntu 16.04 (gen2, x64)", ARCH_X64),
    ("Ubuntu_18_04", "Ubuntu 18.04 (gen2, x64)", ARCH_X64),
    ("Ubuntu_20_04", "Ubuntu 20.04 (gen2, x64)", ARCH_X64),
    ("Ubuntu_16_04_gen1", "Ubuntu 16.04 (x64)", ARCH_X64),
    ("Ubuntu_18_04_gen1", "Ubuntu 18.04 (x64)", ARCH_X64),
    ("Ubuntu_20_04_gen1", "Ubuntu 20.04 (x64)", ARCH_X64),
    ("Ubuntu_22_04_gen1", "Ubuntu 22.04 (x64)", ARCH_X64),
    ("Centos_79", "Centos 7.9 (gen2, x64)", ARCH_X64),
    ("Centos_79_gen1", "Centos 7.9 (x64)", ARCH_X64),
    ("Centos_85", "Centos 8.5 (gen2, x64)", ARCH_X64),
    ("Centos_85_gen1", "Centos 8.5 (x64)", ARCH_X64),
    ("WinData_2022", "Windows Datacenter 2022 (x64)", ARCH_X64),
    ("WinData_2019", "Windows Datacenter 2019 (x64)", ARCH_X64),
    ("WinData_2016", "Windows Datacenter 2016 (x64)", ARCH_X64),
    ("WinData_2012", "Windows Datacenter 2012 (x64)", ARCH_X64),
    ("WinDesk_10", "Windows 10 21H2 (gen2, x64)", ARCH_X64),
    ("WinDesk_11", "Windows 11 21H2 (x64)", ARCH_X64),
    ("Ubuntu_22_04_arm64", "Ubuntu 22.04 LTS (ARM64)", ARCH_ARM64),
    ("Ubuntu_20_04_arm64", "Ubuntu 20.04 LTS (ARM64)", ARCH_ARM64),
    ("Debian_11_arm64", "Debian 11 (ARM64)", ARCH_ARM64),
]

# slug, monthly USD, hourly USD
PLAN_PRICES: list[tuple[str, float, float]] = [
    ("Standard_B1ls", 3.7, 0.005),
    ("Standard_B1s", 7.5, 0.01),
    ("Standard_B2ats_v2", 6.8, 0.009),
    ("Standard_B2pts_v2", 6.8, 0.009),
    ("Standard_B1ms", 14.9, 0.021),
    ("Standard_B2s", 30.0, 0.041),
    ("Standard_B2ms", 59.9, 0.082),
    ("Standard_B4ms", 119.5, 0.164),
    ("Standard_F1s", 35.8, 0.049),
    ("Standard_F2s_v2", 60.9, 0.084),
    ("Standard_F4s_v2", 121.7, 0.167),
    ("Standard_F8s_v2", 243.4, 0.334),
    ("Standard_DS1_v2", 52.6, 0.072),
    ("Standard_DS2_v2", 105.1, 0.144),
    ("Standard_DS3_v2", 211.0, 0.290),
    ("Standard_D1", 55.4, 0.076),
    ("Standard_D2", 110.9, 0.152),
    ("Standard_D11", 139.0, 0.191),
]

PLAN_DISK_GB = 64
PLAN_TRANSFER_GB = 100


def image_reference(image_id: str) -> dict[str, str]:
    """Marketplace reference for an image ID; unknown IDs get Ubuntu 20.04."""
    return dict(IMAGE_REFERENCES.get(image_id, DEFAULT_IMAGE_REFERENCE))


def vm_architecture(size: str) -> str:
    return ARCH_ARM64 if ARM64_SIZE_RE.search(size or "") else ARCH_X64


def image_architecture(image_id: str) -> str:
    return ARCH_ARM64 if "arm64" in (image_id or "").lower() else ARCH_X64


def size_vcpus(size: str | None) -> int:
    """vCPU count for a size, parsed from the name when not tabulated."""
    if not size:
        return 1
    if size in SIZE_SPECS:
        return SIZE_SPECS[size][0]
    match = SIZE_CPU_RE.match(size)
    if match:
        return int(match.group(1))
    log.warning(f"Unknown Azure VM size {size}, assuming 1 vCPU")
    return 1


def size_memory(size: str | None) -> int:
    """Memory in MB for a size, estimated per vCPU by series when not tabulated."""
    if not size:
        return 1024
    if size in SIZE_SPECS:
        return SIZE_SPECS[size][1]

    cpus = size_vcpus(size)
    per_cpu = 4096
    if "_B" in size:
        per_cpu = 1024 if cpus == 1 else 4096
    elif "_F" in size:
        per_cpu = 2048
    elif "_E" in size:
        per_cpu = 8192
    return cpus * per_cpu


def swap_image_for(image_id: str, architecture: str) -> str:
    """Return the equivalent image for ``architecture``, or ``image_id`` unchanged."""
    if architecture != ARCH_ARM64 or image_architecture(image_id) == ARCH_ARM64:
        return image_id
    if image_id in ARM64_IMAGE_SWAPS:
        return ARM64_IMAGE_SWAPS[image_id]
    # Longest prefix first so Ubuntu_22_04_gen1 wins over Ubuntu_22_04
    for prefix in sorted(ARM64_IMAGE_SWAPS, key=len, reverse=True):
        if image_id.startswith(prefix):
            return ARM64_IMAGE_SWAPS[prefix]
    return image_id


def ensure_architecture_compatible(spec: CreateInstanceConfig) -> CreateInstanceConfig:
    """Check the image matches the size's CPU architecture.

    A mismatched image with a known equivalent is swapped silently.

    Args:
        spec: Requested instance specification

    Returns:
        The spec, possibly with a replacement image

    Raises:
        CloudValidationError: If no compatible image can be substituted
    """
    vm_arch = vm_architecture(spec.size)
    image_arch = image_architecture(spec.image)
    if vm_arch == image_arch:
        return spec

    replacement = swap_image_for(spec.image, vm_arch)
    if replacement != spec.image:
        log.info(f"Swapping Azure image {spec.image} -> {replacement} for {vm_arch} size {spec.size}")
        return dataclasses.replace(spec, image=replacement)

    compatible = [name for _, name, arch in IMAGES if arch == vm_arch][:3]
    message = (
        f"Architecture mismatch: VM size {spec.size} needs a {vm_arch} image "
        f"but {spec.image} is {image_arch}."
    )
    if compatible:
        message += " Compatible images: " + ", ".join(compatible) + "."
    if vm_arch == ARCH_ARM64:
        message += " Alternatively pick an x64 size such as Standard_B2ats_v2, Standard_B1s or Standard_B2s."
    raise CloudValidationError(message, provider="azure", status_code=400)


def regions() -> list[CloudRegion]:
    return [CloudRegion(slug=slug, name=name, available=True) for slug, name in REGIONS]


def images() -> list[CloudImage]:
    return [
        CloudImage(
            id=image_id,
            slug=image_id,
            name=name,
            distribution=image_id.split("_")[0],
            architectures=[arch],
        )
        for image_id, name, arch in IMAGES
    ]


def plans() -> list[CloudPlan]:
    """Static plan list sorted by monthly price."""
    result = []
    for slug, monthly, hourly in PLAN_PRICES:
        vcpus, memory = SIZE_SPECS[slug]
        arch = vm_architecture(slug)
        label = slug.removeprefix("Standard_")
        memory_gb = f"{memory / 1024:g}"
        result.append(CloudPlan(
            slug=slug,
            description=f"{label} {vcpus}C_{memory_gb}G ({monthly:g} USD/Month) - {arch}",
            memory=memory,
            vcpus=vcpus,
            disk=PLAN_DISK_GB,
            price_monthly=monthly,
            price_hourly=hourly,
            transfer=PLAN_TRANSFER_GB,
            architecture=arch,
        ))
    return sorted(result, key=lambda p: p.price_monthly)
