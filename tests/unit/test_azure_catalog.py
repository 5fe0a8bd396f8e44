"""
Unit tests for the Azure static catalog.

Tests:
- Size architecture detection and size specs
- ARM64 image substitution and mismatch rejection
- Static regions, images and plans
"""

import pytest

from cloudfleet.clouds import azure_catalog
from cloudfleet.clouds.base import CreateInstanceConfig
from cloudfleet.errors import CloudValidationError


def spec(image, size):
    return CreateInstanceConfig(name="vm1", region="eastus", image=image, size=size)


class TestArchitecture:
    """Test architecture helpers."""

    @pytest.mark.parametrize("size,arch", [
        ("Standard_B2pts_v2", "arm64"),
        ("Standard_B4pts_v2", "arm64"),
        ("Standard_B2ats_v2", "x64"),
        ("Standard_B1s", "x64"),
        ("Standard_D2s_v3", "x64"),
    ])
    def test_vm_architecture(self, size, arch):
        """Test size names map to CPU architectures."""
        assert azure_catalog.vm_architecture(size) == arch

    def test_size_specs(self):
        """Test tabulated and estimated size specifications."""
        assert azure_catalog.size_vcpus("Standard_B1ls") == 1
        assert azure_catalog.size_memory("Standard_B1ls") == 512
        assert azure_catalog.size_vcpus("Standard_F32s_v2") == 32
        assert azure_catalog.size_memory("Standard_F32s_v2") == 32 * 2048
        assert azure_catalog.size_vcpus("Mystery") == 1

    def test_image_reference_default(self):
        """Test unknown image IDs resolve to Ubuntu 20.04."""
        ref = azure_catalog.image_reference("NoSuchImage")
        assert ref["sku"] == "20_04-lts-gen2"
        assert ref["version"] == "latest"

    def test_image_reference_is_copy(self):
        """Test callers cannot mutate the shared table."""
        ref = azure_catalog.image_reference("Debian_11")
        ref["sku"] = "changed"
        assert azure_catalog.IMAGE_REFERENCES["Debian_11"]["sku"] == "11-gen2"


class TestEnsureArchitectureCompatible:
    """Test ensure_architecture_compatible."""

    def test_matching_spec_unchanged(self):
        """Test a consistent spec is returned as-is."""
        original = spec("Ubuntu_22_04_gen1", "Standard_B1s")
        assert azure_catalog.ensure_architecture_compatible(original) is original

    def test_arm_size_swaps_image(self):
        """Test an x64 Ubuntu image is swapped for its ARM64 build."""
        result = azure_catalog.ensure_architecture_compatible(
            spec("Ubuntu_22_04_gen1", "Standard_B2pts_v2")
        )
        assert result.image == "Ubuntu_22_04_arm64"
        assert result.size == "Standard_B2pts_v2"

    def test_prefix_swap(self):
        """Test a gen2 Debian image falls back to its ARM64 equivalent."""
        result = azure_catalog.ensure_architecture_compatible(spec("Debian_11", "Standard_B2pts_v2"))
        assert result.image == "Debian_11_arm64"

    def test_arm_size_without_equivalent(self):
        """Test an image with no ARM64 build is rejected with suggestions."""
        with pytest.raises(CloudValidationError) as exc_info:
            azure_catalog.ensure_architecture_compatible(spec("Centos_79", "Standard_B2pts_v2"))

        message = exc_info.value.message
        assert exc_info.value.status_code == 400
        assert exc_info.value.provider == "azure"
        assert "Ubuntu 22.04 LTS (ARM64)" in message
        assert "Standard_B2ats_v2" in message

    def test_arm_image_on_x64_size(self):
        """Test an ARM64 image on an x64 size is rejected."""
        with pytest.raises(CloudValidationError) as exc_info:
            azure_catalog.ensure_architecture_compatible(spec("Ubuntu_22_04_arm64", "Standard_B1s"))

        assert "Debian 9 (x64)" in exc_info.value.message
        assert "Alternatively" not in exc_info.value.message


class TestStaticCatalog:
    """Test static regions, images and plans."""

    def test_regions(self):
        """Test recommended regions come first."""
        regions = azure_catalog.regions()
        assert len(regions) == 34
        assert regions[0].slug == "eastus"
        assert all(r.available for r in regions)

    def test_images(self):
        """Test the image list carries architectures."""
        images = azure_catalog.images()
        assert len(images) == 25
        arm = [i.id for i in images if i.architectures == ["arm64"]]
        assert arm == ["Ubuntu_22_04_arm64", "Ubuntu_20_04_arm64", "Debian_11_arm64"]

    def test_plans_sorted_by_price(self):
        """Test plans are sorted by monthly price with readable descriptions."""
        plans = azure_catalog.plans()

        assert len(plans) == 18
        prices = [p.price_monthly for p in plans]
        assert prices == sorted(prices)
        assert plans[0].slug == "Standard_B1ls"
        assert plans[0].description == "B1ls 1C_0.5G (3.7 USD/Month) - x64"
        arm_plan = next(p for p in plans if p.slug == "Standard_B2pts_v2")
        assert arm_plan.architecture == "arm64"
        assert arm_plan.disk == 64
