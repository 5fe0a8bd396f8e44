"""
Unit tests for the Instance Orchestrator.

Tests:
- Orchestrator factories and credential decryption
- Capability checks for IP change and floating IPs
- Power action shortcuts
- Floating IP cleanup
- Concurrent catalog fetch
"""

import pytest
from unittest.mock import MagicMock

from cloudfleet import (
    CapabilityNotSupportedError,
    CloudAuthError,
    CloudError,
    CloudValidationError,
    FloatingIP,
    InstanceAction,
    InstanceOrchestrator,
    IPVersion,
    create_orchestrator,
    create_orchestrator_from_encrypted,
    encrypt_credential,
)
from cloudfleet.clouds import DigitalOceanCloud, LinodeCloud

from fakes import FakeConfig, ok


@pytest.fixture
def provider():
    """Provide a mocked adapter with every capability."""
    mock = MagicMock()
    mock.provider_type = "mock"
    mock.config = FakeConfig
    return mock


class TestFactories:
    """Test orchestrator construction."""

    def test_create_orchestrator(self):
        """Test vendor tags are matched case-insensitively."""
        orchestrator = create_orchestrator(" DigitalOcean ", "do-token", config=FakeConfig)

        assert isinstance(orchestrator.provider, DigitalOceanCloud)
        assert orchestrator.provider_type == "digitalocean"
        assert orchestrator.provider.API_BASE_URL == "https://do.test/v2"

    def test_unknown_vendor(self):
        """Test an unknown vendor lists the supported ones."""
        with pytest.raises(CloudValidationError, match="azure, digitalocean, linode"):
            create_orchestrator("vultr", "token")

    def test_from_encrypted(self):
        """Test stored credentials are decrypted with the configured key."""
        ciphertext = encrypt_credential("linode-token", FakeConfig.ENCRYPTION_KEY)

        orchestrator = create_orchestrator_from_encrypted("linode", ciphertext, config=FakeConfig)

        assert isinstance(orchestrator.provider, LinodeCloud)
        assert orchestrator.provider.api_key == "linode-token"

    def test_from_encrypted_custom_decoder(self):
        """Test a caller-supplied decoder receives ciphertext and key."""
        decrypt = MagicMock(return_value="do-token")

        orchestrator = create_orchestrator_from_encrypted(
            "digitalocean", "opaque", key="k1", decrypt=decrypt, config=FakeConfig
        )

        decrypt.assert_called_once_with("opaque", "k1")
        assert orchestrator.provider.api_key == "do-token"

    def test_from_encrypted_wrong_key(self):
        """Test a wrong key surfaces as CloudAuthError."""
        ciphertext = encrypt_credential("linode-token", "another-key")

        with pytest.raises(CloudAuthError):
            create_orchestrator_from_encrypted("linode", ciphertext, config=FakeConfig)


class TestCapabilities:
    """Test optional capability checks."""

    def test_ip_change_unsupported(self, provider):
        """Test adapters without IP change raise CapabilityNotSupportedError."""
        provider.ip_changer = None

        with pytest.raises(CapabilityNotSupportedError) as exc_info:
            InstanceOrchestrator(provider).change_instance_ip("1")

        assert exc_info.value.status_code == 501

    def test_floating_ips_unsupported(self, linode_cloud, linode_session):
        """Test Linode has no floating IP capability."""
        orchestrator = InstanceOrchestrator(linode_cloud)

        with pytest.raises(CapabilityNotSupportedError, match="floating IPs"):
            orchestrator.list_floating_ips()

        assert linode_session.calls == []

    def test_change_ip_parses_version(self, provider):
        """Test string IP versions are normalized before delegation."""
        provider.ip_changer.change_instance_ip.return_value = "2001:db8::1"

        result = InstanceOrchestrator(provider).change_instance_ip("7", "ipv6")

        assert result == "2001:db8::1"
        provider.ip_changer.change_instance_ip.assert_called_once_with("7", IPVersion.IPV6)

    def test_change_ip_invalid_version(self, provider):
        """Test invalid IP versions are rejected before delegation."""
        with pytest.raises(CloudValidationError):
            InstanceOrchestrator(provider).change_instance_ip("7", "v5")

        provider.ip_changer.change_instance_ip.assert_not_called()


class TestInstanceOperations:
    """Test delegated instance operations."""

    @pytest.mark.parametrize("method,action", [
        ("start_instance", InstanceAction.POWER_ON),
        ("stop_instance", InstanceAction.POWER_OFF),
        ("reboot_instance", InstanceAction.REBOOT),
    ])
    def test_power_shortcuts(self, provider, method, action):
        """Test shortcuts map to unified actions."""
        getattr(InstanceOrchestrator(provider), method)("42")
        provider.perform_instance_action.assert_called_once_with("42", action)

    def test_errors_propagate(self, provider):
        """Test adapter errors reach the caller unchanged."""
        error = CloudError("boom", provider="mock", status_code=502)
        provider.delete_instance.side_effect = error

        with pytest.raises(CloudError) as exc_info:
            InstanceOrchestrator(provider).delete_instance("1")

        assert exc_info.value is error


class TestFloatingIPCleanup:
    """Test cleanup_unassigned_floating_ips."""

    def test_cleanup_best_effort(self, provider):
        """Test unassigned addresses are deleted and failures skipped."""
        floating = provider.floating_ips
        floating.list_floating_ips.return_value = [
            FloatingIP("203.0.113.1", "nyc1", "5"),
            FloatingIP("203.0.113.2", "nyc1"),
            FloatingIP("203.0.113.3", "nyc1"),
            FloatingIP("203.0.113.4", "ams3"),
        ]

        def delete(ip):
            if ip == "203.0.113.3":
                raise CloudError("locked", provider="mock")
            return True

        floating.delete_floating_ip.side_effect = delete

        deleted = InstanceOrchestrator(provider).cleanup_unassigned_floating_ips()

        assert deleted == ["203.0.113.2", "203.0.113.4"]
        assert floating.delete_floating_ip.call_count == 3

    def test_cleanup_against_digitalocean(self, do_cloud, do_session):
        """Test cleanup releases unbound reserved IPs through the REST adapter."""
        do_session.add("GET", "/reserved_ips", ok({"reserved_ips": [
            {"ip": "203.0.113.1", "region": {"slug": "nyc1"}, "droplet": {"id": 9}},
            {"ip": "203.0.113.2", "region": {"slug": "nyc1"}, "droplet": None},
        ]}))
        do_session.add("POST", "/reserved_ips/203.0.113.2/actions", ok({"action": {"id": 1}}))
        do_session.add("DELETE", "/reserved_ips/203.0.113.2", ok(status_code=204))

        assert InstanceOrchestrator(do_cloud).cleanup_unassigned_floating_ips() == ["203.0.113.2"]


class TestAvailableOptions:
    """Test get_available_options."""

    def test_options(self, provider):
        """Test regions, images and plans are returned together."""
        provider.get_regions.return_value = ["r"]
        provider.get_images.return_value = ["i"]
        provider.get_plans.return_value = ["p"]

        options = InstanceOrchestrator(provider).get_available_options()

        assert options == {"regions": ["r"], "images": ["i"], "plans": ["p"]}

    def test_options_failure(self, provider):
        """Test a failing catalog fetch raises."""
        provider.get_images.side_effect = CloudError("catalog down", provider="mock")

        with pytest.raises(CloudError, match="catalog down"):
            InstanceOrchestrator(provider).get_available_options(max_workers=1)
