"""
Unit tests for the Linode adapter.

Tests:
- Retry of gateway and transport failures
- Page-number pagination
- Instance parsing, creation and root password handling
- Account overview aggregation
- Pool-based IPv4 replacement and reboot-based IPv6 assignment
"""

import pytest
import requests

from cloudfleet.clouds.base import CreateInstanceConfig, InstanceAction, IPVersion
from cloudfleet.errors import CloudError, CloudValidationError

from fakes import fail, ok


def page(items, page_number=1, pages=1):
    return ok({"data": items, "page": page_number, "pages": pages, "results": len(items)})


def linode(linode_id=5, ipv4=None, ipv6="2600:3c03::f03c:91ff:fe24:1/128"):
    return {
        "id": linode_id,
        "label": f"node-{linode_id}",
        "status": "running",
        "region": "us-east",
        "image": "linode/ubuntu22.04",
        "type": "g6-nanode-1",
        "ipv4": ipv4 if ipv4 is not None else ["192.168.1.5", "198.51.100.1"],
        "ipv6": ipv6,
        "specs": {"vcpus": 1, "memory": 1024, "disk": 25600, "transfer": 1000},
        "created": "2024-01-01T00:00:00",
        "tags": ["prod"],
    }


class TestRetries:
    """Test the Linode retry policy."""

    def test_gateway_error_retried(self, linode_cloud, linode_session, clock):
        """Test a 503 is retried and the next success returned."""
        linode_session.add("GET", "/account", fail(503), ok({"email": "ops@example.com"}))

        info = linode_cloud.get_account_info()

        assert info.email == "ops@example.com"
        assert len(linode_session.calls) == 2
        assert clock.sleeps == [1.0]

    def test_bad_gateway_message(self, linode_cloud, linode_session, clock):
        """Test a persistent 502 yields a friendly message after all attempts."""
        linode_session.add("GET", "/account", fail(502, "<html>bad gateway</html>"))

        with pytest.raises(CloudError) as exc_info:
            linode_cloud.get_account_info()

        assert exc_info.value.status_code == 502
        assert "temporarily unavailable" in exc_info.value.message
        assert len(linode_session.calls) == 4
        assert len(clock.sleeps) == 3

    def test_network_failure(self, linode_cloud, linode_session):
        """Test transport failures end with a status 0 error."""
        linode_session.add("GET", "/account", requests.exceptions.ConnectionError("reset"))

        with pytest.raises(CloudError) as exc_info:
            linode_cloud.get_account_info()

        assert exc_info.value.status_code == 0
        assert "network connection failed after 4 attempts" in exc_info.value.message

    def test_client_error_not_retried(self, linode_cloud, linode_session, clock):
        """Test 4xx responses fail immediately."""
        linode_session.add("GET", "/account", fail(400, '{"errors": [{"reason": "bad"}]}'))

        with pytest.raises(CloudValidationError):
            linode_cloud.get_account_info()

        assert len(linode_session.calls) == 1
        assert clock.sleeps == []


class TestPagination:
    """Test page-number pagination."""

    def test_all_pages_fetched(self, linode_cloud, linode_session):
        """Test pages are requested until the last one."""
        linode_session.add(
            "GET", "/regions",
            page([{"id": "us-east", "label": "Newark, NJ", "country": "us", "status": "ok"}], 1, 2),
            page([{"id": "eu-west", "label": "London, UK", "country": "gb", "status": "outage"}], 2, 2),
        )

        regions = linode_cloud.get_regions()

        assert [r.slug for r in regions] == ["us-east", "eu-west"]
        assert regions[0].name == "Newark, NJ (US)"
        assert regions[1].available is False
        assert [c[2]["page"] for c in linode_session.calls] == [1, 2]
        assert linode_session.calls[0][2]["page_size"] == 500


class TestInstances:
    """Test Linode instance operations."""

    def test_list_parses_addresses(self, linode_cloud, linode_session):
        """Test public, private and IPv6 addresses are separated."""
        linode_session.add("GET", "/linode/instances", page([linode()]))
        linode_session.add("GET", "/images", page([{"id": "linode/ubuntu22.04", "label": "Ubuntu 22.04 LTS"}]))

        instance = linode_cloud.list_instances()[0]

        assert instance.id == "5"
        assert instance.ip_address == "198.51.100.1"
        assert instance.private_ip == "192.168.1.5"
        assert instance.ipv6_address == "2600:3c03::f03c:91ff:fe24:1"
        assert instance.image == "Ubuntu 22.04 LTS"
        assert instance.created_at == "2024-01-01T00:00:00Z"

    def test_list_without_image_labels(self, linode_cloud, linode_session):
        """Test image label lookup failures fall back to raw image IDs."""
        linode_session.add("GET", "/linode/instances", page([linode(ipv6="fe80::/10")]))
        linode_session.add("GET", "/images", fail(403))

        instance = linode_cloud.list_instances()[0]

        assert instance.image == "linode/ubuntu22.04"
        assert instance.ipv6_address is None

    def test_create_uses_password_from_user_data(self, linode_cloud, linode_session):
        """Test the root password is taken from a chpasswd line."""
        linode_session.add("POST", "/linode/instances", ok(linode(9)))
        user_data = "#cloud-config\nruncmd:\n  - echo 'root:Sup3r$ecret' | chpasswd\n"

        instance = linode_cloud.create_instance(CreateInstanceConfig(
            "node-9", "us-east", "linode/ubuntu22.04", "g6-nanode-1",
            ssh_keys=("ssh-ed25519 AAAA",), user_data=user_data,
        ))

        body = linode_session.bodies("POST", "/linode/instances")[0]
        assert body["root_pass"] == "Sup3r$ecret"
        assert body["authorized_keys"] == ["ssh-ed25519 AAAA"]
        assert "interfaces" not in body
        assert instance.id == "9"
        assert instance.ip_address is None
        assert instance.private_ip is None

    def test_create_generates_password(self, linode_cloud, linode_session):
        """Test a random root password is generated without user-data."""
        linode_session.add("POST", "/linode/instances", ok(linode(9)))

        linode_cloud.create_instance(CreateInstanceConfig(
            "node-9", "us-east", "linode/ubuntu22.04", "g6-nanode-1", enable_ipv6=True,
        ))

        body = linode_session.bodies("POST", "/linode/instances")[0]
        assert len(body["root_pass"]) == 24
        assert body["interfaces"][0]["purpose"] == "public"

    def test_power_action(self, linode_cloud, linode_session):
        """Test power actions post to the action endpoint."""
        linode_session.add("POST", "/linode/instances/5/boot", ok({}))

        assert linode_cloud.perform_instance_action("5", InstanceAction.POWER_ON) is True
        assert linode_session.paths() == ["/linode/instances/5/boot"]

    def test_delete(self, linode_cloud, linode_session):
        """Test deletion issues a DELETE."""
        linode_session.add("DELETE", "/linode/instances/5", ok({}))

        assert linode_cloud.delete_instance("5") is True


class TestAccount:
    """Test Linode account operations."""

    def test_balance_credit_account(self, linode_cloud, linode_session):
        """Test a negative balance marks a credit account."""
        linode_session.add("GET", "/account", ok({"balance": -5.0, "credit_remaining": 95}))

        balance = linode_cloud.get_balance()

        assert balance.is_credit_account is True
        assert balance.credits_remaining == 95.0

    def test_overview(self, linode_cloud, linode_session):
        """Test overview promotion, billing and plan fields."""
        linode_session.add("GET", "/account", ok({
            "email": "ops@example.com",
            "balance": 0,
            "balance_uninvoiced": 1.5,
            "active_since": "2020-05-01T12:00:00",
            "credit_card": {"last_four": "4242", "expiry": "12/2030"},
            "active_promotions": [{
                "summary": "$100 promotional credit",
                "expire_dt": "2025-01-01T00:00:00",
                "credit_remaining": "80.00",
            }],
        }))
        linode_session.add("GET", "/account/transfer", ok({"used": 10, "quota": 2000}))
        linode_session.add("GET", "/linode/instances", page([linode()]))
        linode_session.add("GET", "/networking/ips", page([
            {"address": "198.51.100.1", "type": "ipv4", "public": True},
            {"address": "192.168.1.5", "type": "ipv4", "public": False},
            {"address": "2600::", "type": "ipv6", "public": True},
        ]))
        linode_session.add("GET", "/profile", ok({"restricted": True}))

        overview = linode_cloud.get_account_overview()

        assert overview.account.plan == "restricted user"
        assert overview.quotas[0].limit == 2000
        assert overview.resources.public_ipv4 == 1
        assert overview.resources.ipv6_prefixes == 1
        assert overview.promotion.code == "$100 promotional credit"
        assert overview.promotion.expires_at == "2025-01-01T00:00:00Z"
        assert overview.promotion.remaining == 80.0
        assert overview.billing.credit_card == "**** **** **** 4242 (expires 12/2030)"

    def test_plans_filtered_by_class(self, linode_cloud, linode_session):
        """Test only standard and nanode plans are listed."""
        linode_session.add("GET", "/linode/types", page([
            {"id": "g6-nanode-1", "label": "Nanode 1GB", "class": "nanode",
             "price": {"monthly": 5, "hourly": 0.0075}},
            {"id": "g1-gpu-rtx6000-1", "label": "GPU", "class": "gpu",
             "price": {"monthly": 1000, "hourly": 1.5}},
        ]))

        plans = linode_cloud.get_plans()

        assert [p.slug for p in plans] == ["g6-nanode-1"]
        assert plans[0].price_monthly == 5.0


class TestIPChange:
    """Test Linode IP replacement."""

    def test_change_ipv4_assign_reboot_release(self, linode_cloud, linode_session):
        """Test a spare address is assigned, then reboot, then the old extra is released."""
        linode_session.add("GET", "/linode/instances/5", ok(linode(
            ipv4=["198.51.100.1", "198.51.100.2", "192.168.1.5"]
        )))
        linode_session.add("GET", "/networking/ips", page([
            {"address": "198.51.100.2", "type": "ipv4", "public": True, "linode_id": 5, "region": "us-east"},
            {"address": "203.0.113.4", "type": "ipv4", "public": True, "linode_id": None, "region": "eu-west"},
            {"address": "198.51.100.9", "type": "ipv4", "public": True, "linode_id": None, "region": "us-east"},
        ]))
        linode_session.add("POST", "/networking/ipv4/assign", ok({}))
        linode_session.add("POST", "/linode/instances/5/reboot", ok({}))

        new_ip = linode_cloud.change_instance_ip("5", IPVersion.IPV4)

        assert new_ip == "198.51.100.9"
        assert linode_session.paths("POST") == [
            "/networking/ipv4/assign",
            "/linode/instances/5/reboot",
            "/networking/ipv4/assign",
        ]
        assign, release = linode_session.bodies("POST", "/networking/ipv4/assign")
        assert assign["assignments"] == [{"address": "198.51.100.9", "linode_id": 5}]
        assert release["assignments"] == [{"address": "198.51.100.2", "linode_id": None}]

    def test_change_ipv4_release_failure_ignored(self, linode_cloud, linode_session):
        """Test a failed release still returns the new address."""
        linode_session.add("GET", "/linode/instances/5", ok(linode(
            ipv4=["198.51.100.1", "198.51.100.2"]
        )))
        linode_session.add("GET", "/networking/ips", page([
            {"address": "198.51.100.9", "type": "ipv4", "public": True, "linode_id": None, "region": "us-east"},
        ]))
        linode_session.add("POST", "/networking/ipv4/assign", ok({}), fail(400))
        linode_session.add("POST", "/linode/instances/5/reboot", ok({}))

        assert linode_cloud.change_instance_ip("5") == "198.51.100.9"

    def test_change_ipv4_no_spare(self, linode_cloud, linode_session):
        """Test a missing spare address explains how to get one."""
        linode_session.add("GET", "/linode/instances/5", ok(linode()))
        linode_session.add("GET", "/networking/ips", page([]))

        with pytest.raises(CloudValidationError, match="support ticket") as exc_info:
            linode_cloud.change_instance_ip("5")

        assert "cloud.linode.com/support/tickets" in exc_info.value.message
        assert linode_session.paths("POST") == []

    def test_change_ipv4_non_numeric_id(self, linode_cloud, linode_session):
        """Test a non-numeric Linode ID is rejected as a validation error."""
        with pytest.raises(CloudValidationError) as exc_info:
            linode_cloud.change_instance_ip("web-1", IPVersion.IPV4)

        assert exc_info.value.status_code == 400
        assert linode_session.calls == []

    def test_change_ipv6_rejects_existing(self, linode_cloud, linode_session):
        """Test an instance with IPv6 is rejected."""
        linode_session.add("GET", "/linode/instances/5", ok(linode()))

        with pytest.raises(CloudValidationError, match="existing IPv6"):
            linode_cloud.change_instance_ip("5", "ipv6")

    def test_change_ipv6_after_reboot(self, linode_cloud, linode_session, clock):
        """Test IPv6 is read back after reboot and settle delay."""
        linode_session.add(
            "GET", "/linode/instances/5",
            ok(linode(ipv6=None)),
            ok(linode(ipv6=None)),
            ok(linode(ipv6="2600:3c03::1/128")),
        )
        linode_session.add("GET", "/networking/ipv6/pools", fail(404))
        linode_session.add("POST", "/linode/instances/5/reboot", ok({}))

        assert linode_cloud.change_instance_ip("5", IPVersion.IPV6) == "2600:3c03::1"
        assert clock.sleeps[0] == 30.0

    def test_change_ipv6_timeout_with_pool(self, linode_cloud, linode_session, clock):
        """Test a missing IPv6 after polling yields routing guidance."""
        linode_session.add("GET", "/linode/instances/5", ok(linode(ipv6=None)))
        linode_session.add("GET", "/networking/ipv6/pools", ok({"data": [{"range": "2600:3c03::/64"}]}))
        linode_session.add("POST", "/linode/instances/5/reboot", ok({}))

        with pytest.raises(CloudError, match="Configure IPv6 routing") as exc_info:
            linode_cloud.change_instance_ip("5", IPVersion.IPV6)

        assert exc_info.value.status_code == 500
        assert clock.sleeps == [30.0, 15.0, 15.0]

    def test_change_ipv6_timeout_without_pool(self, linode_cloud, linode_session):
        """Test guidance when the account has no IPv6 resources."""
        linode_session.add("GET", "/linode/instances/5", ok(linode(ipv6=None)))
        linode_session.add("GET", "/networking/ipv6/pools", ok({"data": []}))
        linode_session.add("POST", "/linode/instances/5/reboot", ok({}))

        with pytest.raises(CloudError, match="no IPv6 resources"):
            linode_cloud.change_instance_ip("5", IPVersion.IPV6)
