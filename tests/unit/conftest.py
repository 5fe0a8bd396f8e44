"""Pytest fixtures for cloudfleet unit tests."""

import pytest

from cloudfleet.clouds.digitalocean import DigitalOceanCloud
from cloudfleet.clouds.linode import LinodeCloud

from fakes import FakeClock, FakeConfig, FakeSession


@pytest.fixture
def test_config():
    """Provide test configuration."""
    return FakeConfig


@pytest.fixture
def clock():
    """Provide a fake clock."""
    return FakeClock()


@pytest.fixture
def do_session():
    """Provide a fake DigitalOcean HTTP session."""
    return FakeSession(FakeConfig.DIGITALOCEAN_API_URL)


@pytest.fixture
def do_cloud(do_session, clock):
    """Provide a DigitalOcean adapter wired to the fake session."""
    return DigitalOceanCloud("do-token", config=FakeConfig, clock=clock, session=do_session)


@pytest.fixture
def linode_session():
    """Provide a fake Linode HTTP session."""
    return FakeSession(FakeConfig.LINODE_API_URL)


@pytest.fixture
def linode_cloud(linode_session, clock):
    """Provide a Linode adapter wired to the fake session."""
    return LinodeCloud("linode-token", config=FakeConfig, clock=clock, session=linode_session)
