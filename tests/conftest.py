"""Shared fixtures for the remote pairing tests."""

from __future__ import annotations

import pytest

from remote_pairing.core.models import HostDeviceInfo, TunnelServiceConfig
from remote_pairing.core.pairing import PairingSession

from .fake_device import FakeDevice
from .srp_reference import CLIENT_PRIVATE


@pytest.fixture
def config() -> TunnelServiceConfig:
    return TunnelServiceConfig(
        sending_host="test-host",
        device_info=HostDeviceInfo(name="test-host"),
    )


@pytest.fixture
def device() -> FakeDevice:
    return FakeDevice()


@pytest.fixture
def pairing_factory(config: TunnelServiceConfig):
    def factory() -> PairingSession:
        return PairingSession(config, srp_private=CLIENT_PRIVATE)

    return factory
