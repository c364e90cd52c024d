"""
Core models for the remote pairing tunnel service.
"""

from __future__ import annotations

import platform
import uuid
from typing import Any, Literal

from cryptography.hazmat.primitives.asymmetric import ed25519, rsa
from cryptography.hazmat.primitives.asymmetric.types import PublicKeyTypes
from pydantic import BaseModel, ConfigDict, Field, SecretBytes

from ..const import TRANSPORT_PROTOCOL_QUIC, WIRE_PROTOCOL_VERSION
from .crypto import encode_public_key, generate_signing_key


class HostDeviceInfo(BaseModel):
    """
    Description of this host as presented to the device during pairing.
    """

    model_config = ConfigDict(frozen=True)

    model: str = "MacBookPro18,3"
    name: str = Field(default_factory=platform.node)
    serial_number: str = "YY9944YY99"
    bt_addr: str = "FF:DD:99:66:BB:AA"
    mac: bytes = bytes.fromhex("ff4488663399")
    alt_irk: bytes = bytes.fromhex("5eca81919202820011223344bbf24ac8")

    def to_payload(self, account_id: str) -> dict[str, Any]:
        """Build the device-info map sent inside the encrypted exchange."""
        return {
            "accountID": account_id,
            "altIRK": self.alt_irk,
            "btAddr": self.bt_addr,
            "mac": self.mac,
            "model": self.model,
            "name": self.name,
            "remotepairing_serial_number": self.serial_number,
        }


class TunnelServiceConfig(BaseModel):
    """
    Settings of a tunnel service instance.
    """

    model_config = ConfigDict(frozen=True)

    sending_host: str = Field(default_factory=platform.node)
    wire_protocol_version: int = WIRE_PROTOCOL_VERSION
    transport_protocol: Literal["quic", "tcp"] = TRANSPORT_PROTOCOL_QUIC
    device_info: HostDeviceInfo = Field(default_factory=HostDeviceInfo)


class PairingIdentity(BaseModel):
    """
    Signing identity created for one pair-setup run. Held in memory only.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    identifier: str
    signing_key: ed25519.Ed25519PrivateKey
    public_key: bytes

    @classmethod
    def generate(cls) -> PairingIdentity:
        """Create a fresh Ed25519 key pair and random identifier."""
        signing_key, public_key = generate_signing_key()
        return cls(
            identifier=str(uuid.uuid4()),
            signing_key=signing_key,
            public_key=public_key,
        )

    def sign(self, data: bytes) -> bytes:
        """Sign data with the identity key."""
        return self.signing_key.sign(data)


class PairingData(BaseModel):
    """
    A pairing event payload carrying one TLV blob.
    """

    data: bytes
    kind: str | None = None
    start_new_session: bool = False
    sending_host: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "data": self.data,
            "startNewSession": self.start_new_session,
        }
        if self.kind is not None:
            payload["kind"] = self.kind
        if self.sending_host is not None:
            payload["sendingHost"] = self.sending_host
        return payload


class PairInfo(BaseModel):
    """
    Result of a successful pairing. The session key allows resuming later.
    """

    session_key: SecretBytes

    def get_session_key(self) -> bytes:
        """
        Returns the raw session key bytes.
        """
        return self.session_key.get_secret_value()


class TunnelListener(BaseModel):
    """
    Parameters negotiated for the data-plane tunnel.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    private_key: rsa.RSAPrivateKey
    device_public_key: PublicKeyTypes
    tunnel_port: int

    @property
    def device_public_key_der(self) -> bytes:
        return encode_public_key(self.device_public_key)
