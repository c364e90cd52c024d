"""Remote pairing and encrypted tunnel negotiation."""

from __future__ import annotations

import logging

from .core.cipher_session import CipherSession, NonceSequence
from .core.envelope import ControlChannelCodec, StructuredValue
from .core.errors import (
    AuthenticationFailedError,
    DecryptionFailedError,
    MalformedMessageError,
    MissingFieldError,
    NegotiationFailedError,
    NonceExhaustedError,
    PairingRejectedError,
    PairingStateError,
    RemotePairingError,
    TransportError,
)
from .core.models import (
    HostDeviceInfo,
    PairInfo,
    PairingData,
    PairingIdentity,
    TunnelListener,
    TunnelServiceConfig,
)
from .core.pairing import PairingSession, PairingStep
from .core.serializers import JsonSerializer, OPackSerializer, PayloadSerializer
from .core.transport import MessageTransport
from .tunnel_service import TunnelService

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "AuthenticationFailedError",
    "CipherSession",
    "ControlChannelCodec",
    "DecryptionFailedError",
    "HostDeviceInfo",
    "JsonSerializer",
    "MalformedMessageError",
    "MessageTransport",
    "MissingFieldError",
    "NegotiationFailedError",
    "NonceExhaustedError",
    "NonceSequence",
    "OPackSerializer",
    "PairInfo",
    "PairingData",
    "PairingIdentity",
    "PairingRejectedError",
    "PairingSession",
    "PairingStateError",
    "PairingStep",
    "PayloadSerializer",
    "RemotePairingError",
    "StructuredValue",
    "TransportError",
    "TunnelListener",
    "TunnelService",
    "TunnelServiceConfig",
]
