"""Constants for the remote pairing tunnel service."""

from typing import Final

UNTRUSTED_TUNNEL_SERVICE_NAME: Final = (
    "com.apple.internal.dt.coredevice.untrusted.tunnelservice"
)

WIRE_PROTOCOL_VERSION: Final = 19

# SRP parameters. The manual pairing credential is fixed by the protocol.
SRP_USERNAME: Final = "Pair-Setup"
SRP_MANUAL_PAIRING_PASSWORD: Final = "000000"

# Pairing event discriminators
PAIRING_KIND_SETUP_MANUAL: Final = "setupManualPairing"

# Key derivation context strings
PAIR_SETUP_SIGN_SALT: Final = b"Pair-Setup-Controller-Sign-Salt"
PAIR_SETUP_SIGN_INFO: Final = b"Pair-Setup-Controller-Sign-Info"
PAIR_SETUP_ENCRYPT_SALT: Final = b"Pair-Setup-Encrypt-Salt"
PAIR_SETUP_ENCRYPT_INFO: Final = b"Pair-Setup-Encrypt-Info"
CLIENT_ENCRYPT_INFO: Final = b"ClientEncrypt-main"
SERVER_ENCRYPT_INFO: Final = b"ServerEncrypt-main"

# Nonce tags for the encrypted pair-setup exchange (last 8 bytes of the nonce)
NONCE_TAG_MSG05: Final = b"PS-Msg05"
NONCE_TAG_MSG06: Final = b"PS-Msg06"

KEY_SIZE: Final = 32
NONCE_SIZE: Final = 12
SIGN_BUFFER_PREFIX_SIZE: Final = 32
TUNNEL_RSA_KEY_SIZE: Final = 2048

# Control channel envelope
ENVELOPE_TYPE_NAME: Final = "RemotePairing.ControlChannelMessageEnvelope"
ORIGINATED_BY_HOST: Final = "host"

TRANSPORT_PROTOCOL_QUIC: Final = "quic"
