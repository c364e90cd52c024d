"""Exceptions raised by the remote pairing core."""

from __future__ import annotations


class RemotePairingError(Exception):
    """Base class for all pairing and tunnel negotiation failures."""

    def __init__(self, message: str, step: str | None = None) -> None:
        """Initialize the error.

        Args:
            message: Human readable description.
            step: The pairing or negotiation step that failed, if known.
        """
        super().__init__(message)
        self.step = step

    @property
    def needs_repair(self) -> bool:
        """Whether the caller has to restart pairing from scratch."""
        return False

    def __str__(self) -> str:
        message = super().__str__()
        if self.step:
            return f"{message} (step: {self.step})"
        return message


class TransportError(RemotePairingError):
    """The underlying connection failed to send or receive."""

    @property
    def needs_repair(self) -> bool:
        return True


class MalformedMessageError(RemotePairingError):
    """A TLV record, envelope or payload could not be decoded."""

    @property
    def needs_repair(self) -> bool:
        return True


class MissingFieldError(RemotePairingError):
    """An expected TLV tag or map key is absent or has the wrong type."""

    def __init__(
        self, message: str, field: str | None = None, step: str | None = None
    ) -> None:
        super().__init__(message, step)
        self.field = field

    @property
    def needs_repair(self) -> bool:
        return True


class AuthenticationFailedError(RemotePairingError):
    """Server proof verification or authenticated decryption failed."""

    @property
    def needs_repair(self) -> bool:
        return True


class DecryptionFailedError(AuthenticationFailedError):
    """An AEAD open operation rejected the ciphertext."""


class PairingRejectedError(AuthenticationFailedError):
    """The device refused the pairing request."""


class PairingStateError(RemotePairingError):
    """An operation was attempted in the wrong pairing state."""


class NonceExhaustedError(RemotePairingError):
    """A nonce counter reached its maximum value."""

    @property
    def needs_repair(self) -> bool:
        return True


class NegotiationFailedError(RemotePairingError):
    """The device's tunnel listener response was unusable.

    Pairing remains valid; the negotiation may be retried.
    """
