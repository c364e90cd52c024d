"""Interface for the control channel transport."""

from abc import ABC, abstractmethod


class MessageTransport(ABC):
    """Abstract base class for a bidirectional message channel to a device.

    Messages are opaque byte strings; framing below the envelope layer is
    the transport's concern, as are timeouts.
    """

    @abstractmethod
    async def send(self, data: bytes) -> None:
        """Send one message to the device.

        Args:
            data: The encoded envelope.
        """

    @abstractmethod
    async def receive(self) -> bytes:
        """Wait for the next message from the device.

        Returns:
            The encoded envelope.
        """

    async def close(self) -> None:
        """Release the underlying connection."""
