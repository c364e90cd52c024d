"""Tests for the control channel envelope codec."""

import base64
import json

import pytest

from remote_pairing.core import opack
from remote_pairing.core.cipher_session import CipherSession
from remote_pairing.core.envelope import ControlChannelCodec, StructuredValue
from remote_pairing.core.errors import (
    DecryptionFailedError,
    MalformedMessageError,
    MissingFieldError,
    PairingRejectedError,
)
from remote_pairing.core.models import PairingData
from remote_pairing.core.serializers import OPackSerializer

from .fake_device import DeviceChannel, device_envelope

SECRET = b"\x11" * 64


@pytest.fixture
def codec():
    return ControlChannelCodec()


def _pairing_event(**pairing_data):
    return device_envelope(
        "plain", {"event": {"_0": {"pairingData": {"_0": pairing_data}}}}
    )


class TestEncoding:
    """Outgoing envelopes."""

    def test_request_envelope(self, codec):
        """Test the plain request layout."""
        envelope = opack.unpack(codec.encode_request({"handshake": {"_0": {}}}))
        assert envelope == {
            "mangledTypeName": "RemotePairing.ControlChannelMessageEnvelope",
            "value": {
                "message": {"plain": {"_0": {"request": {"_0": {"handshake": {"_0": {}}}}}}},
                "originatedBy": "host",
                "sequenceNumber": 0,
            },
        }

    def test_sequence_numbers_increase(self, codec):
        """Test that every encoded envelope takes the next number."""
        cipher_session = CipherSession.setup(SECRET)
        encoded = [
            codec.encode_request({"handshake": {}}),
            codec.encode_event(PairingData(data=b"\x06\x01\x01")),
            codec.encode_stream_encrypted(cipher_session, {"request": {}}),
        ]
        numbers = [opack.unpack(data)["value"]["sequenceNumber"] for data in encoded]
        assert numbers == [0, 1, 2]
        assert codec.sequence_number == 3

    def test_event_envelope(self, codec):
        """Test the pairingData event layout and optional fields."""
        data = PairingData(data=b"\x06\x01\x05", kind="setupManualPairing")
        body = opack.unpack(codec.encode_event(data))["value"]["message"]["plain"]["_0"]
        pairing = body["event"]["_0"]["pairingData"]["_0"]
        assert pairing == {
            "data": b"\x06\x01\x05",
            "kind": "setupManualPairing",
            "startNewSession": False,
        }

        data = PairingData(data=b"", sending_host="host-a", start_new_session=True)
        body = opack.unpack(codec.encode_event(data))["value"]["message"]["plain"]["_0"]
        pairing = body["event"]["_0"]["pairingData"]["_0"]
        assert pairing == {"data": b"", "startNewSession": True, "sendingHost": "host-a"}

    def test_stream_encrypted_envelope(self, codec):
        """Test that encrypted payloads open with the client key."""
        cipher_session = CipherSession.setup(SECRET)
        device = DeviceChannel(SECRET)
        value = {"request": {"_0": {"createRemoteUnlockKey": {}}}}

        envelope = opack.unpack(codec.encode_stream_encrypted(cipher_session, value))
        ciphertext = envelope["value"]["message"]["streamEncrypted"]["_0"]
        assert json.loads(device.decrypt(ciphertext)) == value

    def test_stream_encrypted_bytes_as_base64(self, codec):
        """Test that binary fields are sent as base64 text inside JSON."""
        cipher_session = CipherSession.setup(SECRET)
        device = DeviceChannel(SECRET)
        key = b"\x30\x82\x01\x22"
        value = {"createListener": {"key": key, "port": 7}}

        envelope = opack.unpack(codec.encode_stream_encrypted(cipher_session, value))
        ciphertext = envelope["value"]["message"]["streamEncrypted"]["_0"]
        assert json.loads(device.decrypt(ciphertext)) == {
            "createListener": {"key": base64.b64encode(key).decode(), "port": 7}
        }

    def test_stream_encrypted_custom_serializer(self):
        """Test that the encrypted payload serializer can be replaced."""
        codec = ControlChannelCodec(encrypted_serializer=OPackSerializer())
        cipher_session = CipherSession.setup(SECRET)
        device = DeviceChannel(SECRET)
        value = {"request": {"key": b"\x01\x02"}}

        envelope = opack.unpack(codec.encode_stream_encrypted(cipher_session, value))
        ciphertext = envelope["value"]["message"]["streamEncrypted"]["_0"]
        assert opack.unpack(device.decrypt(ciphertext)) == value


class TestDecoding:
    """Incoming envelopes."""

    def test_decode_pairing_event(self, codec):
        """Test decoding pairing data from the device."""
        pairing = codec.decode_event(
            _pairing_event(data=b"\x06\x01\x02", kind="setupManualPairing")
        )
        assert pairing == PairingData(data=b"\x06\x01\x02", kind="setupManualPairing")

    def test_awaiting_consent(self, codec):
        """Test that the consent prompt is not an error."""
        data = device_envelope("plain", {"event": {"_0": {"awaitingUserConsent": {}}}})
        assert codec.decode_event(data) is None

    def test_rejected(self, codec):
        """Test that a rejection carries the device's reason."""
        data = device_envelope(
            "plain",
            {
                "event": {
                    "_0": {
                        "pairingRejectedWithError": {
                            "wrappedError": {
                                "userInfo": {"NSLocalizedDescription": "Denied"}
                            }
                        }
                    }
                }
            },
        )
        with pytest.raises(PairingRejectedError, match="Denied") as exc_info:
            codec.decode_event(data)
        assert exc_info.value.needs_repair

    def test_event_without_pairing_data(self, codec):
        """Test that other events are reported as missing pairing data."""
        data = device_envelope("plain", {"event": {"_0": {"somethingElse": {}}}})
        with pytest.raises(MissingFieldError):
            codec.decode_event(data)
        with pytest.raises(MissingFieldError):
            codec.decode_event(_pairing_event(kind="setupManualPairing"))

    def test_wrong_shape(self, codec):
        """Test that an encrypted envelope is not accepted as plain."""
        data = device_envelope("streamEncrypted", b"\x00" * 20)
        with pytest.raises(MalformedMessageError):
            codec.decode(data)

    @pytest.mark.parametrize(
        "data",
        [
            b"\xff",
            opack.pack([1, 2, 3]),
            opack.pack({"value": {"message": "plain"}}),
            device_envelope("plain", [1, 2]),
        ],
    )
    def test_malformed_envelopes(self, codec, data):
        """Test that undecodable envelopes are malformed."""
        with pytest.raises(MalformedMessageError):
            codec.decode(data)

    def test_decode_stream_encrypted(self, codec):
        """Test opening a device response."""
        cipher_session = CipherSession.setup(SECRET)
        device = DeviceChannel(SECRET)
        value = {"response": {"_1": {"createListener": {"port": 1234}}}}
        data = device_envelope("streamEncrypted", device.encrypt(json.dumps(value).encode()))

        decoded = codec.decode_stream_encrypted(cipher_session, data)
        assert decoded.child_map("response", "_1", "createListener").get_int("port") == 1234

    def test_decode_stream_encrypted_not_json(self, codec):
        """Test that an authentic but non-JSON payload is malformed."""
        cipher_session = CipherSession.setup(SECRET)
        device = DeviceChannel(SECRET)
        data = device_envelope("streamEncrypted", device.encrypt(opack.pack({"a": 1})))
        with pytest.raises(MalformedMessageError):
            codec.decode_stream_encrypted(cipher_session, data)

    def test_deeply_nested_envelope(self, codec):
        """Test that excessive container nesting is malformed."""
        data = b"\xd1" * (opack.MAX_DEPTH + 1) + b"\x08"
        with pytest.raises(MalformedMessageError):
            codec.decode(data)

    def test_decode_stream_encrypted_tampered(self, codec):
        """Test that a forged response fails authentication."""
        cipher_session = CipherSession.setup(SECRET)
        data = device_envelope("streamEncrypted", b"\x01" * 32)
        with pytest.raises(DecryptionFailedError):
            codec.decode_stream_encrypted(cipher_session, data)


class TestStructuredValue:
    """Typed field access."""

    def test_lookups(self):
        """Test successful lookups."""
        value = StructuredValue(
            {"a": {"b": {"port": 5.0, "name": "x", "key": b"\x01", "flag": True}}}
        )
        node = value.child_map("a", "b")
        assert node.path == "a.b"
        assert node.get_int("port") == 5
        assert node.get_str("name") == "x"
        assert node.get_bytes("key") == b"\x01"
        assert node.get_bool("flag") is True
        assert "port" in node
        assert "missing" not in node

    def test_missing_field_names_path(self):
        """Test that errors carry the dotted path."""
        value = StructuredValue({"response": {"_1": {}}})
        with pytest.raises(MissingFieldError) as exc_info:
            value.child("response", "_1", "createListener")
        assert exc_info.value.field == "response._1.createListener"

    @pytest.mark.parametrize(
        "getter,raw",
        [
            ("get_int", "12"),
            ("get_int", True),
            ("get_int", 1.5),
            ("get_str", 3),
            ("get_bytes", "bytes"),
            ("get_bool", 1),
        ],
    )
    def test_wrong_types(self, getter, raw):
        """Test that type mismatches are never coerced."""
        with pytest.raises(MissingFieldError):
            getattr(StructuredValue({"field": raw}), getter)("field")
