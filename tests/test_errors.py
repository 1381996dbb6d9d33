"""Tests for the error taxonomy."""

from socialconnect.errors import (
    CapabilityError,
    ConnectorError,
    MalformedRequestError,
    NoCredentialsError,
    ParseError,
    StatusCode,
    TransportError,
)


class TestStatusCode:
    """Tests for StatusCode."""

    def test_load(self):
        assert StatusCode.load("not_found") is StatusCode.NOT_FOUND
        assert StatusCode.load("bogus") is StatusCode.UNKNOWN
        assert StatusCode.load(None) is StatusCode.UNKNOWN


class TestConnectorError:
    """Tests for ConnectorError and subclasses."""

    def test_codes_and_hardness(self):
        assert CapabilityError("x").status_code is StatusCode.UNSUPPORTED_API
        assert MalformedRequestError("x").status_code is StatusCode.BAD_REQUEST
        assert NoCredentialsError("x").status_code is StatusCode.NO_CREDENTIALS_FOR_HOST
        assert all(e.is_hard for e in (
            CapabilityError("x"), MalformedRequestError("x"), NoCredentialsError("x"), ParseError("x"),
        ))

    def test_transport_error(self):
        soft = TransportError("timeout")
        hard = TransportError("disk full", is_hard=True)
        assert soft.status_code is StatusCode.UNKNOWN
        assert not soft.is_hard
        assert hard.status_code is StatusCode.HARD_IO
        assert hard.is_hard

    def test_message_includes_host(self):
        error = NoCredentialsError("No credentials", "identi.ca")
        assert str(error) == "no_credentials_for_host: No credentials; host=identi.ca"

    def test_parse_error_keeps_payload(self):
        error = ParseError("Bad", {"id": 1}, "example.com")
        assert error.payload == {"id": 1}
        assert "payload={'id': 1}" in str(error)

    def test_dict_round_trip(self):
        error = ConnectorError(StatusCode.NOT_FOUND, "HTTP 404", "example.com", is_hard=True)
        restored = ConnectorError.from_dict(error.to_dict())
        assert restored.status_code is StatusCode.NOT_FOUND
        assert restored.message == "HTTP 404"

    def test_from_dict_unknown_code(self):
        restored = ConnectorError.from_dict({"error_code": "weird", "error_message": "m"})
        assert restored.status_code is StatusCode.UNKNOWN
