"""Error taxonomy for social network connections.

Every failure raised by an adapter or by the HTTP layer is a ConnectorError
carrying a StatusCode. The scheduler relies on the subclass and on `is_hard`
to decide between retrying and giving up.
"""

from enum import Enum
from typing import Any


class StatusCode(str, Enum):
    """Status codes attached to connector failures."""
    UNKNOWN = "unknown"
    BAD_REQUEST = "bad_request"
    NOT_FOUND = "not_found"
    NO_CREDENTIALS_FOR_HOST = "no_credentials_for_host"
    UNSUPPORTED_API = "unsupported_api"
    HARD_IO = "hard_io"

    @classmethod
    def load(cls, value: str | None) -> "StatusCode":
        """Parse a stored code, falling back to UNKNOWN."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class ConnectorError(Exception):
    """Base error of a connection to a social network."""

    def __init__(
        self,
        status_code: StatusCode,
        message: str,
        host: str = "",
        is_hard: bool = False,
    ):
        self.status_code = status_code
        self.message = message
        self.host = host
        self.is_hard = is_hard
        super().__init__(self._format())

    def _format(self) -> str:
        text = f"{self.status_code.value}: {self.message}"
        if self.host:
            text += f"; host={self.host}"
        return text

    def to_dict(self) -> dict[str, Any]:
        """Serialize the parts that must survive the command boundary."""
        return {
            "error_code": self.status_code.value,
            "error_message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConnectorError":
        status_code = StatusCode.load(data.get("error_code"))
        return cls(status_code, data.get("error_message", ""))


class CapabilityError(ConnectorError):
    """The operation is not supported by this backend."""

    def __init__(self, message: str, host: str = ""):
        super().__init__(StatusCode.UNSUPPORTED_API, message, host, is_hard=True)


class MalformedRequestError(ConnectorError):
    """Input that the remote side would certainly reject, e.g. an empty id."""

    def __init__(self, message: str, host: str = ""):
        super().__init__(StatusCode.BAD_REQUEST, message, host, is_hard=True)


class NoCredentialsError(ConnectorError):
    """No usable OAuth keys or tokens for the target host."""

    def __init__(self, message: str, host: str = ""):
        super().__init__(StatusCode.NO_CREDENTIALS_FOR_HOST, message, host, is_hard=True)


class TransportError(ConnectorError):
    """I/O failure during the network exchange.

    Soft transport errors are retried by the scheduler, hard ones are not.
    """

    def __init__(self, message: str, host: str = "", is_hard: bool = False):
        status_code = StatusCode.HARD_IO if is_hard else StatusCode.UNKNOWN
        super().__init__(status_code, message, host, is_hard=is_hard)


class ParseError(ConnectorError):
    """Response was received but did not match the expected schema."""

    def __init__(self, message: str, payload: Any = None, host: str = ""):
        self.payload = payload
        super().__init__(StatusCode.UNKNOWN, message, host, is_hard=True)

    def _format(self) -> str:
        text = super()._format()
        if self.payload is not None:
            text += f"; payload={str(self.payload)[:500]}"
        return text
