"""Turns command failures into the outcome the scheduler acts on."""

import asyncio
from enum import Enum

from .commands import CommandData, CommandEnum
from .errors import (
    CapabilityError,
    ConnectorError,
    MalformedRequestError,
    NoCredentialsError,
    ParseError,
    StatusCode,
    TransportError,
)


class Outcome(str, Enum):
    """What the scheduler does with an executed command."""
    SUCCEEDED = "succeeded"
    # Failed, but the desired state already holds (e.g. deleting a deleted note)
    SILENT_SUCCESS = "silent_success"
    RETRYABLE = "retryable"
    TERMINAL = "terminal"

    @property
    def is_success(self) -> bool:
        return self in (Outcome.SUCCEEDED, Outcome.SILENT_SUCCESS)


# Commands whose target being gone means they are done
SILENT_ON_NOT_FOUND = frozenset({
    CommandEnum.DELETE_NOTE,
    CommandEnum.UNDO_LIKE,
    CommandEnum.UNDO_ANNOUNCE,
    CommandEnum.UNDO_FOLLOW,
})

# Never retried: retrying cannot change the result
_PERMANENT = (CapabilityError, MalformedRequestError, NoCredentialsError, ParseError)


def as_connector_error(error: BaseException) -> ConnectorError:
    """Wrap any failure so that its code and message survive serialization."""
    if isinstance(error, ConnectorError):
        return error
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return TransportError(f"Timed out: {error}")
    return ConnectorError(StatusCode.UNKNOWN, f"{type(error).__name__}: {error}", is_hard=True)


def classify(command: CommandData, error: BaseException | None) -> Outcome:
    """Classify the result of one execution of a command."""
    if error is None:
        return Outcome.SUCCEEDED
    error = as_connector_error(error)
    if error.status_code is StatusCode.NOT_FOUND and command.command in SILENT_ON_NOT_FOUND:
        return Outcome.SILENT_SUCCESS
    if isinstance(error, _PERMANENT):
        return Outcome.TERMINAL
    return Outcome.TERMINAL if error.is_hard else Outcome.RETRYABLE
