"""Payload models exchanged over the message bus and the data broker."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Mapping, Optional

from .. import constants


class PayloadDecodeError(ValueError):
    """Raised when an inbound payload cannot be decoded."""


class DataPointError(LookupError):
    """Raised when a data point reply does not carry a usable value."""


class Status(IntEnum):
    OK = 0
    FAIL = 1


def _require_int(data: Mapping[str, Any], key: str) -> int:
    value = data[key]
    # bool is an int subclass but never a valid position or id
    if isinstance(value, bool) or not isinstance(value, int):
        raise PayloadDecodeError(f"Field '{key}' must be an integer, got {value!r}")
    return value


def decode_object(payload: str | bytes) -> Dict[str, Any]:
    """Decode a UTF-8 JSON payload that must hold an object."""

    try:
        data = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise PayloadDecodeError(f"Payload is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise PayloadDecodeError(
            f"Payload must be a JSON object, got {type(data).__name__}"
        )
    return data


def encode(payload: Mapping[str, Any]) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


@dataclass(slots=True, frozen=True)
class PositionRequest:
    position: int
    request_id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PositionRequest":
        """Build a request from a decoded payload.

        Raises:
            KeyError: If ``position`` is missing.
            PayloadDecodeError: If ``position`` or ``requestId`` is not an integer.
        """

        position = _require_int(data, constants.JSON_FIELD_POSITION)
        request_id = None
        if data.get(constants.JSON_FIELD_REQUEST_ID) is not None:
            request_id = _require_int(data, constants.JSON_FIELD_REQUEST_ID)
        return cls(position=position, request_id=request_id)


@dataclass(slots=True, frozen=True)
class PositionResponse:
    request_id: Any
    status: Status
    message: str

    def as_dict(self) -> Dict[str, Any]:
        return {
            constants.JSON_FIELD_REQUEST_ID: self.request_id,
            constants.JSON_FIELD_RESULT: {
                constants.JSON_FIELD_STATUS: int(self.status),
                constants.JSON_FIELD_MESSAGE: self.message,
            },
        }


def missing_position_response(request_id: Any, message: str) -> Dict[str, Any]:
    """Flat FAIL response sent when a request carries no position."""

    return {
        constants.JSON_FIELD_REQUEST_ID: request_id,
        constants.JSON_FIELD_STATUS: int(Status.FAIL),
        constants.JSON_FIELD_MESSAGE: message,
    }


def position_payload(value: Any) -> Dict[str, Any]:
    return {constants.JSON_FIELD_POSITION: value}


def failure_payload(message: str) -> Dict[str, Any]:
    return {
        constants.JSON_FIELD_STATUS: int(Status.FAIL),
        constants.JSON_FIELD_MESSAGE: message,
    }


@dataclass(slots=True)
class DataPointReply:
    """Values (or per data point failures) delivered by a data broker update."""

    values: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)

    def value_of(self, path: str) -> Any:
        if path in self.errors:
            raise DataPointError(f"Data point {path} failed: {self.errors[path]}")
        if path not in self.values:
            raise DataPointError(f"Data point {path} not present in reply")
        value = self.values[path]
        if value is None:
            raise DataPointError(f"Data point {path} has no value")
        return value
