"""Constants used across the seat-adjuster package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "seat-adjuster"
DEFAULT_CLIENT_ID = "SeatAdjusterApp"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / f".{APP_NAME}" / DEFAULT_CONFIG_FILENAME

DEFAULT_BROKER_HOST = "localhost"
DEFAULT_BROKER_PORT = 1883
DEFAULT_DATABROKER_URL = "ws://127.0.0.1:8090"

TOPIC_REQUEST = "seatadjuster/setPosition/request"
TOPIC_REQUEST_RIGHT = "seatadjuster/setPosition/requestRight"
TOPIC_RESPONSE = "seatadjuster/setPosition/response"
TOPIC_CURRENT_POSITION = "seatadjuster/currentPosition"

SIGNAL_SPEED = "Vehicle.Speed"
SIGNAL_SEAT_POSITION = "Vehicle.Cabin.Seat.Row1.DriverSide.Position"

JSON_FIELD_REQUEST_ID = "requestId"
JSON_FIELD_POSITION = "position"
JSON_FIELD_STATUS = "status"
JSON_FIELD_MESSAGE = "message"
JSON_FIELD_RESULT = "result"

# Error sink source tags
SOURCE_DATAPOINT = "datapoint"
SOURCE_TOPIC = "topic"
