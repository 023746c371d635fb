"""Seat position request handling and live position mirroring."""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, List, Optional

from . import constants
from .config import SeatAdjusterConfig
from .core.models import (
    DataPointError,
    DataPointReply,
    PositionRequest,
    PositionResponse,
    Status,
    decode_object,
    encode,
    failure_payload,
    format_number,
    missing_position_response,
    position_payload,
)
from .core.protocols import PubSubClient, VehicleDataBroker
from .core.subscription import Subscription

LOGGER = logging.getLogger(__name__)

NO_POSITION_MESSAGE = "No position specified"


class SeatAdjuster:
    """Moves the driver seat on request while the vehicle stands still.

    Requests arrive on one or more MQTT topics (the primary request topic and
    its alias share a single handler) and are answered on the response topic.
    Independently, every seat position update coming from the data broker is
    mirrored to the current-position topic.
    """

    def __init__(
        self,
        databroker: VehicleDataBroker,
        pubsub: PubSubClient,
        config: Optional[SeatAdjusterConfig] = None,
    ) -> None:
        self._databroker = databroker
        self._pubsub = pubsub
        self._config = config or SeatAdjusterConfig()
        self._subscriptions: List[Subscription[Any]] = []

    @property
    def subscriptions(self) -> List[Subscription[Any]]:
        return list(self._subscriptions)

    def on_start(self) -> None:
        """Register the data point and request topic subscriptions."""

        if self._subscriptions:
            raise RuntimeError("SeatAdjuster already started")

        LOGGER.info("Subscribe for data points!")
        datapoint = (
            self._databroker.subscribe(self._config.seat_position_signal)
            .on_item(self.on_seat_position_changed)
            .on_error(self.error_handler(constants.SOURCE_DATAPOINT))
        )
        self._subscriptions.append(datapoint)

        for topic in self._config.request_topics:
            subscription = (
                self._pubsub.subscribe_topic(topic)
                .on_item(self.on_set_position_request_received)
                .on_error(self.error_handler(constants.SOURCE_TOPIC))
            )
            self._subscriptions.append(subscription)

        LOGGER.info(
            "Listening for seat position requests on %s",
            ", ".join(self._config.request_topics),
        )

    async def on_set_position_request_received(self, data: str) -> None:
        """Validate a set-position request, move the seat and respond.

        Raises:
            PayloadDecodeError: If ``data`` is not a JSON object or its fields
                are not integers. No response is published in that case.
            DataBrokerError: If reading the speed or writing the seat position
                fails. No response is published in that case either.
        """

        LOGGER.debug('position request: "%s"', data)

        payload = decode_object(data)

        if constants.JSON_FIELD_POSITION not in payload:
            LOGGER.error(NO_POSITION_MESSAGE)
            response = missing_position_response(
                payload.get(constants.JSON_FIELD_REQUEST_ID), NO_POSITION_MESSAGE
            )
            self._publish(self._config.response_topic, response)
            return

        request = PositionRequest.from_dict(payload)

        vehicle_speed = await self._databroker.get(self._config.speed_signal)

        if vehicle_speed == 0:
            await self._databroker.set(
                self._config.seat_position_signal, request.position
            )
            result = PositionResponse(
                request.request_id,
                Status.OK,
                f"Set Seat position to: {request.position}",
            )
        else:
            message = (
                "Not allowed to move seat because vehicle speed is "
                f"{format_number(vehicle_speed)} and not 0"
            )
            LOGGER.info(message)
            result = PositionResponse(request.request_id, Status.FAIL, message)

        self._publish(self._config.response_topic, result.as_dict())

    async def on_seat_position_changed(self, reply: DataPointReply) -> None:
        """Broadcast the current seat position, or why it is unavailable."""

        try:
            value = reply.value_of(self._config.seat_position_signal)
        except DataPointError as exc:
            LOGGER.warning(
                "Unable to get Current Seat Position, Exception: %s", exc
            )
            payload = failure_payload(str(exc))
        else:
            payload = position_payload(value)

        self._publish(self._config.current_position_topic, payload)

    def on_error(self, source: str, error: BaseException) -> None:
        LOGGER.error(
            "%s: Error occurred during async invocation: %s",
            source.capitalize(),
            error,
        )

    def error_handler(self, source: str) -> Callable[[BaseException], None]:
        return functools.partial(self.on_error, source)

    def _publish(self, topic: str, payload: dict[str, Any]) -> None:
        self._pubsub.publish(topic, encode(payload))
