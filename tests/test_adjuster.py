"""Tests for the seat adjuster request handling and position mirroring."""

import asyncio
import logging

import pytest

from seat_adjuster import constants
from seat_adjuster.adapters import DataBrokerError
from seat_adjuster.adjuster import SeatAdjuster
from seat_adjuster.config import SeatAdjusterConfig
from seat_adjuster.core import DataPointReply, PayloadDecodeError

SEAT = constants.SIGNAL_SEAT_POSITION
RESPONSE = constants.TOPIC_RESPONSE
CURRENT = constants.TOPIC_CURRENT_POSITION


@pytest.fixture
def adjuster(databroker, pubsub) -> SeatAdjuster:
    instance = SeatAdjuster(databroker, pubsub, SeatAdjusterConfig())
    instance.on_start()
    return instance


def test_on_start_registers_datapoint_and_request_topics(adjuster, databroker, pubsub):
    assert list(databroker.subscriptions) == [SEAT]
    assert sorted(pubsub.subscriptions) == sorted(
        [constants.TOPIC_REQUEST, constants.TOPIC_REQUEST_RIGHT]
    )
    assert len(adjuster.subscriptions) == 3
    assert all(subscription.active for subscription in adjuster.subscriptions)


def test_on_start_twice_is_rejected(adjuster):
    with pytest.raises(RuntimeError):
        adjuster.on_start()


@pytest.mark.asyncio
async def test_request_moves_seat_when_vehicle_stands_still(adjuster, databroker, pubsub):
    await pubsub.emit(constants.TOPIC_REQUEST, '{"requestId":7,"position":3}')

    assert databroker.reads == [constants.SIGNAL_SPEED]
    assert databroker.writes == [(SEAT, 3)]
    assert pubsub.messages(RESPONSE) == [
        {"requestId": 7, "result": {"status": 0, "message": "Set Seat position to: 3"}}
    ]


@pytest.mark.asyncio
async def test_request_blocked_while_vehicle_moves(adjuster, databroker, pubsub):
    databroker.values[constants.SIGNAL_SPEED] = 15

    await pubsub.emit(constants.TOPIC_REQUEST, '{"requestId":8,"position":3}')

    assert databroker.writes == []
    assert pubsub.messages(RESPONSE) == [
        {
            "requestId": 8,
            "result": {
                "status": 1,
                "message": "Not allowed to move seat because vehicle speed is 15 and not 0",
            },
        }
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("speed", [-2, 0.5, 120.25])
async def test_any_nonzero_speed_blocks_actuation(adjuster, databroker, pubsub, speed):
    databroker.values[constants.SIGNAL_SPEED] = speed

    await pubsub.emit(constants.TOPIC_REQUEST, {"requestId": 1, "position": 40})

    assert databroker.writes == []
    (response,) = pubsub.messages(RESPONSE)
    assert response["result"]["status"] == 1
    assert str(speed) in response["result"]["message"]


@pytest.mark.asyncio
async def test_integral_float_speed_is_rendered_without_fraction(
    adjuster, databroker, pubsub
):
    databroker.values[constants.SIGNAL_SPEED] = 15.0

    await pubsub.emit(constants.TOPIC_REQUEST, {"requestId": 2, "position": 1})

    (response,) = pubsub.messages(RESPONSE)
    assert response["result"]["message"] == (
        "Not allowed to move seat because vehicle speed is 15 and not 0"
    )


@pytest.mark.asyncio
async def test_float_zero_speed_allows_actuation(adjuster, databroker, pubsub):
    databroker.values[constants.SIGNAL_SPEED] = 0.0

    await pubsub.emit(constants.TOPIC_REQUEST, {"requestId": 3, "position": 500})

    assert databroker.writes == [(SEAT, 500)]
    assert pubsub.messages(RESPONSE)[0]["result"]["status"] == 0


@pytest.mark.asyncio
async def test_missing_position_answers_fail_without_telemetry(
    adjuster, databroker, pubsub, caplog
):
    caplog.set_level(logging.ERROR)

    await pubsub.emit(constants.TOPIC_REQUEST, {"requestId": 11})

    assert databroker.reads == []
    assert databroker.writes == []
    assert pubsub.messages(RESPONSE) == [
        {"requestId": 11, "status": 1, "message": "No position specified"}
    ]
    assert "No position specified" in caplog.text


@pytest.mark.asyncio
async def test_missing_position_and_request_id_echoes_null(adjuster, pubsub):
    await pubsub.emit(constants.TOPIC_REQUEST, {})

    assert pubsub.messages(RESPONSE) == [
        {"requestId": None, "status": 1, "message": "No position specified"}
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("request_id", [0, -5, 2**31])
async def test_request_id_is_echoed(adjuster, pubsub, request_id):
    await pubsub.emit(
        constants.TOPIC_REQUEST, {"requestId": request_id, "position": 10}
    )

    assert pubsub.messages(RESPONSE)[0]["requestId"] == request_id


@pytest.mark.asyncio
async def test_absent_request_id_is_answered_with_null(adjuster, databroker, pubsub):
    await pubsub.emit(constants.TOPIC_REQUEST, {"position": 10})

    assert databroker.writes == [(SEAT, 10)]
    assert pubsub.messages(RESPONSE)[0]["requestId"] is None


@pytest.mark.asyncio
async def test_alias_topic_shares_the_request_handler(adjuster, databroker, pubsub):
    await pubsub.emit(constants.TOPIC_REQUEST_RIGHT, {"requestId": 4, "position": 6})

    assert databroker.writes == [(SEAT, 6)]
    assert pubsub.messages(RESPONSE)[0]["requestId"] == 4


@pytest.mark.asyncio
async def test_malformed_payload_is_reported_and_not_answered(
    adjuster, databroker, pubsub, caplog
):
    caplog.set_level(logging.ERROR)

    await pubsub.emit(constants.TOPIC_REQUEST, "{not json")

    assert pubsub.published == []
    assert databroker.reads == []
    assert "Topic: Error occurred during async invocation" in caplog.text


@pytest.mark.asyncio
async def test_non_integer_position_raises_decode_error(adjuster, databroker, pubsub):
    with pytest.raises(PayloadDecodeError):
        await adjuster.on_set_position_request_received(
            '{"requestId": 1, "position": "high"}'
        )

    assert databroker.reads == []
    assert pubsub.published == []


@pytest.mark.asyncio
async def test_speed_read_failure_drops_request(adjuster, databroker, pubsub, caplog):
    caplog.set_level(logging.ERROR)
    databroker.read_error = DataBrokerError("timed out")

    await pubsub.emit(constants.TOPIC_REQUEST, {"requestId": 5, "position": 2})

    assert databroker.writes == []
    assert pubsub.published == []
    assert "Topic: Error occurred during async invocation: timed out" in caplog.text


@pytest.mark.asyncio
async def test_seat_write_failure_drops_request(adjuster, databroker, pubsub):
    databroker.write_error = DataBrokerError("rejected")

    await pubsub.emit(constants.TOPIC_REQUEST, {"requestId": 5, "position": 2})

    assert pubsub.published == []


@pytest.mark.asyncio
async def test_concurrent_requests_are_answered_independently(
    adjuster, databroker, pubsub
):
    release = asyncio.Event()
    original_get = databroker.get

    async def slow_get(path):
        await release.wait()
        return await original_get(path)

    databroker.get = slow_get

    first = asyncio.create_task(
        pubsub.emit(constants.TOPIC_REQUEST, {"requestId": 21, "position": 1})
    )
    second = asyncio.create_task(
        pubsub.emit(constants.TOPIC_REQUEST_RIGHT, {"requestId": 22, "position": 2})
    )
    await asyncio.sleep(0)
    assert pubsub.published == []

    release.set()
    await asyncio.gather(first, second)

    responses = {item["requestId"]: item for item in pubsub.messages(RESPONSE)}
    assert responses[21]["result"]["message"] == "Set Seat position to: 1"
    assert responses[22]["result"]["message"] == "Set Seat position to: 2"
    assert sorted(databroker.writes) == [(SEAT, 1), (SEAT, 2)]


@pytest.mark.asyncio
async def test_seat_position_update_is_mirrored(adjuster, databroker, pubsub):
    await databroker.subscriptions[SEAT].deliver(DataPointReply(values={SEAT: 42}))

    assert pubsub.messages(CURRENT) == [{"position": 42}]


@pytest.mark.asyncio
async def test_seat_position_without_value_is_mirrored_as_failure(
    adjuster, databroker, pubsub, caplog
):
    caplog.set_level(logging.WARNING)

    await databroker.subscriptions[SEAT].deliver(DataPointReply())

    (payload,) = pubsub.messages(CURRENT)
    assert payload["status"] == 1
    assert payload["message"]
    assert "Unable to get Current Seat Position" in caplog.text


@pytest.mark.asyncio
async def test_seat_position_error_text_is_broadcast(adjuster, pubsub):
    await adjuster.on_seat_position_changed(
        DataPointReply(errors={SEAT: "sensor offline"})
    )

    (payload,) = pubsub.messages(CURRENT)
    assert payload["status"] == 1
    assert "sensor offline" in payload["message"]


def test_datapoint_errors_are_tagged(adjuster, databroker, caplog):
    caplog.set_level(logging.ERROR)

    databroker.subscriptions[SEAT].fail(DataBrokerError("stream closed"))

    assert (
        "Datapoint: Error occurred during async invocation: stream closed"
        in caplog.text
    )


@pytest.mark.asyncio
async def test_custom_topics_and_signals_are_honoured(databroker, pubsub):
    config = SeatAdjusterConfig(
        request_topics=["seats/passenger/request"],
        response_topic="seats/passenger/response",
        current_position_topic="seats/passenger/current",
        seat_position_signal="Vehicle.Cabin.Seat.Row1.PassengerSide.Position",
    )
    adjuster = SeatAdjuster(databroker, pubsub, config)
    adjuster.on_start()

    await pubsub.emit("seats/passenger/request", {"requestId": 9, "position": 7})

    assert databroker.writes == [
        ("Vehicle.Cabin.Seat.Row1.PassengerSide.Position", 7)
    ]
    assert pubsub.messages("seats/passenger/response")[0]["requestId"] == 9
