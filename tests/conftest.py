import json
from typing import Any, Dict, List, Optional, Tuple

import pytest

from seat_adjuster import constants
from seat_adjuster.core import DataPointReply, Subscription


class FakeDataBroker:
    """In-memory stand-in for the vehicle data broker."""

    def __init__(self, speed: Any = 0) -> None:
        self.values: Dict[str, Any] = {constants.SIGNAL_SPEED: speed}
        self.reads: List[str] = []
        self.writes: List[Tuple[str, Any]] = []
        self.subscriptions: Dict[str, Subscription[DataPointReply]] = {}
        self.read_error: Optional[Exception] = None
        self.write_error: Optional[Exception] = None

    async def get(self, path: str) -> Any:
        self.reads.append(path)
        if self.read_error is not None:
            raise self.read_error
        return self.values[path]

    async def set(self, path: str, value: Any) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.writes.append((path, value))
        self.values[path] = value

    def subscribe(self, path: str) -> Subscription[DataPointReply]:
        subscription: Subscription[DataPointReply] = Subscription(path)
        subscription.activate()
        self.subscriptions[path] = subscription
        return subscription


class FakePubSub:
    def __init__(self) -> None:
        self.published: List[Tuple[str, bytes]] = []
        self.subscriptions: Dict[str, Subscription[str]] = {}

    def subscribe_topic(self, topic: str) -> Subscription[str]:
        subscription: Subscription[str] = Subscription(topic)
        subscription.activate()
        self.subscriptions[topic] = subscription
        return subscription

    def publish(
        self,
        topic: str,
        payload: bytes,
        qos: Optional[int] = None,
        retain: bool = False,
    ) -> None:
        self.published.append((topic, payload))

    def messages(self, topic: str) -> List[Dict[str, Any]]:
        return [json.loads(payload) for name, payload in self.published if name == topic]

    async def emit(self, topic: str, payload: Any) -> None:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        await self.subscriptions[topic].deliver(data)


@pytest.fixture
def databroker() -> FakeDataBroker:
    return FakeDataBroker()


@pytest.fixture
def pubsub() -> FakePubSub:
    return FakePubSub()
