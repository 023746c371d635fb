"""Protocol definitions for the vehicle data broker and the message bus."""

from __future__ import annotations

from typing import Any, Optional, Protocol

from .models import DataPointReply
from .subscription import Subscription


class VehicleDataBroker(Protocol):
    """Minimal contract for access to vehicle signals."""

    async def get(self, path: str) -> Any:
        """Read the current value of a signal.

        Raises:
            DataBrokerError: If the broker rejects the read or does not answer
                within the request timeout.
        """
        ...

    async def set(self, path: str, value: Any) -> None:
        """Write a signal and wait for the broker to acknowledge it."""
        ...

    def subscribe(self, path: str) -> Subscription[DataPointReply]:
        """Stream updates of a signal."""
        ...


class PubSubClient(Protocol):
    def subscribe_topic(self, topic: str) -> Subscription[str]: ...

    def publish(
        self,
        topic: str,
        payload: bytes,
        qos: Optional[int] = None,
        retain: bool = False,
    ) -> None: ...
