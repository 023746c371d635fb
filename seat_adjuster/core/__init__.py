"""Core primitives for seat-adjuster."""

from .models import (
    DataPointError,
    DataPointReply,
    PayloadDecodeError,
    PositionRequest,
    PositionResponse,
    Status,
)
from .protocols import PubSubClient, VehicleDataBroker
from .subscription import Subscription, SubscriptionState

__all__ = [
    "DataPointError",
    "DataPointReply",
    "PayloadDecodeError",
    "PositionRequest",
    "PositionResponse",
    "PubSubClient",
    "Status",
    "Subscription",
    "SubscriptionState",
    "VehicleDataBroker",
]
