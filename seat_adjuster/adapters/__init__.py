"""Adapter modules for external integrations."""

from .databroker import DataBrokerClient, DataBrokerError
from .mqtt import MQTTClient, MQTTConnectionError

__all__ = [
    "DataBrokerClient",
    "DataBrokerError",
    "MQTTClient",
    "MQTTConnectionError",
]
