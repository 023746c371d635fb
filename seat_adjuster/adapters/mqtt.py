"""MQTT adapter encapsulating paho-mqtt client usage."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

import paho.mqtt.client as mqtt

from ..config import MQTTConfig
from ..core.models import PayloadDecodeError
from ..core.subscription import Subscription, SubscriptionState

LOGGER = logging.getLogger(__name__)


class MQTTConnectionError(RuntimeError):
    """Raised when the MQTT client fails to talk to the broker."""


def _reason_value(reason_code: Any) -> int:
    # paho hands out ReasonCode objects for MQTT v5 and plain ints elsewhere
    return int(getattr(reason_code, "value", reason_code))


class MQTTClient:
    """Async-friendly wrapper over the threaded paho-mqtt client.

    Inbound messages are matched against the registered topic subscriptions
    and each delivery is scheduled as its own task on the asyncio loop.
    """

    def __init__(self, config: MQTTConfig) -> None:
        self.config = config

        self._client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connected_event: Optional[asyncio.Event] = None
        self._disconnect_event: Optional[asyncio.Event] = None
        self._last_connect_rc: Optional[int] = None
        self._connected: bool = False
        self._has_connected: bool = False
        self._subscriptions: Dict[str, Subscription[str]] = {}
        self._pending_subacks: Dict[int, str] = {}
        self._disconnect_handlers: List[Callable[[int], None]] = []
        self._connect_handlers: List[Callable[[int], None]] = []

    async def connect(self, timeout: float = 30.0) -> None:
        """Connect to the MQTT broker and wait for acknowledgement."""

        self._loop = asyncio.get_running_loop()
        self._connected_event = asyncio.Event()
        self._disconnect_event = asyncio.Event()
        self._last_connect_rc = None

        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2, client_id=self.config.client_id
        )
        client.enable_logger(LOGGER)

        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password)

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.on_subscribe = self._on_subscribe

        self._client = client

        LOGGER.info(
            "Connecting to MQTT broker %s:%s",
            self.config.broker_host,
            self.config.broker_port,
        )

        client.connect_async(
            self.config.broker_host, self.config.broker_port, self.config.keepalive
        )
        client.loop_start()

        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout=timeout)
            if self._last_connect_rc != 0:
                raise MQTTConnectionError(
                    f"MQTT broker rejected connection (rc={self._last_connect_rc})"
                )
        except asyncio.TimeoutError as exc:
            client.loop_stop()
            self._client = None
            raise MQTTConnectionError("Timed out connecting to MQTT broker") from exc
        except MQTTConnectionError:
            client.loop_stop()
            self._client = None
            raise

    async def disconnect(self, timeout: float = 5.0) -> None:
        """Gracefully disconnect from the broker and close all subscriptions."""

        for subscription in self._subscriptions.values():
            subscription.close()

        if not self._client:
            return

        assert self._disconnect_event is not None

        self._client.disconnect()

        try:
            await asyncio.wait_for(self._disconnect_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Timed out waiting for MQTT disconnect acknowledgement")
        finally:
            self._client.loop_stop()
            self._client = None
        self._connected = False

    def publish(
        self,
        topic: str,
        payload: bytes,
        qos: Optional[int] = None,
        retain: bool = False,
    ) -> None:
        if not self._client:
            raise RuntimeError("MQTT client not connected")

        if qos is None:
            qos = self.config.qos
        info = self._client.publish(topic, payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise MQTTConnectionError(f"Publish to {topic} failed with rc={info.rc}")

    def subscribe_topic(self, topic: str) -> Subscription[str]:
        """Subscribe to ``topic`` and return the handle routing its messages.

        The subscription turns active once the broker acknowledges it and is
        re-registered automatically after a reconnect.
        """

        if not self._client:
            raise RuntimeError("MQTT client not connected")

        subscription = self._subscriptions.get(topic)
        if subscription is None:
            subscription = Subscription(topic)
            self._subscriptions[topic] = subscription

        self._send_subscribe(topic)
        return subscription

    def register_disconnect_handler(self, handler: Callable[[int], None]) -> None:
        self._disconnect_handlers.append(handler)

    def register_connect_handler(self, handler: Callable[[int], None]) -> None:
        self._connect_handlers.append(handler)

    def is_connected(self) -> bool:
        return self._connected

    @property
    def subscriptions(self) -> List[Subscription[str]]:
        return list(self._subscriptions.values())

    def _send_subscribe(self, topic: str) -> None:
        assert self._client is not None
        result, mid = self._client.subscribe(topic, qos=self.config.qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise MQTTConnectionError(f"Subscribe to {topic} failed with rc={result}")
        self._pending_subacks[mid] = topic
        LOGGER.info("Subscribing to topic %s", topic)

    def _resubscribe_all(self) -> None:
        if not self._client:
            return
        for topic, subscription in self._subscriptions.items():
            if subscription.state is SubscriptionState.CLOSED:
                continue
            try:
                self._send_subscribe(topic)
            except MQTTConnectionError as exc:
                subscription.fail(exc)

    def _complete_subscribe(self, mid: int, reason_codes: List[Any]) -> None:
        topic = self._pending_subacks.pop(mid, None)
        if topic is None:
            return
        subscription = self._subscriptions.get(topic)
        if subscription is None or subscription.state is SubscriptionState.CLOSED:
            return

        failures = [code for code in reason_codes if _reason_value(code) >= 0x80]
        if failures:
            subscription.fail(
                MQTTConnectionError(
                    f"Broker refused subscription to {topic} (rc={failures[0]})"
                )
            )
            return
        subscription.activate()

    def _dispatch(self, topic: str, payload: bytes) -> None:
        loop = self._loop
        if loop is None:
            return

        # subscribe_topic may add entries from the loop thread meanwhile
        for pattern, subscription in list(self._subscriptions.items()):
            if not mqtt.topic_matches_sub(pattern, topic):
                continue

            try:
                text = payload.decode("utf-8")
            except UnicodeDecodeError as exc:
                error = PayloadDecodeError(f"Payload on {topic} is not UTF-8: {exc}")
                loop.call_soon_threadsafe(subscription.fail, error)
                continue

            asyncio.run_coroutine_threadsafe(subscription.deliver(text), loop)

    def _set_event(self, event: Optional[asyncio.Event]) -> None:
        if event is None:
            return
        if self._loop is None:
            event.set()
        else:
            self._loop.call_soon_threadsafe(event.set)

    # ------------------------------------------------------------------
    # Internal callbacks bridging the threaded paho callbacks into asyncio
    # ------------------------------------------------------------------
    def _on_connect(
        self, client: mqtt.Client, userdata, flags, reason_code, properties=None
    ) -> None:
        rc = _reason_value(reason_code)
        self._last_connect_rc = rc
        if rc == 0:
            LOGGER.info("Connected to MQTT broker")
            self._connected = True
            reconnected = self._has_connected
            self._has_connected = True
            self._set_event(self._connected_event)
            if self._loop:
                if reconnected:
                    self._loop.call_soon_threadsafe(self._resubscribe_all)
                for handler in self._connect_handlers:
                    self._loop.call_soon_threadsafe(handler, rc)
        else:
            LOGGER.error("MQTT connection failed with rc=%s", rc)
            self._connected = False
            self._set_event(self._connected_event)

    def _on_disconnect(
        self, client: mqtt.Client, userdata, flags, reason_code, properties=None
    ) -> None:
        rc = _reason_value(reason_code)
        LOGGER.info("Disconnected from MQTT broker (rc=%s)", rc)
        self._set_event(self._disconnect_event)
        self._connected = False
        if self._loop:
            for handler in self._disconnect_handlers:
                self._loop.call_soon_threadsafe(handler, rc)

    def _on_subscribe(
        self, client: mqtt.Client, userdata, mid: int, reason_codes, properties=None
    ) -> None:
        if self._loop:
            self._loop.call_soon_threadsafe(
                self._complete_subscribe, mid, list(reason_codes)
            )

    def _on_message(
        self, client: mqtt.Client, userdata, message: mqtt.MQTTMessage
    ) -> None:
        try:
            self._dispatch(message.topic, message.payload)
        except Exception:  # pragma: no cover - defensive logging
            LOGGER.exception("MQTT message dispatch raised an exception")
