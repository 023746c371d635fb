"""Main application entry-point for seat-adjuster."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional

from .adapters import DataBrokerClient, DataBrokerError, MQTTClient, MQTTConnectionError
from .adjuster import SeatAdjuster
from .config import AppConfig, load_config
from .health import HealthReporter, HealthServer
from .logging import configure_logging

LOGGER = logging.getLogger(__name__)


class AppState(str, Enum):
    COLD_START = "cold_start"
    AWAITING_DATABROKER = "awaiting_databroker"
    AWAITING_MQTT = "awaiting_mqtt"
    ACTIVE = "active"
    DEGRADED = "degraded"
    STOPPING = "stopping"


class SeatAdjusterApp:
    """Connects the data broker and MQTT clients and runs the seat adjuster.

    The clients can be injected for testing; by default they are created
    from the configuration.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        *,
        databroker: Optional[DataBrokerClient] = None,
        mqtt_client: Optional[MQTTClient] = None,
    ) -> None:
        self._config = config or load_config()
        self._databroker = databroker or DataBrokerClient(self._config.databroker)
        self._mqtt_client = mqtt_client or MQTTClient(self._config.mqtt)
        self._adjuster: Optional[SeatAdjuster] = None
        self._health = HealthReporter()
        self._health_server: Optional[HealthServer] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._state = AppState.COLD_START

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def adjuster(self) -> Optional[SeatAdjuster]:
        return self._adjuster

    @property
    def health(self) -> HealthReporter:
        return self._health

    @classmethod
    def start(cls, config: Optional[AppConfig] = None) -> None:
        instance = cls(config=config)
        configure_logging(
            instance._config.logging.level,
            log_path=instance._config.logging.path,
            log_network=instance._config.logging.log_network,
        )
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("seat-adjuster received shutdown signal")

    async def run(self) -> None:
        """Start the services, then idle until :meth:`request_shutdown`."""

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()

        LOGGER.info("seat-adjuster starting with config: %s", self._config.path)
        try:
            started = await self._start_services()
            if not started:
                LOGGER.error("Service startup failed; stopping")
                return
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            LOGGER.info("seat-adjuster received shutdown signal")
            raise
        finally:
            await self._stop_services()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def _transition_state(self, state: AppState) -> None:
        if state == self._state:
            return
        LOGGER.info("App state transition %s -> %s", self._state.value, state.value)
        self._state = state
        await self._health.set_app_state(
            state.value, healthy=state == AppState.ACTIVE
        )

    async def _start_services(self) -> bool:
        await self._health.update("databroker", False, "initialising")
        await self._health.update("mqtt", False, "initialising")
        await self._start_health_server()

        await self._transition_state(AppState.AWAITING_DATABROKER)
        try:
            await self._databroker.connect()
        except DataBrokerError as exc:
            LOGGER.error("Data broker connection failed: %s", exc)
            await self._health.update("databroker", False, str(exc))
            await self._transition_state(AppState.DEGRADED)
            return False
        await self._health.update("databroker", True, None)

        await self._transition_state(AppState.AWAITING_MQTT)
        self._mqtt_client.register_disconnect_handler(self._on_mqtt_disconnect)
        self._mqtt_client.register_connect_handler(self._on_mqtt_connect)
        try:
            await self._mqtt_client.connect()
        except MQTTConnectionError as exc:
            LOGGER.error("MQTT connection failed: %s", exc)
            await self._health.update("mqtt", False, str(exc))
            await self._transition_state(AppState.DEGRADED)
            return False
        await self._health.update("mqtt", True, None)

        adjuster = SeatAdjuster(
            self._databroker, self._mqtt_client, self._config.seat_adjuster
        )
        adjuster.on_start()
        self._adjuster = adjuster
        self._health.track_subscriptions(adjuster.subscriptions)

        await self._transition_state(AppState.ACTIVE)
        return True

    async def _start_health_server(self) -> None:
        health = self._config.health
        if not health.enabled or health.port <= 0:
            return

        server = HealthServer(self._health, health.host, health.port)
        try:
            await server.start()
        except OSError as exc:
            LOGGER.error("Failed to start health endpoint: %s", exc)
        else:
            self._health_server = server

    async def _stop_services(self) -> None:
        await self._transition_state(AppState.STOPPING)

        await self._mqtt_client.disconnect()
        await self._health.update("mqtt", False, "shutdown")

        await self._databroker.stop()
        await self._health.update("databroker", False, "shutdown")

        if self._health_server is not None:
            await self._health_server.stop()
            self._health_server = None

    # Called on the event loop by the MQTT client
    def _on_mqtt_disconnect(self, rc: int) -> None:
        if self._state == AppState.STOPPING:
            return
        self._schedule_health_update("mqtt", False, f"disconnected (rc={rc})")

    def _on_mqtt_connect(self, rc: int) -> None:
        self._schedule_health_update("mqtt", True, None)

    def _schedule_health_update(
        self, name: str, healthy: bool, detail: Optional[str]
    ) -> None:
        if self._loop is None:
            return
        self._loop.create_task(self._health.update(name, healthy, detail))
