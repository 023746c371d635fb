"""Health reporting for the seat adjuster service."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from aiohttp import web

from .core.subscription import Subscription, SubscriptionState

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ComponentStatus:
    name: str
    healthy: bool
    detail: Optional[str] = None
    updated_at: datetime = field(default_factory=_utcnow)

    def as_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "healthy": self.healthy,
            "detail": self.detail,
            "updatedAt": self.updated_at.isoformat(timespec="seconds"),
        }


class HealthReporter:
    """Collects connection health, the app state and subscription states."""

    def __init__(self) -> None:
        self._components: Dict[str, ComponentStatus] = {}
        self._app_state: Optional[ComponentStatus] = None
        self._subscriptions: List[Subscription[Any]] = []
        self._lock = asyncio.Lock()

    async def update(
        self, name: str, healthy: bool, detail: Optional[str] = None
    ) -> None:
        async with self._lock:
            self._components[name] = ComponentStatus(name, healthy, detail)

    async def set_app_state(self, state: str, *, healthy: bool) -> None:
        async with self._lock:
            self._app_state = ComponentStatus("app", healthy, state)

    def track_subscriptions(self, subscriptions: Iterable[Subscription[Any]]) -> None:
        self._subscriptions.extend(subscriptions)

    async def snapshot(self) -> Dict[str, object]:
        async with self._lock:
            components = [status.as_dict() for status in self._components.values()]
            app_state = self._app_state

        subscriptions = [
            {"name": item.name, "state": item.state.value}
            for item in self._subscriptions
        ]

        healthy = all(item["healthy"] for item in components)
        if app_state is not None and not app_state.healthy:
            healthy = False
        if any(
            item.state is not SubscriptionState.ACTIVE for item in self._subscriptions
        ):
            healthy = False

        payload: Dict[str, object] = {
            "status": "ok" if healthy else "degraded",
            "components": components,
            "subscriptions": subscriptions,
        }
        if app_state is not None:
            payload["appState"] = {
                "state": app_state.detail,
                "healthy": app_state.healthy,
                "updatedAt": app_state.updated_at.isoformat(timespec="seconds"),
            }
        return payload


class HealthServer:
    """Minimal HTTP server exposing `/healthz` for status checks."""

    def __init__(self, reporter: HealthReporter, host: str, port: int) -> None:
        self._reporter = reporter
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    async def start(self) -> None:
        app = web.Application()
        app.router.add_get("/healthz", self._handle_health)

        self._runner = web.AppRunner(app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        LOGGER.info(
            "Health endpoint listening on http://%s:%s/healthz", self._host, self._port
        )

    async def stop(self) -> None:
        with contextlib.suppress(Exception):
            if self._site is not None:
                await self._site.stop()
        if self._runner is not None:
            await self._runner.cleanup()
        self._site = None
        self._runner = None

    async def _handle_health(self, request: web.Request) -> web.Response:
        snapshot = await self._reporter.snapshot()
        status = 200 if snapshot["status"] == "ok" else 503
        return web.json_response(snapshot, status=status)
