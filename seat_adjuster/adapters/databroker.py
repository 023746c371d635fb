"""Vehicle data broker adapter speaking VISS v2 over a websocket."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import random
from typing import Any, Dict, Optional, Set

import aiohttp

from ..config import DataBrokerConfig
from ..core.models import DataPointReply
from ..core.subscription import Subscription, SubscriptionState

LOGGER = logging.getLogger(__name__)


class DataBrokerError(RuntimeError):
    """Raised when the data broker rejects a request or cannot be reached."""

    def __init__(self, message: str, *, number: Optional[int] = None) -> None:
        super().__init__(message)
        self.number = number


def coerce_value(value: Any) -> Any:
    """Convert the string encoded VISS values into Python numbers."""

    if not isinstance(value, str):
        return value
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value


def _error_from_reply(reply: Dict[str, Any]) -> Optional[DataBrokerError]:
    error = reply.get("error")
    if not error:
        return None
    if not isinstance(error, dict):
        return DataBrokerError(str(error))

    number = error.get("number")
    try:
        number = int(number) if number is not None else None
    except (TypeError, ValueError):
        number = None
    reason = error.get("reason") or "error"
    message = error.get("message") or ""
    text = f"{reason}: {message}" if message else str(reason)
    if number is not None:
        text = f"{text} ({number})"
    return DataBrokerError(text, number=number)


def _reply_from_data(data: Any) -> DataPointReply:
    reply = DataPointReply()
    entries = data if isinstance(data, list) else [data]
    for entry in entries:
        if not isinstance(entry, dict) or "path" not in entry:
            continue
        path = entry["path"]
        datapoint = entry.get("dp") or {}
        if isinstance(datapoint, list):
            datapoint = datapoint[-1] if datapoint else {}
        if not isinstance(datapoint, dict):
            reply.errors[path] = f"malformed data point {datapoint!r}"
            continue
        reply.values[path] = coerce_value(datapoint.get("value"))
    return reply


class DataBrokerClient:
    """Non-blocking client for a vehicle data broker.

    A single websocket carries every request. Replies are matched to the
    awaiting caller by ``requestId`` so concurrent handlers never wait on each
    other. Subscriptions survive reconnects: they are re-sent whenever the
    websocket comes back.
    """

    def __init__(
        self,
        config: DataBrokerConfig,
        *,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.config = config
        self.request_timeout = config.request_timeout_seconds
        self.reconnect_initial = config.reconnect_initial_seconds
        self.reconnect_max = config.reconnect_max_seconds

        self._session: Optional[aiohttp.ClientSession] = session
        self._owns_session = session is None
        self._listener_task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()
        self._connected_event = asyncio.Event()
        self._active_ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._request_id = 0
        self._pending: Dict[str, asyncio.Future[Dict[str, Any]]] = {}
        self._subscriptions: Dict[str, Subscription[DataPointReply]] = {}
        self._subscription_ids: Dict[str, str] = {}
        self._subscribe_requests: Dict[str, str] = {}
        self._delivery_tasks: Set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def connect(self, timeout: float = 30.0) -> None:
        """Start the websocket listener and wait for the first connection."""

        if self._listener_task is None:
            if self._owns_session and self._session is None:
                self._session = aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=None)
                )
            self._stop_event.clear()
            self._listener_task = asyncio.create_task(self._listen_loop())

        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            await self.stop()
            raise DataBrokerError(
                f"Timed out connecting to data broker at {self.config.url}"
            ) from exc

    async def stop(self) -> None:
        """Close subscriptions, stop listening and release the session."""

        self._stop_event.set()
        for subscription in self._subscriptions.values():
            subscription.close()

        if self._listener_task is not None:
            self._listener_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener_task
            self._listener_task = None

        for task in list(self._delivery_tasks):
            task.cancel()

        self._fail_pending(DataBrokerError("Data broker client stopped"))

        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def is_connected(self) -> bool:
        ws = self._active_ws
        return ws is not None and not ws.closed

    @property
    def subscriptions(self) -> list[Subscription[DataPointReply]]:
        return list(self._subscriptions.values())

    async def get(self, path: str) -> Any:
        """Read the current value of ``path``.

        Raises:
            DataBrokerError: If the broker reports an error, the reply holds
                no value or no reply arrives within the request timeout.
        """

        reply = await self._request({"action": "get", "path": path})
        value = _reply_from_data(reply.get("data")).values.get(path)
        if value is None:
            raise DataBrokerError(f"Data broker returned no value for {path}")
        return value

    async def set(self, path: str, value: Any) -> None:
        """Write ``value`` to ``path`` and wait for the acknowledgement."""

        await self._request({"action": "set", "path": path, "value": str(value)})
        LOGGER.debug("Set %s to %s", path, value)

    def subscribe(self, path: str) -> Subscription[DataPointReply]:
        """Subscribe to updates of ``path``.

        The returned handle becomes active once the broker confirms the
        subscription; a refusal is reported through its error handler.
        """

        subscription = self._subscriptions.get(path)
        if subscription is None:
            subscription = Subscription(path)
            self._subscriptions[path] = subscription

        ws = self._active_ws
        if ws is not None and not ws.closed:
            self._track(asyncio.create_task(self._send_subscribe(ws, path)))
        return subscription

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _next_request_id(self) -> str:
        self._request_id += 1
        return str(self._request_id)

    def _build_request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        request = dict(payload)
        request["requestId"] = self._next_request_id()
        if self.config.token:
            request["authorization"] = self.config.token
        return request

    async def _request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        ws = self._active_ws
        if ws is None or ws.closed:
            raise DataBrokerError("Data broker not connected")

        request = self._build_request(payload)
        request_id = request["requestId"]
        future: asyncio.Future[Dict[str, Any]] = (
            asyncio.get_running_loop().create_future()
        )
        self._pending[request_id] = future

        try:
            await ws.send_json(request)
            async with asyncio.timeout(self.request_timeout):
                reply = await future
        except asyncio.TimeoutError as exc:
            LOGGER.warning(
                "Data broker %s of %s timed out after %.1fs",
                payload["action"],
                payload.get("path"),
                self.request_timeout,
            )
            raise DataBrokerError(
                f"Data broker {payload['action']} of {payload.get('path')} timed out"
            ) from exc
        except (aiohttp.ClientError, ConnectionResetError) as exc:
            raise DataBrokerError(f"Data broker request failed: {exc}") from exc
        finally:
            self._pending.pop(request_id, None)

        error = _error_from_reply(reply)
        if error is not None:
            raise error
        return reply

    def _fail_pending(self, error: DataBrokerError) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(error)

    def _track(self, task: asyncio.Task[None]) -> None:
        self._delivery_tasks.add(task)
        task.add_done_callback(self._delivery_tasks.discard)

    async def _listen_loop(self) -> None:
        backoff = self.reconnect_initial

        while not self._stop_event.is_set():
            try:
                session = self._session
                assert session is not None
                async with session.ws_connect(self.config.url) as ws:
                    LOGGER.info("Connected to data broker at %s", self.config.url)
                    backoff = self.reconnect_initial

                    self._active_ws = ws
                    self._subscription_ids.clear()
                    self._subscribe_requests.clear()
                    self._connected_event.set()
                    try:
                        for path in list(self._subscriptions):
                            await self._send_subscribe(ws, path)
                        async for message in ws:
                            if self._stop_event.is_set():
                                break
                            if message.type == aiohttp.WSMsgType.TEXT:
                                try:
                                    self._dispatch(message.data)
                                except Exception:  # pragma: no cover - defensive logging
                                    LOGGER.exception(
                                        "Failed to handle data broker message"
                                    )
                            elif message.type == aiohttp.WSMsgType.ERROR:
                                raise ws.exception() or RuntimeError("Websocket error")
                    finally:
                        self._active_ws = None
                        self._connected_event.clear()
                        self._fail_pending(DataBrokerError("Data broker connection lost"))
                if not self._stop_event.is_set():
                    LOGGER.warning("Data broker closed the websocket")
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pragma: no cover - defensive net handling
                if self._stop_event.is_set():
                    break
                LOGGER.warning("Data broker websocket error: %s", exc)

            if self._stop_event.is_set():
                break
            # Full jitter keeps a fleet of apps from reconnecting in lockstep
            await asyncio.sleep(random.uniform(0, backoff))
            backoff = min(max(backoff * 2, 0.1), self.reconnect_max)

    async def _send_subscribe(
        self, ws: aiohttp.ClientWebSocketResponse, path: str
    ) -> None:
        request = self._build_request({"action": "subscribe", "path": path})
        self._subscribe_requests[request["requestId"]] = path
        try:
            await ws.send_json(request)
        except (aiohttp.ClientError, ConnectionResetError) as exc:
            self._subscribe_requests.pop(request["requestId"], None)
            subscription = self._subscriptions.get(path)
            if subscription is not None:
                subscription.fail(DataBrokerError(f"Subscribe to {path} failed: {exc}"))
            return
        LOGGER.info("Subscribing to data point %s", path)

    def _dispatch(self, raw_data: str) -> None:
        try:
            reply = json.loads(raw_data)
        except json.JSONDecodeError:
            LOGGER.debug("Discarding non-JSON data broker message")
            return
        if not isinstance(reply, dict):
            return

        action = reply.get("action")
        request_id = reply.get("requestId")

        if action == "subscription":
            self._handle_notification(reply)
            return

        if action == "subscribe" and request_id in self._subscribe_requests:
            self._handle_subscribe_reply(reply)
            return

        future = self._pending.get(str(request_id))
        if future is not None and not future.done():
            future.set_result(reply)

    def _handle_subscribe_reply(self, reply: Dict[str, Any]) -> None:
        path = self._subscribe_requests.pop(reply["requestId"])
        subscription = self._subscriptions.get(path)
        if subscription is None or subscription.state is SubscriptionState.CLOSED:
            return

        error = _error_from_reply(reply)
        if error is not None:
            LOGGER.error("Data broker refused subscription to %s: %s", path, error)
            subscription.fail(error)
            return

        subscription_id = reply.get("subscriptionId")
        if subscription_id is not None:
            self._subscription_ids[str(subscription_id)] = path
        subscription.activate()

    def _handle_notification(self, reply: Dict[str, Any]) -> None:
        path = self._subscription_ids.get(str(reply.get("subscriptionId")))
        if path is None:
            return
        subscription = self._subscriptions.get(path)
        if subscription is None:
            return

        error = _error_from_reply(reply)
        if error is not None:
            # Failed updates go to the item handler, not the error sink
            LOGGER.warning("Data broker update of %s failed: %s", path, error)
            update = DataPointReply(errors={path: str(error)})
        else:
            update = _reply_from_data(reply.get("data"))

        self._track(asyncio.create_task(subscription.deliver(update)))
