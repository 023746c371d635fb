"""Subscription handle shared by the MQTT and data broker adapters."""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

ItemHandler = Callable[[T], Awaitable[None] | None]
ErrorHandler = Callable[[BaseException], None]


class SubscriptionState(str, Enum):
    UNSUBSCRIBED = "unsubscribed"
    ACTIVE = "active"
    CLOSED = "closed"


class Subscription(Generic[T]):
    """Routes items of one topic or signal to an item handler.

    Handlers are attached fluently::

        broker.subscribe(path).on_item(handle_item).on_error(handle_error)

    Any exception raised by the item handler is passed to the error handler,
    the same way transport level failures reported through :meth:`fail` are.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._state = SubscriptionState.UNSUBSCRIBED
        self._item_handler: Optional[ItemHandler[T]] = None
        self._error_handler: Optional[ErrorHandler] = None

    def __repr__(self) -> str:
        return f"Subscription(name={self.name!r}, state={self._state.value})"

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state is SubscriptionState.ACTIVE

    def on_item(self, handler: ItemHandler[T]) -> "Subscription[T]":
        self._item_handler = handler
        return self

    def on_error(self, handler: ErrorHandler) -> "Subscription[T]":
        self._error_handler = handler
        return self

    def activate(self) -> None:
        if self._state is SubscriptionState.CLOSED:
            raise RuntimeError(f"Subscription {self.name} is closed")
        if self._state is not SubscriptionState.ACTIVE:
            LOGGER.debug("Subscription %s active", self.name)
        self._state = SubscriptionState.ACTIVE

    def close(self) -> None:
        self._state = SubscriptionState.CLOSED

    async def deliver(self, item: T) -> None:
        """Run the item handler for ``item`` to completion."""

        if self._state is SubscriptionState.CLOSED:
            return

        handler = self._item_handler
        if handler is None:
            LOGGER.debug("No item handler on %s; dropping item", self.name)
            return

        try:
            result = handler(item)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.fail(exc)

    def fail(self, error: BaseException) -> None:
        handler = self._error_handler
        if handler is None:
            LOGGER.error("Unhandled error on subscription %s: %s", self.name, error)
            return
        handler(error)
