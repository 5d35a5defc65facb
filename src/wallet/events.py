"""Outbound notifications to the presentation layer.

The UI subscribes async callbacks; the core publishes success/failure/progress
events for submission, cancellation, fee estimation and refresh. A failing
subscriber is logged and never affects wallet state.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger


class EventKind(str, Enum):
    SUBMISSION = "submission"
    CANCELLATION = "cancellation"
    CONFIRMATION = "confirmation"
    FEE_ESTIMATE = "fee_estimate"
    BALANCES = "balances"
    HISTORY = "history"


class EventLevel(str, Enum):
    PROGRESS = "progress"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class WalletEvent:
    kind: EventKind
    level: EventLevel
    message: str
    tx_hash: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


Subscriber = Callable[[WalletEvent], Awaitable[None]]


class EventBus:
    """Fan-out of WalletEvents to subscribers, in subscription order."""

    def __init__(self, *, callback_timeout: float = 10.0) -> None:
        self._subscribers: list[Subscriber] = []
        self._callback_timeout = callback_timeout
        self._published = 0

    @property
    def published_count(self) -> int:
        return self._published

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    async def publish(self, event: WalletEvent) -> None:
        self._published += 1
        logger.debug(f"[EVENT] {event.kind.value}/{event.level.value}: {event.message}")
        for callback in list(self._subscribers):
            await self._safe_callback(callback, event)

    async def _safe_callback(self, callback: Subscriber, event: WalletEvent) -> None:
        try:
            await asyncio.wait_for(callback(event), timeout=self._callback_timeout)
        except asyncio.TimeoutError:
            logger.error(f"[EVENT] Subscriber timed out for {event.kind.value}")
        except Exception as e:
            logger.error(f"[EVENT] Subscriber error: {e}")
