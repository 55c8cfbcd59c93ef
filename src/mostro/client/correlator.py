"""
Request/response correlation.

Every outbound call gets a fresh ``request_id`` (1, 2, 3, ...) and a pending
slot. The first inbound message carrying that id resolves the slot, which is
removed at once so duplicates and late replies fall through. A slot nobody
answers fails with ``CorrelationTimeout`` when its deadline passes.

``wait_for_action`` matches on (action, order id) instead, for daemon
messages that do not echo a request id.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from mostro.core import config
from mostro.core.exceptions import CorrelationTimeout, TransportError
from mostro.core.messages import Action, MostroMessage

logger = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    request_id: int
    future: asyncio.Future
    timer: asyncio.TimerHandle
    timeout: float


@dataclass
class _ActionWaiter:
    action: Action
    order_id: Optional[str]
    future: asyncio.Future
    timer: asyncio.TimerHandle


class RequestCorrelator:
    def __init__(self, default_timeout: Optional[float] = None) -> None:
        self.default_timeout = config.REQUEST_TIMEOUT if default_timeout is None else default_timeout
        self._ids = itertools.count(1)
        self._pending: Dict[int, PendingRequest] = {}
        self._waiters: List[_ActionWaiter] = []

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def create_pending(self, timeout: Optional[float] = None) -> Tuple[int, asyncio.Future]:
        """
        Allocate the next request id and a slot for its response.

        Must be called from within a running event loop.

        Returns:
            ``(request_id, future)``; the future resolves with the matching
            ``MostroMessage`` or fails with ``CorrelationTimeout``
        """
        timeout = self.default_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        request_id = next(self._ids)
        future = loop.create_future()
        timer = loop.call_later(timeout, self._expire, request_id)
        self._pending[request_id] = PendingRequest(request_id, future, timer, timeout)
        return request_id, future

    def _expire(self, request_id: int) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return
        logger.debug(
            "Request %d timed out after %.3fs",
            request_id,
            pending.timeout,
            extra={"event": "correlator.timeout", "request_id": request_id},
        )
        if not pending.future.done():
            pending.future.set_exception(
                CorrelationTimeout(
                    f"No response to request {request_id} within {pending.timeout}s",
                    request_id=request_id,
                    timeout=pending.timeout,
                )
            )

    def discard(self, request_id: int) -> None:
        """Drop a slot whose request never left, cancelling its future."""
        pending = self._pending.pop(request_id, None)
        if pending is not None:
            pending.timer.cancel()
            pending.future.cancel()

    def dispatch(self, message: MostroMessage) -> bool:
        """
        Hand an inbound message to whoever is waiting for it.

        Returns:
            True if a pending request id consumed the message
        """
        self._dispatch_actions(message)
        if message.request_id is None:
            return False
        pending = self._pending.pop(message.request_id, None)
        if pending is None:
            return False
        pending.timer.cancel()
        if pending.future.done():
            return False
        pending.future.set_result(message)
        return True

    def _dispatch_actions(self, message: MostroMessage) -> None:
        remaining = []
        for waiter in self._waiters:
            if waiter.future.done():
                waiter.timer.cancel()
                continue
            if waiter.action == message.action and (waiter.order_id is None or waiter.order_id == message.id):
                waiter.timer.cancel()
                waiter.future.set_result(message)
            else:
                remaining.append(waiter)
        self._waiters = remaining

    async def wait_for_action(
        self,
        action: Action,
        order_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> MostroMessage:
        """
        Wait for the next inbound message with ``action`` about ``order_id``.

        Raises:
            CorrelationTimeout: If no such message arrives in time
        """
        timeout = self.default_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        def expire() -> None:
            if not future.done():
                future.set_exception(
                    CorrelationTimeout(
                        f"No {action.value} message for order {order_id} within {timeout}s",
                        timeout=timeout,
                        details={"action": action.value, "order_id": order_id},
                    )
                )

        waiter = _ActionWaiter(action, order_id, future, loop.call_later(timeout, expire))
        self._waiters.append(waiter)
        try:
            return await future
        finally:
            waiter.timer.cancel()
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    def cancel_all(self, reason: str = "client closed") -> None:
        """Fail every outstanding request and action waiter with ``TransportError``."""
        pending, self._pending = self._pending, {}
        waiters, self._waiters = self._waiters, []
        for slot in pending.values():
            slot.timer.cancel()
            if not slot.future.done():
                slot.future.set_exception(TransportError(reason, code="CLIENT_CLOSED"))
        for waiter in waiters:
            waiter.timer.cancel()
            if not waiter.future.done():
                waiter.future.set_exception(TransportError(reason, code="CLIENT_CLOSED"))
