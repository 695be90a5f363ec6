from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional

ErrorHandler = Callable[[BaseException], Any]
FilterFn = Callable[[BaseException], bool]
Schedule = Callable[[Callable[[], Any]], Any]


@dataclass(frozen=True)
class SubscriptionHandle:
    """Opaque handle returned by subscribe(), used for unsubscribe()."""
    subscription_id: str  # uuid string


@dataclass(frozen=True)
class Subscription:
    subscription_id: str
    priority: int
    handler: ErrorHandler
    filter_fn: Optional[FilterFn] = None


class ErrorChannel:
    """Delivers errors caught at the dispatch boundary, after the dispatch returns.

    Errors reported while a dispatch is in progress are queued and delivered
    once the outermost dispatch has returned, or through ``schedule`` when one
    is given (for example ``asyncio.get_running_loop().call_soon``). Errors
    with no subscriber are logged, never dropped.
    """

    def __init__(self, logger: Any = None, schedule: Optional[Schedule] = None) -> None:
        self._subs: List[Subscription] = []
        self._pending: List[BaseException] = []
        self._logger = logger
        self._schedule = schedule
        self._depth = 0

    @property
    def pending(self) -> int:
        return len(self._pending)

    def subscribe(
        self,
        handler: ErrorHandler,
        priority: int = 3,
        filter_fn: Optional[FilterFn] = None,
    ) -> SubscriptionHandle:
        """
        Subscribe a handler to dispatch errors.

        Returns a SubscriptionHandle that can be passed to unsubscribe().
        """
        if not (1 <= priority <= 5):
            raise ValueError("priority must be an integer between 1 and 5")

        subscription_id = str(uuid.uuid4())
        self._subs.append(
            Subscription(
                subscription_id=subscription_id,
                priority=priority,
                handler=handler,
                filter_fn=filter_fn,
            )
        )
        return SubscriptionHandle(subscription_id=subscription_id)

    def unsubscribe(self, handle: SubscriptionHandle) -> bool:
        """
        Remove a subscription by handle.

        Returns True if something was removed, False otherwise.
        Safe to call multiple times (idempotent).
        """
        before = len(self._subs)
        self._subs[:] = [s for s in self._subs if s.subscription_id != handle.subscription_id]
        return len(self._subs) != before

    @contextmanager
    def hold(self) -> Iterator[None]:
        """Queue reports made inside the block; flush when the outermost block exits."""
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1
            if self._depth == 0 and self._schedule is None:
                self.flush()

    def report(self, error: BaseException) -> None:
        self._pending.append(error)
        if self._schedule is not None:
            self._schedule(self.flush)
        elif self._depth == 0:
            self.flush()

    def flush(self) -> int:
        """Deliver every queued error. Returns how many were delivered."""
        delivered = 0
        while self._pending:
            error = self._pending.pop(0)
            self._deliver(error)
            delivered += 1
        return delivered

    def _log(self) -> logging.Logger:
        return self._logger or logging.getLogger("finity")

    def _deliver(self, error: BaseException) -> None:
        eligible = [s for s in self._subs if s.filter_fn is None or s.filter_fn(error)]
        if not eligible:
            self._log().error(
                "Unhandled error in dispatch: %s",
                error,
                exc_info=(type(error), error, error.__traceback__),
            )
            return

        for s in sorted(eligible, key=lambda s: s.priority):
            try:
                s.handler(error)
            except Exception as e:
                self._log().error("Error handler failed while handling %r: %s", error, e)
