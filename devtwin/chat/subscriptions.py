"""Push-channel subscription lifecycle.

Every subscription is an asyncio task pumping events from an async
iterator into callbacks. The manager keeps a registry of open
subscriptions and guarantees each one is closed exactly once: when its
owner closes it, when its timer expires, when the stream ends or fails,
or when everything is closed on reset or disconnect.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from devtwin.models.schemas import FragmentEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionRef:
    """Opaque reference to an open subscription."""

    scope: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class _Subscription:
    ref: SubscriptionRef
    task: asyncio.Task | None = None
    timer: asyncio.TimerHandle | None = None


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class SubscriptionManager:
    """Opens, tracks and releases push-channel subscriptions."""

    def __init__(self) -> None:
        self._active: dict[str, _Subscription] = {}
        self.opened_count = 0
        self.closed_count = 0

    @property
    def active(self) -> list[SubscriptionRef]:
        """Refs of subscriptions that are still open."""
        return [entry.ref for entry in self._active.values()]

    def is_open(self, ref: SubscriptionRef) -> bool:
        return ref.id in self._active

    def open(
        self,
        scope: str,
        events: AsyncIterator[FragmentEvent],
        on_event: Callable[[FragmentEvent], None],
        on_end: Callable[[], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> SubscriptionRef:
        """Start pumping events into on_event and return immediately.

        on_end runs when the stream is exhausted, on_error when it raises.
        Neither runs once the subscription has been closed.
        """
        ref = SubscriptionRef(scope=scope)
        entry = _Subscription(ref=ref)
        self._active[ref.id] = entry
        self.opened_count += 1
        entry.task = asyncio.create_task(
            self._pump(ref, events, on_event, on_end, on_error),
            name=f"subscription-{scope}",
        )
        logger.info(f"Opened subscription {ref.id} on {scope}")
        return ref

    def close(self, ref: SubscriptionRef) -> bool:
        """Close a subscription. Returns False if it was already closed."""
        entry = self._active.pop(ref.id, None)
        if entry is None:
            return False
        if entry.timer is not None:
            entry.timer.cancel()
        # A callback running inside the pump may close its own subscription;
        # the pump notices and exits on its own.
        if entry.task is not None and not entry.task.done() and entry.task is not _current_task():
            entry.task.cancel()
        self.closed_count += 1
        logger.info(f"Closed subscription {ref.id} on {ref.scope}")
        return True

    def close_after(
        self,
        ref: SubscriptionRef,
        seconds: float,
        on_expire: Callable[[], None] | None = None,
    ) -> None:
        """Close the subscription after a fixed lifetime unless closed earlier."""
        entry = self._active.get(ref.id)
        if entry is None:
            return
        if entry.timer is not None:
            entry.timer.cancel()
        loop = asyncio.get_running_loop()
        entry.timer = loop.call_later(seconds, self._expire, ref, on_expire)

    def close_all(self) -> int:
        """Close every open subscription. Returns how many were closed."""
        refs = self.active
        for ref in refs:
            self.close(ref)
        return len(refs)

    def _expire(self, ref: SubscriptionRef, on_expire: Callable[[], None] | None) -> None:
        if ref.id not in self._active:
            return
        logger.warning(f"Subscription {ref.id} on {ref.scope} timed out")
        try:
            if on_expire is not None:
                on_expire()
        except Exception:
            logger.exception(f"Expiry callback for subscription {ref.id} failed")
        finally:
            self.close(ref)

    async def _pump(
        self,
        ref: SubscriptionRef,
        events: AsyncIterator[FragmentEvent],
        on_event: Callable[[FragmentEvent], None],
        on_end: Callable[[], None] | None,
        on_error: Callable[[Exception], None] | None,
    ) -> None:
        try:
            async for event in events:
                if not self.is_open(ref):
                    break
                on_event(event)
                if not self.is_open(ref):
                    break
            else:
                if self.is_open(ref) and on_end is not None:
                    on_end()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self.is_open(ref):
                logger.warning(f"Subscription {ref.id} on {ref.scope} failed: {e}")
                if on_error is not None:
                    on_error(e)
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception as e:
                    logger.warning(f"Error releasing channel for {ref.scope}: {e}")
            self.close(ref)
