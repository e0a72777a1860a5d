"""Time-bounded waits for follow-up events from an operator.

Bolt delivers follow-up events (channel messages, button clicks) on other
worker threads. Handlers hand every such event to :meth:`CollectorHub.offer`.
A command blocked in :meth:`CollectorHub.wait_for` receives the first event
that satisfies its predicate, or ``None`` once its window closes. A listing
that must see every click opens a :meth:`CollectorHub.subscribe` inbox
instead, which stays registered until the listing expires.
"""

from __future__ import annotations

import contextlib
import logging
import queue
import threading
from typing import Callable, Iterator

from insurance_tracker import blocks
from insurance_tracker.errors import CollectorTimeout
from insurance_tracker.models import ButtonClick, SlackMessage

logger = logging.getLogger(__name__)


class _Waiter:
    def __init__(self, predicate: Callable[[object], bool], persistent: bool = False) -> None:
        self.predicate = predicate
        self.persistent = persistent
        self.inbox: queue.Queue = queue.Queue()


class CollectorHub:
    """Routes incoming events to at most one registered waiter each."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._waiters: list[_Waiter] = []

    def _register(self, waiter: _Waiter) -> None:
        with self._lock:
            self._waiters.append(waiter)

    def _unregister(self, waiter: _Waiter) -> bool:
        """Remove ``waiter``; False if :meth:`offer` already took it."""
        with self._lock:
            if waiter in self._waiters:
                self._waiters.remove(waiter)
                return True
        return False

    def wait_for(self, predicate: Callable[[object], bool], timeout: float):
        """Block until an offered event matches ``predicate``.

        Returns the event, or ``None`` on timeout. The waiter is removed as
        soon as it matches, so it consumes exactly one event.
        """
        waiter = _Waiter(predicate)
        self._register(waiter)
        try:
            return waiter.inbox.get(timeout=timeout)
        except queue.Empty:
            if self._unregister(waiter):
                return None
            # Matched between the timeout and the unregister.
            return waiter.inbox.get_nowait()

    @contextlib.contextmanager
    def subscribe(self, predicate: Callable[[object], bool]) -> Iterator[queue.Queue]:
        """Queue every matching event until the block exits."""
        waiter = _Waiter(predicate, persistent=True)
        self._register(waiter)
        try:
            yield waiter.inbox
        finally:
            self._unregister(waiter)

    def offer(self, event) -> bool:
        """Hand ``event`` to the oldest matching waiter. False if none took it."""
        with self._lock:
            for waiter in self._waiters:
                try:
                    matched = waiter.predicate(event)
                except Exception:
                    logger.exception("Collector predicate failed")
                    continue
                if matched:
                    if not waiter.persistent:
                        self._waiters.remove(waiter)
                    waiter.inbox.put(event)
                    return True
        return False

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._waiters)


def wait_for_mention(hub: CollectorHub, *, channel_id: str, user_id: str, timeout: float) -> SlackMessage:
    """Wait for ``user_id`` to post a message in ``channel_id`` mentioning someone.

    Raises :class:`CollectorTimeout` when nothing qualifies in time.
    """

    def qualifies(event) -> bool:
        return (
            isinstance(event, SlackMessage)
            and event.channel_id == channel_id
            and event.sender_id == user_id
            and bool(event.mentions)
        )

    message = hub.wait_for(qualifies, timeout)
    if message is None:
        logger.info("Mention collector for %s in %s timed out", user_id, channel_id)
        raise CollectorTimeout(timeout)
    return message


def browse_pages(
    hub: CollectorHub,
    payloads: list[dict],
    *,
    user_id: str,
    session: str,
    timeout: float,
) -> int:
    """Serve page-turn clicks on a listing until ``timeout`` passes idle.

    The first page is assumed to be on screen already. Each qualifying click
    moves a zero-based cursor (wrapping both ways) and rewrites the message
    in place. Clicks that arrive while a page is being rewritten queue up
    behind it. Expiry is silent. Returns the number of clicks served.
    """

    def qualifies(event) -> bool:
        return (
            isinstance(event, ButtonClick)
            and event.session == session
            and event.user_id == user_id
            and event.action_id in (blocks.NEXT_ACTION, blocks.PREV_ACTION)
        )

    total = len(payloads)
    cursor = 0
    clicks = 0
    with hub.subscribe(qualifies) as inbox:
        while True:
            try:
                click = inbox.get(timeout=timeout)
            except queue.Empty:
                logger.debug("Listing %s expired after %d click(s)", session, clicks)
                return clicks
            step = -1 if click.action_id == blocks.PREV_ACTION else 1
            cursor = (cursor + step) % total
            clicks += 1
            page = payloads[cursor]
            click.respond(
                replace_original=True,
                text=page["text"],
                blocks=page["blocks"] + [blocks.nav_buttons(session, with_previous=True)],
            )
