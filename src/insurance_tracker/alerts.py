"""Alert pipeline: select, paginate, render and deliver expiry notifications.

Three triggers share one algorithm (scheduled channel post, manual channel
post, direct message) and differ only in selection, page style and sink.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from slack_sdk.errors import SlackApiError

from insurance_tracker.config import Config
from insurance_tracker.errors import DeliveryFailure
from insurance_tracker.expiry import is_expiring
from insurance_tracker.models import AlertOutcome, InsuranceRecord, PageStyle
from insurance_tracker.pager import render_pages
from insurance_tracker.store import RecordStore

logger = logging.getLogger(__name__)

ALERT_TITLE = "\U0001f6a8 INSURANCE EXPIRY ALERT"
REGISTRY_TITLE = "\U0001f4cb INSURANCE REGISTRY"
ATTENTION_HEADLINE = "*{count} CAR{plural} NEED ATTENTION!*"


def _literal(text: str) -> str:
    """Escape braces so operator names survive ``str.format``."""
    return text.replace("{", "{{").replace("}", "}}")


def mention_preamble(group_ids: list[str], call_to_action: str) -> str:
    mentions = " ".join(f"<!subteam^{group_id}>" for group_id in group_ids)
    if mentions:
        return f"{mentions}\n*{call_to_action}*"
    return f"*{call_to_action}*"


def scheduled_style(group_ids: list[str]) -> PageStyle:
    return PageStyle(
        title=ALERT_TITLE,
        headline=ATTENTION_HEADLINE,
        origin="Alert generated at {timestamp}",
        preamble=mention_preamble(group_ids, "IMMEDIATE ATTENTION REQUIRED"),
    )


def manual_style(operator: str, group_ids: list[str]) -> PageStyle:
    return PageStyle(
        title="\U0001f6a8 MANUAL ALERT TRIGGERED",
        later_title="\U0001f6a8 MANUAL ALERT",
        headline=ATTENTION_HEADLINE,
        origin=f"Alert generated by {_literal(operator)} • {{timestamp}}",
        preamble=mention_preamble(group_ids, "MANUAL ALERT: IMMEDIATE ACTION REQUIRED"),
    )


def dm_alert_style(operator: str) -> PageStyle:
    return PageStyle(
        title=ALERT_TITLE,
        headline=ATTENTION_HEADLINE,
        origin=f"Alert generated by {_literal(operator)} • {{timestamp}}",
    )


def dm_mirror_style(operator: str, group_ids: list[str]) -> PageStyle:
    style = dm_alert_style(operator)
    style.preamble = mention_preamble(group_ids, "MANUAL ALERT: IMMEDIATE ACTION REQUIRED")
    return style


def registry_style() -> PageStyle:
    return PageStyle(title=REGISTRY_TITLE, origin="Total Vehicles: {count} • {timestamp}")


def dm_registry_style() -> PageStyle:
    return PageStyle(
        title=REGISTRY_TITLE,
        headline="*Current insurance status as of {timestamp}*",
        origin="Total Vehicles: {count}",
    )


# -- delivery sinks -----------------------------------------------------------


class ChannelSink:
    """Posts pages into a channel."""

    def __init__(self, client, channel_id: str) -> None:
        self._client = client
        self.channel_id = channel_id

    def __str__(self) -> str:
        return f"<#{self.channel_id}>"

    def send(self, payload: dict) -> None:
        self._client.chat_postMessage(channel=self.channel_id, **payload)


class DirectMessageSink:
    """Posts pages into a user's DM conversation, opened on first send."""

    def __init__(self, client, user_id: str) -> None:
        self._client = client
        self.user_id = user_id
        self._channel_id: str | None = None

    def __str__(self) -> str:
        return f"<@{self.user_id}>"

    def send(self, payload: dict) -> None:
        if self._channel_id is None:
            response = self._client.conversations_open(users=self.user_id)
            self._channel_id = response["channel"]["id"]
        self._client.chat_postMessage(channel=self._channel_id, **payload)


def _error_text(exc: SlackApiError) -> str:
    if exc.response is not None:
        return exc.response.get("error", str(exc))
    return str(exc)


def deliver(payloads: list[dict], sink) -> int:
    """Send payloads in order; the first failure aborts the rest.

    Pages already sent stay sent.
    """
    sent = 0
    for payload in payloads:
        try:
            sink.send(payload)
        except SlackApiError as exc:
            logger.error("Delivery to %s failed after %d page(s): %s", sink, sent, _error_text(exc))
            raise DeliveryFailure(str(sink), sent, _error_text(exc)) from exc
        sent += 1
    return sent


class AlertPipeline:
    """Builds page sequences for each trigger and hands them to a sink.

    The Slack web client, store and clock are injected so the pipeline can be
    driven without a live connection.
    """

    def __init__(
        self,
        store: RecordStore,
        client,
        config: Config,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._client = client
        self._config = config
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def alert_channel(self) -> str | None:
        return self._config.alert_channel

    def now(self) -> datetime:
        return self._clock()

    def expiring(self, now: datetime | None = None) -> list[InsuranceRecord]:
        """Records with three days or less left, in store order."""
        now = now or self.now()
        tz = self._config.tz
        return [r for r in self._store.list_all() if is_expiring(r, now, tz)]

    def build(self, records: list[InsuranceRecord], style: PageStyle, now: datetime | None = None) -> list[dict]:
        return render_pages(
            records,
            style,
            now=now or self.now(),
            tz=self._config.tz,
            page_size=self._config.page_size,
        )

    # -- triggers ------------------------------------------------------------

    def run_scheduled(self) -> AlertOutcome:
        """Daily trigger. Stays silent when nothing is expiring."""
        logger.info("Running scheduled insurance check")
        if not self.alert_channel:
            logger.error("Alert channel not configured; skipping scheduled alert")
            return AlertOutcome(record_count=0, page_count=0)

        now = self.now()
        records = self.expiring(now)
        if not records:
            logger.info("No expiring insurances found")
            return AlertOutcome(record_count=0, page_count=0)

        payloads = self.build(records, scheduled_style(self._config.mention_groups), now)
        deliver(payloads, ChannelSink(self._client, self.alert_channel))
        logger.info("Sent alert for %d cars in %d parts", len(records), len(payloads))
        return AlertOutcome(record_count=len(records), page_count=len(payloads))

    def run_manual(self, operator: str) -> AlertOutcome:
        """On-demand trigger; a zero count means nothing was posted."""
        now = self.now()
        records = self.expiring(now)
        if not records:
            return AlertOutcome(record_count=0, page_count=0)

        payloads = self.build(records, manual_style(operator, self._config.mention_groups), now)
        deliver(payloads, ChannelSink(self._client, self.alert_channel))
        logger.info("Manual alert triggered by %s for %d cars", operator, len(records))
        return AlertOutcome(record_count=len(records), page_count=len(payloads))

    def send_direct(
        self,
        records: list[InsuranceRecord],
        style: PageStyle,
        user_id: str,
        mirror_style: PageStyle | None = None,
    ) -> AlertOutcome:
        """DM every page to ``user_id``.

        With ``mirror_style``, page 1 is also posted to the alert channel in
        that style, right after it reaches the user.
        """
        now = self.now()
        payloads = self.build(records, style, now)
        dm = DirectMessageSink(self._client, user_id)
        mirror = None
        if mirror_style is not None and self.alert_channel:
            mirror = self.build(records, mirror_style, now)[0]

        sent = 0
        for index, payload in enumerate(payloads):
            try:
                dm.send(payload)
            except SlackApiError as exc:
                logger.error("DM to %s failed after %d page(s): %s", user_id, sent, _error_text(exc))
                raise DeliveryFailure(str(dm), sent, _error_text(exc)) from exc
            sent += 1
            if index == 0 and mirror is not None:
                deliver([mirror], ChannelSink(self._client, self.alert_channel))
        return AlertOutcome(record_count=len(records), page_count=len(payloads))

