"""Slash command handlers and the suggestion modal.

Every command passes the role gate first; domain errors come back to the
operator as ephemeral failure cards, anything unexpected as a generic notice.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from insurance_tracker import blocks
from insurance_tracker.alerts import (
    AlertPipeline,
    dm_alert_style,
    dm_mirror_style,
    dm_registry_style,
    registry_style,
)
from insurance_tracker.auth import RoleGate, check_removal_password
from insurance_tracker.collector import CollectorHub, browse_pages, wait_for_mention
from insurance_tracker.config import Config
from insurance_tracker.errors import (
    AuthDenied,
    CollectorTimeout,
    DeliveryFailure,
    InsuranceError,
    ValidationError,
)
from insurance_tracker.expiry import (
    days_left,
    extend_validity,
    format_date,
    reduce_validity,
    shift_days,
)
from insurance_tracker.models import AlertOutcome, CommandRequest, InsuranceRecord
from insurance_tracker.store import RecordStore, validate_plate

logger = logging.getLogger(__name__)

NEW_PLATE_PREFIX = "new_car_"
SUGGESTION_LIMIT = 25
PLATE_SUGGEST_ACTION = "plate_suggest"
PLATE_MODAL_CALLBACK = "insurance_plate_modal"

DENIED_TEXT = "⛔ ACCESS DENIED: You lack required permissions"
SYSTEM_ERROR_TEXT = "❌ SYSTEM ERROR: Command processing failed"
TIMEOUT_TEXT = "⏲️ You took too long to respond. Command cancelled."
FOREIGN_TEAM_TEXT = "⛔ This workspace is not served by Insurance Tracker"

USAGE = {
    "/insurance-new": "/insurance-new <plate> <days-valid> <vehicle name>",
    "/insurance-extend": "/insurance-extend <plate> <days-to-add>",
    "/insurance-reduce": "/insurance-reduce <plate> <days-to-subtract>",
    "/insurance-remove": "/insurance-remove <plate> <password>",
}

# command -> (modal title, argument label, argument is a secret)
_MODALS = {
    "/insurance-extend": ("Extend insurance", "Days to add", False),
    "/insurance-reduce": ("Reduce insurance", "Days to subtract", False),
    "/insurance-remove": ("Remove insurance", "Removal password", True),
}


def _usage_error(command: str) -> ValidationError:
    return ValidationError(f"Usage: `{USAGE[command]}`")


def _positive_int(raw: str, command: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise _usage_error(command)
    if value < 1:
        raise ValidationError("Day counts must be 1 or more", fields=[("Your Input", raw)])
    return value


def _option(label: str, value: str) -> dict:
    return {"text": {"type": "plain_text", "text": label[:75]}, "value": value[:150]}


def request_from_command(body: dict) -> CommandRequest:
    """Build a :class:`CommandRequest` from a slash command payload."""
    return CommandRequest(
        command=body["command"],
        user_id=body["user_id"],
        user_name=body.get("user_name", body["user_id"]),
        channel_id=body["channel_id"],
        text=(body.get("text") or "").strip(),
        team_id=body.get("team_id"),
        trigger_id=body.get("trigger_id"),
    )


def plate_modal(command: str, channel_id: str) -> dict:
    """Modal asking for a plate (with suggestions) and the command's argument."""
    title, label, secret = _MODALS[command]
    argument = {
        "type": "plain_text_input" if secret else "number_input",
        "action_id": "argument_input",
    }
    if not secret:
        argument.update(is_decimal_allowed=False, min_value="1")
    return {
        "type": "modal",
        "callback_id": PLATE_MODAL_CALLBACK,
        "private_metadata": json.dumps({"command": command, "channel_id": channel_id}),
        "title": {"type": "plain_text", "text": title},
        "submit": {"type": "plain_text", "text": "Submit"},
        "blocks": [
            {
                "type": "input",
                "block_id": "plate",
                "label": {"type": "plain_text", "text": "Vehicle"},
                "element": {
                    "type": "external_select",
                    "action_id": PLATE_SUGGEST_ACTION,
                    "placeholder": {"type": "plain_text", "text": "Type a name or plate"},
                    "min_query_length": 0,
                },
            },
            {
                "type": "input",
                "block_id": "argument",
                "label": {"type": "plain_text", "text": label},
                "element": argument,
            },
        ],
    }


class InsuranceCommands:
    """Dispatches slash commands against the store and the alert pipeline.

    Collaborators are injected: ``names`` resolves a user ID to a display
    name and ``discard`` removes a collected prompt reply (best effort).
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        pipeline: AlertPipeline,
        hub: CollectorHub,
        gate: RoleGate,
        config: Config,
        client,
        names: Callable[[str], str] | None = None,
        discard: Callable[[object], object] | None = None,
    ) -> None:
        self._store = store
        self._pipeline = pipeline
        self._hub = hub
        self._gate = gate
        self._config = config
        self._client = client
        self._names = names
        self._discard = discard
        self._handlers = {
            "/insurance-new": self.register_new,
            "/insurance-extend": self.extend,
            "/insurance-reduce": self.reduce,
            "/insurance-list": self.list_registry,
            "/insurance-alert": self.alert_now,
            "/insurance-dm-list": self.dm_list,
            "/insurance-dm-alert": self.dm_alert,
            "/insurance-remove": self.remove,
        }

    @property
    def command_names(self) -> list[str]:
        return list(self._handlers)

    # -- dispatch ------------------------------------------------------------

    def handle(self, request: CommandRequest, respond) -> None:
        handler = self._handlers.get(request.command)
        if handler is None:
            logger.warning("Unknown command %s", request.command)
            return

        if self._config.team_id and request.team_id and request.team_id != self._config.team_id:
            logger.warning("Ignoring %s from foreign team %s", request.command, request.team_id)
            respond(text=FOREIGN_TEAM_TEXT)
            return

        logger.info("Command received: %s from %s", request.command, request.user_name)

        try:
            self._gate.require(request.user_id)
        except AuthDenied:
            respond(text=DENIED_TEXT)
            logger.warning("Permission denied for %s on %s", request.user_name, request.command)
            return

        try:
            handler(request, respond)
        except InsuranceError as exc:
            logger.info("%s failed for %s: %s", request.command, request.user_name, exc)
            respond(text=exc.title, blocks=blocks.failure_card(exc))
        except Exception:
            logger.exception("Interaction error in %s", request.command)
            respond(text=SYSTEM_ERROR_TEXT)

    def submit_modal(self, view: dict, *, user_id: str, user_name: str, team_id: str | None = None) -> None:
        """Feed a suggestion-modal submission back through :meth:`handle`."""
        meta = json.loads(view["private_metadata"])
        values = view["state"]["values"]
        selected = values["plate"][PLATE_SUGGEST_ACTION].get("selected_option") or {}
        argument = values["argument"]["argument_input"].get("value") or ""
        request = CommandRequest(
            command=meta["command"],
            user_id=user_id,
            user_name=user_name,
            channel_id=meta["channel_id"],
            text=f"{selected.get('value', '')} {argument}".strip(),
            team_id=team_id,
        )
        self.handle(request, self._ephemeral(request.channel_id, user_id))

    def suggest(self, query: str, user_id: str) -> list[dict]:
        """Suggestion options for the plate picker, capped at 25.

        Callers outside the configured roles get no options.
        """
        if not self._gate.is_authorized(user_id):
            logger.warning("Suggestion request from unauthorized user %s", user_id)
            return []
        query = (query or "").strip()
        try:
            records = self._store.search(query, limit=SUGGESTION_LIMIT)
        except SQLAlchemyError:
            logger.exception("Suggestion lookup failed for %r", query)
            return []

        now = self._pipeline.now()
        tz = self._config.tz
        options = [
            _option(
                f"{r.vehicle_name} - {r.plate_id} ({days_left(r.expiry_at, now, tz)}d)",
                r.plate_id,
            )
            for r in records
        ]
        if not options and query:
            options.append(_option(f'➕ Add New: "{query}"', NEW_PLATE_PREFIX + query))
        logger.debug("Suggestions for %r: %d options", query, len(options))
        return options

    # -- helpers -------------------------------------------------------------

    def _operator(self, request: CommandRequest) -> str:
        if self._names is not None:
            return self._names(request.user_id)
        return request.user_name

    def _ephemeral(self, channel_id: str, user_id: str):
        """A ``respond`` stand-in for flows that have no response URL."""

        def respond(text: str = "", blocks=None, response_type: str | None = None, **_):
            if response_type == "in_channel":
                self._client.chat_postMessage(channel=channel_id, text=text, blocks=blocks)
            else:
                self._client.chat_postEphemeral(
                    channel=channel_id, user=user_id, text=text, blocks=blocks
                )

        return respond

    def _open_modal(self, request: CommandRequest) -> None:
        if not request.trigger_id:
            raise _usage_error(request.command)
        self._client.views_open(
            trigger_id=request.trigger_id, view=plate_modal(request.command, request.channel_id)
        )

    def _redirect_new_plate(self, plate: str, respond, removing: bool = False) -> bool:
        """Answer for the synthetic "add new" suggestion. True if handled."""
        if not plate.startswith(NEW_PLATE_PREFIX):
            return False
        plate = plate[len(NEW_PLATE_PREFIX):]
        if removing:
            card = blocks.card("\U0001f6ab INVALID SELECTION", f"Cannot remove unregistered vehicle:\n*{plate}*")
        else:
            card = blocks.card(
                "\U0001f6ab CAR NOT FOUND",
                f"Use `/insurance-new` to register:\n*{plate}*",
                footer="New vehicles must be registered first",
            )
        respond(text=card[0]["text"]["text"], blocks=card)
        return True

    def _record_pairs(self, record: InsuranceRecord) -> list[tuple[str, str]]:
        return [
            ("\U0001f697 Car Name", record.vehicle_name),
            ("\U0001f522 Number Plate", record.plate_id),
        ]

    # -- record commands -----------------------------------------------------

    def register_new(self, request: CommandRequest, respond) -> None:
        parts = request.text.split(maxsplit=2)
        if len(parts) < 3:
            raise _usage_error(request.command)
        plate, raw_days, vehicle_name = parts
        validate_plate(plate)
        days = _positive_int(raw_days, request.command)

        tz = self._config.tz
        expiry = shift_days(self._pipeline.now(), days, tz)
        operator = self._operator(request)
        record = self._store.create(vehicle_name, plate, expiry, operator)

        respond(
            response_type="in_channel",
            text=f"New insurance registered for {record.plate_id}",
            blocks=blocks.card(
                "✅ NEW INSURANCE REGISTERED",
                pairs=self._record_pairs(record)
                + [
                    ("\U0001f4c5 Expiry Date", format_date(record.expiry_at, tz)),
                    ("⏳ Days Valid", str(days)),
                    ("\U0001f464 Registered By", operator),
                ],
                footer="Insurance successfully added to database",
            ),
        )

    def extend(self, request: CommandRequest, respond) -> None:
        self._adjust(request, respond, extending=True)

    def reduce(self, request: CommandRequest, respond) -> None:
        self._adjust(request, respond, extending=False)

    def _adjust(self, request: CommandRequest, respond, *, extending: bool) -> None:
        args = request.text.split()
        if not args:
            self._open_modal(request)
            return
        if len(args) != 2:
            raise _usage_error(request.command)
        plate, raw_days = args
        if self._redirect_new_plate(plate, respond):
            return
        days = _positive_int(raw_days, request.command)

        tz = self._config.tz
        now = self._pipeline.now()
        if extending:
            change = extend_validity(self._store, plate, days, now=now, tz=tz)
            title, delta_label, footer = (
                "\U0001f504 INSURANCE EXTENDED",
                "⏳ Days Added",
                "Insurance validity extended successfully",
            )
        else:
            change = reduce_validity(self._store, plate, days, now=now, tz=tz)
            title, delta_label, footer = (
                "⚠️ INSURANCE REDUCED",
                "⏳ Days Reduced",
                "Insurance validity reduced",
            )

        respond(
            response_type="in_channel",
            text=f"{title}: {plate}",
            blocks=blocks.card(
                title,
                pairs=self._record_pairs(change.record)
                + [
                    ("\U0001f4c5 Old Expiry", format_date(change.old_expiry, tz)),
                    ("\U0001f4c5 New Expiry", format_date(change.new_expiry, tz)),
                    (delta_label, str(days)),
                    ("⏳ Total Days Left", str(change.days_left)),
                    ("\U0001f464 Updated By", self._operator(request)),
                ],
                footer=footer,
            ),
        )

    def remove(self, request: CommandRequest, respond) -> None:
        args = request.text.split(maxsplit=1)
        if not args:
            self._open_modal(request)
            return
        if len(args) != 2:
            raise _usage_error(request.command)
        plate, password = args
        if self._redirect_new_plate(plate, respond, removing=True):
            return

        operator = self._operator(request)
        try:
            check_removal_password(password, self._config.removal_password)
        except AuthDenied as exc:
            logger.warning("Failed removal attempt by %s (wrong password)", operator)
            respond(
                text=exc.title,
                blocks=blocks.card(exc.title, str(exc), footer="Contact leadership for assistance"),
            )
            return

        record = self._store.delete(plate)
        tz = self._config.tz
        respond(
            response_type="in_channel",
            text=f"Insurance removed for {record.plate_id}",
            blocks=blocks.card(
                "\U0001f5d1️ INSURANCE REMOVED",
                pairs=self._record_pairs(record)
                + [
                    ("\U0001f4c5 Expiry Date", format_date(record.expiry_at, tz)),
                    ("⏳ Days Left", str(days_left(record.expiry_at, self._pipeline.now(), tz))),
                    ("\U0001f464 Removed By", operator),
                ],
                footer="Permanently deleted from database",
            ),
        )

    # -- listing and alerts --------------------------------------------------

    def list_registry(self, request: CommandRequest, respond) -> None:
        records = self._store.list_all(sort_by_expiry=True)
        if not records:
            respond(
                text="No insurances found",
                blocks=blocks.card(
                    "\U0001f4ed NO INSURANCES FOUND",
                    "No car insurances registered yet",
                    footer="Use /insurance-new to add vehicles",
                ),
            )
            return

        payloads = self._pipeline.build(records, registry_style())
        logger.info("Insurance list viewed by %s (%d entries)", request.user_name, len(records))
        if len(payloads) == 1:
            respond(**payloads[0])
            return

        session = uuid.uuid4().hex
        first = payloads[0]
        respond(text=first["text"], blocks=first["blocks"] + [blocks.nav_buttons(session, with_previous=False)])
        browse_pages(
            self._hub,
            payloads,
            user_id=request.user_id,
            session=session,
            timeout=self._config.collector_timeout,
        )

    def alert_now(self, request: CommandRequest, respond) -> None:
        channel = self._pipeline.alert_channel
        if not channel:
            respond(text="❌ Alert channel not configured")
            logger.error("Alert channel not configured for manual alert")
            return

        outcome = self._pipeline.run_manual(self._operator(request))
        if outcome.record_count == 0:
            respond(
                text="✅ ALL INSURANCES ACTIVE",
                blocks=blocks.card(
                    "✅ ALL INSURANCES ACTIVE",
                    "No expiring insurances found",
                    footer=f"Next check at {self._config.alert_time} ({self._config.timezone})",
                ),
            )
            return

        respond(
            text=f"✅ Alert sent to <#{channel}> "
            f"({outcome.record_count} cars in {outcome.page_count} parts)"
        )

    def dm_list(self, request: CommandRequest, respond) -> None:
        records = self._store.list_all(sort_by_expiry=True)
        if not records:
            respond(
                text="No insurances found",
                blocks=blocks.card("\U0001f4ed NO INSURANCES FOUND", "No car insurances to send"),
            )
            return

        prompt = blocks.card(
            "\U0001f4e4 SEND INSURANCE LIST",
            "Please mention the user you want to send this to (e.g. @username)",
            footer=f"Reply with a mention within {self._config.collector_timeout:g} seconds",
        )
        delivered = self._deliver_by_mention(request, respond, records, prompt, dm_registry_style(), None)
        if delivered is None:
            return
        outcome, target = delivered
        respond(
            replace_original=True,
            text="✅ DM SENT SUCCESSFULLY",
            blocks=blocks.card(
                "✅ DM SENT SUCCESSFULLY",
                f"Insurance list ({outcome.record_count} cars in {outcome.page_count} parts) "
                f"sent to <@{target}>",
            ),
        )

    def dm_alert(self, request: CommandRequest, respond) -> None:
        records = self._pipeline.expiring()
        if not records:
            respond(
                text="No expiring insurances",
                blocks=blocks.card("✅ NO EXPIRING INSURANCES", "No cars need immediate attention"),
            )
            return

        prompt = blocks.card(
            "\U0001f4e4 SEND ALERT LIST",
            f"Found {len(records)} expiring insurances. "
            "Mention the user to send alerts to (e.g. @username)",
            footer=f"Reply with a mention within {self._config.collector_timeout:g} seconds",
        )
        operator = self._operator(request)
        delivered = self._deliver_by_mention(
            request,
            respond,
            records,
            prompt,
            dm_alert_style(operator),
            dm_mirror_style(operator, self._config.mention_groups),
        )
        if delivered is None:
            return
        outcome, target = delivered
        channel = self._pipeline.alert_channel
        respond(
            replace_original=True,
            text="✅ ALERTS SENT SUCCESSFULLY",
            blocks=blocks.card(
                "✅ ALERTS SENT SUCCESSFULLY",
                f"Sent {outcome.record_count} expiring insurances in {outcome.page_count} parts "
                f"to <@{target}>" + (f" and <#{channel}>" if channel else ""),
            ),
        )

    def _deliver_by_mention(
        self, request, respond, records, prompt, style, mirror_style
    ) -> tuple[AlertOutcome, str] | None:
        """Prompt for a recipient, wait for the mention, then DM the pages.

        Returns ``None`` when the flow ended early (timeout or failed DM);
        the original response has already been rewritten in that case.
        """
        respond(text=prompt[0]["text"]["text"], blocks=prompt)
        try:
            reply = wait_for_mention(
                self._hub,
                channel_id=request.channel_id,
                user_id=request.user_id,
                timeout=self._config.collector_timeout,
            )
        except CollectorTimeout:
            respond(replace_original=True, text=TIMEOUT_TEXT)
            return None

        target = reply.mentions[0]
        if self._discard is not None:
            self._discard(reply)

        try:
            outcome = self._pipeline.send_direct(records, style, target, mirror_style)
        except DeliveryFailure as exc:
            if exc.target == f"<@{target}>":
                card = blocks.card(
                    "❌ DM FAILED",
                    f"Could not send DM to <@{target}>",
                    footer="User may have DMs disabled",
                )
            else:
                card = blocks.failure_card(exc)
            respond(replace_original=True, text=card[0]["text"]["text"], blocks=card)
            return None

        logger.info(
            "%d page(s) sent to %s by %s", outcome.page_count, target, request.user_name
        )
        return outcome, target
