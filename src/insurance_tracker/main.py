"""Entry point and Slack wiring for insurance-tracker."""

from __future__ import annotations

import argparse
import logging
import re
import signal
import sys

from slack_sdk.errors import SlackApiError
from sqlalchemy.exc import SQLAlchemyError

from insurance_tracker.alerts import AlertPipeline
from insurance_tracker.auth import RoleGate
from insurance_tracker.collector import CollectorHub
from insurance_tracker.commands import (
    PLATE_MODAL_CALLBACK,
    PLATE_SUGGEST_ACTION,
    InsuranceCommands,
    request_from_command,
)
from insurance_tracker.config import load_config
from insurance_tracker.health import HealthServer, create_health_app
from insurance_tracker.models import ButtonClick
from insurance_tracker.scheduler import build_scheduler
from insurance_tracker.slack_listener import SlackListener
from insurance_tracker.store import RecordStore

logger = logging.getLogger(__name__)

_PAGE_TURN_RE = re.compile(r"^insurance_list_(next|prev)$")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="insurance-tracker",
        description="Track vehicle insurance expiry and alert a Slack channel.",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        default=None,
        help="Path to config YAML (default: ~/.config/insurance-tracker/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        metavar="LEVEL",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    return parser.parse_args(argv)


def register_handlers(app, *, commands: InsuranceCommands, hub: CollectorHub, listener: SlackListener) -> None:
    """Attach command, suggestion, modal, button and message listeners to ``app``."""

    def _on_command(ack, body, respond):
        ack()
        commands.handle(request_from_command(body), respond)

    for name in commands.command_names:
        app.command(name)(_on_command)

    @app.options(PLATE_SUGGEST_ACTION)
    def _on_suggest(ack, body):
        ack(options=commands.suggest(body.get("value", ""), body["user"]["id"]))

    @app.view(PLATE_MODAL_CALLBACK)
    def _on_modal_submit(ack, body, view):
        ack()
        user = body["user"]
        commands.submit_modal(
            view,
            user_id=user["id"],
            user_name=user.get("username") or user.get("name") or user["id"],
            team_id=(body.get("team") or {}).get("id"),
        )

    @app.action(_PAGE_TURN_RE)
    def _on_page_turn(ack, body, action, respond):
        ack()
        click = ButtonClick(
            user_id=body["user"]["id"],
            action_id=action["action_id"],
            session=action.get("value", ""),
            respond=respond,
        )
        if not hub.offer(click):
            logger.debug("Page turn on an expired listing ignored")

    @app.event("message")
    def _on_message(event):
        msg = listener.parse_event(event)
        if msg is not None:
            hub.offer(msg)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)

    logging.basicConfig(
        format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
        level=getattr(logging, args.log_level),
    )

    try:
        config = load_config(args.config)
    except FileNotFoundError as exc:
        logger.error("Config file not found: %s", exc)
        sys.exit(1)
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(1)

    logger.info("Configuration loaded successfully")

    try:
        store = RecordStore(config.database_url)
        store.ping()
        store.init_schema()
    except SQLAlchemyError as exc:
        logger.error("Database connection failed: %s", exc)
        sys.exit(1)

    try:
        listener = SlackListener()
    except KeyError as exc:
        logger.error("Missing Slack credential: %s", exc)
        store.close()
        sys.exit(1)
    except SlackApiError as exc:
        logger.error("Slack login failed: %s", exc)
        store.close()
        sys.exit(1)

    client = listener.app.client
    hub = CollectorHub()
    pipeline = AlertPipeline(store, client, config)
    commands = InsuranceCommands(
        store=store,
        pipeline=pipeline,
        hub=hub,
        gate=RoleGate(client, config.role_ids),
        config=config,
        client=client,
        names=listener.resolve_user,
        discard=listener.discard_message,
    )
    register_handlers(listener.app, commands=commands, hub=hub, listener=listener)

    scheduler = build_scheduler(pipeline, config)
    health = HealthServer(create_health_app(config.tz), config.health_port)

    # Graceful shutdown on SIGTERM / SIGINT. Pending collectors are abandoned.
    # listener.start() never returns on its own.
    def _shutdown(signum, _frame):
        sig_name = signal.Signals(signum).name
        logger.info("Received %s — shutting down", sig_name)
        listener.close()
        scheduler.shutdown(wait=False)
        health.stop()
        store.close()
        sys.exit(0)

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    scheduler.start()
    health.start()

    logger.info("Starting insurance-tracker")
    listener.start()
