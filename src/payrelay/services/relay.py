"""Relay orchestrator — the webhook → ledger → {speaker, dashboards} flow.

Learn: Per inbound event the state machine is

  Received → OwnerResolved → Persisted → FannedOut → Acknowledged

and only the first two transitions can fail the event:

- unknown event kind        → acknowledged as "ignored", nothing else happens
- unknown or missing device → DeviceNotFoundError propagates, nothing written
- storage failure           → PersistenceError propagates, nothing written
- replayed request_id       → acknowledged as "duplicate", no fan-out
- new transaction           → acknowledged as "processed"; fan-out is scheduled

Once the ledger row is committed the event has succeeded. The MQTT publish
and the dashboard fan-out run together in a background task, so a hung
broker or a slow browser can't hold up the webhook response or the next
event. Their failures are logged warnings, never rollbacks.
"""

import asyncio
import enum
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

import structlog
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from payrelay.config import settings
from payrelay.db.models import Transaction
from payrelay.events.types import EventKind, parse_event_kind
from payrelay.realtime.registry import FanOutReport, SessionRegistry
from payrelay.schemas.transaction import (
    DashboardEvent,
    DeviceMessage,
    TransactionEvent,
    format_money,
    money_number,
    parse_amount,
)
from payrelay.services.device_directory import DeviceDirectory, DeviceNotFoundError
from payrelay.services.ledger import TransactionLedger
from payrelay.services.publisher import PublishOutcome, TopicPublisher

logger = structlog.get_logger()


class InvalidEventError(Exception):
    """A recognised event is missing a field the relay needs."""


class RelayStatus(str, enum.Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


@dataclass
class RelayResult:
    status: RelayStatus
    request_id: Optional[str] = None
    transaction: Optional[Transaction] = None
    fanout: Optional[asyncio.Task] = None


@dataclass
class FanOutResult:
    publish: PublishOutcome
    sessions: FanOutReport


def extract_transaction(payload: dict[str, Any]) -> TransactionEvent:
    """Pull device, amount and request id out of a transaction.completed body.

    A missing `data.id` is replaced by the receipt time in epoch
    milliseconds; the event still gets processed, but the flag is kept so
    the synthetic key shows up in the logs.
    """
    data = payload.get("data")
    if not isinstance(data, dict):
        raise InvalidEventError("Missing 'data' object")

    metadata = data.get("metadata") or {}
    device_id = metadata.get("terminal_id") if isinstance(metadata, dict) else None
    if not device_id or not isinstance(device_id, str):
        # No terminal means no owner to resolve.
        raise DeviceNotFoundError(None)

    amount = parse_amount(data.get("amount"))
    if amount is None:
        raise InvalidEventError("Missing or non-numeric 'data.amount'")

    raw_id = data.get("id")
    synthesized = raw_id is None or raw_id == ""
    request_id = str(int(time.time() * 1000)) if synthesized else str(raw_id)

    return TransactionEvent(
        device_id=device_id,
        amount=amount,
        request_id=request_id,
        request_id_synthesized=synthesized,
    )


def display_timestamp(moment: Optional[datetime] = None) -> str:
    """Wall-clock time in the dashboard's timezone, e.g. '19/10/2026, 14:03:07'."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    local = moment.astimezone(ZoneInfo(settings.display_timezone))
    return local.strftime("%d/%m/%Y, %H:%M:%S")


class RelayService:
    """Long-lived orchestrator. Built once in the app lifespan.

    The registry and publisher are injected so their lifecycles stay with
    whoever created them; each call to handle_event() gets the request's
    DB session.
    """

    def __init__(self, registry: SessionRegistry, publisher: TopicPublisher):
        self.registry = registry
        self.publisher = publisher
        self._pending: set[asyncio.Task] = set()

    async def handle_event(
        self, db: AsyncSession, payload: dict[str, Any]
    ) -> RelayResult:
        kind = parse_event_kind(payload.get("event_type"))
        if kind is EventKind.UNRECOGNIZED:
            logger.info("relay.ignored", event_type=payload.get("event_type"))
            return RelayResult(status=RelayStatus.IGNORED)

        event = extract_transaction(payload)
        log = logger.bind(request_id=event.request_id, device=event.device_id)
        if event.request_id_synthesized:
            log.warning("relay.request_id_synthesized")

        # DeviceNotFoundError propagates — nothing persisted yet.
        account_id = await DeviceDirectory(db).resolve_owner(event.device_id)

        # PersistenceError propagates — the upstream should redeliver.
        result = await TransactionLedger(db).record_transaction(
            account_id=account_id,
            device_id=event.device_id,
            amount=event.amount,
            request_id=event.request_id,
        )
        if not result.inserted:
            log.info("relay.duplicate", transaction_id=result.record.id)
            return RelayResult(
                status=RelayStatus.DUPLICATE,
                request_id=event.request_id,
                transaction=result.record,
            )

        log.info("relay.persisted", transaction_id=result.record.id, account_id=str(account_id))
        task = self._schedule(self.fan_out(account_id, event, result.record))
        return RelayResult(
            status=RelayStatus.PROCESSED,
            request_id=event.request_id,
            transaction=result.record,
            fanout=task,
        )

    async def fan_out(
        self,
        account_id: uuid.UUID,
        event: TransactionEvent,
        record: Transaction,
    ) -> FanOutResult:
        """Publish to the device topic and push to dashboards, concurrently.

        Both payloads carry the amount as stored in the ledger, so a
        dashboard refresh shows the same figure the speaker announced.
        """
        message = DeviceMessage(
            request_id=event.request_id, money=format_money(record.amount)
        )
        dashboard = DashboardEvent(
            id=event.request_id,
            device=event.device_id,
            amount=money_number(record.amount),
            status=record.status,
            timestamp=display_timestamp(),
        )
        publish, sessions = await asyncio.gather(
            self.publisher.publish(event.device_id, message),
            self.registry.fan_out_to_account(str(account_id), dashboard.model_dump()),
        )
        logger.info(
            "relay.fanned_out",
            request_id=event.request_id,
            published=publish.ok,
            pushed=sessions.delivered,
            skipped=len(sessions.skipped),
        )
        return FanOutResult(publish=publish, sessions=sessions)

    def _schedule(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._on_fanout_done)
        return task

    def _on_fanout_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("relay.fanout_error", error=str(exc), exc_info=exc)

    async def drain(self) -> None:
        """Wait for in-flight fan-outs (shutdown, tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def get_relay(request: Request) -> RelayService:
    """FastAPI dependency — the app-wide RelayService built in the lifespan."""
    return request.app.state.relay
