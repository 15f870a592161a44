"""RelayService tests — orchestration without the HTTP layer.

Learn: These drive handle_event() directly with a DB session, so they can
swap in publishers that fail, hang, or count calls, and inspect the
background fan-out task the relay returns.
"""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from payrelay.db.models import Transaction
from payrelay.realtime.registry import SessionChannel, SessionRegistry
from payrelay.services.device_directory import DeviceNotFoundError
from payrelay.services.ledger import PersistenceError, TransactionLedger
from payrelay.services.publisher import PublishOutcome
from payrelay.services.relay import (
    InvalidEventError,
    RelayService,
    RelayStatus,
    extract_transaction,
)


def event(request_id="tx-1", amount=15000, terminal_id="DEV-001"):
    return {
        "event_type": "transaction.completed",
        "data": {"id": request_id, "amount": amount, "metadata": {"terminal_id": terminal_id}},
    }


class CountingPublisher:
    def __init__(self, ok=True):
        self.ok = ok
        self.calls = []
        self.connected = True

    async def publish(self, device_id, message):
        self.calls.append((device_id, message))
        return PublishOutcome(ok=self.ok, topic=f"prefix/{device_id}", error=None if self.ok else "boom")


class HangingPublisher:
    connected = True

    def __init__(self):
        self.started = asyncio.Event()

    async def publish(self, device_id, message):
        self.started.set()
        await asyncio.Event().wait()


class ExplodingRegistry(SessionRegistry):
    async def fan_out_to_account(self, account_id, event):
        raise RuntimeError("registry bug")


async def count_rows(db_session) -> int:
    return (await db_session.execute(select(func.count(Transaction.id)))).scalar_one()


# ═══════════════════════════════════════════════════════════
# Fan-out happens exactly once per new request id
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_new_event_fans_out_once(db_session, merchant):
    publisher = CountingPublisher()
    registry = SessionRegistry()
    tabs = [SessionChannel() for _ in range(3)]
    for i, tab in enumerate(tabs):
        await registry.register(f"tab-{i}", str(merchant.id), tab)
    relay = RelayService(registry=registry, publisher=publisher)

    result = await relay.handle_event(db_session, event())
    outcome = await result.fanout

    assert result.status is RelayStatus.PROCESSED
    assert result.transaction.amount == Decimal("15000")
    assert len(publisher.calls) == 1
    device_id, message = publisher.calls[0]
    assert device_id == "DEV-001"
    assert message.model_dump() == {"request_id": "tx-1", "money": "15000"}
    assert outcome.sessions.delivered == 3
    assert outcome.publish.ok


@pytest.mark.asyncio
async def test_duplicate_event_does_not_fan_out(db_session, merchant):
    publisher = CountingPublisher()
    relay = RelayService(registry=SessionRegistry(), publisher=publisher)

    first = await relay.handle_event(db_session, event())
    await relay.drain()
    second = await relay.handle_event(db_session, event(amount=99999))
    await relay.drain()

    assert first.status is RelayStatus.PROCESSED
    assert second.status is RelayStatus.DUPLICATE
    assert second.fanout is None
    assert second.transaction.id == first.transaction.id
    assert second.transaction.amount == Decimal("15000")  # original row, not the replay
    assert len(publisher.calls) == 1
    assert await count_rows(db_session) == 1


@pytest.mark.asyncio
async def test_unknown_device_raises_before_persisting(db_session, merchant):
    publisher = CountingPublisher()
    relay = RelayService(registry=SessionRegistry(), publisher=publisher)

    with pytest.raises(DeviceNotFoundError):
        await relay.handle_event(db_session, event(terminal_id="DEV-999"))

    assert await count_rows(db_session) == 0
    assert publisher.calls == []


@pytest.mark.asyncio
async def test_persistence_error_propagates_without_fan_out(db_session, merchant, monkeypatch):
    publisher = CountingPublisher()
    relay = RelayService(registry=SessionRegistry(), publisher=publisher)

    async def broken(self, **kwargs):
        raise PersistenceError("Storage unavailable: connection refused")

    monkeypatch.setattr(TransactionLedger, "record_transaction", broken)
    with pytest.raises(PersistenceError):
        await relay.handle_event(db_session, event())
    await relay.drain()
    assert publisher.calls == []


@pytest.mark.asyncio
async def test_unrecognized_kind_is_ignored(db_session, merchant):
    relay = RelayService(registry=SessionRegistry(), publisher=CountingPublisher())
    result = await relay.handle_event(db_session, {"event_type": "payout.created", "data": {}})
    assert result.status is RelayStatus.IGNORED
    assert await count_rows(db_session) == 0


# ═══════════════════════════════════════════════════════════
# Downstream failures are degraded mode, not event failures
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_failed_publish_keeps_the_record_and_still_pushes(db_session, merchant):
    registry = SessionRegistry()
    tab = SessionChannel()
    await registry.register("tab", str(merchant.id), tab)
    relay = RelayService(registry=registry, publisher=CountingPublisher(ok=False))

    result = await relay.handle_event(db_session, event())
    outcome = await result.fanout

    assert result.status is RelayStatus.PROCESSED
    assert not outcome.publish.ok
    assert outcome.sessions.delivered == 1
    assert await count_rows(db_session) == 1


@pytest.mark.asyncio
async def test_fan_out_crash_is_contained(db_session, merchant):
    relay = RelayService(registry=ExplodingRegistry(), publisher=CountingPublisher())

    result = await relay.handle_event(db_session, event())
    await relay.drain()  # must not raise

    assert result.status is RelayStatus.PROCESSED
    assert await count_rows(db_session) == 1


@pytest.mark.asyncio
async def test_hung_publisher_does_not_block_next_event(db_session, merchant):
    publisher = HangingPublisher()
    relay = RelayService(registry=SessionRegistry(), publisher=publisher)

    first = await relay.handle_event(db_session, event("tx-1"))
    await asyncio.wait_for(publisher.started.wait(), timeout=1)
    second = await asyncio.wait_for(relay.handle_event(db_session, event("tx-2")), timeout=1)

    assert first.status is RelayStatus.PROCESSED
    assert second.status is RelayStatus.PROCESSED
    assert not first.fanout.done()
    assert await count_rows(db_session) == 2

    first.fanout.cancel()
    second.fanout.cancel()
    await relay.drain()


# ═══════════════════════════════════════════════════════════
# Event extraction
# ═══════════════════════════════════════════════════════════


def test_extract_transaction_fields():
    parsed = extract_transaction(event(amount="150.50"))
    assert parsed.device_id == "DEV-001"
    assert parsed.amount == Decimal("150.50")
    assert parsed.request_id == "tx-1"
    assert not parsed.request_id_synthesized


def test_extract_transaction_synthesizes_request_id():
    payload = event()
    del payload["data"]["id"]
    parsed = extract_transaction(payload)
    assert parsed.request_id_synthesized
    assert parsed.request_id.isdigit()


def test_extract_transaction_numeric_id_becomes_string():
    parsed = extract_transaction(event(request_id=42))
    assert parsed.request_id == "42"


@pytest.mark.parametrize(
    "payload",
    [
        {"event_type": "transaction.completed"},
        {"event_type": "transaction.completed", "data": {"amount": "lots", "metadata": {"terminal_id": "D"}}},
        {"event_type": "transaction.completed", "data": {"amount": True, "metadata": {"terminal_id": "D"}}},
    ],
)
def test_extract_transaction_rejects_incomplete_events(payload):
    with pytest.raises(InvalidEventError):
        extract_transaction(payload)


@pytest.mark.parametrize(
    "data",
    [
        {"id": "x", "amount": 1},
        {"id": "x", "amount": 1, "metadata": {}},
        {"id": "x", "amount": 1, "metadata": {"terminal_id": 42}},
    ],
)
def test_extract_transaction_without_terminal_is_device_not_found(data):
    with pytest.raises(DeviceNotFoundError) as exc:
        extract_transaction({"event_type": "transaction.completed", "data": data})
    assert exc.value.device_id is None
