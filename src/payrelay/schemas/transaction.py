"""Pydantic schemas for inbound webhooks, ledger rows and outbound payloads.

Learn: Three shapes leave or enter the relay:
- TransactionEvent: what the payment processor POSTs to /notify
- DeviceMessage: the compact body published to the terminal's MQTT topic
- DashboardEvent: the JSON pushed to each live dashboard session

Amounts travel as Decimal internally; the outbound shapes convert them
back to what the consumers expect (a string for the speaker, a JSON number
for the browser).
"""

import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_serializer


def format_money(amount: Decimal) -> str:
    """Render an amount the way the speaker firmware reads it ("15000", "99.5")."""
    if amount == amount.to_integral_value():
        return str(int(amount))
    return format(amount.normalize(), "f")


def money_number(amount: Decimal) -> Union[int, float]:
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


def parse_amount(raw: Any) -> Optional[Decimal]:
    """Parse a webhook amount (int, float or numeric string). None if unusable."""
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite():
        return None
    return value


# ─── Inbound ─────────────────────────────────────────────


class TransactionEvent(BaseModel):
    """Fields extracted from a transaction.completed webhook."""

    device_id: str
    amount: Decimal
    request_id: str
    request_id_synthesized: bool = False


# ─── Outbound ────────────────────────────────────────────


class DeviceMessage(BaseModel):
    request_id: str
    money: str


class DashboardEvent(BaseModel):
    id: str
    device: str
    amount: Union[int, float]
    status: str
    timestamp: str


# ─── Ledger ──────────────────────────────────────────────


class TransactionRead(BaseModel):
    id: int
    account_id: uuid.UUID
    device_serial: str
    amount: Decimal
    request_id: str
    status: str
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @field_serializer("amount")
    def _amount(self, amount: Decimal) -> str:
        return format_money(amount)


class NotifyResponse(BaseModel):
    status: str
    request_id: Optional[str] = None
    message: str = Field("Notification received.")
