"""Pydantic schemas for device provisioning."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

# The serial becomes the last level of an MQTT topic: no wildcards, no separators.
SERIAL_PATTERN = r"^[^+#/]+$"


class DeviceCreate(BaseModel):
    serial: str = Field(min_length=1, max_length=100, pattern=SERIAL_PATTERN)


class DeviceRead(BaseModel):
    id: uuid.UUID
    serial: str
    account_id: uuid.UUID
    status: str
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
