"""Device directory — terminal serial → owning account.

Learn: Every inbound webhook goes through resolve_owner() before anything
is written, so it must stay a single indexed point lookup (devices.serial
is UNIQUE). Devices are provisioned out-of-band by their owner through
/devices; the relay only reads them.
"""

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from payrelay.db.models import Device


class DeviceNotFoundError(Exception):
    """No device is registered under the given serial."""

    def __init__(self, device_id: Optional[str]):
        if device_id is None:
            super().__init__("Event does not name a terminal")
        else:
            super().__init__(f"Device {device_id!r} is not registered")
        self.device_id = device_id


class DeviceAlreadyRegisteredError(Exception):
    pass


class DeviceDirectory:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve_owner(self, device_id: str) -> uuid.UUID:
        """Return the account id owning `device_id`. Raises DeviceNotFoundError."""
        result = await self.db.execute(
            select(Device.account_id).where(Device.serial == device_id)
        )
        account_id = result.scalar_one_or_none()
        if account_id is None:
            raise DeviceNotFoundError(device_id)
        return account_id

    async def register_device(self, account_id: uuid.UUID, serial: str) -> Device:
        """Provision a device for an account. Serials are globally unique."""
        device = Device(serial=serial, account_id=account_id)
        self.db.add(device)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise DeviceAlreadyRegisteredError(
                f"Device {serial!r} is already registered"
            )
        await self.db.refresh(device)
        return device

    async def list_devices(self, account_id: uuid.UUID) -> list[Device]:
        result = await self.db.execute(
            select(Device)
            .where(Device.account_id == account_id)
            .order_by(Device.serial)
        )
        return list(result.scalars().all())
