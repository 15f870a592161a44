"""Devices API — merchants claim the terminals they own.

Learn: Provisioning is what lets the relay route a webhook: the
processor only tells us the terminal serial, and this table maps that
serial to an account.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from payrelay.auth.dependencies import CurrentAccount, get_current_account
from payrelay.db.engine import get_db
from payrelay.schemas.device import DeviceCreate, DeviceRead
from payrelay.services.device_directory import (
    DeviceAlreadyRegisteredError,
    DeviceDirectory,
)

router = APIRouter(prefix="/devices")


@router.post("", response_model=DeviceRead, status_code=201)
async def register_device(
    body: DeviceCreate,
    current: CurrentAccount = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    """Register a terminal serial to the calling account."""
    try:
        return await DeviceDirectory(db).register_device(current.uuid, body.serial.strip())
    except DeviceAlreadyRegisteredError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("", response_model=list[DeviceRead])
async def list_devices(
    current: CurrentAccount = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    return await DeviceDirectory(db).list_devices(current.uuid)
