# app/routes/devices.py
from fastapi import APIRouter, Depends

from app.core.errors import not_found
from app.models.notification import DeviceIn
from app.services import devices
from app.services.auth import get_current_user

router = APIRouter(prefix="/devices", tags=["devices"])


@router.post("")
def register_device(data: DeviceIn, user = Depends(get_current_user)):
    device_id = devices.register_device(
        user["uid"], data.token, platform=data.platform, provider=data.provider
    )
    return {"ok": True, "deviceId": device_id}


@router.delete("/{device_id}")
def unregister_device(device_id: str, user = Depends(get_current_user)):
    if not devices.disable_device(user["uid"], device_id):
        raise not_found("Device not found")
    return {"ok": True}
