"""
SMS endpoints: reminder sweep trigger, gateway test and settings

Handlers that reach the SMS gateway are plain functions so FastAPI runs them
in its threadpool instead of on the event loop.
"""

from typing import Optional
from fastapi import APIRouter, Depends

from .dependencies import CLIENT_ERRORS, LendingSystem, get_lending_system, http_error
from .schemas import SMSTestRequest, SMSSettingsRequest, sms_settings_response


router = APIRouter()


@router.api_route("/notifications", methods=["GET", "POST"])
def run_reminder_sweep(system: LendingSystem = Depends(get_lending_system)):
    """Run the due-soon / overdue reminder sweep now (for cron callers)"""
    result = system.dispatcher.sweep()
    return {
        "success": True,
        "message": "SMS notifications processed",
        "results": result.to_dict()
    }


@router.post("/test")
def send_test_sms(
    request: SMSTestRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Send a test message through the configured gateway"""
    sent = system.sms_gateway.send_sms(request.phone, request.message)
    return {
        "success": sent,
        "message": "Test SMS sent" if sent else "SMS not sent; check gateway settings and SMS logs"
    }


@router.get("/logs")
async def get_sms_logs(
    user_id: Optional[str] = None,
    status: Optional[str] = None,
    system: LendingSystem = Depends(get_lending_system)
):
    """Outbound SMS attempts"""
    logs = system.sms_gateway.get_logs(user_id=user_id, status=status)
    return {
        "logs": [
            {
                "id": log.id,
                "user_id": log.user_id,
                "phone": log.phone,
                "status": log.status,
                "error": log.error,
                "created_at": log.created_at.isoformat()
            }
            for log in logs
        ]
    }


@router.get("/settings")
async def get_sms_settings(system: LendingSystem = Depends(get_lending_system)):
    """Current gateway settings; configured defaults until an admin saves some"""
    return sms_settings_response(system.sms_settings.get())


@router.api_route("/settings", methods=["PUT", "POST"])
async def save_sms_settings(
    request: SMSSettingsRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Create or update the gateway settings"""
    try:
        settings = system.sms_settings.update(
            mode=request.mode,
            username=request.username,
            local_server_url=request.local_server_url,
            password=request.password,
            is_active=request.is_active
        )
        return sms_settings_response(settings)
    except CLIENT_ERRORS as e:
        raise http_error(e)
