"""
Admin endpoints (SMS flag reset, borrower contacts, activity log)
"""

from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException

from .dependencies import CLIENT_ERRORS, LendingSystem, get_lending_system, http_error
from .schemas import ResetSMSFlagsRequest, BorrowerContactRequest
from ..borrowers import StorageBorrowerDirectory


router = APIRouter()


@router.post("/reset-sms-flags")
async def reset_sms_flags(
    request: ResetSMSFlagsRequest,
    system: LendingSystem = Depends(get_lending_system)
) -> Dict[str, Any]:
    """Clear the reminder / overdue SMS flags so reminders are sent again"""
    try:
        changed = system.dispatcher.reset_dispatch_flags(
            reminders=request.reminders,
            overdue=request.overdue,
            loan_id=request.loan_id,
            performed_by=request.performed_by
        )
    except CLIENT_ERRORS as e:
        raise http_error(e)
    return {"terms_updated": changed, "message": "SMS flags reset"}


@router.put("/borrowers/{user_id}")
async def upsert_borrower_contact(
    user_id: str,
    request: BorrowerContactRequest,
    system: LendingSystem = Depends(get_lending_system)
) -> Dict[str, Any]:
    """Register or update the name and phone used for borrower messages"""
    directory = system.borrower_directory
    if not isinstance(directory, StorageBorrowerDirectory):
        raise HTTPException(status_code=400, detail="Borrower directory is read-only")
    try:
        contact = directory.add(user_id, request.name, request.phone)
    except CLIENT_ERRORS as e:
        raise http_error(e)
    return {"user_id": contact.user_id, "name": contact.name, "phone": contact.phone}


@router.get("/activity-logs")
async def get_activity_logs(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    limit: int = 100,
    system: LendingSystem = Depends(get_lending_system)
) -> Dict[str, Any]:
    """Recent activity, optionally for one entity"""
    if entity_type and entity_id:
        events = system.activity_log.get_events_for_entity(entity_type, entity_id, limit=limit)
    else:
        events = system.activity_log.get_all_events(limit=limit)
    return {
        "events": [
            {
                "id": e.id,
                "action": e.action.value,
                "entity_type": e.entity_type,
                "entity_id": e.entity_id,
                "description": e.description,
                "user_id": e.user_id,
                "metadata": e.metadata,
                "created_at": e.created_at.isoformat()
            }
            for e in events
        ]
    }


@router.get("/activity-logs/verify")
async def verify_activity_logs(system: LendingSystem = Depends(get_lending_system)) -> Dict[str, Any]:
    """Check the activity log hash chain"""
    return system.activity_log.verify_integrity()
