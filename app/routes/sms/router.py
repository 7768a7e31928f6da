from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.orm import Session
import logging

from app.database import get_db
from app.models.all_models import User, Patient
from app.routes.utils.security import require_permission
from app.schemas.clinic import SmsBroadcastRequest
from app.services import audit
from app.services.notifications import NotificationService, get_notifier

router = APIRouter(prefix="/sms", tags=["sms"])
logger = logging.getLogger(__name__)

@router.post("/broadcast", status_code=status.HTTP_202_ACCEPTED)
async def broadcast(
    broadcast_data: SmsBroadcastRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_permission("sms.broadcast")),
    notifier: NotificationService = Depends(get_notifier),
    db: Session = Depends(get_db)
):
    """Send one message to every patient of the clinic with a phone number."""
    if current_user.clinic is not None and not current_user.clinic.sms_enabled:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="SMS is disabled for this clinic"
        )

    phones = [
        phone for (phone,) in db.query(Patient.phone).filter(
            Patient.clinic_id == current_user.clinic_id,
            Patient.phone.isnot(None)
        ).distinct()
        if phone
    ]
    background_tasks.add_task(notifier.send_bulk_sms, phones, broadcast_data.message)

    audit.record(db, "sms.broadcast", "clinic", current_user.clinic_id, actor=current_user,
                 details={"recipients": len(phones)})
    db.commit()
    logger.info("SMS broadcast to %s recipients queued by %s", len(phones), current_user.email)
    return {"message": "Broadcast queued", "recipients": len(phones)}
