"""Callable functions: on-demand compliance scoring and direct notification send."""

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from .. import audit, errors, models, policy, schemas
from ..auth import get_current_actor
from ..database import get_db
from ..services import lifecycle
from ..services.dispatcher import NotificationDispatcher, deliver_lifecycle_events
from ..services.events import NotificationRequest

router = APIRouter(prefix="/api/functions", tags=["functions"])


@router.post("/compute-compliance", response_model=schemas.ComplianceResultOut)
def compute_compliance(
    data: schemas.ComputeComplianceRequest,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    result, events = lifecycle.compute_compliance(db, data.shop_id, actor)
    background.add_task(deliver_lifecycle_events, events)
    return schemas.ComplianceResultOut(
        score=result.score,
        status=result.status,
        factors=result.factor_breakdown(),
        recommendations=list(result.recommendations),
    )


@router.post(
    "/send-notification",
    response_model=schemas.SendNotificationResponse,
    response_model_by_alias=True,
)
async def send_notification(
    data: schemas.SendNotificationRequest,
    db: Session = Depends(get_db),
    actor: policy.Principal = Depends(get_current_actor),
):
    policy.require(actor, "notification.send", policy.Resource("notification"), policy.RoleDirectory(db))
    if db.get(models.Actor, data.user_id) is None:
        raise errors.NotFoundError("Recipient not found")
    request = NotificationRequest(
        recipient_id=data.user_id,
        type=data.type,
        title=data.title,
        message=data.message,
        shop_id=data.shop_id,
        channels=tuple(dict.fromkeys(data.channels)),
    )
    result = await NotificationDispatcher(db).dispatch(request)
    audit.record(
        db,
        actor.id,
        "notification.send",
        "notification",
        result.notification_id,
        details={"channels": {c: o.status for c, o in result.channels.items()}},
    )
    return schemas.SendNotificationResponse(
        success=result.success,
        notification_id=result.notification_id,
        channel_results=result.channel_results(),
    )
