import asyncio
import datetime
import json
import logging
from typing import Optional

from fastapi import (
    Depends, FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect, status
)
from fastapi.responses import JSONResponse

import db
from app.celery_app import celery_app
from app.services.invite_delivery import InviteNotifier
from app.services.realtime import HouseholdHub
from app.services.status_broadcast import StatusBroadcaster
from app.types.delivery_contract import (
    AppInviteRequest,
    DeliveryRequest,
    HouseholdInfo,
    InviteDraft,
    InviteReply,
    PushSubscriptionBody,
    StatusUpdate,
)
from app.utils.push import WebPushSender
from app.utils.sms import TelnyxSmsSender
from config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
_LOGGER = logging.getLogger(__name__)

app = FastAPI(title="Circles API")

# Real-time hub and provider adapters live for the whole process

@app.on_event("startup")
async def startup_event():
    app.state.hub = HouseholdHub()
    app.state.push_sender = WebPushSender.from_settings()
    app.state.sms_sender = TelnyxSmsSender.from_settings()

@app.on_event("shutdown")
async def shutdown_event():
    app.state.hub.close()
    await db.dispose_engine()

# --------------------------------------------
# Dependencies
# --------------------------------------------

def get_notifier(request: Request) -> InviteNotifier:
    state = request.app.state
    return InviteNotifier(state.push_sender, state.sms_sender, state.hub)


def get_broadcaster(request: Request) -> StatusBroadcaster:
    state = request.app.state
    return StatusBroadcaster(state.hub, state.push_sender)


async def current_household(x_household_id: Optional[str] = Header(None)) -> HouseholdInfo:
    """Household of the caller; token issuance happens upstream of this service."""
    household = await db.get_household(x_household_id) if x_household_id else None
    if household is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "No household found")
    return household


def current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    if not x_user_id:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Authentication required")
    return x_user_id

# --------------------------------------------
# Health
# --------------------------------------------

@app.get("/health")
async def health():
    return {
        "status": "ok",
        "timestamp": datetime.datetime.now(tz=datetime.timezone.utc).isoformat(),
    }

# --------------------------------------------
# Invites
# --------------------------------------------

@app.post("/api/invites", status_code=status.HTTP_201_CREATED)
async def create_invite(
    draft: InviteDraft,
    household: HouseholdInfo = Depends(current_household),
    notifier: InviteNotifier = Depends(get_notifier),
):
    invite = await notifier.create_invite(household, draft)
    recipients = await db.fetch_invite_recipients(invite.id)
    return {
        **invite.model_dump(mode="json", by_alias=True),
        "type": "sent",
        "recipients": recipients,
    }


@app.put("/api/invites/{invite_id}/respond")
async def respond_to_invite(
    invite_id: str,
    reply: InviteReply,
    household: HouseholdInfo = Depends(current_household),
    notifier: InviteNotifier = Depends(get_notifier),
):
    try:
        await notifier.respond_to_invite(invite_id, household, reply.response)
    except LookupError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Invite not found")
    return {"message": f"Invite {reply.response}"}


@app.post("/api/invites/{invite_id}/deliver")
async def deliver_invite(
    invite_id: str,
    body: Optional[DeliveryRequest] = None,
    background: bool = False,
    household: HouseholdInfo = Depends(current_household),
    notifier: InviteNotifier = Depends(get_notifier),
):
    invite = await db.get_invite(invite_id)
    if invite is None or invite.created_by_household_id != household.id:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Invite not found")

    methods = dict(body.delivery_methods) if body else {}
    if background:
        # Broker publish blocks while kombu (re)connects
        await asyncio.to_thread(
            celery_app.send_task,
            "app.workers.delivery.redeliver",
            args=[invite_id, methods],
            queue="delivery",
        )
        return JSONResponse({"queued": True, "inviteId": invite_id}, status_code=status.HTTP_202_ACCEPTED)

    try:
        outcome = await notifier.deliver_stored_invite(invite_id, methods)
    except LookupError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Invite not found")
    return outcome.model_dump(mode="json", by_alias=True)

# --------------------------------------------
# Status
# --------------------------------------------

@app.get("/api/status")
async def contact_statuses(household: HouseholdInfo = Depends(current_household)):
    return await db.fetch_contact_statuses(household.id)


@app.put("/api/status")
async def update_status(
    change: StatusUpdate,
    household: HouseholdInfo = Depends(current_household),
    broadcaster: StatusBroadcaster = Depends(get_broadcaster),
):
    try:
        updated = await broadcaster.update_status(household, change)
    except LookupError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "No household found")
    return updated.status.model_dump(mode="json", by_alias=True)


@app.post("/api/status/subscribe")
async def save_subscription(body: PushSubscriptionBody, user_id: str = Depends(current_user_id)):
    if not body.subscription:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Subscription required")
    if not await db.save_push_subscription(user_id, body.subscription):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "User not found")
    return {"message": "Push subscription saved"}


@app.delete("/api/status/subscribe")
async def remove_subscription(user_id: str = Depends(current_user_id)):
    await db.clear_push_subscription(user_id)
    return {"message": "Push subscription removed"}

# --------------------------------------------
# Contacts
# --------------------------------------------

@app.post("/api/contacts/app-invite")
async def app_invite(
    body: AppInviteRequest,
    household: HouseholdInfo = Depends(current_household),
    notifier: InviteNotifier = Depends(get_notifier),
):
    result = await notifier.send_app_invite(body.phone, household.name)
    if not result.success:
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, result.error or "SMS service unavailable")
    return {"message": "App invite sent", "messageId": result.message_id}

# --------------------------------------------
# Real-time socket
# --------------------------------------------

@app.websocket("/ws")
async def household_socket(websocket: WebSocket):
    """Clients send {"event": "join:household" | "leave:household", "data": <id>}."""
    hub: HouseholdHub = websocket.app.state.hub
    await websocket.accept()
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                _LOGGER.debug("Ignoring malformed socket frame")
                continue
            if not isinstance(message, dict):
                continue
            event, household_id = message.get("event"), message.get("data")
            if not household_id:
                continue
            if event == "join:household":
                hub.join(str(household_id), websocket)
            elif event == "leave:household":
                hub.leave(str(household_id), websocket)
            else:
                _LOGGER.debug("Ignoring socket event %r", event)
    except WebSocketDisconnect:
        _LOGGER.debug("Socket disconnected")
    finally:
        hub.disconnect(websocket)
