"""
Broadcasts, chat and distribute requests.
"""

import logging
from datetime import datetime, timezone

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError as SchemaError

from accounts import get_user
from database import NEWEST_FIRST, OLDEST_FIRST, create_document, get_document_by_id, get_documents, update_document
from errors import InvalidTransition, ValidationError
from schemas import Broadcast, Chat, DistributeRequest

logger = logging.getLogger(__name__)

# Display figures, not live subscriber counts.
RECIPIENT_COUNTS = {
    "all": 156,
    "residents": 120,
    "collectors": 28,
    "authorities": 8,
}

DEFAULT_GROUP = "All"

ITEM_TYPES = ["Old Clothes", "Old Toys", "Extra Food", "Electronics", "Books", "Furniture"]


# ---------- Broadcasts ----------

def send_broadcast(db, authority_id: str, message: str, target_audience: str = "all"):
    if not authority_id or not message:
        raise ValidationError("authorityId and message are required")
    target_audience = target_audience or "all"
    if target_audience not in RECIPIENT_COUNTS:
        raise ValidationError(f"Unknown target audience: {target_audience}")

    get_user(db, authority_id, "authority")

    broadcast = Broadcast(
        authorityId=authority_id,
        message=message,
        targetAudience=target_audience,
        recipientCount=RECIPIENT_COUNTS[target_audience],
        sentAt=datetime.now(timezone.utc),
    )
    broadcast_id = create_document(db, "broadcast", broadcast)
    logger.info("broadcast %s sent to %s by %s", broadcast_id, target_audience, authority_id)
    return get_document_by_id(db, "broadcast", broadcast_id, "Broadcast")


def list_broadcasts(db, audience: str = None):
    filt = {"targetAudience": {"$in": [audience, "all"]}} if audience else {}
    return get_documents(db, "broadcast", filt, sort=NEWEST_FIRST)


# ---------- Chat ----------

def send_chat(db, sender_id: str, message: str, receiver_id: str = None, group: str = None, chat_type: str = None):
    """Store a private or group message.

    A message goes either to one receiver or to one group, never both. When
    chat_type is omitted it follows from which of the two is given.
    """
    if not sender_id or not message:
        raise ValidationError("senderId and message are required")
    if receiver_id and group:
        raise ValidationError("A message goes to a receiver or a group, not both")

    if chat_type is None:
        chat_type = "private" if receiver_id else "group"
    if chat_type == "private":
        if not receiver_id:
            raise ValidationError("receiverId is required for private messages")
    elif chat_type == "group":
        if receiver_id:
            raise ValidationError("Group messages cannot have a receiverId")
        group = group or DEFAULT_GROUP
    else:
        raise ValidationError(f"Unknown chat type: {chat_type}")

    get_user(db, sender_id)
    if receiver_id:
        get_user(db, receiver_id)

    try:
        chat = Chat(
            senderId=sender_id,
            receiverId=receiver_id,
            group=group if chat_type == "group" else None,
            chatType=chat_type,
            message=message,
            sentAt=datetime.now(timezone.utc),
        )
    except SchemaError as e:
        raise ValidationError(f"Invalid chat message: {e.errors()[0]['msg']}")
    chat_id = create_document(db, "chat", chat)
    return get_document_by_id(db, "chat", chat_id, "Chat")


def private_conversation(db, user1: str, user2: str):
    filt = {
        "$or": [
            {"senderId": user1, "receiverId": user2},
            {"senderId": user2, "receiverId": user1},
        ]
    }
    return get_documents(db, "chat", filt, sort=OLDEST_FIRST)


def group_conversation(db, group: str):
    return get_documents(db, "chat", {"group": group}, sort=OLDEST_FIRST)


class ConnectionManager:
    """Live chat peers. Delivery is best-effort: a peer that fails to
    receive is dropped and never gets the message replayed."""

    def __init__(self):
        self.active_connections: list = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info("websocket peer connected, %d online", len(self.active_connections))

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
            logger.info("websocket peer left, %d online", len(self.active_connections))

    async def broadcast(self, payload: dict):
        data = jsonable_encoder(payload)
        for connection in list(self.active_connections):
            try:
                await connection.send_json(data)
            except Exception:
                logger.warning("dropping websocket peer after failed send")
                self.disconnect(connection)


def chat_from_frame(db, frame) -> dict:
    if not isinstance(frame, dict):
        raise ValidationError("Frame must be a JSON object")
    for key in ("sender", "message", "receiver", "group"):
        if frame.get(key) is not None and not isinstance(frame[key], str):
            raise ValidationError(f"{key} must be a string")
    return send_chat(
        db,
        sender_id=frame.get("sender"),
        message=frame.get("message"),
        receiver_id=frame.get("receiver") or None,
        group=frame.get("group") or None,
    )


# ---------- Distribute requests ----------

def create_distribute_request(db, resident_id: str, item_type: str):
    if not resident_id or not item_type:
        raise ValidationError("residentId and itemType are required")
    get_user(db, resident_id, "resident")

    request_id = create_document(db, "distributerequest", DistributeRequest(residentId=resident_id, itemType=item_type))
    logger.info("distribute request %s (%s) from %s", request_id, item_type, resident_id)
    return get_document_by_id(db, "distributerequest", request_id, "Request")


def update_distribute_status(db, request_id: str, status: str, collector_id: str = None):
    if status not in ("accepted", "ignored"):
        raise ValidationError("status must be accepted or ignored")
    request = get_document_by_id(db, "distributerequest", request_id, "Request")
    if request["status"] != "pending":
        raise InvalidTransition(f"Request already {request['status']}")
    if collector_id:
        get_user(db, collector_id, "collector")

    logger.info("distribute request %s %s", request_id, status)
    return update_document(db, "distributerequest", request_id, {"status": status, "collectorId": collector_id})


def list_distribute_requests(db, status: str = None, resident_id: str = None):
    filt = {}
    if status:
        filt["status"] = status
    if resident_id:
        filt["residentId"] = resident_id
    return get_documents(db, "distributerequest", filt, sort=NEWEST_FIRST)
