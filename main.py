import logging
import os
from contextlib import asynccontextmanager
from typing import Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import PyMongoError

import accounts
import config
import database
import messaging
import reports
import rewards
import training
from database import get_db
from errors import AppError, ValidationError
from schemas import Audience, ChatType, OverflowReport, Role
from security import acting_as, create_token, get_current_user, require_role

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes(database.db)
    yield


app = FastAPI(title=config.APP_NAME, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

chat_peers = messaging.ConnectionManager()


# ---------- Error handling ----------
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": list(e.get("loc", [])), "msg": e.get("msg")} for e in exc.errors()]
    return JSONResponse(status_code=400, content={"detail": "Missing or invalid fields", "errors": errors})


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.exception("store failure on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ---------- Models for requests ----------
class RegisterUser(BaseModel):
    name: Optional[str] = None
    phone: str
    password: str
    role: Role


class RegisterProfile(BaseModel):
    doorNumber: Optional[str] = None
    address: Optional[str] = None
    wardNumber: Optional[str] = None
    houseId: Optional[str] = None
    coordinates: Optional[List[float]] = None  # [lng, lat]
    employeeId: Optional[str] = None
    areaAssigned: Optional[str] = None
    authorityName: Optional[str] = None
    email: Optional[EmailStr] = None


class RegisterRequest(BaseModel):
    user: RegisterUser
    profile: Optional[RegisterProfile] = None


class LoginRequest(BaseModel):
    phone: str
    password: str


class StatusRequest(BaseModel):
    isAvailable: bool


class ProgressRequest(BaseModel):
    collectionProgress: int


class ReportLocation(BaseModel):
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    address: Optional[str] = None


class CreateReportRequest(BaseModel):
    residentId: Optional[str] = None
    overflowType: str
    location: Optional[ReportLocation] = None
    remarks: Optional[str] = None
    photoRef: Optional[str] = None


class LegacyReportRequest(BaseModel):
    residentId: Optional[str] = None
    overflowType: str
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)


class ReportStatusUpdate(BaseModel):
    status: OverflowReport.model_fields["status"].annotation = "resolved"  # Literal values
    assignedCollectorId: Optional[str] = None


class AssignRequest(BaseModel):
    assignedCollectorId: Optional[str] = None
    status: Optional[str] = "assigned"


class HouseViolationRequest(BaseModel):
    houseId: str
    reason: str
    collectorId: Optional[str] = None
    photoRef: Optional[str] = None


class CollectionCompleteRequest(BaseModel):
    houseId: str
    collectorId: Optional[str] = None
    wasteType: Optional[str] = "mixed"


class TipRequest(BaseModel):
    fromResidentId: Optional[str] = None
    toCollectorId: str
    amount: int
    message: Optional[str] = None


class FeedbackRequest(BaseModel):
    residentId: Optional[str] = None
    collectorId: str
    rating: int
    comment: Optional[str] = None


class BroadcastRequest(BaseModel):
    authorityId: Optional[str] = None
    message: str
    targetAudience: Audience = "all"


class ChatRequest(BaseModel):
    senderId: Optional[str] = None
    receiverId: Optional[str] = None
    group: Optional[str] = None
    message: str
    chatType: Optional[ChatType] = None


class DistributeRequestIn(BaseModel):
    residentId: Optional[str] = None
    itemType: str


class DistributeStatusUpdate(BaseModel):
    status: str
    collectorId: Optional[str] = None


class QuizSubmission(BaseModel):
    answers: Dict[str, int]


# ---------- Basic routes ----------
@app.get("/")
def root():
    return {"message": f"{config.APP_NAME} running"}


@app.get("/test")
def test_database():
    info = {
        "backend": "running",
        "database": "disconnected",
        "collections": [],
    }
    try:
        if database.db is not None:
            info["database"] = "connected"
            info["collections"] = database.db.list_collection_names()[:10]
    except PyMongoError as e:
        info["database"] = f"error: {str(e)[:80]}"
    return info


# ---------- Auth endpoints ----------
@app.post("/api/auth/register", status_code=201)
def register(req: RegisterRequest, db=Depends(get_db)):
    profile = req.profile.model_dump() if req.profile else {}
    result = accounts.register(db, req.user.model_dump(), profile)
    token = create_token(result["user"]["id"], result["user"]["role"])
    return {"token": token, **result}


@app.post("/api/auth/login")
def login(req: LoginRequest, db=Depends(get_db)):
    result = accounts.login(db, req.phone, req.password)
    token = create_token(result["user"]["id"], result["user"]["role"])
    return {"token": token, **result}


@app.get("/api/auth/me")
def me(user=Depends(get_current_user), db=Depends(get_db)):
    return {"user": accounts.user_view(db, user), "profile": accounts.get_profile(db, user)}


# ---------- Resident / collector status ----------
@app.post("/api/residents/{resident_id}/status")
def set_resident_status(
    resident_id: str,
    body: StatusRequest,
    user=Depends(require_role("resident")),
    db=Depends(get_db),
):
    profile = accounts.set_availability(db, acting_as(user, resident_id), body.isAvailable)
    return {"success": True, "isAvailable": profile["isAvailable"], "profile": profile}


@app.get("/api/residents/{resident_id}/history")
def resident_history(resident_id: str, db=Depends(get_db)):
    return reports.resident_history(db, resident_id)


@app.patch("/api/collectors/{collector_id}/progress")
def set_collector_progress(
    collector_id: str,
    body: ProgressRequest,
    user=Depends(require_role("collector")),
    db=Depends(get_db),
):
    profile = accounts.update_collection_progress(db, acting_as(user, collector_id), body.collectionProgress)
    return {"success": True, "profile": profile}


@app.get("/api/collector/houses")
def collector_houses(db=Depends(get_db)):
    return {"success": True, "houses": reports.list_houses(db)}


@app.post("/api/collector/report-house")
def report_house(body: HouseViolationRequest, user=Depends(require_role("collector")), db=Depends(get_db)):
    collector_id = acting_as(user, body.collectorId)
    result = reports.report_house_violation(db, body.houseId, body.reason, collector_id, body.photoRef)
    return {"success": True, **result}


@app.post("/api/collector/collection-complete")
def collection_complete(body: CollectionCompleteRequest, user=Depends(require_role("collector")), db=Depends(get_db)):
    record = reports.record_collection(db, body.houseId, acting_as(user, body.collectorId), body.wasteType)
    return {"success": True, "record": record}


# ---------- Overflow reports ----------
@app.post("/api/overflow-reports")
def create_overflow_report(body: CreateReportRequest, user=Depends(require_role("resident")), db=Depends(get_db)):
    location = body.location.model_dump() if body.location else None
    resident_id = acting_as(user, body.residentId)
    report = reports.create_report(db, resident_id, body.overflowType, location, body.remarks, body.photoRef)
    return {"success": True, "report": report}


@app.post("/api/overflow")
def create_overflow_report_legacy(body: LegacyReportRequest, user=Depends(require_role("resident")), db=Depends(get_db)):
    resident_id = acting_as(user, body.residentId)
    report = reports.create_report(db, resident_id, body.overflowType, {"lat": body.lat, "lng": body.lng})
    return {"success": True, "report": report}


@app.get("/api/overflow-reports")
def list_overflow_reports(status: Optional[str] = None, collectorId: Optional[str] = None, db=Depends(get_db)):
    return {"success": True, "reports": reports.list_reports(db, status=status, collector_id=collectorId)}


def _assignee(user: dict, collector_id: Optional[str]) -> Optional[str]:
    # collectors may only take reports for themselves
    if user["role"] == "collector":
        return acting_as(user, collector_id)
    return collector_id


@app.patch("/api/overflow-reports/{report_id}")
def update_overflow_report(
    report_id: str,
    body: Optional[ReportStatusUpdate] = None,
    user=Depends(require_role("collector", "authority")),
    db=Depends(get_db),
):
    body = body or ReportStatusUpdate()
    collector_id = _assignee(user, body.assignedCollectorId) if body.status == "assigned" else None
    report = reports.update_status(db, report_id, body.status, collector_id)
    return {"success": True, "report": report}


@app.put("/api/overflow-reports/{report_id}/assign")
def assign_overflow_report(
    report_id: str,
    body: AssignRequest,
    user=Depends(require_role("collector", "authority")),
    db=Depends(get_db),
):
    if body.status not in (None, "assigned"):
        raise ValidationError("Assignment sets status to assigned")
    return reports.assign_collector(db, report_id, _assignee(user, body.assignedCollectorId))


# ---------- Tips ----------
@app.post("/api/tips", status_code=201)
def send_tip(body: TipRequest, user=Depends(require_role("resident")), db=Depends(get_db)):
    tip = rewards.send_tip(db, acting_as(user, body.fromResidentId), body.toCollectorId, body.amount, body.message)
    return {"message": "Tip sent successfully", "tip": tip}


@app.get("/api/tips/analytics")
def tips_analytics(db=Depends(get_db)):
    return rewards.tip_analytics(db)


@app.get("/api/tips/collector/{collector_id}")
def collector_tips(collector_id: str, db=Depends(get_db)):
    return rewards.list_tips_for_collector(db, collector_id)


@app.get("/api/tips/collector/{collector_id}/summary")
def collector_tips_summary(collector_id: str, db=Depends(get_db)):
    return rewards.collector_tip_summary(db, collector_id)


# ---------- Feedback ----------
@app.post("/api/feedback", status_code=201)
def submit_feedback(body: FeedbackRequest, user=Depends(require_role("resident")), db=Depends(get_db)):
    resident_id = acting_as(user, body.residentId)
    feedback = rewards.submit_feedback(db, resident_id, body.collectorId, body.rating, body.comment)
    return {"message": "Feedback submitted", "feedback": feedback}


@app.get("/api/feedback")
def list_feedback(collectorId: Optional[str] = None, db=Depends(get_db)):
    return rewards.list_feedback(db, collectorId)


@app.get("/api/feedback/analytics")
def feedback_analytics(db=Depends(get_db)):
    return rewards.feedback_analytics(db)


@app.get("/api/feedback/collector/{collector_id}/summary")
def collector_feedback_summary(collector_id: str, db=Depends(get_db)):
    return rewards.collector_feedback_summary(db, collector_id)


# ---------- Broadcasts ----------
@app.post("/api/broadcasts", status_code=201)
def send_broadcast(body: BroadcastRequest, user=Depends(require_role("authority")), db=Depends(get_db)):
    broadcast = messaging.send_broadcast(db, acting_as(user, body.authorityId), body.message, body.targetAudience)
    return {"message": "Broadcast sent successfully", "broadcast": broadcast}


@app.get("/api/broadcasts")
def list_broadcasts(audience: Optional[Audience] = None, db=Depends(get_db)):
    return messaging.list_broadcasts(db, audience)


# ---------- Chat ----------
@app.post("/api/chats", status_code=201)
def send_chat(body: ChatRequest, user=Depends(get_current_user), db=Depends(get_db)):
    sender_id = acting_as(user, body.senderId)
    chat = messaging.send_chat(db, sender_id, body.message, body.receiverId, body.group, body.chatType)
    return {"message": "Message sent", "chat": chat}


@app.get("/api/chats/private/{user1}/{user2}")
def private_chat(user1: str, user2: str, db=Depends(get_db)):
    return messaging.private_conversation(db, user1, user2)


@app.get("/api/chats/group/{group_name}")
def group_chat(group_name: str, db=Depends(get_db)):
    return messaging.group_conversation(db, group_name)


@app.websocket(config.WS_PATH)
async def chat_socket(websocket: WebSocket, db=Depends(get_db)):
    await chat_peers.connect(websocket)
    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                await websocket.send_json({"type": "error", "message": "Frame must be JSON"})
                continue
            try:
                chat = messaging.chat_from_frame(db, frame)
            except AppError as e:
                logger.warning("rejected chat frame: %s", e.message)
                await websocket.send_json({"type": "error", "message": e.message})
                continue
            except PyMongoError:
                logger.exception("could not store chat frame")
                await websocket.send_json({"type": "error", "message": "Message could not be saved"})
                continue
            await chat_peers.broadcast({"type": "chat", "chat": chat})
    except WebSocketDisconnect:
        pass
    finally:
        chat_peers.disconnect(websocket)


# ---------- Distribute requests ----------
@app.get("/api/distribute-requests/item-types")
def distribute_item_types():
    return messaging.ITEM_TYPES


@app.post("/api/distribute-requests", status_code=201)
def create_distribute_request(body: DistributeRequestIn, user=Depends(require_role("resident")), db=Depends(get_db)):
    return messaging.create_distribute_request(db, acting_as(user, body.residentId), body.itemType)


@app.patch("/api/distribute-requests/{request_id}/status")
def update_distribute_request(
    request_id: str,
    body: DistributeStatusUpdate,
    user=Depends(require_role("collector")),
    db=Depends(get_db),
):
    return messaging.update_distribute_status(db, request_id, body.status, acting_as(user, body.collectorId))


@app.get("/api/distribute-requests")
def list_distribute_requests(status: Optional[str] = None, residentId: Optional[str] = None, db=Depends(get_db)):
    return messaging.list_distribute_requests(db, status=status, resident_id=residentId)


# ---------- Training ----------
@app.get("/api/training/modules")
def training_modules(audience: Literal["resident", "collector"] = "resident"):
    return training.list_modules(audience)


@app.post("/api/training/modules/{module_id}/submit")
def submit_quiz(module_id: str, body: QuizSubmission, user=Depends(get_current_user), db=Depends(get_db)):
    progress = training.submit_quiz_answers(db, user, module_id, body.answers)
    return {"progress": progress, **training.progress_for_user(db, user)}


@app.get("/api/training/progress")
def my_training_progress(user=Depends(get_current_user), db=Depends(get_db)):
    return training.progress_for_user(db, user)


@app.get("/api/training/progress/{user_id}")
def user_training_progress(user_id: str, authority=Depends(require_role("authority")), db=Depends(get_db)):
    return training.progress_for_user(db, accounts.get_user(db, user_id))


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
