"""
Database Schemas for BinBeacon

Each Pydantic model represents a MongoDB collection.
Collection name = lowercase of class name (User -> "user", OverflowReport -> "overflowreport").
References to other documents are stored as string ids.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

import config

Role = Literal['resident', 'collector', 'authority']
ReportStatus = Literal['pending', 'assigned', 'resolved']
Audience = Literal['all', 'residents', 'collectors', 'authorities']
ChatType = Literal['private', 'group']
DistributeStatus = Literal['pending', 'accepted', 'ignored']


class User(BaseModel):
    name: str = Field(..., description="Display name")
    phone: str = Field(..., description="Login phone number, unique")
    password_hash: str = Field(..., description="Hashed password")
    role: Role = Field(..., description="Role of the account, fixed at registration")
    house: Optional[str] = Field(None, description="House id, residents only")


class GeoPoint(BaseModel):
    type: Literal['Point'] = 'Point'
    coordinates: List[float] = Field(default_factory=lambda: list(config.DEFAULT_COORDINATES), description="[lng, lat]")

    @field_validator('coordinates')
    @classmethod
    def lng_lat_in_range(cls, v):
        if len(v) != 2:
            raise ValueError("coordinates must be [lng, lat]")
        lng, lat = v
        if not -180 <= lng <= 180 or not -90 <= lat <= 90:
            raise ValueError("coordinates out of range")
        return v


class House(BaseModel):
    wardNumber: str = Field('WARD-1')
    houseNumber: str = Field('UNKNOWN')
    houseId: str = Field(..., description="Municipal house identifier")
    address: str = Field('Residence - Delhi')
    location: GeoPoint = Field(default_factory=GeoPoint)
    beaconScore: int = Field(config.DEFAULT_BEACON_SCORE, ge=0, le=100, description="Segregation score of the house")


class Resident(BaseModel):
    userId: str
    doorNumber: str = ''
    address: str = ''
    beaconScore: int = Field(config.DEFAULT_BEACON_SCORE, ge=0, le=100)
    isAvailable: bool = True


class Collector(BaseModel):
    userId: str
    employeeId: str = ''
    areaAssigned: str = ''
    collectionProgress: int = Field(0, ge=0, le=100, description="Percent of today's route collected")


class Authority(BaseModel):
    userId: str
    authorityName: str
    employeeId: str = ''
    email: Optional[EmailStr] = None


class Location(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: Optional[str] = Field('', description="Nearest address or landmark")


class OverflowReport(BaseModel):
    residentId: str = Field(..., description="Reporting resident user id")
    overflowType: str = Field(..., description="garbage, plastic, sewage, other, ...")
    location: Location
    remarks: Optional[str] = None
    photoRef: Optional[str] = Field(None, description="Reference to an uploaded photo")
    status: ReportStatus = Field('pending')
    assignedCollectorId: Optional[str] = None
    resolved_at: Optional[datetime] = None


class Violation(BaseModel):
    houseId: str
    collectorId: Optional[str] = None
    reason: str
    photoRef: Optional[str] = None
    penalty: int = config.SEGREGATION_PENALTY
    beaconScoreAfter: int


class CollectionRecord(BaseModel):
    houseId: str
    residentId: Optional[str] = None
    collectorId: Optional[str] = None
    wasteType: str = 'mixed'
    status: Literal['collected', 'pending', 'reported'] = 'collected'


class Tip(BaseModel):
    fromResidentId: str
    toCollectorId: str
    house: Optional[str] = Field(None, description="House id of the tipping resident")
    amount: int = Field(..., gt=0)
    message: Optional[str] = None


class Feedback(BaseModel):
    residentId: str
    collectorId: str
    rating: int = Field(..., ge=1, le=5, description="1-5 star feedback")
    comment: Optional[str] = None


class Broadcast(BaseModel):
    authorityId: str
    message: str
    targetAudience: Audience = 'all'
    recipientCount: int = 0
    sentAt: datetime


class Chat(BaseModel):
    senderId: str
    receiverId: Optional[str] = None
    group: Optional[str] = None
    chatType: ChatType
    message: str
    sentAt: datetime


class DistributeRequest(BaseModel):
    residentId: str
    itemType: str = Field(..., description="Old Clothes, Old Toys, Extra Food, Electronics, Books, Furniture")
    status: DistributeStatus = 'pending'
    collectorId: Optional[str] = None


class TrainingProgress(BaseModel):
    userId: str
    moduleId: str
    completed: bool = False
    score: int = Field(0, ge=0, le=100)
    attempts: int = 0
