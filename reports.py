"""
Overflow reports and house-level collection events.

Report status moves pending -> assigned -> resolved, and a pending report may
be resolved directly. Each change overwrites the stored status.
"""

import logging
from datetime import datetime, timezone

import config
from accounts import get_user
from database import (
    NEWEST_FIRST,
    create_document,
    get_document_by_id,
    get_documents,
    serialize_doc,
    to_object_id,
    update_document,
)
from errors import InvalidTransition, NotFound, ValidationError
from schemas import CollectionRecord, Location, OverflowReport, Violation

logger = logging.getLogger(__name__)


def _missing(value) -> bool:
    return value is None or value == ""


def get_report(db, report_id: str) -> dict:
    return get_document_by_id(db, "overflowreport", report_id, "Report")


def create_report(db, resident_id: str, overflow_type: str, location: dict, remarks: str = None, photo_ref: str = None):
    if not resident_id or not overflow_type:
        raise ValidationError("residentId and overflowType are required")
    location = location or {}
    if _missing(location.get("lat")) or _missing(location.get("lng")):
        raise ValidationError("location.lat and location.lng are required")
    try:
        loc = Location(lat=location["lat"], lng=location["lng"], address=location.get("address") or "")
    except ValueError:
        raise ValidationError("location.lat and location.lng must be valid coordinates")

    get_user(db, resident_id, "resident")

    report = OverflowReport(
        residentId=resident_id,
        overflowType=overflow_type,
        location=loc,
        remarks=remarks,
        photoRef=photo_ref,
    )
    report_id = create_document(db, "overflowreport", report)
    logger.info("overflow report %s (%s) created by resident %s", report_id, overflow_type, resident_id)
    return get_report(db, report_id)


def assign_collector(db, report_id: str, collector_id: str):
    if not collector_id:
        raise ValidationError("assignedCollectorId is required")
    report = get_report(db, report_id)
    if report["status"] == "resolved":
        logger.warning("report %s is resolved, not assigning collector %s", report_id, collector_id)
        raise InvalidTransition("Report is already resolved")

    get_user(db, collector_id, "collector")

    logger.info("report %s assigned to collector %s", report_id, collector_id)
    return update_document(db, "overflowreport", report_id, {"status": "assigned", "assignedCollectorId": collector_id})


def resolve(db, report_id: str):
    report = get_report(db, report_id)
    if report["status"] == "resolved":
        return report
    logger.info("report %s resolved from %s", report_id, report["status"])
    return update_document(
        db, "overflowreport", report_id, {"status": "resolved", "resolved_at": datetime.now(timezone.utc)}
    )


def update_status(db, report_id: str, status: str, collector_id: str = None):
    if status == "resolved":
        return resolve(db, report_id)
    if status == "assigned":
        return assign_collector(db, report_id, collector_id)
    if status == "pending":
        raise InvalidTransition("Reports cannot move back to pending")
    raise ValidationError(f"Unknown status: {status}")


def list_reports(db, status: str = None, collector_id: str = None, resident_id: str = None):
    filt = {}
    if status:
        filt["status"] = status
    if collector_id:
        filt["assignedCollectorId"] = collector_id
    if resident_id:
        filt["residentId"] = resident_id
    return get_documents(db, "overflowreport", filt, sort=NEWEST_FIRST)


def resident_history(db, resident_id: str):
    return list_reports(db, resident_id=resident_id)


def list_houses(db):
    houses = get_documents(db, "house", sort=NEWEST_FIRST)
    residents = {u["house"]: str(u["_id"]) for u in db["user"].find({"role": "resident", "house": {"$ne": None}})}
    for house in houses:
        house["residentId"] = residents.get(house["id"])
    return houses


def _get_house(db, house_id: str) -> dict:
    house = db["house"].find_one({"_id": to_object_id(house_id, "House")})
    if house is None:
        raise NotFound("House not found")
    return serialize_doc(house)


def report_house_violation(db, house_id: str, reason: str, collector_id: str = None, photo_ref: str = None):
    """Record improper segregation at a house and lower its beacon score.

    The score drops by a fixed penalty and never goes below zero.
    """
    if not house_id or not reason:
        raise ValidationError("houseId and reason are required")
    house = _get_house(db, house_id)
    if collector_id:
        get_user(db, collector_id, "collector")

    score = max(0, house.get("beaconScore", config.DEFAULT_BEACON_SCORE) - config.SEGREGATION_PENALTY)
    house = update_document(db, "house", house_id, {"beaconScore": score})
    resident = _penalize_resident(db, house_id)

    violation = Violation(
        houseId=house_id,
        collectorId=collector_id,
        reason=reason,
        photoRef=photo_ref,
        beaconScoreAfter=score,
    )
    violation_id = create_document(db, "violation", violation)
    logger.info("violation %s at house %s, beacon score now %s", violation_id, house_id, score)
    return {
        "violation": get_document_by_id(db, "violation", violation_id, "Violation"),
        "house": house,
        "resident": resident,
    }


def _penalize_resident(db, house_id: str):
    # availability is gated on the profile score, not the house score
    user = db["user"].find_one({"role": "resident", "house": house_id})
    if user is None:
        return None
    profile = db["resident"].find_one({"userId": str(user["_id"])})
    if profile is None:
        return None
    score = max(0, profile.get("beaconScore", config.DEFAULT_BEACON_SCORE) - config.SEGREGATION_PENALTY)
    return update_document(db, "resident", str(profile["_id"]), {"beaconScore": score})


def record_collection(db, house_id: str, collector_id: str = None, waste_type: str = "mixed"):
    if not house_id:
        raise ValidationError("houseId is required")
    _get_house(db, house_id)
    if collector_id:
        get_user(db, collector_id, "collector")

    resident = db["user"].find_one({"role": "resident", "house": house_id})
    record = CollectionRecord(
        houseId=house_id,
        residentId=str(resident["_id"]) if resident else None,
        collectorId=collector_id,
        wasteType=waste_type or "mixed",
    )
    record_id = create_document(db, "collectionrecord", record)
    logger.info("collection at house %s recorded as %s", house_id, record_id)
    return get_document_by_id(db, "collectionrecord", record_id, "Collection record")
