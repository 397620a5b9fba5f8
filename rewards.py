"""
Tips and feedback from residents to collectors.

Both are immutable records. Totals and averages are folded from the stored
records on every read; nothing is aggregated incrementally.
"""

import logging

from accounts import get_user
from database import NEWEST_FIRST, create_document, get_document_by_id, get_documents
from errors import ValidationError
from schemas import Feedback, Tip

logger = logging.getLogger(__name__)

SMALL_TIP_LIMIT = 30
LARGE_TIP_FLOOR = 75


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def send_tip(db, from_resident_id: str, to_collector_id: str, amount, message: str = None):
    if not from_resident_id or not to_collector_id:
        raise ValidationError("fromResidentId and toCollectorId are required")
    if not _is_int(amount) or amount <= 0:
        raise ValidationError("amount must be a positive integer")

    resident = get_user(db, from_resident_id, "resident")
    get_user(db, to_collector_id, "collector")

    tip = Tip(
        fromResidentId=from_resident_id,
        toCollectorId=to_collector_id,
        house=resident.get("house"),
        amount=amount,
        message=message,
    )
    tip_id = create_document(db, "tip", tip)
    logger.info("tip %s of %s from %s to %s", tip_id, amount, from_resident_id, to_collector_id)
    return get_document_by_id(db, "tip", tip_id, "Tip")


def list_tips_for_collector(db, collector_id: str):
    return get_documents(db, "tip", {"toCollectorId": collector_id}, sort=NEWEST_FIRST)


def _tip_summary(collector_id: str, tips) -> dict:
    total = sum(t["amount"] for t in tips)
    count = len(tips)
    return {
        "collectorId": collector_id,
        "totalTips": total,
        "transactionCount": count,
        "averageTip": total / count if count else 0.0,
    }


def collector_tip_summary(db, collector_id: str) -> dict:
    return _tip_summary(collector_id, get_documents(db, "tip", {"toCollectorId": collector_id}))


def tip_analytics(db) -> dict:
    tips = get_documents(db, "tip")

    by_collector = {}
    for tip in tips:
        by_collector.setdefault(tip["toCollectorId"], []).append(tip)
    collectors = [_tip_summary(cid, ctips) for cid, ctips in by_collector.items()]
    collectors.sort(key=lambda s: s["totalTips"], reverse=True)

    overall = _tip_summary(None, tips)
    return {
        "totalTips": overall["totalTips"],
        "totalTransactions": overall["transactionCount"],
        "averageTip": overall["averageTip"],
        "collectors": collectors,
        "distribution": {
            "small": sum(1 for t in tips if t["amount"] < SMALL_TIP_LIMIT),
            "medium": sum(1 for t in tips if SMALL_TIP_LIMIT <= t["amount"] < LARGE_TIP_FLOOR),
            "large": sum(1 for t in tips if t["amount"] >= LARGE_TIP_FLOOR),
        },
    }


def submit_feedback(db, resident_id: str, collector_id: str, rating, comment: str = None):
    if not resident_id or not collector_id:
        raise ValidationError("residentId and collectorId are required")
    if not _is_int(rating) or not 1 <= rating <= 5:
        raise ValidationError("rating must be an integer from 1 to 5")

    get_user(db, resident_id, "resident")
    get_user(db, collector_id, "collector")

    feedback = Feedback(residentId=resident_id, collectorId=collector_id, rating=rating, comment=comment)
    feedback_id = create_document(db, "feedback", feedback)
    logger.info("feedback %s (%s stars) for collector %s", feedback_id, rating, collector_id)
    return get_document_by_id(db, "feedback", feedback_id, "Feedback")


def list_feedback(db, collector_id: str = None):
    filt = {"collectorId": collector_id} if collector_id else {}
    return get_documents(db, "feedback", filt, sort=NEWEST_FIRST)


def _feedback_summary(collector_id: str, feedback) -> dict:
    count = len(feedback)
    return {
        "collectorId": collector_id,
        "feedbackCount": count,
        "averageRating": sum(f["rating"] for f in feedback) / count if count else 0.0,
    }


def collector_feedback_summary(db, collector_id: str) -> dict:
    return _feedback_summary(collector_id, get_documents(db, "feedback", {"collectorId": collector_id}))


def feedback_analytics(db) -> dict:
    feedback = get_documents(db, "feedback")

    by_collector = {}
    for item in feedback:
        by_collector.setdefault(item["collectorId"], []).append(item)
    collectors = [_feedback_summary(cid, items) for cid, items in by_collector.items()]
    collectors.sort(key=lambda s: s["averageRating"], reverse=True)

    overall = _feedback_summary(None, feedback)
    return {
        "totalFeedback": overall["feedbackCount"],
        "averageRating": overall["averageRating"],
        "ratingDistribution": {str(r): sum(1 for f in feedback if f["rating"] == r) for r in range(5, 0, -1)},
        "collectors": collectors,
    }
