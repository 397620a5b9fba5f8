"""
Training modules, quiz scoring and per-user completion.

Progress is stored in the "trainingprogress" collection, one document per
(userId, moduleId). Submitting a quiz marks the module completed whatever the
score; the score is kept alongside.
"""

import logging
from datetime import datetime, timezone

from pymongo.errors import DuplicateKeyError

from database import OLDEST_FIRST, get_documents, serialize_doc
from errors import NotFound, ValidationError
from schemas import TrainingProgress

logger = logging.getLogger(__name__)


def _module(module_id, title, short_title, minutes, answers):
    return {
        "id": module_id,
        "title": title,
        "shortTitle": short_title,
        "estimatedMinutes": minutes,
        "level": "basic",
        "answerKey": {f"q{i}": answer for i, answer in enumerate(answers, start=1)},
    }


RESIDENT_MODULES = [
    _module("types-of-waste", "Understanding Types of Waste & Segregation", "Types of Waste", 3, [1, 1, 2]),
    _module("home-composting", "Basics of Home Composting", "Home Composting", 3, [1, 0, 2]),
    _module("responsible-disposal", "Responsible Waste Disposal & Community Cleanliness", "Responsible Disposal", 3, [1, 1, 2]),
    _module("rules-and-beacon-score", "Local Rules, Penalties & Beacon Score", "Rules & Beacon Score", 3, [1, 2, 0]),
]

COLLECTOR_MODULES = [
    _module("worker-safety", "Safety & PPE for Waste Workers", "Worker Safety", 3, [1, 1, 1]),
    _module("sop-collection", "Standard Operating Procedure for Collection", "Collection SOP", 3, [2, 2, 1]),
    _module("dignity-rights", "Dignity, Rights & Welfare of Sanitation Workers", "Dignity & Rights", 3, [1, 1, 2]),
]

CATALOG = {
    "resident": RESIDENT_MODULES,
    "collector": COLLECTOR_MODULES,
    "authority": [],
}


def _percent(part, whole) -> int:
    if not whole:
        return 0
    return int(part / whole * 100 + 0.5)


def public_module(module: dict) -> dict:
    view = {k: v for k, v in module.items() if k != "answerKey"}
    view["questionIds"] = list(module["answerKey"])
    return view


def list_modules(audience: str):
    if audience not in ("resident", "collector"):
        raise ValidationError("audience must be resident or collector")
    return [public_module(m) for m in CATALOG[audience]]


def find_module(role: str, module_id: str) -> dict:
    for module in CATALOG.get(role, []):
        if module["id"] == module_id:
            return module
    raise NotFound(f"Training module {module_id} not found")


def score_answers(module: dict, answers: dict) -> int:
    key = module["answerKey"]
    correct = sum(1 for qid, answer in key.items() if answers.get(qid) == answer)
    return _percent(correct, len(key) or 1)


def overall_completion(completed: int, total: int) -> int:
    return _percent(completed, total)


def submit_quiz_answers(db, user: dict, module_id: str, answers: dict) -> dict:
    if not isinstance(answers, dict):
        raise ValidationError("answers must map question ids to option indexes")
    module = find_module(user["role"], module_id)
    score = score_answers(module, answers)

    progress = TrainingProgress(userId=user["id"], moduleId=module_id, completed=True, score=score)
    filt = {"userId": progress.userId, "moduleId": progress.moduleId}
    now = datetime.now(timezone.utc)
    update = {
        "$set": {"completed": progress.completed, "score": progress.score, "updated_at": now},
        "$inc": {"attempts": 1},
        "$setOnInsert": {"created_at": now},
    }
    try:
        db["trainingprogress"].update_one(filt, update, upsert=True)
    except DuplicateKeyError:
        # a concurrent first submission created the record
        db["trainingprogress"].update_one(filt, update)

    logger.info("user %s scored %s%% on %s", user["id"], score, module_id)
    return serialize_doc(db["trainingprogress"].find_one(filt))


def progress_for_user(db, user: dict) -> dict:
    modules = CATALOG.get(user["role"], [])
    module_ids = {m["id"] for m in modules}
    progress = [
        p for p in get_documents(db, "trainingprogress", {"userId": user["id"]}, sort=OLDEST_FIRST)
        if p["moduleId"] in module_ids
    ]
    completed = sum(1 for p in progress if p.get("completed"))
    return {
        "userId": user["id"],
        "progress": progress,
        "completedModules": completed,
        "totalModules": len(modules),
        "overallCompletion": overall_completion(completed, len(modules)),
        "trainingCompleted": bool(modules) and completed == len(modules),
    }
