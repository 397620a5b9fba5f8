"""
Registration, login and role profiles.

A user owns exactly one profile document, stored in the collection named
after its role ("resident", "collector" or "authority") and keyed by userId.
Residents also own the House created for them at registration.
"""

import logging
import time

from pydantic import ValidationError as SchemaError
from pymongo.errors import DuplicateKeyError, PyMongoError

import config
from database import create_document, delete_document, get_document_by_id, serialize_doc, to_object_id
from errors import DuplicatePhone, InvalidCredentials, NotFound, PersistenceError, ValidationError
from schemas import Authority, Collector, GeoPoint, House, Resident, User
from security import hash_password, verify_password

logger = logging.getLogger(__name__)

ROLES = ("resident", "collector", "authority")

PROFILE_SCHEMAS = {
    "resident": Resident,
    "collector": Collector,
    "authority": Authority,
}

PROFILE_FIELDS = {
    "resident": ("doorNumber", "address", "beaconScore", "isAvailable"),
    "collector": ("employeeId", "areaAssigned", "collectionProgress"),
    "authority": ("authorityName", "employeeId", "email"),
}


def get_user(db, user_id: str, role: str = None) -> dict:
    """Load a user by id, optionally insisting on a role.

    A user of another role is reported the same way as a missing one.
    """
    what = role.capitalize() if role else "User"
    user = db["user"].find_one({"_id": to_object_id(user_id, what)})
    if user is None or (role and user.get("role") != role):
        raise NotFound(f"{what} not found")
    return serialize_doc(user)


def user_view(db, user: dict) -> dict:
    view = {
        "id": user["id"],
        "name": user.get("name"),
        "phone": user.get("phone"),
        "role": user.get("role"),
        "house": None,
        "created_at": user.get("created_at"),
    }
    if user.get("house"):
        try:
            view["house"] = get_document_by_id(db, "house", user["house"], "House")
        except NotFound:
            logger.warning("user %s references missing house %s", user["id"], user["house"])
            view["house"] = user["house"]
    return view


def profile_view(role: str, profile: dict, house: dict = None) -> dict:
    view = {"id": profile["userId"]}
    for field in PROFILE_FIELDS[role]:
        view[field] = profile.get(field)
    if role == "resident" and isinstance(house, dict):
        view["houseId"] = house.get("id")
        view["coordinates"] = house.get("location", {}).get("coordinates")
    return view


def get_profile(db, user: dict) -> dict:
    role = user["role"]
    profile = db[role].find_one({"userId": user["id"]})
    if profile is None:
        raise NotFound("Profile not found")
    house = None
    if role == "resident" and user.get("house"):
        house = serialize_doc(db["house"].find_one({"_id": to_object_id(user["house"], "House")}))
    return profile_view(role, serialize_doc(profile), house)


def _build_house(profile: dict) -> House:
    coordinates = profile.get("coordinates")
    if coordinates is None:
        coordinates = list(config.DEFAULT_COORDINATES)
    return House(
        wardNumber=profile.get("wardNumber") or "WARD-1",
        houseNumber=profile.get("doorNumber") or "UNKNOWN",
        houseId=profile.get("houseId") or f"WARD-{int(time.time() * 1000)}",
        address=profile.get("address") or "Residence - Delhi",
        location=GeoPoint(coordinates=[float(c) for c in coordinates]),
    )


def _build_profile(role: str, name: str, profile: dict, house: House = None):
    if role == "resident":
        return Resident(userId="", doorNumber=house.houseNumber, address=house.address)
    if role == "collector":
        return Collector(
            userId="",
            employeeId=profile.get("employeeId") or "",
            areaAssigned=profile.get("areaAssigned") or "",
        )
    return Authority(
        userId="",
        authorityName=profile.get("authorityName") or name,
        employeeId=profile.get("employeeId") or "",
        email=profile.get("email") or None,
    )


def _rollback(db, created):
    for collection_name, doc_id in reversed(created):
        try:
            delete_document(db, collection_name, doc_id)
        except PyMongoError:
            logger.exception("could not roll back %s %s", collection_name, doc_id)


def register(db, user: dict, profile: dict = None) -> dict:
    """Create a user, its role profile and, for residents, its house.

    The writes are undone in reverse order if any of them fails, so a failed
    registration leaves no partial records behind.
    """
    profile = profile or {}
    phone = (user.get("phone") or "").strip()
    password = user.get("password") or ""
    role = user.get("role")

    if not phone or not password or not role:
        raise ValidationError("Missing required user fields")
    if role not in ROLES:
        raise ValidationError(f"Unknown role: {role}")

    if db["user"].find_one({"phone": phone}):
        logger.warning("registration refused, phone %s already registered", phone)
        raise DuplicatePhone()

    name = user.get("name") or profile.get("authorityName") or "User"
    try:
        house = _build_house(profile) if role == "resident" else None
        profile_doc = _build_profile(role, name, profile, house)
    except (SchemaError, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid profile: {e}")

    created = []
    try:
        house_id = None
        if house is not None:
            house_id = create_document(db, "house", house)
            created.append(("house", house_id))

        user_doc = User(name=name, phone=phone, password_hash=hash_password(password), role=role, house=house_id)
        user_id = create_document(db, "user", user_doc)
        created.append(("user", user_id))

        profile_doc.userId = user_id
        create_document(db, role, profile_doc)
    except DuplicateKeyError:
        _rollback(db, created)
        logger.warning("registration lost a race for phone %s", phone)
        raise DuplicatePhone()
    except PyMongoError:
        logger.exception("registration failed for phone %s", phone)
        _rollback(db, created)
        raise PersistenceError("Registration failed")

    logger.info("registered %s %s", role, user_id)
    stored = get_user(db, user_id)
    return {"user": user_view(db, stored), "profile": get_profile(db, stored)}


def login(db, phone: str, password: str) -> dict:
    if not phone or not password:
        raise ValidationError("Phone and password are required")

    user = db["user"].find_one({"phone": phone.strip()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        logger.warning("failed login for phone %s", phone)
        raise InvalidCredentials()

    user = serialize_doc(user)
    return {"user": user_view(db, user), "profile": get_profile(db, user)}


def set_availability(db, user_id: str, is_available: bool) -> dict:
    if not isinstance(is_available, bool):
        raise ValidationError("isAvailable (boolean) is required")

    resident = db["resident"].find_one({"userId": user_id})
    if resident is None:
        raise NotFound("Resident not found")

    score = resident.get("beaconScore", config.DEFAULT_BEACON_SCORE)
    if is_available and score < config.MIN_BEACON_FOR_AVAILABILITY:
        logger.warning("resident %s cannot become available with beacon score %s", user_id, score)
        raise ValidationError(
            f"Beacon score {score} is below {config.MIN_BEACON_FOR_AVAILABILITY}; cannot mark available"
        )

    db["resident"].update_one({"_id": resident["_id"]}, {"$set": {"isAvailable": is_available}})
    resident["isAvailable"] = is_available
    logger.info("resident %s availability set to %s", user_id, is_available)
    return profile_view("resident", serialize_doc(resident))


def update_collection_progress(db, user_id: str, progress: int) -> dict:
    if isinstance(progress, bool) or not isinstance(progress, int) or not 0 <= progress <= 100:
        raise ValidationError("collectionProgress must be an integer between 0 and 100")

    collector = db["collector"].find_one({"userId": user_id})
    if collector is None:
        raise NotFound("Collector not found")

    db["collector"].update_one({"_id": collector["_id"]}, {"$set": {"collectionProgress": progress}})
    collector["collectionProgress"] = progress
    return profile_view("collector", serialize_doc(collector))
