import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt
from passlib.context import CryptContext

import config
from database import get_db, serialize_doc, to_object_id
from errors import Forbidden, NotFound

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_token(user_id: str, role: str, expires_delta: Optional[timedelta] = None):
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "role": role,
        "exp": now + (expires_delta or timedelta(minutes=config.JWT_EXPIRE_MINUTES)),
        "iat": now,
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALG)


def decode_token(token: str) -> dict:
    data = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])
    return {"user_id": data.get("sub"), "role": data.get("role")}


def verify_token(authorization: Optional[str] = Header(None)):
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    try:
        scheme, token = authorization.split(" ", 1)
        if scheme.lower() != "bearer":
            raise ValueError("Invalid auth scheme")
        claims = decode_token(token)
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    if not claims["user_id"]:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return claims


def get_current_user(claims=Depends(verify_token), db=Depends(get_db)):
    try:
        user = db["user"].find_one({"_id": to_object_id(claims["user_id"], "User")})
    except NotFound:
        user = None
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return serialize_doc(user)


def require_role(*roles):
    def checker(user=Depends(get_current_user)):
        if user.get("role") not in roles:
            logger.warning("user %s with role %s denied, needs %s", user["id"], user.get("role"), roles)
            raise Forbidden(f"Only {', '.join(roles)} accounts can do this")
        return user
    return checker


def acting_as(user: dict, claimed_id: Optional[str] = None) -> str:
    """The id a request acts for: the caller's own, whatever the body claims."""
    if claimed_id and claimed_id != user["id"]:
        logger.warning("user %s tried to act as %s", user["id"], claimed_id)
        raise Forbidden("You can only act on your own account")
    return user["id"]
