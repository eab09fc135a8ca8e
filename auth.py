from datetime import datetime, timedelta, timezone

import jwt
from bson.errors import InvalidId
from bson.objectid import ObjectId
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

from config import JWT_ALGORITHM, JWT_EXPIRE_MINUTES, JWT_SECRET
from database import get_db

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
security = HTTPBearer(auto_error=False)

AUTH_FAILED = "Please authenticate."


def hash_password(plain: str) -> str:
    return pwd_context.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(plain, hashed)


def create_token(sub: str, role: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": sub,
        "role": role,
        "exp": now + timedelta(minutes=JWT_EXPIRE_MINUTES),
        "iat": now,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def _unauthorized() -> HTTPException:
    # Every failure looks the same to the caller
    return HTTPException(status_code=401, detail=AUTH_FAILED, headers={"WWW-Authenticate": "Bearer"})


def get_current_user(
    creds: HTTPAuthorizationCredentials = Depends(security),
    db=Depends(get_db),
):
    """Resolve the bearer token to a doctor document.

    The header and signature are checked before the store is queried, so a
    request without a usable token never reaches the database.
    """
    if creds is None or not creds.credentials:
        raise _unauthorized()
    try:
        payload = jwt.decode(creds.credentials, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        oid = ObjectId(payload.get("sub"))
    except (jwt.PyJWTError, InvalidId, TypeError):
        raise _unauthorized()

    user = db["doctor"].find_one({"_id": oid}, {"password_hash": 0})
    if not user:
        raise _unauthorized()
    user["_id"] = str(user["_id"])
    return user


def get_optional_user(
    creds: HTTPAuthorizationCredentials = Depends(security),
    db=Depends(get_db),
):
    """Like get_current_user, but anonymous requests resolve to None."""
    if creds is None:
        return None
    return get_current_user(creds, db)


def require_roles(*roles: str):
    def checker(current=Depends(get_current_user)):
        if current.get("role") not in roles:
            raise HTTPException(status_code=403, detail="Not authorized")
        return current

    return checker
