import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from database import Store, get_store
from errors import AuthenticationError, AuthorizationError, ValidationError
from schemas import parse_object_id

logger = logging.getLogger(__name__)

# Auth setup
SECRET_KEY = os.getenv("SECRET_KEY", "klicktools-dev-secret")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 7 * 24 * 60))

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def token_for(user: Dict[str, Any]) -> str:
    return create_access_token({
        "sub": str(user["_id"]),
        "email": user["email"],
        "name": user.get("name", ""),
        "role": user.get("role", "user"),
    })


def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    """Resolve the bearer token to the stored user document."""
    if not token:
        raise AuthenticationError("Unauthorized")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = payload.get("sub")
    except JWTError:
        raise AuthenticationError("Could not validate credentials")
    try:
        oid = parse_object_id(user_id)
    except ValidationError:
        raise AuthenticationError("Could not validate credentials")
    user = store.users.find_one({"_id": oid})
    if not user:
        raise AuthenticationError("Could not validate credentials")
    return user


def require_role(*roles: str):
    def role_dep(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if current_user.get("role") not in roles:
            logger.info("Denied %s (role=%s), needs %s", current_user.get("email"), current_user.get("role"), roles)
            raise AuthorizationError("Forbidden")
        return current_user
    return role_dep


require_admin = require_role("admin")
