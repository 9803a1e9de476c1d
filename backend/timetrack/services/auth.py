from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from jose import ExpiredSignatureError, JWTError, jwt
import hashlib
import hmac
import os
import binascii
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from timetrack.config import settings
from timetrack.database import get_db
from timetrack.db_models import User
from timetrack.errors import AuthError
from timetrack.services.entry_store import EntryStore
from timetrack.utils.logger import logger

security = HTTPBearer(auto_error=False)

# Stored format: "pbkdf2_sha256$<iterations>$<salt_hex>$<hash_hex>".
_PBKDF2_ALGO_PREFIX = "pbkdf2_sha256"
_PBKDF2_ITERATIONS = 100_000
_PBKDF2_SALT_BYTES = 16


def get_password_hash(password: str) -> str:
    """Return a PBKDF2-SHA256 hash string for the given password."""
    if not isinstance(password, str):
        raise TypeError("password must be a string")

    salt = os.urandom(_PBKDF2_SALT_BYTES)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, _PBKDF2_ITERATIONS)
    salt_hex = binascii.hexlify(salt).decode("ascii")
    hash_hex = binascii.hexlify(dk).decode("ascii")
    return f"{_PBKDF2_ALGO_PREFIX}${_PBKDF2_ITERATIONS}${salt_hex}${hash_hex}"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a PBKDF2-SHA256 encoded hash.

    Returns False if the hash is malformed.
    """
    if not hashed_password:
        return False
    try:
        prefix, iter_str, salt_hex, hash_hex = hashed_password.split("$", 3)
        if prefix != _PBKDF2_ALGO_PREFIX:
            return False
        iterations = int(iter_str)
        salt = binascii.unhexlify(salt_hex.encode("ascii"))
        expected = binascii.unhexlify(hash_hex.encode("ascii"))
    except (ValueError, binascii.Error):
        return False

    dk = hashlib.pbkdf2_hmac("sha256", plain_password.encode("utf-8"), salt, iterations)
    return hmac.compare_digest(dk, expected)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.secret_key, algorithm=settings.ALGORITHM)
    return encoded_jwt


def authenticate_token(token: Optional[str], user_lookup: Callable[[str], Optional[User]]) -> User:
    """Resolve a bearer credential to an active user.

    Shared by the HTTP dependency and the realtime handshake. Raises
    :class:`AuthError` whose ``reason`` tells the caller why.
    """
    if not token:
        raise AuthError("Access token required", reason=AuthError.TOKEN_MISSING)

    if not settings.secret_key:
        logger.error("JWT secret not configured; refusing to authenticate")
        raise AuthError("Authentication is not configured", reason=AuthError.SERVER_MISCONFIGURED)

    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError:
        raise AuthError("Token expired", reason=AuthError.TOKEN_EXPIRED)
    except JWTError as e:
        logger.warning(f"JWT validation error: {str(e)}")
        raise AuthError("Invalid token", reason=AuthError.TOKEN_INVALID)

    user_id = payload.get("sub")
    if not user_id:
        raise AuthError("Invalid token", reason=AuthError.TOKEN_INVALID)

    user = user_lookup(user_id)
    if user is None or not user.is_active:
        logger.warning(f"User not found or inactive for token: {user_id}")
        raise AuthError("User not found", reason=AuthError.USER_NOT_FOUND)
    return user


def authenticate_user(store: EntryStore, email: str, password: str) -> Optional[User]:
    user = store.get_user_by_email(email)
    if not user:
        logger.warning(f"Authentication failed: User not found - {email}")
        return None
    if not verify_password(password, user.hashed_password):
        logger.warning(f"Authentication failed: Invalid password - {email}")
        return None
    logger.info(f"User authenticated successfully: {email}")
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    token = credentials.credentials if credentials else None
    try:
        return authenticate_token(token, EntryStore(db).get_user)
    except AuthError as exc:
        status_code = (
            status.HTTP_500_INTERNAL_SERVER_ERROR
            if exc.reason == AuthError.SERVER_MISCONFIGURED
            else status.HTTP_401_UNAUTHORIZED
        )
        raise HTTPException(
            status_code=status_code,
            detail=exc.to_detail(),
            headers={"WWW-Authenticate": "Bearer"},
        )


def register_user(store: EntryStore, email: str, name: str, password: str) -> User:
    if store.get_user_by_email(email):
        logger.warning(f"Registration failed: Email already exists - {email}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "EMAIL_TAKEN", "message": "Email already registered"},
        )

    user = store.create_user(
        email=email,
        name=name,
        hashed_password=get_password_hash(password),
        idle_timeout_seconds=settings.DEFAULT_IDLE_TIMEOUT_SECONDS,
    )
    logger.info(f"New user registered: {user.email}")
    return user
