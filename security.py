"""Password hashing and JWT helpers."""

from datetime import timedelta

import bcrypt
import jwt

import settings
from database import utcnow


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password.encode(), salt).decode()


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode(), password_hash.encode())


def create_token(user_doc: dict) -> str:
    payload = {
        "sub": str(user_doc.get("_id")),
        "email": user_doc["email"],
        "role": user_doc.get("role", "customer"),
        "exp": utcnow() + timedelta(days=settings.JWT_EXPIRE_DAYS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGO)


def decode_token(token: str) -> dict:
    """Decode and verify a token. Raises jwt.PyJWTError on any failure."""
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGO])
