"""
JWT utility functions for encoding and decoding tokens.

Access tokens are issued by the identity provider and signed with the
project's shared secret; storage tokens are minted locally to sign URLs
for the filesystem storage backend.
"""

import os
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from fastapi import HTTPException, status
from jwt import ExpiredSignatureError, InvalidTokenError, PyJWTError

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60
STORAGE_TOKEN_PURPOSE = "storage"


def get_secret_key() -> str:
    secret = os.getenv("JWT_SECRET_KEY")
    if not secret:
        msg = "JWT_SECRET_KEY not set in environment"
        raise RuntimeError(msg)
    return secret


def get_audience() -> str:
    return os.getenv("JWT_AUDIENCE", "authenticated")


def create_access_token(
    data: dict[str, Any], expires_delta: timedelta | None = None
) -> str:
    """
    Mint an access token the way the identity provider would. Production
    requests carry provider-issued tokens; this is for local runs and tests.
    """
    to_encode = data.copy()
    expire = datetime.now(UTC) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode["exp"] = expire  # PyJWT handles timestamp conversion
    to_encode.setdefault("aud", get_audience())
    return jwt.encode(to_encode, get_secret_key(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """
    Decode a JWT token and return the claims dict. Raises 401 if invalid.
    """
    try:
        return jwt.decode(
            token, get_secret_key(), algorithms=[ALGORITHM], audience=get_audience()
        )
    except (ExpiredSignatureError, InvalidTokenError, PyJWTError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from exc


def create_storage_token(bucket: str, path: str, ttl_seconds: int) -> str:
    payload = {
        "purpose": STORAGE_TOKEN_PURPOSE,
        "bucket": bucket,
        "path": path,
        "exp": datetime.now(UTC) + timedelta(seconds=ttl_seconds),
    }
    return jwt.encode(payload, get_secret_key(), algorithm=ALGORITHM)


def verify_storage_token(token: str, bucket: str, path: str) -> bool:
    try:
        claims = jwt.decode(token, get_secret_key(), algorithms=[ALGORITHM])
    except PyJWTError:
        return False
    return (
        claims.get("purpose") == STORAGE_TOKEN_PURPOSE
        and claims.get("bucket") == bucket
        and claims.get("path") == path
    )
