"""
auth.py — password hashing and bearer tokens

Tokens are opaque random strings kept in the store with an expiry; an access
token and its refresh token are issued (and revoked) as a pair.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt

import config
from models import TokenPair
from store import Store

log = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes
BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)
    return bcrypt.hashpw(_password_bytes(password), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))
    except ValueError:
        return False


def issue_tokens(store: Store, user_id: str) -> TokenPair:
    now = datetime.now(timezone.utc)
    access = secrets.token_urlsafe(32)
    refresh = secrets.token_urlsafe(32)
    store.save_token(access, {
        "user_id": user_id,
        "kind": "access",
        "pair": refresh,
        "expires_at": (now + timedelta(minutes=config.ACCESS_TOKEN_TTL_MINUTES)).isoformat(),
    })
    store.save_token(refresh, {
        "user_id": user_id,
        "kind": "refresh",
        "pair": access,
        "expires_at": (now + timedelta(days=config.REFRESH_TOKEN_TTL_DAYS)).isoformat(),
    })
    return TokenPair(access_token=access, refresh_token=refresh)


def _resolve(store: Store, token: str, kind: str) -> Optional[dict]:
    if not token:
        return None
    record = store.get_token(token)
    if record is None or record["kind"] != kind:
        return None
    if datetime.fromisoformat(record["expires_at"]) <= datetime.now(timezone.utc):
        store.delete_tokens(token)
        return None
    return record


def user_for_access_token(store: Store, token: str) -> Optional[str]:
    record = _resolve(store, token, "access")
    return record["user_id"] if record else None


def rotate_refresh_token(store: Store, refresh_token: str) -> Optional[TokenPair]:
    """Swap a valid refresh token for a fresh pair; the old pair stops working."""
    record = _resolve(store, refresh_token, "refresh")
    if record is None:
        return None
    store.delete_tokens(refresh_token, record["pair"])
    return issue_tokens(store, record["user_id"])


def revoke(store: Store, access_token: str):
    record = store.get_token(access_token)
    if record is None:
        return
    store.delete_tokens(access_token, record.get("pair", ""))
    log.info(f"Tokens revoked for user {record['user_id']}")
