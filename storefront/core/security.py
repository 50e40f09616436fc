from __future__ import annotations

import base64
import binascii
import hmac
import json
import time
from hashlib import sha256
from typing import Literal

from fastapi import Header, HTTPException
from pydantic import BaseModel

from storefront.core.config import get_settings


ActorType = Literal["admin", "customer", "system"]


class Actor(BaseModel):
    type: ActorType
    id: str

    @property
    def is_admin(self) -> bool:
        return self.type == "admin"


def _auth_error(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def _extract_credential(authorization: str | None, x_api_key: str | None) -> str | None:
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise _auth_error("invalid authorization header")
        return token.strip()
    if x_api_key and x_api_key.strip():
        return x_api_key.strip()
    return None


def _actor_from_api_key(api_key: str) -> Actor | None:
    settings = get_settings()
    key_map = {
        settings.admin_api_key: Actor(type="admin", id=settings.admin_actor_id),
        settings.system_api_key: Actor(type="system", id=settings.system_actor_id),
    }
    return key_map.get(api_key)


def _token_key() -> bytes:
    return get_settings().customer_token_secret.encode("utf-8")


def create_customer_token(user_id: str, ttl_seconds: int | None = None) -> str:
    settings = get_settings()
    now = int(time.time())
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + (ttl_seconds or settings.customer_token_ttl_seconds),
    }
    body = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    mac = hmac.new(_token_key(), body, sha256).digest()
    return base64.urlsafe_b64encode(body + mac).decode("ascii")


def verify_customer_token(token: str) -> str | None:
    """Return the user id carried by a valid customer token, otherwise None."""
    try:
        raw = base64.urlsafe_b64decode(token.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError, ValueError):
        return None
    if len(raw) <= 32:
        return None

    body, mac = raw[:-32], raw[-32:]
    expected = hmac.new(_token_key(), body, sha256).digest()
    if not hmac.compare_digest(mac, expected):
        return None

    payload = json.loads(body.decode("utf-8"))
    if int(time.time()) > int(payload.get("exp", 0)):
        return None
    subject = payload.get("sub")
    return str(subject) if subject else None


def get_actor(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None),
) -> Actor:
    settings = get_settings()
    if not settings.auth_enabled:
        return Actor(type="admin", id=settings.admin_actor_id)

    credential = _extract_credential(authorization, x_api_key)
    if not credential:
        raise _auth_error("missing credentials")

    actor = _actor_from_api_key(credential)
    if actor is not None:
        return actor

    user_id = verify_customer_token(credential)
    if user_id is None:
        raise _auth_error("invalid credentials")
    return Actor(type="customer", id=user_id)


def require_roles(actor: Actor, allowed: set[str], detail: str = "insufficient role") -> None:
    if actor.type not in allowed:
        raise HTTPException(status_code=403, detail=detail)


def require_admin(actor: Actor) -> None:
    require_roles(actor, {"admin"}, detail="admin role required")
