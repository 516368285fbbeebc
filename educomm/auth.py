"""Bearer-token helpers shared by the API blueprints."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Dict, Optional

import jwt
from flask import g, jsonify, request

from educomm.config import Config
from educomm.models import UserRole

logger = logging.getLogger(__name__)


def issue_token(user_id: int, role: str = UserRole.CUSTOMER.value, expires_minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "user_id": user_id,
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes or Config.JWT_EXPIRE_MINUTES),
    }
    return jwt.encode(payload, Config.JWT_SECRET, algorithm=Config.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        claims = jwt.decode(token, Config.JWT_SECRET, algorithms=[Config.JWT_ALGORITHM])
    except jwt.PyJWTError as exc:
        logger.info("Rejected bearer token: %s", exc)
        return None
    if not isinstance(claims.get("user_id"), int):
        return None
    return claims


def _bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _authenticate() -> bool:
    token = _bearer_token()
    claims = decode_token(token) if token else None
    if not claims:
        return False
    g.current_user_id = claims["user_id"]
    g.current_user_role = claims.get("role") or UserRole.CUSTOMER.value
    return True


def require_user(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not _authenticate():
            return jsonify({"error": "Not authenticated"}), 401
        return view(*args, **kwargs)
    return wrapper


def require_admin(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not _authenticate():
            return jsonify({"error": "Not authenticated"}), 401
        if g.current_user_role != UserRole.ADMIN.value:
            return jsonify({"error": "Forbidden"}), 403
        return view(*args, **kwargs)
    return wrapper
